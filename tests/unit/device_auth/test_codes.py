"""Unit tests for pairing-code generation and normalisation.

Coverage:
* Generated codes use only the unambiguous alphabet and the requested length
* Generator rejects too-short lengths and degenerate alphabets
* normalize_code upper-cases, strips separators and validates
"""

from __future__ import annotations

import pytest

from stockpair.device_auth.codes import CODE_ALPHABET, CodeGenerator, normalize_code
from stockpair.device_auth.errors import InvalidCodeFormatError


def test_alphabet_excludes_confusable_characters() -> None:
    assert len(CODE_ALPHABET) == 32
    for ch in "01IO":
        assert ch not in CODE_ALPHABET


def test_generate_default_length_and_alphabet() -> None:
    gen = CodeGenerator()
    for _ in range(200):
        code = gen.generate()
        assert len(code) == 7
        assert set(code) <= set(CODE_ALPHABET)


def test_generate_custom_length() -> None:
    assert len(CodeGenerator().generate(10)) == 10


def test_generate_is_not_constant() -> None:
    gen = CodeGenerator()
    assert len({gen.generate() for _ in range(50)}) > 1


def test_generate_rejects_short_length() -> None:
    with pytest.raises(ValueError):
        CodeGenerator().generate(3)


@pytest.mark.parametrize("alphabet", ["", "AAB"])
def test_generator_rejects_bad_alphabet(alphabet: str) -> None:
    with pytest.raises(ValueError):
        CodeGenerator(alphabet)


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("ABCD234", "ABCD234"),
        ("abcd234", "ABCD234"),
        ("abc-d234", "ABCD234"),
        (" ABC D234 ", "ABCD234"),
    ],
)
def test_normalize_code_accepts_human_input(raw: str, expected: str) -> None:
    assert normalize_code(raw) == expected


@pytest.mark.parametrize("raw", [None, "", "ABC", "ABCD2345", "ABCD230", "ABCDI23"])
def test_normalize_code_rejects_malformed(raw) -> None:
    with pytest.raises(InvalidCodeFormatError):
        normalize_code(raw)
