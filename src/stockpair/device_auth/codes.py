"""Pairing-code generation and normalisation.

Codes are read off a TV screen and typed on a phone, so the alphabet drops the
characters people confuse (``0/O`` and ``1/I``): 24 letters + 8 digits = 32
symbols, i.e. 5 bits per character and ~34 bits for the default length of 7.

The generator does **not** guarantee store-wide uniqueness; the coordinator
retries when the store rejects an insert.

This module intentionally performs **no logging** of generated codes.
"""

from __future__ import annotations

import re
import secrets
from typing import Final

from stockpair.device_auth.errors import InvalidCodeFormatError

CODE_ALPHABET: Final[str] = "ABCDEFGHJKLMNPQRSTUVWXYZ23456789"
DEFAULT_CODE_LENGTH: Final[int] = 7

_SEPARATORS_RE = re.compile(r"[\s\-]+")


class CodeGenerator:
    """Uniformly samples codes from :data:`CODE_ALPHABET`."""

    def __init__(self, alphabet: str = CODE_ALPHABET) -> None:
        if len(set(alphabet)) != len(alphabet) or not alphabet:
            raise ValueError("alphabet must be non-empty with unique symbols")
        self.alphabet = alphabet

    def generate(self, length: int = DEFAULT_CODE_LENGTH) -> str:
        """Return a fresh code of *length* characters.

        Parameters
        ----------
        length:
            Number of characters, at least 4.

        Returns
        -------
        str
            The generated code.
        """
        if length < 4:
            raise ValueError("pairing code length must be at least 4")
        return "".join(secrets.choice(self.alphabet) for _ in range(length))


def normalize_code(
    raw: str | None,
    *,
    length: int = DEFAULT_CODE_LENGTH,
    alphabet: str = CODE_ALPHABET,
) -> str:
    """Canonicalise user input (case, spaces, hyphens) and validate it.

    Raises
    ------
    InvalidCodeFormatError
        If the result has the wrong length or contains foreign characters.
    """
    if not raw:
        raise InvalidCodeFormatError("Pairing code is required.")
    code = _SEPARATORS_RE.sub("", raw).upper()
    if len(code) != length or any(ch not in alphabet for ch in code):
        raise InvalidCodeFormatError()
    return code
