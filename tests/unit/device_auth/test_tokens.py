"""Unit tests for TokenIssuer (HS256 session tokens).

Coverage:
* issue/verify returns the embedded identity
* Expiry is judged by the injected clock
* Tampered, foreign-secret and garbage tokens raise InvalidTokenError
* Constructor guards
"""

from __future__ import annotations

from typing import Callable

import jwt
import pytest

from stockpair.device_auth.errors import InvalidTokenError
from stockpair.device_auth.models import Identity
from stockpair.device_auth.tokens import ISSUER, TokenIssuer

SECRET = "unit-test-secret-0123456789abcdef0123456789"
ALICE = Identity(user_id="u-alice", email="alice@example.com", display_name="Alice")


def fake_clock_factory(now: float) -> Callable[[], float]:
    """Return a callable clock that always returns *now*."""
    return lambda now=now: now


def test_issue_and_verify_roundtrip() -> None:
    issuer = TokenIssuer(SECRET, lifetime_seconds=60, clock=fake_clock_factory(1_000))
    token = issuer.issue(ALICE)
    assert issuer.verify(token) == ALICE


def test_claims_shape() -> None:
    issuer = TokenIssuer(SECRET, lifetime_seconds=60, clock=fake_clock_factory(1_000))
    claims = jwt.decode(
        issuer.issue(ALICE),
        SECRET,
        algorithms=["HS256"],
        options={"verify_exp": False, "verify_iat": False},
        issuer=ISSUER,
    )
    assert claims["sub"] == "u-alice"
    assert claims["email"] == "alice@example.com"
    assert claims["name"] == "Alice"
    assert claims["iat"] == 1_000
    assert claims["exp"] == 1_060


def test_token_expires_by_injected_clock() -> None:
    token = TokenIssuer(SECRET, lifetime_seconds=60, clock=fake_clock_factory(1_000)).issue(ALICE)
    assert TokenIssuer(SECRET, clock=fake_clock_factory(1_059)).verify(token) == ALICE
    with pytest.raises(InvalidTokenError):
        TokenIssuer(SECRET, clock=fake_clock_factory(1_060)).verify(token)


def test_foreign_secret_rejected() -> None:
    token = TokenIssuer(SECRET, clock=fake_clock_factory(1_000)).issue(ALICE)
    other = TokenIssuer("another-secret-0123456789abcdef01234567", clock=fake_clock_factory(1_000))
    with pytest.raises(InvalidTokenError):
        other.verify(token)


def test_tampered_token_rejected() -> None:
    issuer = TokenIssuer(SECRET, clock=fake_clock_factory(1_000))
    header, payload, sig = issuer.issue(ALICE).split(".")
    tampered = ".".join([header, payload, sig[:-2] + ("AA" if sig[-2:] != "AA" else "BB")])
    with pytest.raises(InvalidTokenError):
        issuer.verify(tampered)


@pytest.mark.parametrize("token", ["", "not-a-jwt", "a.b.c"])
def test_garbage_rejected(token: str) -> None:
    with pytest.raises(InvalidTokenError):
        TokenIssuer(SECRET).verify(token)


def test_wrong_issuer_rejected() -> None:
    forged = jwt.encode(
        {"sub": "u", "iat": 1_000, "exp": 9_999_999_999, "iss": "someone-else"},
        SECRET,
        algorithm="HS256",
    )
    with pytest.raises(InvalidTokenError):
        TokenIssuer(SECRET, clock=fake_clock_factory(1_000)).verify(forged)


@pytest.mark.parametrize("kwargs", [{"secret": ""}, {"secret": SECRET, "lifetime_seconds": 0}])
def test_constructor_guards(kwargs) -> None:
    with pytest.raises(ValueError):
        TokenIssuer(**kwargs)
