"""Bearer session tokens handed to a TV once its pairing is approved.

Tokens are HS256 JWTs signed with a server-held secret.  The claims are::

    sub    user id of the approving principal
    email  principal e-mail
    name   display name (may be null)
    iat    issuance time (UNIX seconds, from the injected clock)
    exp    expiry time
    iss    "stockpair"

Verification is deliberately opaque: every failure (bad signature, expiry,
wrong issuer, missing claim, garbage input) raises the same
:class:`~stockpair.device_auth.errors.InvalidTokenError`.

Logging
-------
Token values and the signing secret are *never* written to logs.
"""

from __future__ import annotations

import logging
from typing import Final

import jwt

from stockpair.device_auth.clock import Clock, default_clock
from stockpair.device_auth.errors import InvalidTokenError
from stockpair.device_auth.models import Identity

_LOG = logging.getLogger("stockpair.device_auth.tokens")

ISSUER: Final[str] = "stockpair"
ALGORITHM: Final[str] = "HS256"
DEFAULT_TOKEN_LIFETIME: Final[int] = 7 * 24 * 3600


class TokenIssuer:
    """Stateless signer/verifier of session tokens."""

    def __init__(
        self,
        secret: str,
        *,
        lifetime_seconds: int = DEFAULT_TOKEN_LIFETIME,
        clock: Clock = default_clock,
    ) -> None:
        if not secret:
            raise ValueError("token signing secret must not be empty")
        if lifetime_seconds <= 0:
            raise ValueError("token lifetime must be positive")
        self._secret = secret
        self.lifetime_seconds = lifetime_seconds
        self._clock = clock

    def issue(self, identity: Identity) -> str:
        """Mint a signed token for *identity*."""
        now = int(self._clock())
        payload = {
            "sub": identity.user_id,
            "email": identity.email,
            "name": identity.display_name,
            "iat": now,
            "exp": now + self.lifetime_seconds,
            "iss": ISSUER,
        }
        return jwt.encode(payload, self._secret, algorithm=ALGORITHM)

    def verify(self, token: str) -> Identity:
        """Decode *token* and return the embedded identity.

        Raises
        ------
        InvalidTokenError
            For any verification failure.
        """
        try:
            claims = jwt.decode(
                token,
                self._secret,
                algorithms=[ALGORITHM],
                issuer=ISSUER,
                # Expiry is checked against the injected clock below.
                options={
                    "verify_exp": False,
                    "verify_iat": False,
                    "require": ["sub", "iat", "exp", "iss"],
                },
            )
            if int(claims["exp"]) <= int(self._clock()):
                raise InvalidTokenError()
            return Identity(
                user_id=str(claims["sub"]),
                email=str(claims.get("email") or ""),
                display_name=claims.get("name"),
            )
        except (jwt.InvalidTokenError, TypeError, ValueError, KeyError):
            _LOG.debug("Rejected bearer token")
            raise InvalidTokenError() from None
