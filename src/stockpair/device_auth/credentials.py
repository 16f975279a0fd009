"""Credential collaborator used when a phone approves a pairing.

The pairing core only needs two questions answered:

* ``verify(email, secret)`` – who is this principal, if the secret matches?
* ``register(email, secret, display_name)`` – create a principal (sign-up
  variant of the approval).

:class:`InMemoryAccountDirectory` answers both on top of a pluggable
:class:`PasswordHasher`; :class:`BcryptHasher` is the default hasher.
"""

from __future__ import annotations

import logging
import re
import threading
import uuid
from dataclasses import dataclass
from typing import Final, Protocol, runtime_checkable

import bcrypt

from stockpair.device_auth.errors import RegistrationError
from stockpair.device_auth.models import Identity

_LOG = logging.getLogger("stockpair.device_auth.credentials")

BCRYPT_ROUNDS: Final[int] = 10
MIN_PASSWORD_LENGTH: Final[int] = 6
_EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")


@runtime_checkable
class CredentialVerifier(Protocol):
    """Verify a principal's e-mail + secret; ``None`` means *invalid*."""

    def verify(self, email: str, secret: str) -> Identity | None: ...


@runtime_checkable
class AccountDirectory(CredentialVerifier, Protocol):
    """A verifier that can also create principals."""

    def register(self, email: str, secret: str, display_name: str | None = None) -> Identity: ...


@runtime_checkable
class PasswordHasher(Protocol):
    def hash(self, secret: str) -> str: ...

    def verify(self, secret: str, hashed: str) -> bool: ...


def _secret_bytes(secret: str) -> bytes:
    # bcrypt only looks at the first 72 bytes; newer releases reject longer input.
    return secret.encode("utf-8")[:72]


class BcryptHasher(PasswordHasher):
    """:class:`PasswordHasher` backed by the ``bcrypt`` package."""

    def __init__(self, rounds: int = BCRYPT_ROUNDS) -> None:
        self.rounds = rounds

    def hash(self, secret: str) -> str:
        salt = bcrypt.gensalt(rounds=self.rounds)
        return bcrypt.hashpw(_secret_bytes(secret), salt).decode("utf-8")

    def verify(self, secret: str, hashed: str) -> bool:
        try:
            return bcrypt.checkpw(_secret_bytes(secret), hashed.encode("utf-8"))
        except ValueError:
            # malformed stored hash
            return False


@dataclass(frozen=True, slots=True)
class _Account:
    identity: Identity
    password_hash: str


class InMemoryAccountDirectory(AccountDirectory):
    """Thread-safe account directory keyed by lower-cased e-mail."""

    def __init__(self, hasher: PasswordHasher | None = None) -> None:
        self._hasher = hasher or BcryptHasher()
        self._accounts: dict[str, _Account] = {}
        self._lock = threading.Lock()
        # Burned on unknown e-mails so both failure paths cost one hash check.
        self._dummy_hash = self._hasher.hash(uuid.uuid4().hex)

    def register(self, email: str, secret: str, display_name: str | None = None) -> Identity:
        """Create an account.

        Raises
        ------
        RegistrationError
            Missing fields, malformed e-mail, short password or duplicate e-mail.
        """
        email = (email or "").strip()
        if not email or not secret:
            raise RegistrationError("Email and password are required.")
        if len(secret) < MIN_PASSWORD_LENGTH:
            raise RegistrationError(
                f"Password must be at least {MIN_PASSWORD_LENGTH} characters."
            )
        if not _EMAIL_RE.match(email):
            raise RegistrationError("Invalid email format.")

        key = email.lower()
        password_hash = self._hasher.hash(secret)
        with self._lock:
            if key in self._accounts:
                raise RegistrationError("Email already registered.")
            identity = Identity(
                user_id=uuid.uuid4().hex, email=email, display_name=display_name or None
            )
            self._accounts[key] = _Account(identity=identity, password_hash=password_hash)
        _LOG.info("Registered account user_id=%s****", identity.user_id[:6])
        return identity

    def verify(self, email: str, secret: str) -> Identity | None:
        with self._lock:
            account = self._accounts.get((email or "").strip().lower())
        if account is None:
            self._hasher.verify(secret or "", self._dummy_hash)
            return None
        if not self._hasher.verify(secret or "", account.password_hash):
            return None
        return account.identity
