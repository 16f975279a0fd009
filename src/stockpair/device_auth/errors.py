"""Exception types raised by the device pairing core.

Only lightweight, **data-carrying** exceptions live here so that web/CLI layers
can transform them into HTTP responses or user-friendly messages.  Every
exception exposes a stable machine-readable ``reason`` and the HTTP status the
REST layer answers with; ``to_payload()`` never includes secrets.
"""

from __future__ import annotations

from typing import ClassVar


class PairingError(RuntimeError):
    """Base class for every failure surfaced by the pairing core."""

    reason: ClassVar[str] = "pairing_error"
    http_status: ClassVar[int] = 400
    default_message: ClassVar[str] = "Pairing request failed."

    def __init__(self, message: str | None = None, *, code: str | None = None) -> None:
        super().__init__(message or self.default_message)
        self.code: str | None = code

    def to_payload(self) -> dict[str, object]:
        """Return a JSON-serialisable payload **without secrets**."""
        return {
            "success": False,
            "reason": self.reason,
            "message": str(self),
        }


# ----- validation ---------------------------------------------------------- #
class InvalidCodeFormatError(PairingError):
    """The supplied code does not match the pairing alphabet / length."""

    reason = "invalid_code"
    http_status = 400
    default_message = "Pairing code is malformed."


class InvalidRequestError(PairingError):
    """Required request fields (credentials, body) are missing or malformed."""

    reason = "invalid_request"
    http_status = 400
    default_message = "Request is missing required fields."


# ----- identity ------------------------------------------------------------ #
class InvalidCredentialsError(PairingError):
    """Credential verification failed; never says whether the account exists."""

    reason = "invalid_credentials"
    http_status = 401
    default_message = "Invalid email or password."


class RegistrationError(PairingError):
    """Sign-up was rejected by the account directory."""

    reason = "registration_failed"
    http_status = 400
    default_message = "Failed to create account."


class InvalidTokenError(PairingError):
    """A bearer token failed verification (signature, expiry or shape)."""

    reason = "invalid_token"
    http_status = 401
    default_message = "Invalid token."


# ----- code lifecycle ------------------------------------------------------ #
class CodeNotFoundError(PairingError):
    """Code unknown or already swept."""

    reason = "not_found"
    http_status = 404
    default_message = "Pairing code not found."


class CodeExpiredError(PairingError):
    """Code exists but its deadline has passed."""

    reason = "expired"
    http_status = 410
    default_message = "Pairing code has expired."


class CodeAlreadyResolvedError(PairingError):
    """Code exists but is no longer pending (approved or consumed elsewhere)."""

    reason = "already_resolved"
    http_status = 409
    default_message = "Pairing code was already used."


class CodeConflictError(PairingError):
    """Store insert collided with an existing record holding the same code."""

    reason = "conflict"
    http_status = 409
    default_message = "Pairing code already in use."


# ----- capacity / internal ------------------------------------------------- #
class GenerationExhaustedError(PairingError):
    """Every generation attempt collided with a live code; safe to retry."""

    reason = "generation_exhausted"
    http_status = 503
    default_message = "Could not allocate a pairing code, please retry."


class StorageError(PairingError):
    """Unexpected failure of the backing store; details are logged, not returned."""

    reason = "internal_error"
    http_status = 500
    default_message = "Internal error."
