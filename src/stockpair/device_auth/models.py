"""Typed, immutable records used by the device pairing core."""

from __future__ import annotations

from dataclasses import dataclass, replace
from enum import Enum
from typing import Any, Literal

from stockpair.device_auth.clock import to_iso8601

AuthType = Literal["signin", "signup"]
AUTH_TYPES: tuple[str, ...] = ("signin", "signup")


class PairingStatus(str, Enum):
    """Lifecycle states of a pairing record."""

    PENDING = "pending"
    APPROVED = "approved"
    EXPIRED = "expired"
    CONSUMED = "consumed"

    @property
    def is_terminal(self) -> bool:
        return self in (PairingStatus.EXPIRED, PairingStatus.CONSUMED)


@dataclass(frozen=True, slots=True)
class Identity:
    """Principal returned by the credential collaborator and embedded in tokens."""

    user_id: str
    email: str
    display_name: str | None = None

    def to_payload(self) -> dict[str, Any]:
        return {
            "id": self.user_id,
            "email": self.email,
            "displayName": self.display_name,
        }

    @classmethod
    def from_payload(cls, data: dict[str, Any]) -> Identity:
        return cls(
            user_id=str(data["id"]),
            email=str(data["email"]),
            display_name=data.get("displayName"),
        )


@dataclass(frozen=True, slots=True)
class PairingRecord:
    """Snapshot of one pairing code and its lifecycle state."""

    code: str
    status: PairingStatus
    created_at: float
    expires_at: float
    auth_type: AuthType = "signin"
    owner: Identity | None = None
    consumed_at: float | None = None

    def is_expired(self, now: float) -> bool:
        """Return *True* once *now* has reached the deadline."""
        return now >= self.expires_at

    @property
    def ttl(self) -> float:
        """Seconds between *created_at* and *expires_at*."""
        return self.expires_at - self.created_at

    def with_status(self, status: PairingStatus, **changes: Any) -> PairingRecord:
        return replace(self, status=status, **changes)

    # ----- persistence helpers ---------------------------------------------- #
    def to_dict(self) -> dict[str, Any]:
        return {
            "code": self.code,
            "status": self.status.value,
            "created_at": self.created_at,
            "expires_at": self.expires_at,
            "auth_type": self.auth_type,
            "owner": (
                {
                    "user_id": self.owner.user_id,
                    "email": self.owner.email,
                    "display_name": self.owner.display_name,
                }
                if self.owner
                else None
            ),
            "consumed_at": self.consumed_at,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> PairingRecord:
        owner = data.get("owner")
        return cls(
            code=data["code"],
            status=PairingStatus(data["status"]),
            created_at=float(data["created_at"]),
            expires_at=float(data["expires_at"]),
            auth_type=data.get("auth_type", "signin"),
            owner=Identity(**owner) if owner else None,
            consumed_at=data.get("consumed_at"),
        )


# --------------------------------------------------------------------------- #
# Store transition results                                                    #
# --------------------------------------------------------------------------- #
class TransitionOutcome(str, Enum):
    """Result of a conditional store transition."""

    APPROVED = "approved"
    CONSUMED = "consumed"
    NOT_FOUND = "not_found"
    EXPIRED = "expired"
    ALREADY_RESOLVED = "already_resolved"
    NOT_APPROVED = "not_approved"


@dataclass(frozen=True, slots=True)
class TransitionResult:
    """Outcome of ``try_approve`` / ``try_consume``.

    ``record`` is the post-transition snapshot on success and the untouched
    snapshot (when one exists) otherwise.
    """

    outcome: TransitionOutcome
    record: PairingRecord | None = None

    @property
    def ok(self) -> bool:
        return self.outcome in (TransitionOutcome.APPROVED, TransitionOutcome.CONSUMED)


# --------------------------------------------------------------------------- #
# Coordinator results                                                         #
# --------------------------------------------------------------------------- #
@dataclass(frozen=True, slots=True)
class PairingTicket:
    """What the TV receives after CreatePairing."""

    code: str
    pairing_url: str
    expires_at: float
    poll_interval_ms: int
    auth_type: AuthType = "signin"
    qr_code: str | None = None

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "code": self.code,
            "pairingUrl": self.pairing_url,
            "expiresAt": to_iso8601(self.expires_at),
            "pollIntervalMs": self.poll_interval_ms,
            "authType": self.auth_type,
        }
        if self.qr_code is not None:
            payload["qrCode"] = self.qr_code
        return payload


@dataclass(frozen=True, slots=True)
class StatusReport:
    """Answer to a StatusCheck.  ``token`` is only ever set once per code."""

    status: PairingStatus
    token: str | None = None
    identity: Identity | None = None

    @property
    def is_terminal(self) -> bool:
        return self.status is not PairingStatus.PENDING

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"status": self.status.value}
        if self.token is not None:
            payload["token"] = self.token
        if self.identity is not None:
            payload["identity"] = self.identity.to_payload()
        return payload

    @classmethod
    def from_payload(cls, data: dict[str, Any]) -> StatusReport:
        identity = data.get("identity")
        return cls(
            status=PairingStatus(data["status"]),
            token=data.get("token"),
            identity=Identity.from_payload(identity) if identity else None,
        )


@dataclass(frozen=True, slots=True)
class ApprovalResult:
    """Successful approval of a pairing code."""

    code: str
    identity: Identity

    def to_payload(self) -> dict[str, Any]:
        return {"success": True}


@dataclass(frozen=True, slots=True)
class SessionGrant:
    """Token handed out by a direct (code-less) sign-in or sign-up."""

    token: str
    identity: Identity

    def to_payload(self) -> dict[str, Any]:
        return {"success": True, "token": self.token, "identity": self.identity.to_payload()}
