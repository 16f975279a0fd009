"""Device pairing core package.

This namespace hosts the reusable, **HTTP-agnostic** building blocks for
"sign in on the TV with a code approved from a phone" – a device
authorization grant.

Sub-modules
-----------
clock
    Test-friendly time abstraction.
codes
    Human-typeable pairing-code generation and normalisation.
models
    Immutable dataclasses for pairing records and coordinator results.
errors
    Exception types used by the pairing logic.
store / sql_store
    Atomic, conditional-update persistence (memory, disk, SQLite).
tokens
    Stateless JWT session-token issuing / verification.
credentials
    Credential verification collaborator (bcrypt-backed default).
service
    :class:`PairingCoordinator`, the protocol state machine.
sweeper
    Background reclamation of expired records.
poller
    Client-side status polling loop for the TV.
log_utils
    Structured logging helpers (thin wrapper around :pymod:`logging`).

All public objects are re-exported here for convenience.
"""

from __future__ import annotations

from .clock import Clock, default_clock  # noqa: F401
from .codes import CODE_ALPHABET, CodeGenerator, normalize_code  # noqa: F401
from .credentials import (  # noqa: F401
    AccountDirectory,
    BcryptHasher,
    CredentialVerifier,
    InMemoryAccountDirectory,
)
from .errors import (  # noqa: F401
    CodeAlreadyResolvedError,
    CodeExpiredError,
    CodeNotFoundError,
    GenerationExhaustedError,
    InvalidCredentialsError,
    InvalidTokenError,
    PairingError,
)
from .log_utils import get_pairing_logger  # noqa: F401
from .models import Identity, PairingRecord, PairingStatus, SessionGrant, StatusReport  # noqa: F401
from .poller import PollOutcome, PollResult, TvPoller  # noqa: F401
from .service import PairingCoordinator, QrEncoder  # noqa: F401
from .store import DiskPairingStore, InMemoryPairingStore, PairingStore, build_store  # noqa: F401
from .sweeper import ExpirySweeper  # noqa: F401
from .tokens import TokenIssuer  # noqa: F401

__all__ = [
    # clock
    "Clock",
    "default_clock",
    # codes
    "CODE_ALPHABET",
    "CodeGenerator",
    "normalize_code",
    # credentials
    "AccountDirectory",
    "BcryptHasher",
    "CredentialVerifier",
    "InMemoryAccountDirectory",
    # errors
    "PairingError",
    "CodeAlreadyResolvedError",
    "CodeExpiredError",
    "CodeNotFoundError",
    "GenerationExhaustedError",
    "InvalidCredentialsError",
    "InvalidTokenError",
    # models
    "Identity",
    "PairingRecord",
    "PairingStatus",
    "SessionGrant",
    "StatusReport",
    # stores
    "PairingStore",
    "InMemoryPairingStore",
    "DiskPairingStore",
    "build_store",
    # protocol
    "PairingCoordinator",
    "QrEncoder",
    "TokenIssuer",
    "ExpirySweeper",
    "TvPoller",
    "PollOutcome",
    "PollResult",
    # logging helpers
    "get_pairing_logger",
]
