"""PairingCoordinator – "sign in on the TV with a code approved from a phone".

The coordinator is the only component with protocol logic.  Handlers in
``stockpair.servers.pairing`` call the thin façade methods below; everything
here is HTTP-agnostic and synchronous (the web layer runs it in a thread pool).

Flow
----
1. TV: :meth:`PairingCoordinator.create_pairing` – allocate a code, persist a
   PENDING record, return the pairing URL and the poll interval.
2. Phone: :meth:`~PairingCoordinator.verify_code` (optional pre-check), then
   :meth:`~PairingCoordinator.approve` or
   :meth:`~PairingCoordinator.approve_with_signup` – one atomic
   ``try_approve`` on the store.
3. TV: :meth:`~PairingCoordinator.check_status` until terminal.  The first poll
   that observes APPROVED wins ``try_consume`` and receives the token; every
   later poll sees CONSUMED.

Approval and consumption are separate atomic steps because the phone and the
TV are different processes; the token is minted lazily on the winning poll.

All failures surface as :class:`~stockpair.device_auth.errors.PairingError`
subclasses.  Unexpected store exceptions are logged and re-raised as
:class:`~stockpair.device_auth.errors.StorageError` without internal detail.
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Iterator, Protocol, runtime_checkable
from urllib.parse import urlencode

from stockpair.device_auth.clock import Clock, default_clock
from stockpair.device_auth.codes import DEFAULT_CODE_LENGTH, CodeGenerator, normalize_code
from stockpair.device_auth.credentials import AccountDirectory, CredentialVerifier
from stockpair.device_auth.errors import (
    CodeAlreadyResolvedError,
    CodeConflictError,
    CodeExpiredError,
    CodeNotFoundError,
    GenerationExhaustedError,
    InvalidCredentialsError,
    InvalidRequestError,
    PairingError,
    StorageError,
)
from stockpair.device_auth.log_utils import get_pairing_logger, mask_code
from stockpair.device_auth.models import (
    AUTH_TYPES,
    ApprovalResult,
    AuthType,
    Identity,
    PairingRecord,
    PairingStatus,
    PairingTicket,
    SessionGrant,
    StatusReport,
    TransitionOutcome,
)
from stockpair.device_auth.store import PairingStore
from stockpair.device_auth.tokens import TokenIssuer

_LOG = logging.getLogger("stockpair.device_auth.service")

DEFAULT_TTL_SECONDS = 15 * 60
DEFAULT_POLL_INTERVAL_MS = 3_000
DEFAULT_MAX_ATTEMPTS = 5
DEFAULT_ACTIVATE_URL = "http://localhost:3001/activate"

_APPROVE_ERRORS: dict[TransitionOutcome, type[PairingError]] = {
    TransitionOutcome.NOT_FOUND: CodeNotFoundError,
    TransitionOutcome.EXPIRED: CodeExpiredError,
    TransitionOutcome.ALREADY_RESOLVED: CodeAlreadyResolvedError,
}


@runtime_checkable
class QrEncoder(Protocol):
    """Black-box encoder turning the pairing URL into an image payload (e.g. a data URL)."""

    def encode(self, url: str) -> str: ...


class PairingCoordinator:
    """Application service orchestrating device pairing."""

    def __init__(
        self,
        store: PairingStore,
        *,
        tokens: TokenIssuer,
        credentials: CredentialVerifier,
        generator: CodeGenerator | None = None,
        code_length: int = DEFAULT_CODE_LENGTH,
        ttl_seconds: float = DEFAULT_TTL_SECONDS,
        poll_interval_ms: int = DEFAULT_POLL_INTERVAL_MS,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        activate_url: str = DEFAULT_ACTIVATE_URL,
        qr_encoder: QrEncoder | None = None,
        clock: Clock = default_clock,
    ) -> None:
        if ttl_seconds <= 0:
            raise ValueError("ttl_seconds must be positive")
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self.store = store
        self.tokens = tokens
        self.credentials = credentials
        self.generator = generator or CodeGenerator()
        self.code_length = code_length
        self.ttl_seconds = ttl_seconds
        self.poll_interval_ms = poll_interval_ms
        self.max_attempts = max_attempts
        self.activate_url = activate_url
        self.qr_encoder = qr_encoder
        self._clock = clock

    # ------------------------------------------------------------------ #
    # Helpers                                                            #
    # ------------------------------------------------------------------ #
    def normalize(self, raw_code: str | None) -> str:
        """Validate user input against this coordinator's alphabet and length."""
        return normalize_code(raw_code, length=self.code_length, alphabet=self.generator.alphabet)

    def pairing_url(self, code: str) -> str:
        """URL the phone opens (and the QR code encodes) for *code*."""
        sep = "&" if "?" in self.activate_url else "?"
        return f"{self.activate_url}{sep}{urlencode({'code': code})}"

    @contextmanager
    def _guard_store(self, operation: str, code: str | None = None) -> Iterator[None]:
        """Translate unexpected store failures into :class:`StorageError`."""
        try:
            yield
        except PairingError:
            raise
        except Exception as exc:
            _LOG.error(
                "Pairing store failure during %s code=%s: %s",
                operation,
                mask_code(code),
                exc,
                exc_info=True,
            )
            raise StorageError(code=code) from exc

    def _encode_qr(self, url: str) -> str | None:
        if self.qr_encoder is None:
            return None
        try:
            return self.qr_encoder.encode(url)
        except Exception as exc:  # broad: the QR image is optional decoration
            _LOG.warning("QR encoding failed, returning ticket without image: %s", exc)
            return None

    # ------------------------------------------------------------------ #
    # TV side                                                            #
    # ------------------------------------------------------------------ #
    def create_pairing(self, *, auth_type: AuthType = "signin") -> PairingTicket:
        """Allocate a fresh code and persist it as PENDING.

        Raises
        ------
        InvalidRequestError
            Unknown *auth_type*.
        GenerationExhaustedError
            Every attempt collided with an existing code.
        StorageError
            The store failed unexpectedly.
        """
        if auth_type not in AUTH_TYPES:
            raise InvalidRequestError(f"Unsupported authType {auth_type!r}.")

        record: PairingRecord | None = None
        for attempt in range(1, self.max_attempts + 1):
            code = self.generator.generate(self.code_length)
            now = self._clock()
            try:
                with self._guard_store("insert", code):
                    record = self.store.insert(
                        code,
                        created_at=now,
                        expires_at=now + self.ttl_seconds,
                        auth_type=auth_type,
                    )
                break
            except CodeConflictError:
                _LOG.debug("Code collision on attempt %d/%d", attempt, self.max_attempts)

        if record is None:
            _LOG.error("Exhausted %d attempts allocating a pairing code", self.max_attempts)
            raise GenerationExhaustedError()

        url = self.pairing_url(record.code)
        get_pairing_logger(
            base_logger_name=_LOG.name, code=record.code, auth_type=auth_type
        ).info("Created pairing code (ttl=%ss)", int(self.ttl_seconds))
        return PairingTicket(
            code=record.code,
            pairing_url=url,
            expires_at=record.expires_at,
            poll_interval_ms=self.poll_interval_ms,
            auth_type=record.auth_type,
            qr_code=self._encode_qr(url),
        )

    def check_status(self, raw_code: str | None) -> StatusReport:
        """Report the state of a code; hands out the token exactly once.

        Raises
        ------
        InvalidCodeFormatError
            Malformed code.
        CodeNotFoundError
            Unknown or already swept code.
        """
        code = self.normalize(raw_code)
        now = self._clock()
        with self._guard_store("get", code):
            record = self.store.get(code)
        if record is None:
            raise CodeNotFoundError(code=code)

        if record.status is PairingStatus.PENDING:
            if not record.is_expired(now):
                return StatusReport(PairingStatus.PENDING)
            # Lazy expiry; the answer is "expired" whether or not the write lands.
            try:
                self.store.mark_expired(code, now)
            except Exception as exc:  # broad: best-effort bookkeeping
                _LOG.warning("Could not mark code=%s expired: %s", mask_code(code), exc)
            return StatusReport(PairingStatus.EXPIRED)

        if record.status is PairingStatus.APPROVED:
            return self._consume(code, now)

        return StatusReport(record.status)

    def _consume(self, code: str, now: float) -> StatusReport:
        with self._guard_store("try_consume", code):
            result = self.store.try_consume(code, now)

        if result.outcome is TransitionOutcome.CONSUMED:
            identity = result.record.owner  # type: ignore[union-attr]
            if identity is None:  # pragma: no cover - approve always sets owner
                raise StorageError(code=code)
            token = self.tokens.issue(identity)
            get_pairing_logger(base_logger_name=_LOG.name, code=code).info(
                "Pairing consumed, token issued for user_id=%s****", identity.user_id[:6]
            )
            return StatusReport(PairingStatus.APPROVED, token=token, identity=identity)
        if result.outcome is TransitionOutcome.NOT_APPROVED:
            # Another poll won the consume race.
            return StatusReport(PairingStatus.CONSUMED)
        if result.outcome is TransitionOutcome.EXPIRED:
            return StatusReport(PairingStatus.EXPIRED)
        raise CodeNotFoundError(code=code)

    # ------------------------------------------------------------------ #
    # Phone side                                                         #
    # ------------------------------------------------------------------ #
    def verify_code(self, raw_code: str | None) -> PairingRecord:
        """Read-only check that a code can still be approved.

        Raises
        ------
        CodeNotFoundError, CodeExpiredError, CodeAlreadyResolvedError
        """
        code = self.normalize(raw_code)
        with self._guard_store("get", code):
            record = self.store.get(code)
        if record is None:
            raise CodeNotFoundError(code=code)
        if record.status in (PairingStatus.APPROVED, PairingStatus.CONSUMED):
            raise CodeAlreadyResolvedError(code=code)
        if record.status is PairingStatus.EXPIRED or record.is_expired(self._clock()):
            raise CodeExpiredError(code=code)
        return record

    def approve(self, raw_code: str | None, *, email: str, password: str) -> ApprovalResult:
        """Authenticate the phone user and approve the code on their behalf.

        Raises
        ------
        InvalidRequestError
            Missing e-mail or password.
        InvalidCredentialsError
            The credential collaborator rejected the principal.
        CodeNotFoundError, CodeExpiredError, CodeAlreadyResolvedError
            The atomic transition did not apply.
        """
        code = self.normalize(raw_code)
        if not email or not password:
            raise InvalidRequestError("Email and password are required.", code=code)

        identity = self.credentials.verify(email, password)
        if identity is None:
            _LOG.warning("Rejected credentials for approval of code=%s", mask_code(code))
            raise InvalidCredentialsError(code=code)
        return self._approve_as(code, identity)

    def approve_with_signup(
        self,
        raw_code: str | None,
        *,
        email: str,
        password: str,
        display_name: str | None = None,
    ) -> ApprovalResult:
        """Create an account, then approve the code for it.

        The code is pre-checked so an already-dead code does not create an
        account; the approval itself is still the atomic ``try_approve``.
        """
        code = self.normalize(raw_code)
        if not email or not password:
            raise InvalidRequestError("Email and password are required.", code=code)
        if not isinstance(self.credentials, AccountDirectory):
            raise InvalidRequestError("Sign-up is not supported by this server.", code=code)

        self.verify_code(code)
        identity = self.credentials.register(email, password, display_name)
        return self._approve_as(code, identity)

    def _approve_as(self, code: str, identity: Identity) -> ApprovalResult:
        with self._guard_store("try_approve", code):
            result = self.store.try_approve(code, identity, self._clock())
        log = get_pairing_logger(base_logger_name=_LOG.name, code=code)
        if result.outcome is TransitionOutcome.APPROVED:
            log.info("Pairing approved by user_id=%s****", identity.user_id[:6])
            return ApprovalResult(code=code, identity=identity)
        log.info("Approval refused: %s", result.outcome.value)
        raise _APPROVE_ERRORS[result.outcome](code=code)

    # ------------------------------------------------------------------ #
    # Direct sign-in (no pairing code)                                   #
    # ------------------------------------------------------------------ #
    def login(self, *, email: str, password: str) -> SessionGrant:
        """Sign in with e-mail and password typed on the device itself."""
        if not email or not password:
            raise InvalidRequestError("Email and password are required.")
        identity = self.credentials.verify(email, password)
        if identity is None:
            _LOG.warning("Rejected credentials for direct sign-in")
            raise InvalidCredentialsError()
        _LOG.info("Direct sign-in for user_id=%s****", identity.user_id[:6])
        return SessionGrant(token=self.tokens.issue(identity), identity=identity)

    def signup(
        self, *, email: str, password: str, display_name: str | None = None
    ) -> SessionGrant:
        """Create an account and sign it in straight away."""
        if not email or not password:
            raise InvalidRequestError("Email and password are required.")
        if not isinstance(self.credentials, AccountDirectory):
            raise InvalidRequestError("Sign-up is not supported by this server.")
        identity = self.credentials.register(email, password, display_name)
        return SessionGrant(token=self.tokens.issue(identity), identity=identity)

    # ------------------------------------------------------------------ #
    # Token consumers                                                    #
    # ------------------------------------------------------------------ #
    def authenticate(self, token: str) -> Identity:
        """Return the identity behind a bearer token (raises ``InvalidTokenError``)."""
        return self.tokens.verify(token)
