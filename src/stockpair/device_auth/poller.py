"""Client-side status polling run by the requesting device (the TV).

:class:`TvPoller` repeatedly asks a :class:`StatusSource` for the state of one
code until a terminal outcome, the code's deadline, or :meth:`TvPoller.cancel`.
Waiting between polls is done on an :class:`asyncio.Event` with a timeout, so
cancelling drops the scheduled resume immediately; a status request that is
already in flight is allowed to finish (it is side-effect free while PENDING,
and if it carries the one-time token that token is returned, not discarded).

Two sources are provided:

* :class:`CoordinatorStatusSource` – in-process, wraps a ``PairingCoordinator``.
* :class:`HttpStatusSource` – talks to ``GET /pairing/{code}/status`` with
  ``httpx``.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Protocol, runtime_checkable

import httpx

from stockpair.device_auth.clock import Clock, default_clock
from stockpair.device_auth.errors import (
    CodeAlreadyResolvedError,
    CodeExpiredError,
    CodeNotFoundError,
    InvalidCodeFormatError,
    PairingError,
    StorageError,
)
from stockpair.device_auth.log_utils import mask_code
from stockpair.device_auth.models import Identity, PairingStatus, PairingTicket, StatusReport

if TYPE_CHECKING:  # pragma: no cover
    from stockpair.device_auth.service import PairingCoordinator

_LOG = logging.getLogger("stockpair.device_auth.poller")

# Client errors that can never turn into an approval for this code.
_TERMINAL_REASONS: dict[str, type[PairingError]] = {
    cls.reason: cls
    for cls in (CodeNotFoundError, CodeExpiredError, CodeAlreadyResolvedError, InvalidCodeFormatError)
}


class PollResult(str, Enum):
    APPROVED = "approved"
    EXPIRED = "expired"
    NOT_FOUND = "not_found"
    CONSUMED = "consumed"
    CANCELLED = "cancelled"


@dataclass(frozen=True, slots=True)
class PollOutcome:
    """Terminal result of a polling session."""

    result: PollResult
    token: str | None = None
    identity: Identity | None = None
    polls: int = 0

    @property
    def ok(self) -> bool:
        return self.result is PollResult.APPROVED


# --------------------------------------------------------------------------- #
# Status sources                                                              #
# --------------------------------------------------------------------------- #
@runtime_checkable
class StatusSource(Protocol):
    """Something that answers StatusCheck; raises ``CodeNotFoundError`` for unknown codes."""

    async def check(self, code: str) -> StatusReport: ...


class CoordinatorStatusSource(StatusSource):
    """Calls the coordinator directly, off the event loop."""

    def __init__(self, coordinator: PairingCoordinator) -> None:
        self.coordinator = coordinator

    async def check(self, code: str) -> StatusReport:
        return await asyncio.to_thread(self.coordinator.check_status, code)


class HttpStatusSource(StatusSource):
    """Polls a running pairing server over HTTP."""

    def __init__(
        self,
        base_url: str,
        *,
        client: httpx.AsyncClient | None = None,
        path_template: str = "/pairing/{code}/status",
        timeout: float = 10.0,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.path_template = path_template
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=timeout)

    async def check(self, code: str) -> StatusReport:
        url = self.base_url + self.path_template.format(code=code)
        resp = await self._client.get(url, headers={"Accept": "application/json"})
        if resp.status_code == 404:
            raise CodeNotFoundError(code=code)
        if 400 <= resp.status_code < 500:
            error_cls = _TERMINAL_REASONS.get(self._error_reason(resp))
            if error_cls is not None:
                raise error_cls(code=code)
        resp.raise_for_status()
        return self._parse_report(resp)

    @staticmethod
    def _error_reason(resp: httpx.Response) -> str | None:
        try:
            data = resp.json()
        except ValueError:
            return None
        return data.get("reason") if isinstance(data, dict) else None

    @staticmethod
    def _parse_report(resp: httpx.Response) -> StatusReport:
        """Decode a 2xx body; any shape problem surfaces as ``ValueError``."""
        try:
            data = resp.json()
            if not isinstance(data, dict):
                raise TypeError(f"expected an object, got {type(data).__name__}")
            return StatusReport.from_payload(data)
        except (KeyError, TypeError, AttributeError) as exc:
            raise ValueError(f"malformed status payload: {exc!r}") from exc

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()


# --------------------------------------------------------------------------- #
# Poller                                                                      #
# --------------------------------------------------------------------------- #
class TvPoller:
    """Poll one code at a fixed interval until something terminal happens."""

    def __init__(
        self,
        source: StatusSource,
        code: str,
        *,
        poll_interval: float,
        deadline: float,
        clock: Clock = default_clock,
    ) -> None:
        if poll_interval <= 0:
            raise ValueError("poll_interval must be positive")
        self.source = source
        self.code = code
        self.poll_interval = poll_interval
        self.deadline = deadline
        self._clock = clock
        self._cancelled = asyncio.Event()
        self._task: asyncio.Task[PollOutcome] | None = None

    @classmethod
    def for_ticket(
        cls, source: StatusSource, ticket: PairingTicket, *, clock: Clock = default_clock
    ) -> TvPoller:
        """Build a poller from the payload returned by CreatePairing."""
        return cls(
            source,
            ticket.code,
            poll_interval=ticket.poll_interval_ms / 1000,
            deadline=ticket.expires_at,
            clock=clock,
        )

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    def cancel(self) -> None:
        """Stop polling; the pending wait wakes up immediately."""
        self._cancelled.set()

    def start(self) -> asyncio.Task[PollOutcome]:
        """Run :meth:`run` as a background task on the current loop."""
        if self._task is None:
            self._task = asyncio.get_running_loop().create_task(
                self.run(), name=f"tv-poller-{mask_code(self.code)}"
            )
        return self._task

    async def _sleep(self) -> bool:
        """Wait one interval (capped at the deadline); *True* if cancelled meanwhile."""
        remaining = max(self.deadline - self._clock(), 0.0)
        try:
            await asyncio.wait_for(
                self._cancelled.wait(), timeout=min(self.poll_interval, remaining)
            )
            return True
        except asyncio.TimeoutError:
            return False

    async def run(self) -> PollOutcome:
        polls = 0
        while True:
            if self.cancelled:
                return PollOutcome(PollResult.CANCELLED, polls=polls)
            if self._clock() >= self.deadline:
                return PollOutcome(PollResult.EXPIRED, polls=polls)

            report: StatusReport | None = None
            try:
                report = await self.source.check(self.code)
            except (CodeNotFoundError, InvalidCodeFormatError):
                return PollOutcome(PollResult.NOT_FOUND, polls=polls + 1)
            except CodeExpiredError:
                return PollOutcome(PollResult.EXPIRED, polls=polls + 1)
            except CodeAlreadyResolvedError:
                return PollOutcome(PollResult.CONSUMED, polls=polls + 1)
            except (httpx.HTTPError, StorageError, ValueError) as exc:
                # transient: keep polling until the deadline
                _LOG.warning("Status poll for code=%s failed: %s", mask_code(self.code), exc)
            polls += 1

            if report is not None:
                if report.status is PairingStatus.APPROVED and report.token:
                    _LOG.info("Pairing code=%s approved after %d poll(s)", mask_code(self.code), polls)
                    return PollOutcome(
                        PollResult.APPROVED,
                        token=report.token,
                        identity=report.identity,
                        polls=polls,
                    )
                if report.status is PairingStatus.EXPIRED:
                    return PollOutcome(PollResult.EXPIRED, polls=polls)
                if report.status in (PairingStatus.CONSUMED, PairingStatus.APPROVED):
                    # APPROVED without a token means another poller took it
                    return PollOutcome(PollResult.CONSUMED, polls=polls)

            if await self._sleep():
                return PollOutcome(PollResult.CANCELLED, polls=polls)
