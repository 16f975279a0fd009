"""Unit tests for TvPoller and its status sources.

Coverage:
* Poller returns the token on approval and stops polling
* Expired / not-found / consumed terminal states
* Transient source errors are retried until the deadline
* cancel() wakes the pending wait immediately
* End-to-end against a real coordinator via CoordinatorStatusSource
* HttpStatusSource maps 404 and parses payloads (httpx.MockTransport)
* Malformed bodies are retried; known 4xx reasons end polling at once
"""

from __future__ import annotations

import asyncio
import time
from typing import List

import httpx
import pytest

from stockpair.device_auth.credentials import BcryptHasher, InMemoryAccountDirectory
from stockpair.device_auth.errors import (
    CodeAlreadyResolvedError,
    CodeExpiredError,
    CodeNotFoundError,
    InvalidCodeFormatError,
)
from stockpair.device_auth.models import Identity, PairingStatus, StatusReport
from stockpair.device_auth.poller import (
    CoordinatorStatusSource,
    HttpStatusSource,
    PollResult,
    TvPoller,
)
from stockpair.device_auth.service import PairingCoordinator
from stockpair.device_auth.store import InMemoryPairingStore
from stockpair.device_auth.tokens import TokenIssuer

ALICE = Identity(user_id="u-alice", email="alice@example.com")


# --------------------------------------------------------------------------- #
# Helpers                                                                     #
# --------------------------------------------------------------------------- #
class ScriptedSource:
    """Replays a list of reports / exceptions, repeating the last one."""

    def __init__(self, script: List[object]) -> None:
        self.script = list(script)
        self.calls = 0

    async def check(self, code: str) -> StatusReport:
        self.calls += 1
        item = self.script.pop(0) if len(self.script) > 1 else self.script[0]
        if isinstance(item, Exception):
            raise item
        return item  # type: ignore[return-value]


def _poller(source, *, interval: float = 0.01, ttl: float = 5.0) -> TvPoller:
    return TvPoller(source, "ABCD234", poll_interval=interval, deadline=time.time() + ttl)


PENDING = StatusReport(PairingStatus.PENDING)


# --------------------------------------------------------------------------- #
# Terminal outcomes                                                           #
# --------------------------------------------------------------------------- #
@pytest.mark.anyio
async def test_poller_returns_token_on_approval() -> None:
    source = ScriptedSource(
        [PENDING, PENDING, StatusReport(PairingStatus.APPROVED, token="tok", identity=ALICE)]
    )
    outcome = await _poller(source).run()
    assert outcome.ok
    assert outcome.result is PollResult.APPROVED
    assert outcome.token == "tok"
    assert outcome.identity == ALICE
    assert outcome.polls == 3
    assert source.calls == 3


@pytest.mark.anyio
@pytest.mark.parametrize(
    "report, expected",
    [
        (StatusReport(PairingStatus.EXPIRED), PollResult.EXPIRED),
        (StatusReport(PairingStatus.CONSUMED), PollResult.CONSUMED),
        (StatusReport(PairingStatus.APPROVED), PollResult.CONSUMED),
    ],
)
async def test_poller_terminal_states(report: StatusReport, expected: PollResult) -> None:
    outcome = await _poller(ScriptedSource([PENDING, report])).run()
    assert outcome.result is expected
    assert outcome.token is None


@pytest.mark.anyio
async def test_poller_not_found() -> None:
    outcome = await _poller(ScriptedSource([CodeNotFoundError()])).run()
    assert outcome.result is PollResult.NOT_FOUND


@pytest.mark.anyio
async def test_poller_gives_up_at_deadline() -> None:
    source = ScriptedSource([PENDING])
    outcome = await _poller(source, interval=0.01, ttl=0.05).run()
    assert outcome.result is PollResult.EXPIRED
    assert source.calls >= 1


@pytest.mark.anyio
async def test_poller_retries_transient_errors() -> None:
    source = ScriptedSource(
        [
            httpx.ConnectError("boom"),
            StatusReport(PairingStatus.APPROVED, token="tok", identity=ALICE),
        ]
    )
    outcome = await _poller(source).run()
    assert outcome.result is PollResult.APPROVED
    assert outcome.polls == 2


# --------------------------------------------------------------------------- #
# Cancellation                                                                #
# --------------------------------------------------------------------------- #
@pytest.mark.anyio
async def test_cancel_wakes_pending_wait() -> None:
    poller = _poller(ScriptedSource([PENDING]), interval=3_600, ttl=7_200)
    task = poller.start()
    await asyncio.sleep(0.05)
    poller.cancel()
    outcome = await asyncio.wait_for(task, timeout=1.0)
    assert outcome.result is PollResult.CANCELLED
    assert outcome.polls == 1
    assert poller.cancelled


@pytest.mark.anyio
async def test_cancel_before_start_never_polls() -> None:
    source = ScriptedSource([PENDING])
    poller = _poller(source)
    poller.cancel()
    outcome = await poller.run()
    assert outcome.result is PollResult.CANCELLED
    assert source.calls == 0


def test_poll_interval_must_be_positive() -> None:
    with pytest.raises(ValueError):
        TvPoller(ScriptedSource([PENDING]), "ABCD234", poll_interval=0, deadline=0)


# --------------------------------------------------------------------------- #
# Against a real coordinator                                                  #
# --------------------------------------------------------------------------- #
@pytest.mark.anyio
async def test_poller_with_coordinator_source() -> None:
    accounts = InMemoryAccountDirectory(hasher=BcryptHasher(rounds=4))
    accounts.register("alice@example.com", "hunter22")
    coordinator = PairingCoordinator(
        InMemoryPairingStore(),
        tokens=TokenIssuer("unit-test-secret-0123456789abcdef0123456789"),
        credentials=accounts,
        poll_interval_ms=10,
    )
    ticket = coordinator.create_pairing()
    poller = TvPoller.for_ticket(CoordinatorStatusSource(coordinator), ticket)
    assert poller.poll_interval == 0.01
    task = poller.start()

    await asyncio.sleep(0.05)
    await asyncio.to_thread(
        coordinator.approve, ticket.code, email="alice@example.com", password="hunter22"
    )
    outcome = await asyncio.wait_for(task, timeout=5.0)
    assert outcome.result is PollResult.APPROVED
    assert coordinator.authenticate(outcome.token).email == "alice@example.com"
    # the token was handed out once; the record is now consumed
    assert coordinator.check_status(ticket.code).status is PairingStatus.CONSUMED


# --------------------------------------------------------------------------- #
# HttpStatusSource                                                            #
# --------------------------------------------------------------------------- #
@pytest.mark.anyio
async def test_http_source_parses_and_maps_404() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path == "/pairing/ABCD234/status":
            return httpx.Response(
                200,
                json={
                    "status": "approved",
                    "token": "tok",
                    "identity": {"id": "u-alice", "email": "alice@example.com", "displayName": None},
                },
            )
        return httpx.Response(404, json={"success": False, "reason": "not_found"})

    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    source = HttpStatusSource("http://pairing.test/", client=client)
    try:
        report = await source.check("ABCD234")
        assert report.status is PairingStatus.APPROVED
        assert report.token == "tok"
        assert report.identity == ALICE
        with pytest.raises(CodeNotFoundError):
            await source.check("ZZZZ999")
    finally:
        await source.aclose()
        await client.aclose()


@pytest.mark.anyio
async def test_http_source_server_error_is_transient_for_poller() -> None:
    calls = {"n": 0}

    def handler(request: httpx.Request) -> httpx.Response:
        calls["n"] += 1
        if calls["n"] == 1:
            return httpx.Response(500, json={"success": False})
        return httpx.Response(200, json={"status": "expired"})

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
        outcome = await _poller(HttpStatusSource("http://pairing.test", client=client)).run()
    assert outcome.result is PollResult.EXPIRED
    assert calls["n"] == 2


@pytest.mark.anyio
@pytest.mark.parametrize(
    "body",
    [
        {},
        [],
        {"status": "approved", "token": "tok", "identity": {"id": "u-alice"}},
        {"status": "approved", "token": "tok", "identity": "alice"},
        {"status": "sideways"},
    ],
    ids=["empty-object", "list", "identity-without-email", "identity-not-object", "unknown-status"],
)
async def test_http_source_malformed_body_is_transient(body: object) -> None:
    calls = {"n": 0}

    def handler(request: httpx.Request) -> httpx.Response:
        calls["n"] += 1
        return httpx.Response(200, json=body)

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
        source = HttpStatusSource("http://pairing.test", client=client)
        with pytest.raises(ValueError):
            await source.check("ABCD234")
        outcome = await _poller(source, interval=0.01, ttl=0.05).run()
    assert outcome.result is PollResult.EXPIRED
    assert calls["n"] >= 2


@pytest.mark.anyio
async def test_http_source_non_json_body_is_transient() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, text="<html>gateway</html>")

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
        outcome = await _poller(
            HttpStatusSource("http://pairing.test", client=client), ttl=0.05
        ).run()
    assert outcome.result is PollResult.EXPIRED


@pytest.mark.anyio
@pytest.mark.parametrize(
    "status_code, reason, error_cls, expected",
    [
        (410, "expired", CodeExpiredError, PollResult.EXPIRED),
        (400, "invalid_code", InvalidCodeFormatError, PollResult.NOT_FOUND),
        (409, "already_resolved", CodeAlreadyResolvedError, PollResult.CONSUMED),
    ],
)
async def test_http_source_client_errors_stop_polling(
    status_code: int, reason: str, error_cls: type, expected: PollResult
) -> None:
    calls = {"n": 0}

    def handler(request: httpx.Request) -> httpx.Response:
        calls["n"] += 1
        return httpx.Response(
            status_code, json={"success": False, "reason": reason, "message": "nope"}
        )

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
        source = HttpStatusSource("http://pairing.test", client=client)
        with pytest.raises(error_cls):
            await source.check("ABCD234")
        outcome = await _poller(source, ttl=5.0).run()
    assert outcome.result is expected
    assert outcome.polls == 1
    assert calls["n"] == 2


@pytest.mark.anyio
async def test_http_source_unknown_client_error_is_retried() -> None:
    calls = {"n": 0}

    def handler(request: httpx.Request) -> httpx.Response:
        calls["n"] += 1
        if calls["n"] == 1:
            return httpx.Response(429, json={"success": False, "reason": "slow_down"})
        return httpx.Response(200, json={"status": "expired"})

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
        outcome = await _poller(HttpStatusSource("http://pairing.test", client=client)).run()
    assert outcome.result is PollResult.EXPIRED
    assert calls["n"] == 2
