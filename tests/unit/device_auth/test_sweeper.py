"""Unit tests for ExpirySweeper.

Coverage:
* sweep_once removes only past-deadline rows and keeps counters
* start/stop lifecycle; stop wakes the loop without waiting an interval
* A failing sweep is logged and the loop keeps running
"""

from __future__ import annotations

import asyncio

import pytest

from stockpair.device_auth.store import InMemoryPairingStore
from stockpair.device_auth.sweeper import ExpirySweeper


class MutableClock:
    def __init__(self, now: float = 1_000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now


def test_sweep_once_counts() -> None:
    clock = MutableClock()
    store = InMemoryPairingStore()
    store.insert("ABCD234", created_at=1_000, expires_at=1_100)
    store.insert("EFGH567", created_at=1_000, expires_at=2_000)
    sweeper = ExpirySweeper(store, interval_seconds=60, clock=clock)

    assert sweeper.sweep_once() == 0
    clock.now = 1_101
    assert sweeper.sweep_once() == 1
    assert store.get("ABCD234") is None
    assert store.get("EFGH567") is not None
    assert sweeper.sweeps == 2
    assert sweeper.removed_total == 1


def test_interval_must_be_positive() -> None:
    with pytest.raises(ValueError):
        ExpirySweeper(InMemoryPairingStore(), interval_seconds=0)


@pytest.mark.anyio
async def test_background_loop_sweeps_and_stops_promptly() -> None:
    clock = MutableClock(now=5_000)
    store = InMemoryPairingStore()
    store.insert("ABCD234", created_at=1_000, expires_at=1_100)
    sweeper = ExpirySweeper(store, interval_seconds=0.01, clock=clock)

    async with sweeper:
        assert sweeper.running
        # idempotent start
        assert sweeper.start() is sweeper.start()
        for _ in range(100):
            if sweeper.removed_total:
                break
            await asyncio.sleep(0.01)
    assert not sweeper.running
    assert sweeper.removed_total == 1
    assert len(store) == 0


@pytest.mark.anyio
async def test_stop_does_not_wait_for_interval() -> None:
    sweeper = ExpirySweeper(InMemoryPairingStore(), interval_seconds=3_600)
    sweeper.start()
    await asyncio.wait_for(sweeper.stop(), timeout=1.0)
    assert sweeper.sweeps == 0
    # stopping twice is harmless
    await sweeper.stop()


@pytest.mark.anyio
async def test_failing_sweep_keeps_loop_alive(caplog) -> None:
    class FlakyStore(InMemoryPairingStore):
        calls = 0

        def delete_expired(self, now: float) -> int:
            FlakyStore.calls += 1
            if FlakyStore.calls == 1:
                raise OSError("transient")
            return super().delete_expired(now)

    store = FlakyStore()
    sweeper = ExpirySweeper(store, interval_seconds=0.01, clock=MutableClock())
    with caplog.at_level("ERROR", logger="stockpair.device_auth.sweeper"):
        async with sweeper:
            for _ in range(100):
                if sweeper.sweeps >= 1:
                    break
                await asyncio.sleep(0.01)
    assert FlakyStore.calls >= 2
    assert sweeper.sweeps >= 1
    assert "Expiry sweep failed" in caplog.text
