"""Background reclamation of stale pairing records.

:class:`ExpirySweeper` owns one asyncio task that calls
``PairingStore.delete_expired(now)`` every ``interval_seconds``.  It only ever
deletes rows whose deadline has already passed at the instant of the scan, so
it cannot race with ``try_approve`` (which requires ``expires_at > now``).

The task is started and stopped explicitly (the Starlette lifespan does both);
``stop()`` wakes the task out of its wait instead of leaving a timer behind.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any

from stockpair.device_auth.clock import Clock, default_clock
from stockpair.device_auth.store import PairingStore

_LOG = logging.getLogger("stockpair.device_auth.sweeper")

DEFAULT_SWEEP_INTERVAL = 5 * 60


class ExpirySweeper:
    """Periodic ``delete_expired`` runner."""

    def __init__(
        self,
        store: PairingStore,
        *,
        interval_seconds: float = DEFAULT_SWEEP_INTERVAL,
        clock: Clock = default_clock,
    ) -> None:
        if interval_seconds <= 0:
            raise ValueError("interval_seconds must be positive")
        self.store = store
        self.interval_seconds = interval_seconds
        self._clock = clock
        self._task: asyncio.Task[None] | None = None
        self._stopping: asyncio.Event | None = None
        self.sweeps = 0
        self.removed_total = 0

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def sweep_once(self) -> int:
        """Delete every record past its deadline; return how many went away."""
        removed = self.store.delete_expired(self._clock())
        self.sweeps += 1
        self.removed_total += removed
        if removed:
            _LOG.info("Swept %d expired pairing record(s)", removed)
        else:
            _LOG.debug("Sweep found nothing to remove")
        return removed

    async def _run(self, stopping: asyncio.Event) -> None:
        while True:
            try:
                await asyncio.wait_for(stopping.wait(), timeout=self.interval_seconds)
                return  # stop() was called
            except asyncio.TimeoutError:
                pass
            try:
                await asyncio.to_thread(self.sweep_once)
            except Exception as exc:  # broad: one failed sweep must not end the loop
                _LOG.error("Expiry sweep failed: %s", exc, exc_info=True)

    def start(self) -> asyncio.Task[None]:
        """Schedule the sweep loop on the running event loop (idempotent)."""
        if self._task is not None and not self._task.done():
            return self._task
        self._stopping = asyncio.Event()
        self._task = asyncio.get_running_loop().create_task(
            self._run(self._stopping), name="pairing-expiry-sweeper"
        )
        _LOG.info("Expiry sweeper started (every %ss)", self.interval_seconds)
        return self._task

    async def stop(self) -> None:
        """Stop the loop, letting an in-flight sweep finish first."""
        task, self._task = self._task, None
        if task is None:
            return
        if self._stopping is not None:
            self._stopping.set()
        await task
        _LOG.info("Expiry sweeper stopped after %d sweep(s)", self.sweeps)

    async def __aenter__(self) -> ExpirySweeper:
        self.start()
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.stop()
