"""Clock abstraction for testable time handling in the pairing core.

This module defines a `Clock` protocol representing callables that return the
current UNIX timestamp as ``float``.  Every expiry decision inside the
device_auth package (code TTLs, token lifetimes, sweeps) MUST depend on an
injected ``Clock`` instance rather than calling ``time.time()`` directly.

Example
-------
>>> from stockpair.device_auth.clock import default_clock
>>> now = default_clock()
>>> isinstance(now, float)
True
"""

from __future__ import annotations

import time
from datetime import datetime, timezone
from typing import Protocol, runtime_checkable


@runtime_checkable
class Clock(Protocol):
    """Callable protocol returning *seconds* since the UNIX epoch."""

    def __call__(self) -> float: ...


def default_clock() -> float:
    """Default implementation that delegates to ``time.time()``.

    Returns
    -------
    float
        Seconds since the UNIX epoch.
    """
    return time.time()


def to_iso8601(ts: float) -> str:
    """Render an epoch timestamp as an ISO-8601 UTC string (millisecond precision)."""
    dt = datetime.fromtimestamp(ts, tz=timezone.utc)
    return dt.isoformat(timespec="milliseconds").replace("+00:00", "Z")
