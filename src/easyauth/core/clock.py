"""Clock abstraction for testable time handling in the auth core.

This module defines a `Clock` protocol representing callables that return the
current UNIX timestamp as ``float``.  All time-based decisions inside the
easyauth core (state expiry, session validity, token margins) MUST depend on an
injected ``Clock`` instance rather than calling ``time.time()`` or
``datetime.now()`` directly.

Example
-------
>>> from easyauth.core.clock import default_clock, utc_from_timestamp
>>> now = default_clock()
>>> utc_from_timestamp(now).tzinfo is not None
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


def utc_from_timestamp(ts: float) -> datetime:
    """Return an aware UTC ``datetime`` for *ts*."""
    return datetime.fromtimestamp(ts, tz=timezone.utc)


def utc_now(clock: Clock = default_clock) -> datetime:
    """Current time from *clock* as an aware UTC ``datetime``."""
    return utc_from_timestamp(clock())
