"""Wall-clock port and system adapter.

Provides ClockPort (Protocol) and SystemClock for reading the current
UTC time.

**Why wall time?** Signed requests carry an RFC 3339 timestamp produced
on another machine, so freshness can only be judged against the real
calendar time, not a monotonic counter.  The same clock stamps
heartbeats.  Pulse timing does *not* use this port; it relies on the
event loop's own monotonic sleep.
"""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Protocol, runtime_checkable


@runtime_checkable
class ClockPort(Protocol):
    """Source of the current time for timing-sensitive components.

    Used by the request authenticator (freshness window), the liveness
    reporter (heartbeat stamps) and the HTTP client (signing).

    The default implementation wraps ``datetime.now(UTC)``. Tests
    inject a deterministic fake clock for reproducible timing.
    """

    def now(self) -> datetime:
        """Return the current time as a timezone-aware UTC datetime."""
        ...


class SystemClock:
    """Production clock wrapping ``datetime.now(UTC)``.

    Satisfies :class:`ClockPort` via structural subtyping — no
    base-class inheritance required (PEP 544).
    """

    def now(self) -> datetime:
        """Return the current UTC time."""
        return datetime.now(UTC)
