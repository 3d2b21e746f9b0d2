"""Deterministic fake clock for testing.

Satisfies ClockPort (PEP 544 structural subtyping) with a manually
controllable time value — no real time dependency.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta

_EPOCH = datetime(2024, 1, 1, 12, 0, 0, tzinfo=UTC)


@dataclass
class FakeClock:
    """Test double for ClockPort.

    Example::

        clock = FakeClock()
        clock.advance(minutes=10)
        assert clock.now() == datetime(2024, 1, 1, 12, 10, tzinfo=UTC)
    """

    current: datetime = field(default=_EPOCH)

    def now(self) -> datetime:
        """Return the manually set time value."""
        return self.current

    def advance(self, **delta: float) -> None:
        """Move the clock forward by ``timedelta(**delta)``."""
        self.current += timedelta(**delta)
