"""
Injectable time source.

Services stamp status changes, disposition resolutions and idempotency
records from a Clock rather than reading the wall clock themselves, so a
test can pin every timestamp a flow produces.
"""

from datetime import datetime, timedelta, timezone
from typing import Protocol

EPOCH = datetime(2025, 1, 1, 9, 0, 0, tzinfo=timezone.utc)


class Clock(Protocol):
    def now(self) -> datetime: ...


class SystemClock:
    """UTC wall clock."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)


class DeterministicClock:
    """Frozen clock that only moves when told to."""

    def __init__(self, start: datetime = EPOCH):
        if start.tzinfo is None:
            raise ValueError("DeterministicClock needs a timezone-aware start")
        self._now = start

    def now(self) -> datetime:
        return self._now

    def advance(self, **delta: float) -> datetime:
        """Move forward by ``timedelta(**delta)`` and return the new time."""
        self._now += timedelta(**delta)
        return self._now
