"""Clock abstraction for time-dependent scheduling logic."""

import time
from datetime import datetime, timedelta
from typing import Protocol


class ClockSource(Protocol):
    """Supplies wall-clock time for the scheduler and a monotonic
    reading for countdowns. Inject :class:`ManualClock` in tests."""

    def now(self) -> datetime: ...

    def monotonic(self) -> float: ...


class SystemClock:
    """Default clock backed by the real system time."""

    def now(self) -> datetime:
        return datetime.now()

    def monotonic(self) -> float:
        return time.monotonic()


class ManualClock:
    """Synthetic clock that only moves when told to."""

    def __init__(self, start: datetime | None = None):
        self._now = start or datetime(2024, 1, 1, 12, 0, 0)
        self._mono = 0.0

    def now(self) -> datetime:
        return self._now

    def monotonic(self) -> float:
        return self._mono

    def advance(self, seconds: float = 0.0, minutes: float = 0.0):
        delta = seconds + minutes * 60
        self._now += timedelta(seconds=delta)
        self._mono += delta

    def set(self, when: datetime):
        self._mono += (when - self._now).total_seconds()
        self._now = when
