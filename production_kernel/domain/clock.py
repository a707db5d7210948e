"""
Injected time source.

Services never read the wall clock themselves: stage start and finish
times, inspection times, stock transaction timestamps and the date stamp
in job card numbers all come from the ``Clock`` handed to the engine.
Every value returned is timezone-aware UTC.
"""

from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone

DEFAULT_TEST_TIME = datetime(2024, 1, 1, 12, 0, 0, tzinfo=timezone.utc)


class Clock(ABC):
    @abstractmethod
    def now(self) -> datetime: ...


class SystemClock(Clock):
    def now(self) -> datetime:
        return datetime.now(timezone.utc)


class DeterministicClock(Clock):
    """Frozen clock for tests; moves only when ``advance`` or ``set_time`` is called."""

    def __init__(self, start: datetime | None = None):
        current = start or DEFAULT_TEST_TIME
        if current.tzinfo is None:
            raise ValueError("DeterministicClock needs a timezone-aware start time")
        self._current = current

    def now(self) -> datetime:
        return self._current

    def set_time(self, when: datetime) -> None:
        self._current = when

    def advance(self, seconds: float = 1, *, days: int = 0) -> datetime:
        """Move forward and return the new time.  ``days`` crosses a job-number day."""
        self._current += timedelta(days=days, seconds=seconds)
        return self._current
