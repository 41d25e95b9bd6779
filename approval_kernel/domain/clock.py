"""
Clock -- injectable time source for workflow timestamps.

Responsibility:
    Every timestamp the workflow records (``submitted_at``, ``completed_at``,
    history entries, audit events, the recent-completion window) is read
    from a Clock passed in by the caller.  Domain, engine and service code
    never reads the wall clock itself.

Architecture position:
    Kernel > Domain.  SystemClock is the only place that touches real time.

Audit relevance:
    Instance durations (``duration_hours``) and statistics averages are
    reproducible in tests because the DeterministicClock drives them.
"""

from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone

DEFAULT_TEST_TIME = datetime(2024, 1, 1, 12, 0, 0, tzinfo=timezone.utc)


class Clock(ABC):
    """
    Time source handed to services by constructor injection.

    Guarantees:
        - ``now()`` is timezone-aware UTC.
    """

    @abstractmethod
    def now(self) -> datetime:
        ...


class SystemClock(Clock):
    """Wall-clock time in UTC."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)


class DeterministicClock(Clock):
    """
    Manually driven clock for tests and replays.

    ``now()`` stays put until the clock is advanced.  Naive start times
    are taken to be UTC.
    """

    def __init__(self, start: datetime | None = None):
        start = start or DEFAULT_TEST_TIME
        if start.tzinfo is None:
            start = start.replace(tzinfo=timezone.utc)
        self._current = start

    def now(self) -> datetime:
        return self._current

    def advance(self, seconds: float = 1) -> datetime:
        """Move forward by ``seconds`` and return the new time."""
        if seconds < 0:
            raise ValueError("DeterministicClock cannot move backwards")
        self._current += timedelta(seconds=seconds)
        return self._current

    def advance_hours(self, hours: float) -> datetime:
        return self.advance(hours * 3600)
