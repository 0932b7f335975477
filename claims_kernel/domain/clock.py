"""
Clock -- where the workflow gets "now" from.

Submission timestamps, history timestamps, lock expiry and the
time-to-decision statistics all read the time through a ``Clock``.  The
coordinator takes one at construction; engines never do and receive any
time value they need as an argument.

``SystemClock`` is what runs in production.  ``DeterministicClock`` stands
still until a test moves it, which is how lock TTLs are exercised without
sleeping.
"""

import threading
from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone

# Default start for DeterministicClock: a weekday morning after the
# dates used by most test fixtures.
DEFAULT_TEST_TIME = datetime(2024, 3, 1, 9, 0, 0, tzinfo=timezone.utc)


class Clock(ABC):
    """Time source.  ``now()`` is always timezone-aware UTC."""

    @abstractmethod
    def now(self) -> datetime:
        ...


class SystemClock(Clock):
    def now(self) -> datetime:
        return datetime.now(timezone.utc)


class DeterministicClock(Clock):
    """
    Clock that only moves when told to.

    Shared safely between the threads of a concurrency test; every reader
    sees the value set by the last ``advance`` or ``set_time``.
    """

    def __init__(self, start: datetime | None = None):
        if start is not None and start.tzinfo is None:
            raise ValueError("DeterministicClock needs an aware datetime")
        self._current = start or DEFAULT_TEST_TIME
        self._guard = threading.Lock()

    def now(self) -> datetime:
        with self._guard:
            return self._current

    def set_time(self, when: datetime) -> None:
        if when.tzinfo is None:
            raise ValueError("DeterministicClock needs an aware datetime")
        with self._guard:
            self._current = when

    def advance(self, seconds: float | timedelta = 1) -> datetime:
        """Move forward by ``seconds`` (or a timedelta) and return the new time."""
        step = seconds if isinstance(seconds, timedelta) else timedelta(seconds=seconds)
        with self._guard:
            self._current += step
            return self._current
