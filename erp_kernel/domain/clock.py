"""
Injectable time source.

Signature timestamps, notification ordering and ``created_at`` values all
come from a Clock handed to the services, so that approval histories and
verification queues are reproducible under test.  Nothing else in the
kernel reads the wall clock.
"""

from abc import ABC, abstractmethod
from datetime import date, datetime, timedelta, timezone


class Clock(ABC):
    """Source of timezone-aware "now" for services."""

    @abstractmethod
    def now(self) -> datetime: ...

    def today(self) -> date:
        return self.now().date()


class SystemClock(Clock):
    def now(self) -> datetime:
        return datetime.now(timezone.utc)


class DeterministicClock(Clock):
    """
    Frozen clock for tests.

    ``now()`` only moves when ``tick()`` or ``set_time()`` is called, so two
    records stamped back to back compare equal unless the test ticks
    between them.
    """

    DEFAULT_START = datetime(2024, 4, 1, 9, 0, tzinfo=timezone.utc)

    def __init__(self, start: datetime | None = None):
        self._current = start or self.DEFAULT_START

    def now(self) -> datetime:
        return self._current

    def set_time(self, moment: datetime) -> None:
        self._current = moment

    def tick(self, seconds: int = 1) -> datetime:
        """Move forward ``seconds`` and return the new time."""
        self._current += timedelta(seconds=seconds)
        return self._current
