"""
Clock -- injectable source of "now".

Services receive a Clock instead of calling ``date.today()`` so the
retroactive depth limit can be tested against a fixed day.  SystemClock is
the only place the kernel reads wall-clock time.
"""

from abc import ABC, abstractmethod
from datetime import date, datetime, timedelta, timezone


class Clock(ABC):
    @abstractmethod
    def now(self) -> datetime:
        """Timezone-aware current time."""

    def today(self) -> date:
        """UTC calendar date of ``now()``."""
        return self.now().astimezone(timezone.utc).date()


class SystemClock(Clock):
    def now(self) -> datetime:
        return datetime.now(timezone.utc)


class DeterministicClock(Clock):
    """Stands still until moved with ``advance_days``."""

    def __init__(self, fixed_time: datetime):
        self._now = fixed_time

    @classmethod
    def on(cls, day: date) -> "DeterministicClock":
        """Clock fixed at noon UTC on ``day``."""
        return cls(datetime(day.year, day.month, day.day, 12, tzinfo=timezone.utc))

    def now(self) -> datetime:
        return self._now

    def advance_days(self, days: int = 1) -> None:
        self._now += timedelta(days=days)
