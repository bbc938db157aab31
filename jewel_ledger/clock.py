"""
Clock collaborator

Managers ask a clock for "today" instead of calling ``date.today()`` so that
accrual as-of dates are reproducible in tests.
"""

from abc import ABC, abstractmethod
from datetime import date, datetime, timezone


class Clock(ABC):
    """Source of the current date and time"""

    @abstractmethod
    def today(self) -> date:
        pass

    @abstractmethod
    def now(self) -> datetime:
        pass


class SystemClock(Clock):
    """Wall clock in UTC"""

    def today(self) -> date:
        return self.now().date()

    def now(self) -> datetime:
        return datetime.now(timezone.utc)


class FixedClock(Clock):
    """Clock pinned to a date; ``advance_to`` moves it forward"""

    def __init__(self, current: date):
        self._current = current

    def today(self) -> date:
        return self._current

    def now(self) -> datetime:
        return datetime(self._current.year, self._current.month, self._current.day,
                        tzinfo=timezone.utc)

    def advance_to(self, current: date) -> None:
        self._current = current
