"""
Injectable time source.

Billing code never calls ``datetime.now()`` or ``date.today()``: invoice
numbers (YYYYMM), ledger entry dates, ``paid_at`` and ``activated_at`` all
come from a Clock so a billing run can be replayed in tests.
"""

from abc import ABC, abstractmethod
from datetime import date, datetime, time, timedelta, timezone

DEFAULT_TEST_INSTANT = datetime(2024, 1, 1, 12, 0, 0, tzinfo=timezone.utc)


class Clock(ABC):
    """``now()`` is aware UTC; ``today()`` is its UTC calendar date."""

    @abstractmethod
    def now(self) -> datetime:
        ...

    def today(self) -> date:
        return self.now().astimezone(timezone.utc).date()


class SystemClock(Clock):

    def now(self) -> datetime:
        return datetime.now(timezone.utc)


class DeterministicClock(Clock):
    """
    Frozen clock for tests and replays.

    Time only moves when ``advance``, ``tick``, ``set_time`` or ``set_date``
    is called.
    """

    def __init__(self, fixed_time: datetime | None = None):
        self._now = fixed_time or DEFAULT_TEST_INSTANT

    def now(self) -> datetime:
        return self._now

    def set_time(self, instant: datetime) -> None:
        self._now = instant

    def set_date(self, day: date) -> None:
        """Move to noon UTC on ``day``."""
        self._now = datetime.combine(day, time(12), tzinfo=timezone.utc)

    def advance(self, seconds: int = 1) -> None:
        self._now += timedelta(seconds=seconds)

    def tick(self) -> datetime:
        self.advance(1)
        return self._now
