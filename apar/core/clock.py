"""As-of date providers.

Aging and reconciliation never read the system date themselves; the caller
injects a clock so results are reproducible.
"""

from datetime import date, datetime, timezone
from typing import Protocol


class Clock(Protocol):
    def today(self) -> date: ...

    def now(self) -> datetime: ...


class SystemClock:
    """Wall clock in UTC."""

    def today(self) -> date:
        return self.now().date()

    def now(self) -> datetime:
        return datetime.now(timezone.utc)


class FixedClock:
    """Clock pinned to a single instant, used by tests and back-dated reports."""

    def __init__(self, as_of: date):
        self.as_of = as_of

    def today(self) -> date:
        return self.as_of

    def now(self) -> datetime:
        return datetime(self.as_of.year, self.as_of.month, self.as_of.day, tzinfo=timezone.utc)


def get_clock() -> Clock:
    return SystemClock()
