"""
Calendar-month helpers for the recurrence engine.

All functions work on plain dates (no timezone) and never read the system
clock: the reference date is always passed in by the caller.
"""

import calendar
from datetime import date

from pydantic import BaseModel, ConfigDict, Field


def last_day_of_month(year: int, month: int) -> int:
    return calendar.monthrange(year, month)[1]


def add_months(d: date, n: int) -> date:
    """
    Move a date by n calendar months, keeping the day of month.

    The day is clamped to the last day of the target month
    (Jan 31 + 1 month -> Feb 28/29, never Mar 1).
    """
    month = d.month - 1 + n
    year = d.year + month // 12
    month = month % 12 + 1
    day = min(d.day, last_day_of_month(year, month))
    return date(year, month, day)


class YearMonth(BaseModel):
    """
    A calendar month, rendered as ``YYYY-MM``.

    This is the unit the projector works in: "which obligations are
    visible in March 2024?"
    """
    model_config = ConfigDict(frozen=True)

    year: int = Field(..., ge=1, le=9999)
    month: int = Field(..., ge=1, le=12)

    @classmethod
    def parse(cls, value: str) -> "YearMonth":
        """Parse a ``YYYY-MM`` string."""
        try:
            year_part, month_part = value.strip().split("-")
            return cls(year=int(year_part), month=int(month_part))
        except ValueError as e:
            raise ValueError(
                f"Invalid month: {value!r} (expected YYYY-MM)"
            ) from e

    @classmethod
    def from_date(cls, d: date) -> "YearMonth":
        return cls(year=d.year, month=d.month)

    def __str__(self) -> str:
        return f"{self.year:04d}-{self.month:02d}"

    @property
    def days(self) -> int:
        return last_day_of_month(self.year, self.month)

    @property
    def first_day(self) -> date:
        return date(self.year, self.month, 1)

    @property
    def last_day(self) -> date:
        return date(self.year, self.month, self.days)

    def contains(self, d: date) -> bool:
        return d.year == self.year and d.month == self.month

    def day(self, day_of_month: int) -> date:
        """
        The date with the given day in this month.

        Days past the end of the month clamp to the last day
        (31 in a 30-day month -> 30, in February -> 28 or 29).
        """
        return date(self.year, self.month, min(day_of_month, self.days))

    def shift(self, months: int) -> "YearMonth":
        return YearMonth.from_date(add_months(self.first_day, months))


def month_options(
    reference: date,
    past: int = 11,
    future: int = 6,
) -> list[YearMonth]:
    """
    Months offered by the month picker, oldest first.

    With the defaults: 11 months before the reference month, the
    reference month itself, and 6 months after it (18 in total).
    """
    start = YearMonth.from_date(reference).shift(-past)
    return [start.shift(i) for i in range(past + future + 1)]
