"""Money and calendar-month helpers shared by the ledger and reports."""

from __future__ import annotations

from datetime import date
from decimal import Decimal
from typing import Iterable

ZERO = Decimal("0")
HUNDRED = Decimal("100")


def to_decimal(value: Decimal | int | float | str | None) -> Decimal:
    """Coerce a numeric value to Decimal; None becomes zero.

    Floats go through str() so 0.1 stays 0.1 instead of its binary expansion.
    """
    if value is None:
        return ZERO
    if isinstance(value, Decimal):
        return value
    if isinstance(value, float):
        return Decimal(str(value))
    return Decimal(value)


def total(values: Iterable[Decimal | None]) -> Decimal:
    """Sum values, treating None as zero."""
    result = ZERO
    for value in values:
        result += to_decimal(value)
    return result


def month_key(d: date) -> str:
    """YYYY-MM bucket for a calendar date."""
    return f"{d.year:04d}-{d.month:02d}"


def parse_month_key(key: str) -> date:
    """First day of the month named by a YYYY-MM key."""
    year, month = key.split("-")
    return date(int(year), int(month), 1)


def add_months(d: date, months: int) -> date:
    """First day of the month `months` after the month of `d`."""
    index = d.year * 12 + (d.month - 1) + months
    return date(index // 12, index % 12 + 1, 1)


def in_month(d: date | None, first_day: date) -> bool:
    """True when `d` falls in the calendar month starting at `first_day`."""
    return d is not None and d.year == first_day.year and d.month == first_day.month
