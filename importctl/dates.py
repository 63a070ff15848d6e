"""Calendar helpers for import date ranges."""

from datetime import date
from typing import Optional

# First month of a water year (October).
WATER_YEAR_START_MONTH = 10


def clamp_to_today(value: Optional[date], today: date) -> date:
    """Return ``value``, or ``today`` if it is unset or in the future."""
    if value is None or value > today:
        return today
    return value


def first_of_month(value: date) -> date:
    return value.replace(day=1)


def add_months(value: date, months: int) -> date:
    """Shift a date by a number of months, keeping the day where it exists."""
    index = value.year * 12 + (value.month - 1) + months
    year, month = divmod(index, 12)
    month += 1
    day = min(value.day, _days_in_month(year, month))
    return date(year, month, day)


def _days_in_month(year: int, month: int) -> int:
    if month == 12:
        return 31
    return (date(year, month + 1, 1) - date(year, month, 1)).days


def water_year(value: date) -> int:
    """Water year N runs from Oct 1 of N-1 through Sep 30 of N."""
    if value.month >= WATER_YEAR_START_MONTH:
        return value.year + 1
    return value.year


def water_year_start(year: int) -> date:
    return date(year - 1, WATER_YEAR_START_MONTH, 1)


def water_year_end(year: int) -> date:
    return date(year, WATER_YEAR_START_MONTH - 1, 30)
