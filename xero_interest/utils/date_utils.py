"""Date manipulation utilities"""

import calendar
import re
from datetime import date, datetime, timedelta, timezone
from typing import List, Tuple

from xero_interest.domain.exceptions import InvalidInvoiceDataError

# Xero's JSON date format: /Date(1626825600000)/ or /Date(1626825600000+0000)/
_DOTNET_DATE = re.compile(r"/Date\((-?\d+)([+-]\d{4})?\)/")


def parse_xero_date(value) -> date:
    """
    Parse a date from any of the shapes Xero hands back.

    Accepts date/datetime objects, .NET JSON dates, ISO timestamps
    ("2025-07-21T00:00:00") and plain ISO dates.

    Raises:
        InvalidInvoiceDataError: On missing or unparseable values
    """
    if value is None or value == "":
        raise InvalidInvoiceDataError("Missing date value")
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if not isinstance(value, str):
        raise InvalidInvoiceDataError(f"Unsupported date value: {value!r}")

    match = _DOTNET_DATE.fullmatch(value.strip())
    if match:
        millis = int(match.group(1))
        return datetime.fromtimestamp(millis / 1000, tz=timezone.utc).date()

    try:
        return datetime.fromisoformat(value.strip()).date()
    except ValueError as e:
        raise InvalidInvoiceDataError(f"Invalid date value: {value!r}") from e


def format_xero_date(value: date) -> str:
    """Format date for Xero API (YYYY-MM-DD)"""
    return value.isoformat()


def days_between(start: date, end: date) -> int:
    """Whole days from start to end (negative if end precedes start)"""
    return (end - start).days


def days_overdue(due_date: date, as_of: date) -> int:
    """Days past the due date, never negative"""
    return max(0, days_between(due_date, as_of))


def add_days(value: date, days: int) -> date:
    return value + timedelta(days=days)


def month_key(value: date) -> str:
    """YYYY-MM key for the month containing a date"""
    return f"{value.year:04d}-{value.month:02d}"


def parse_month_key(key: str) -> Tuple[int, int]:
    try:
        year_str, month_str = key.split("-")
        year, month = int(year_str), int(month_str)
    except ValueError as e:
        raise ValueError(f"Invalid month key {key!r}") from e
    if not 1 <= month <= 12:
        raise ValueError(f"Invalid month key {key!r}")
    return year, month


def month_bounds(key: str) -> Tuple[date, date]:
    """First day of the month and first day of the following month"""
    year, month = parse_month_key(key)
    start = date(year, month, 1)
    next_start = date(year + 1, 1, 1) if month == 12 else date(year, month + 1, 1)
    return start, next_start


def last_day_of_month(key: str) -> date:
    year, month = parse_month_key(key)
    return date(year, month, calendar.monthrange(year, month)[1])


def months_between(start: date, end: date) -> List[str]:
    """Month keys from start's month through end's month (inclusive)"""
    months: List[str] = []
    year, month = start.year, start.month
    while (year, month) <= (end.year, end.month):
        months.append(month_key(date(year, month, 1)))
        month += 1
        if month > 12:
            year, month = year + 1, 1
    return months


def format_month_year(key: str) -> str:
    """Month key as display text (January 2026)"""
    year, month = parse_month_key(key)
    return f"{calendar.month_name[month]} {year}"
