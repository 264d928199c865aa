"""Unit tests for date helpers"""

import pytest
from datetime import date, datetime
from xero_interest.domain.exceptions import InvalidInvoiceDataError
from xero_interest.utils.date_utils import (
    days_overdue,
    format_month_year,
    format_xero_date,
    last_day_of_month,
    month_bounds,
    month_key,
    months_between,
    parse_month_key,
    parse_xero_date,
)


@pytest.mark.parametrize(
    "value",
    [
        "/Date(1735689600000)/",
        "/Date(1735689600000+0000)/",
        "2025-01-01",
        "2025-01-01T00:00:00",
        date(2025, 1, 1),
        datetime(2025, 1, 1, 15, 30),
    ],
)
def test_parse_xero_date_shapes(value):
    """Test every date shape Xero returns maps to the same calendar day"""
    assert parse_xero_date(value) == date(2025, 1, 1)


@pytest.mark.parametrize("value", [None, "", "not-a-date", 12345])
def test_parse_xero_date_rejects_garbage(value):
    with pytest.raises(InvalidInvoiceDataError):
        parse_xero_date(value)


def test_format_xero_date():
    assert format_xero_date(date(2025, 3, 9)) == "2025-03-09"


def test_days_overdue_never_negative():
    assert days_overdue(date(2025, 1, 1), date(2025, 3, 1)) == 59
    assert days_overdue(date(2025, 3, 1), date(2025, 1, 1)) == 0


def test_month_bounds_handles_december():
    assert month_bounds("2024-12") == (date(2024, 12, 1), date(2025, 1, 1))
    assert month_bounds("2025-02") == (date(2025, 2, 1), date(2025, 3, 1))


def test_last_day_of_month_leap_year():
    assert last_day_of_month("2024-02") == date(2024, 2, 29)
    assert last_day_of_month("2025-02") == date(2025, 2, 28)


def test_months_between_inclusive():
    """Test both endpoint months are included, across a year boundary"""
    assert months_between(date(2024, 11, 15), date(2025, 2, 1)) == ["2024-11", "2024-12", "2025-01", "2025-02"]
    assert months_between(date(2025, 1, 31), date(2025, 1, 31)) == ["2025-01"]


def test_month_key_round_trip_and_validation():
    assert month_key(date(2025, 7, 4)) == "2025-07"
    assert parse_month_key("2025-07") == (2025, 7)
    assert format_month_year("2025-07") == "July 2025"
    with pytest.raises(ValueError):
        parse_month_key("2025-13")
    with pytest.raises(ValueError):
        parse_month_key("July")
