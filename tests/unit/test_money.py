"""Unit tests for money rounding helpers"""

from decimal import Decimal
from xero_interest.utils.money import is_negligible, meets_minimum, round_money, sum_money, to_decimal


def test_round_money_half_up():
    """Test halves round away from zero, not to even"""
    assert round_money(Decimal("2.345")) == Decimal("2.35")
    assert round_money(Decimal("2.344")) == Decimal("2.34")
    assert round_money(Decimal("-2.345")) == Decimal("-2.35")


def test_to_decimal_avoids_float_noise():
    assert to_decimal(0.1) == Decimal("0.1")
    assert to_decimal(None) == Decimal("0")
    assert to_decimal("19.99") == Decimal("19.99")


def test_sum_money_rounds_total_once():
    """Test summing already-rounded parts keeps the cent total"""
    assert sum_money([Decimal("65.75"), Decimal("920.55")]) == Decimal("986.30")
    assert sum_money([]) == Decimal("0.00")


def test_is_negligible_threshold():
    """Test deltas under one cent are no-ops; one cent is not"""
    assert is_negligible(Decimal("0.009"))
    assert is_negligible(Decimal("-0.004"))
    assert not is_negligible(Decimal("0.01"))
    assert not is_negligible(Decimal("-0.01"))


def test_meets_minimum():
    assert meets_minimum(Decimal("1.00"), Decimal("1.00"))
    assert meets_minimum(Decimal("0.995"), Decimal("1.00"))  # rounds up to 1.00
    assert not meets_minimum(Decimal("0.95"), Decimal("1.00"))
