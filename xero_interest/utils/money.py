"""Money rounding helpers"""

from decimal import Decimal, ROUND_HALF_UP
from typing import Iterable

CENT = Decimal("0.01")
ZERO = Decimal("0.00")

# Deltas smaller than this are never charged or credited
NO_CHANGE_THRESHOLD = Decimal("0.01")


def to_decimal(value) -> Decimal:
    """Convert an int/float/str amount to Decimal without float noise"""
    if isinstance(value, Decimal):
        return value
    if value is None:
        return ZERO
    return Decimal(str(value))


def round_money(amount) -> Decimal:
    """Round to 2 decimal places (half away from zero)"""
    return to_decimal(amount).quantize(CENT, rounding=ROUND_HALF_UP)


def sum_money(amounts: Iterable) -> Decimal:
    """Sum amounts and round the total once"""
    return round_money(sum((to_decimal(a) for a in amounts), ZERO))


def meets_minimum(amount, minimum) -> bool:
    """Check if an amount meets the minimum charge threshold"""
    return round_money(amount) >= to_decimal(minimum)


def is_negligible(delta) -> bool:
    """True when a delta is below one cent and must not be acted on"""
    return abs(to_decimal(delta)) < NO_CHANGE_THRESHOLD
