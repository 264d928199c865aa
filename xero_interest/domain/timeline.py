"""Timeline interest calculator - interest on historical balances between payments"""

from datetime import date
from decimal import Decimal
from typing import List

from xero_interest.domain.models import (
    BalancePeriod,
    InterestConfig,
    SourceInvoice,
    TimelineInterestResult,
)
from xero_interest.utils.date_utils import add_days, days_between
from xero_interest.utils.money import ZERO, round_money, sum_money, to_decimal

DAYS_PER_YEAR = Decimal(365)


def daily_rate(annual_rate_percent) -> Decimal:
    """24 (percent per year) -> 0.24 / 365"""
    return to_decimal(annual_rate_percent) / Decimal(100) / DAYS_PER_YEAR


def compute_timeline_interest(
    invoice: SourceInvoice,
    config: InterestConfig,
    as_of: date,
) -> TimelineInterestResult:
    """
    Partition an invoice's overdue life into constant-balance periods and
    charge interest on each period's balance.

    Requirements:
    - Payments reduce principal from the payment date forward, never retroactively
    - Payments/credits on or before the due date reduce the starting balance
      without opening a period
    - Only days on/after due date + grace period accrue interest
    - Each period is rounded to cents, the total is the rounded sum of periods

    Example:
        $100k due Jan 1, $50k paid Feb 1, 30 day grace, as of Mar 1 @ 24%
        -> [Jan 1, Feb 1) at $100k with 1 day after grace = 65.75
        -> [Feb 1, Mar 1) at $50k for 28 days            = 920.55
        -> total 986.30
    """
    due_date = invoice.due_date
    if as_of <= due_date:
        return TimelineInterestResult(periods=[], total_interest=ZERO, total_days_overdue=0, effective_days_charged=0)

    rate = daily_rate(config.annual_rate)
    grace_end = add_days(due_date, config.min_days_overdue)

    events = invoice.balance_events()

    balance = to_decimal(invoice.total)
    for event in events:
        if event.date <= due_date:
            balance -= event.amount

    periods: List[BalancePeriod] = []
    cursor = due_date

    for event in events:
        if event.date <= due_date:
            continue

        if event.date > cursor and balance > 0:
            period = _build_period(cursor, event.date, balance, grace_end, rate)
            if period.days_in_period > 0:
                periods.append(period)

        balance = max(ZERO, balance - event.amount)
        cursor = event.date

    # Final period runs to as_of (the only period when there were no payments)
    if cursor < as_of and balance > 0:
        period = _build_period(cursor, as_of, balance, grace_end, rate)
        if period.days_in_period > 0:
            periods.append(period)

    return TimelineInterestResult(
        periods=periods,
        total_interest=sum_money(p.interest for p in periods),
        total_days_overdue=days_between(due_date, as_of),
        effective_days_charged=sum(p.days_after_grace for p in periods),
    )


def _build_period(
    start: date,
    end: date,
    balance: Decimal,
    grace_end: date,
    rate: Decimal,
) -> BalancePeriod:
    """Create a balance period, splitting at the grace boundary if it straddles it"""
    days_in_period = days_between(start, end)

    if end <= grace_end:
        days_after_grace = 0
    elif start >= grace_end:
        days_after_grace = days_in_period
    else:
        days_after_grace = days_between(grace_end, end)

    return BalancePeriod(
        start_date=start,
        end_date=end,
        balance=balance,
        days_in_period=days_in_period,
        days_after_grace=days_after_grace,
        interest=round_money(balance * rate * days_after_grace),
    )


def format_timeline(result: TimelineInterestResult) -> str:
    """Human-readable breakdown for debug logging"""
    lines = [
        "Timeline Interest Calculation:",
        f"  Total Days Overdue: {result.total_days_overdue}",
        f"  Effective Days Charged: {result.effective_days_charged}",
        f"  Total Interest: ${result.total_interest:.2f}",
        "  Periods:",
    ]
    for period in result.periods:
        lines.append(f"    {period.start_date.isoformat()} -> {period.end_date.isoformat()}")
        lines.append(
            f"      Balance: ${period.balance:.2f}, Days: {period.days_in_period} "
            f"({period.days_after_grace} after grace)"
        )
        lines.append(f"      Interest: ${period.interest:.2f}")
    return "\n".join(lines)
