"""Unit tests for timeline interest calculation"""

from datetime import date
from decimal import Decimal
from xero_interest.domain.models import BalanceEvent, InterestConfig, InvoiceStatus, SourceInvoice
from xero_interest.domain.timeline import compute_timeline_interest, daily_rate, format_timeline


def make_config(rate="24", grace=30) -> InterestConfig:
    return InterestConfig(id=1, contact_id="C1", contact_name="Acme", annual_rate=Decimal(rate), min_days_overdue=grace)


def make_invoice(total="100000", due=date(2025, 1, 1), payments=(), credit_notes=()) -> SourceInvoice:
    pays = [BalanceEvent(date=d, amount=Decimal(a), kind="payment") for d, a in payments]
    credits = [BalanceEvent(date=d, amount=Decimal(a), kind="credit_note") for d, a in credit_notes]
    paid = sum((e.amount for e in pays + credits), Decimal("0"))
    return SourceInvoice(
        invoice_id="src-1",
        invoice_number="INV-001",
        status=InvoiceStatus.AUTHORISED,
        due_date=due,
        total=Decimal(total),
        amount_due=Decimal(total) - paid,
        payments=pays,
        credit_notes=credits,
    )


def test_no_payments_single_period():
    """Test $100k, 24%, 30 day grace, 59 days overdue -> 29 chargeable days"""
    result = compute_timeline_interest(make_invoice(), make_config(), date(2025, 3, 1))

    assert result.total_interest == Decimal("1906.85")
    assert result.total_days_overdue == 59
    assert result.effective_days_charged == 29
    assert len(result.periods) == 1


def test_partial_payment_splits_periods():
    """Test $50k paid Feb 1: one day at $100k, then 28 days at $50k"""
    invoice = make_invoice(payments=[(date(2025, 2, 1), "50000")])
    result = compute_timeline_interest(invoice, make_config(), date(2025, 3, 1))

    assert [p.balance for p in result.periods] == [Decimal("100000"), Decimal("50000")]
    assert [p.days_after_grace for p in result.periods] == [1, 28]
    assert [p.interest for p in result.periods] == [Decimal("65.75"), Decimal("920.55")]
    assert result.total_interest == Decimal("986.30")
    assert result.effective_days_charged == 29


def test_payment_never_reduces_interest_retroactively():
    """Test a payment cannot lower interest already accrued on the full balance"""
    full = compute_timeline_interest(make_invoice(), make_config(), date(2025, 2, 15))
    paid = compute_timeline_interest(
        make_invoice(payments=[(date(2025, 2, 15), "100000")]), make_config(), date(2025, 2, 15)
    )
    assert paid.total_interest == full.total_interest


def test_grace_boundary():
    """Test exactly-at-grace accrues nothing; one day past accrues exactly one day"""
    config = make_config()
    at_grace = compute_timeline_interest(make_invoice(), config, date(2025, 1, 31))
    one_past = compute_timeline_interest(make_invoice(), config, date(2025, 2, 1))

    assert at_grace.total_interest == Decimal("0.00")
    assert at_grace.effective_days_charged == 0
    assert one_past.effective_days_charged == 1
    assert one_past.total_interest == Decimal("65.75")


def test_payments_before_due_reduce_opening_balance():
    """Test payments and credits on/before the due date open no period"""
    invoice = make_invoice(
        payments=[(date(2024, 12, 20), "30000")],
        credit_notes=[(date(2025, 1, 1), "20000")],
    )
    result = compute_timeline_interest(invoice, make_config(), date(2025, 3, 1))

    assert len(result.periods) == 1
    assert result.periods[0].balance == Decimal("50000")
    assert result.total_interest == Decimal("953.42")


def test_paid_within_grace_owes_nothing():
    invoice = make_invoice(payments=[(date(2025, 1, 15), "100000")])
    result = compute_timeline_interest(invoice, make_config(), date(2025, 3, 1))

    assert result.total_interest == Decimal("0.00")
    assert result.total_days_overdue == 59


def test_not_yet_due():
    result = compute_timeline_interest(make_invoice(), make_config(), date(2025, 1, 1))
    assert result.periods == []
    assert result.total_interest == Decimal("0.00")


def test_zero_grace_charges_from_due_date():
    result = compute_timeline_interest(make_invoice(total="10000"), make_config(rate="12", grace=0), date(2025, 2, 1))
    # 10000 * 0.12 / 365 * 31
    assert result.total_interest == Decimal("101.92")


def test_interest_monotonic_in_as_of_without_payments():
    config = make_config()
    amounts = [
        compute_timeline_interest(make_invoice(), config, date(2025, 1, day)).total_interest
        for day in range(2, 32)
    ] + [compute_timeline_interest(make_invoice(), config, date(2025, 2, day)).total_interest for day in range(1, 28)]
    assert amounts == sorted(amounts)


def test_daily_rate():
    assert daily_rate(Decimal("36.5")) == Decimal("0.001")


def test_format_timeline_lists_periods():
    invoice = make_invoice(payments=[(date(2025, 2, 1), "50000")])
    text = format_timeline(compute_timeline_interest(invoice, make_config(), date(2025, 3, 1)))

    assert "Total Interest: $986.30" in text
    assert "2025-02-01 -> 2025-03-01" in text
