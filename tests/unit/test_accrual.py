"""Unit tests for batch accrual across clients"""

import pytest
from datetime import date, datetime
from decimal import Decimal
from xero_interest.domain.accrual import (
    already_ran_on,
    run_accrual_for_all_clients,
    run_accrual_for_client,
    summarize_results,
)
from xero_interest.domain.exceptions import AccountingAuthError
from xero_interest.infrastructure.database.repositories import ConfigRepository

MARCH_1 = date(2025, 3, 1)


def test_already_ran_on(config):
    assert not already_ran_on(config, MARCH_1)
    config.last_run_date = datetime(2025, 3, 1, 6, 0)
    assert already_ran_on(config, MARCH_1)
    assert not already_ran_on(config, date(2025, 3, 2))


async def test_live_run_records_last_run(config, db, fake_xero, make_context):
    fake_xero.add_source_invoice("A", Decimal("100000"), date(2025, 1, 1))

    result = await run_accrual_for_client(config, make_context(MARCH_1))

    assert result.errors == []
    assert result.total_interest == Decimal("1906.85")
    assert result.invoice_created

    stored = ConfigRepository(db).get_config_by_contact_id("C1")
    assert stored.last_run_date.date() == MARCH_1
    assert stored.last_invoice_id == result.summary.interest_invoice_id


async def test_dry_run_leaves_config_untouched(config, db, fake_xero, make_context):
    fake_xero.add_source_invoice("A", Decimal("100000"), date(2025, 1, 1))

    result = await run_accrual_for_client(config, make_context(MARCH_1, dry_run=True))

    assert result.total_interest == Decimal("1906.85")
    assert ConfigRepository(db).get_config_by_contact_id("C1").last_run_date is None


async def test_client_failure_is_collected(config, fake_xero, make_context, monkeypatch):
    async def broken(*args, **kwargs):
        raise RuntimeError("Xero returned garbage")

    monkeypatch.setattr(fake_xero, "get_overdue_invoices", broken)

    result = await run_accrual_for_client(config, make_context(MARCH_1))

    assert result.summary is None
    assert result.errors == ["Xero returned garbage"]
    assert result.total_interest == Decimal("0.00")


async def test_auth_failure_aborts_batch(config, fake_xero, make_context):
    fake_xero.auth_failure = True

    with pytest.raises(AccountingAuthError):
        await run_accrual_for_all_clients([config], make_context(MARCH_1))


async def test_all_clients_and_summary(config, db, fake_xero, make_context):
    other = ConfigRepository(db).create_config("C2", "Beta Ltd", Decimal("12"), min_days_overdue=0)
    db.commit()
    fake_xero.add_source_invoice("A", Decimal("100000"), date(2025, 1, 1))
    fake_xero.add_source_invoice("B", Decimal("10000"), date(2025, 2, 1), contact_id="C2")

    results = await run_accrual_for_all_clients([config, other], make_context(MARCH_1))
    totals = summarize_results(results)

    # C2: 10000 * 0.12 / 365 * 28
    assert [r.total_interest for r in results] == [Decimal("1906.85"), Decimal("92.05")]
    assert totals == {
        "clients_processed": 2,
        "invoices_created": 2,
        "total_interest": Decimal("1998.90"),
        "errors": [],
    }
