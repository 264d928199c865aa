"""Batch accrual - run running-mode reconciliation across client configs"""

import logging
from datetime import date, datetime
from typing import Dict, List

from xero_interest.domain.context import RunContext
from xero_interest.domain.exceptions import AccountingAuthError
from xero_interest.domain.models import AccrualResult, InterestConfig, ReconcileAction
from xero_interest.domain.reconciliation import run_reconciliation
from xero_interest.utils.money import round_money, sum_money

logger = logging.getLogger(__name__)


def already_ran_on(config: InterestConfig, as_of: date) -> bool:
    """True if the config's last live run happened on the given calendar day"""
    if config.last_run_date is None:
        return False
    last_run = config.last_run_date
    if isinstance(last_run, datetime):
        last_run = last_run.date()
    return last_run == as_of


async def run_accrual_for_client(config: InterestConfig, ctx: RunContext) -> AccrualResult:
    """
    Reconcile one client and record the run on its config.

    Failures are collected on the result so one client cannot stop the
    batch. Authentication failures abort: every later call would fail too.
    """
    result = AccrualResult(config=config)
    logger.info(
        "Starting reconciliation",
        extra={
            "contact_id": config.contact_id,
            "min_days_overdue": config.min_days_overdue,
            "currency_code": config.currency_code,
            "dry_run": ctx.dry_run,
        },
    )

    try:
        summary = await run_reconciliation(config, ctx)
        result.summary = summary
        result.errors.extend(summary.errors)

        logger.info(
            "Reconciliation complete",
            extra={
                "contact_id": config.contact_id,
                "total_should_owe": str(summary.total_should_owe),
                "total_previously_charged": str(summary.total_previously_charged),
                "net_change": str(summary.net_change),
                "invoices_processed": len(summary.results),
                "invoices_with_changes": sum(1 for r in summary.results if r.action != ReconcileAction.NO_CHANGE),
            },
        )

        if not ctx.dry_run and ctx.configs is not None:
            ctx.configs.update_config_last_run(
                config.id,
                datetime.combine(ctx.as_of, datetime.min.time()),
                summary.interest_invoice_id or config.last_invoice_id,
            )
        ctx.checkpoint()

    except AccountingAuthError:
        raise
    except Exception as e:
        result.errors.append(str(e))
        logger.error(f"Accrual failed for {config.contact_name}: {e}", extra={"contact_id": config.contact_id})
        # Ledger entries for a change the platform already committed are still worth keeping
        ctx.checkpoint()

    return result


async def run_accrual_for_all_clients(configs: List[InterestConfig], ctx: RunContext) -> List[AccrualResult]:
    """Sequentially accrue every config (scheduled trigger)"""
    results: List[AccrualResult] = []
    for config in configs:
        logger.info(f"Processing client: {config.contact_name}")
        results.append(await run_accrual_for_client(config, ctx))
    return results


def summarize_results(results: List[AccrualResult]) -> Dict:
    return {
        "clients_processed": len(results),
        "invoices_created": sum(1 for r in results if r.invoice_created),
        "total_interest": round_money(sum_money(r.total_interest for r in results)),
        "errors": [f"{r.config.contact_name}: {error}" for r in results for error in r.errors],
    }
