"""Monthly reconciliation - one interest invoice per calendar month, backfilled as needed"""

import logging
from datetime import date
from decimal import Decimal
from typing import Dict, List, Optional, Tuple

from xero_interest.domain.context import RunContext
from xero_interest.domain.models import (
    InterestConfig,
    MonthlyReconciliationSummary,
    MonthlyResult,
    ReconciliationResult,
    SourceInvoice,
)
from xero_interest.domain.orchestrator import ChangeRequest, InvoiceMutationOrchestrator
from xero_interest.domain.reconciliation import (
    build_line_items,
    evaluate_invoice,
    fetch_ledger_tracked_invoices,
    record_outcome,
    record_void_reset,
    settled_source_ids,
)
from xero_interest.domain.timeline import daily_rate
from xero_interest.utils.date_utils import (
    add_days,
    days_between,
    days_overdue,
    format_month_year,
    last_day_of_month,
    month_bounds,
    months_between,
)
from xero_interest.utils.money import ZERO, round_money, sum_money

logger = logging.getLogger(__name__)


def days_overdue_in_month(due_date: date, grace_days: int, charge_month: str) -> int:
    """
    Days of the month that accrue interest.

    Window is [max(due + grace, month start), next month start): a month is
    always charged through its last day, so reruns later in the same month
    find nothing new to charge.
    """
    month_start, next_month_start = month_bounds(charge_month)
    window_start = max(add_days(due_date, grace_days), month_start)
    if next_month_start <= window_start:
        return 0
    return days_between(window_start, next_month_start)


def calculate_monthly_interest(
    invoice: SourceInvoice,
    config: InterestConfig,
    charge_month: str,
) -> Tuple[Decimal, int]:
    """
    Interest accrued within one month on the invoice's current amount due.

    Returns: (interest, days_charged_in_month)
    """
    days = days_overdue_in_month(invoice.due_date, config.min_days_overdue, charge_month)
    if days <= 0:
        return ZERO, 0
    if invoice.amount_due <= 0:
        return ZERO, days
    return round_money(invoice.amount_due * daily_rate(config.annual_rate) * days), days


def earliest_interest_date(invoices: List[SourceInvoice], grace_days: int) -> Optional[date]:
    """First date any of the invoices became eligible for interest"""
    if not invoices:
        return None
    return min(add_days(invoice.due_date, grace_days) for invoice in invoices)


def invoice_date_for_month(charge_month: str) -> date:
    """Monthly interest invoices are dated the last day of the month they cover"""
    return last_day_of_month(charge_month)


def due_date_for_invoice(invoice_date: date, due_days: int = 30) -> date:
    return add_days(invoice_date, due_days)


async def run_monthly_reconciliation(config: InterestConfig, ctx: RunContext) -> MonthlyReconciliationSummary:
    """
    Monthly-mode reconciliation for one client.

    For each month from the earliest interest date through as_of: compute
    each invoice's interest for that month, diff it against the ledger
    charges keyed to that month, and realize the month's invoice through
    the orchestrator (dated month end, due 30 days later, re-authorised).
    Months with no interest and nothing to correct are skipped.
    """
    logger.info(
        f"Running monthly reconciliation for {config.contact_name}",
        extra={"contact_id": config.contact_id, "as_of": ctx.as_of.isoformat(), "dry_run": ctx.dry_run},
    )
    summary = MonthlyReconciliationSummary(
        contact_id=config.contact_id,
        contact_name=config.contact_name,
        monthly_results=[],
        detailed_results=[],
        total_interest=ZERO,
        dry_run=ctx.dry_run,
    )

    invoices = await ctx.client.get_overdue_invoices(config.contact_id, config.min_days_overdue, config.currency_code)
    # Voided source invoices drop out of the overdue query; bring back the ones still charged.
    # Settled invoices accrue nothing more and are not looked up again.
    known_ids = {i.invoice_id for i in invoices} | set(settled_source_ids(config, ctx))
    invoices += await fetch_ledger_tracked_invoices(config, ctx, known_ids, include=lambda invoice: invoice.is_voided)

    earliest = earliest_interest_date(invoices, config.min_days_overdue)
    if earliest is None or earliest >= ctx.as_of:
        logger.info("No invoices accruing interest", extra={"contact_id": config.contact_id})
        return summary

    months = months_between(earliest, ctx.as_of)
    logger.info(
        f"Processing {len(months)} months: {months[0]} to {months[-1]}",
        extra={"contact_id": config.contact_id, "invoices": len(invoices)},
    )

    item_code = None if ctx.dry_run else await ctx.interest_item_code()
    orchestrator = InvoiceMutationOrchestrator(
        ctx.client,
        account_code=ctx.account_code,
        reference_prefix=ctx.reference_prefix,
        supplemental_due_days=ctx.supplemental_due_days,
        item_code=item_code,
    )
    by_id: Dict[str, SourceInvoice] = {invoice.invoice_id: invoice for invoice in invoices}

    for charge_month in months:
        month_results: List[ReconciliationResult] = []

        for invoice in invoices:
            interest, _ = calculate_monthly_interest(invoice, config, charge_month)
            if interest == 0 and ctx.ledger.sum_deltas_for_invoice(invoice.invoice_id, charge_month) == 0:
                continue

            result = await evaluate_invoice(
                invoice,
                config,
                ctx,
                charge_period=charge_month,
                calculator=lambda inv, month=charge_month: (
                    calculate_monthly_interest(inv, config, month)[0],
                    days_overdue(inv.due_date, ctx.as_of),
                ),
                apply_minimum=False,
            )
            if result.error:
                summary.errors.append(f"{charge_month} {result.source_invoice_number}: {result.error}")
            month_results.append(result)

        # Voided interest invoices are written off even when the month has nothing else to change
        if not ctx.dry_run:
            resets = [
                record_void_reset(r, by_id[r.source_invoice_id], config, ctx) for r in month_results if r.void_reset
            ]
            if any(entry_id is not None for entry_id in resets):
                ctx.checkpoint()

        month_total = sum_money(r.should_owe for r in month_results)
        if month_total == 0 and not any(r.changed for r in month_results):
            continue

        summary.detailed_results.extend(month_results)
        summary.total_interest = round_money(summary.total_interest + month_total)
        net_change = round_money(sum_money(r.delta for r in month_results))
        line_items = build_line_items(
            month_results, config, ctx.account_code, period_label=charge_month, item_code=item_code
        )

        if ctx.dry_run:
            summary.monthly_results.append(
                MonthlyResult(
                    charge_month=charge_month,
                    invoice_id="(dry run)",
                    invoice_number="(dry run)",
                    total_interest=month_total,
                    line_items=len(line_items),
                    is_new=False,
                    net_change=net_change,
                )
            )
            continue

        changed = [r for r in month_results if r.changed]
        if not changed:
            continue

        invoice_date = invoice_date_for_month(charge_month)
        due_date = due_date_for_invoice(invoice_date, ctx.monthly_due_days)
        target = await orchestrator.get_or_create_interest_invoice(
            config.contact_id,
            config.contact_name,
            charge_month,
            invoice_date,
            due_date,
            config.currency_code,
        )
        outcome = await orchestrator.apply_change(
            target,
            line_items,
            net_change,
            ChangeRequest(
                contact_id=config.contact_id,
                contact_name=config.contact_name,
                period_key=charge_month,
                as_of=ctx.as_of,
                invoice_date=invoice_date,
                due_date=due_date,
                currency_code=config.currency_code,
                reauthorize=True,
                update_dates=True,
            ),
        )

        record_outcome(changed, by_id, config, ctx, outcome)
        ctx.checkpoint()

        summary.monthly_results.append(
            MonthlyResult(
                charge_month=charge_month,
                invoice_id=outcome.invoice_id,
                invoice_number=outcome.invoice_number,
                total_interest=month_total,
                line_items=len(line_items),
                is_new=target.is_new,
                net_change=net_change,
                mutation=outcome.kind,
            )
        )
        logger.info(
            f"Monthly interest invoice {outcome.invoice_number} for {format_month_year(charge_month)}",
            extra={"total_interest": str(month_total), "net_change": str(net_change), "mutation": outcome.kind.value},
        )

    return summary
