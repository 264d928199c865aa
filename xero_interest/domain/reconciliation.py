"""Reconciliation engine - compare what should be owed with what the ledger says was charged"""

import logging
from decimal import Decimal
from typing import Callable, Dict, Iterable, List, Optional, Set, Tuple

from xero_interest.domain.context import RunContext
from xero_interest.domain.exceptions import AccountingAuthError
from xero_interest.domain.models import (
    RUNNING_PERIOD,
    InterestConfig,
    InterestInvoiceRef,
    InterestLedgerEntry,
    LineItem,
    MutationKind,
    MutationOutcome,
    ReconcileAction,
    ReconcileReason,
    ReconciliationResult,
    ReconciliationSummary,
    SourceInvoice,
)
from xero_interest.domain.orchestrator import ChangeRequest, InvoiceMutationOrchestrator, placeholder_line
from xero_interest.domain.timeline import compute_timeline_interest, format_timeline
from xero_interest.utils.date_utils import add_days, days_overdue
from xero_interest.utils.money import ZERO, is_negligible, meets_minimum, round_money, sum_money, to_decimal

logger = logging.getLogger(__name__)

# (should_owe, days_overdue) for one invoice in one charge period
ShouldOweCalculator = Callable[[SourceInvoice], Tuple[Decimal, int]]


def calculate_should_owe(invoice: SourceInvoice, config: InterestConfig, as_of) -> Tuple[Decimal, int, int]:
    """
    Interest currently owed on an invoice, from its payment timeline.

    Returns: (should_owe, days_overdue, effective_days_charged)
    """
    total_days_overdue = days_overdue(invoice.due_date, as_of)

    # Still within grace period
    if total_days_overdue < config.min_days_overdue:
        return ZERO, total_days_overdue, 0

    timeline = compute_timeline_interest(invoice, config, as_of)
    if logger.isEnabledFor(logging.DEBUG):
        logger.debug(format_timeline(timeline), extra={"source_invoice": invoice.invoice_number})
    return timeline.total_interest, timeline.total_days_overdue, timeline.effective_days_charged


def determine_reason(previous_entry: Optional[InterestLedgerEntry], invoice: SourceInvoice) -> ReconcileReason:
    """Why the amount changed since the last ledger entry (audit trail)"""
    if previous_entry is None:
        return ReconcileReason.INITIAL

    if invoice.due_date != previous_entry.source_due_date:
        return ReconcileReason.DUE_DATE_CHANGED

    previous_amount_due = to_decimal(previous_entry.source_amount_due)
    if abs(invoice.amount_due - previous_amount_due) > Decimal("0.01"):
        if invoice.amount_due < previous_amount_due:
            return ReconcileReason.PARTIAL_PAYMENT
        return ReconcileReason.PRINCIPAL_CHANGED

    if invoice.is_voided:
        return ReconcileReason.SOURCE_VOIDED

    return ReconcileReason.DAILY_ACCRUAL


def classify_action(delta: Decimal, previously_charged: Decimal, should_owe: Decimal) -> ReconcileAction:
    """Map a delta to the corrective action it calls for"""
    if is_negligible(delta):
        return ReconcileAction.NO_CHANGE
    if delta > 0:
        return ReconcileAction.CREATED if previously_charged == 0 else ReconcileAction.UPDATED
    return ReconcileAction.CREDITED if should_owe == 0 else ReconcileAction.UPDATED


async def evaluate_invoice(
    invoice: SourceInvoice,
    config: InterestConfig,
    ctx: RunContext,
    charge_period: str = RUNNING_PERIOD,
    calculator: Optional[ShouldOweCalculator] = None,
    apply_minimum: bool = True,
) -> ReconciliationResult:
    """
    Compute should-owe vs previously-charged for one invoice, writing nothing.

    Running mode collapses every ledger period for the invoice; any other
    charge_period (YYYY-MM) scopes the ledger reads to that key.

    Calculation errors are recorded on the result rather than raised so the
    batch carries on; authentication failures still propagate.
    """
    ledger_period = None if charge_period == RUNNING_PERIOD else charge_period
    result = ReconciliationResult(
        source_invoice_id=invoice.invoice_id,
        source_invoice_number=invoice.invoice_number,
        charge_period=charge_period,
    )
    ledger_read = False

    try:
        if calculator is None:
            should_owe, total_days_overdue, _ = calculate_should_owe(invoice, config, ctx.as_of)
        else:
            should_owe, total_days_overdue = calculator(invoice)
        result.days_overdue = total_days_overdue

        ledger_total = round_money(ctx.ledger.sum_deltas_for_invoice(invoice.invoice_id, ledger_period))
        previous_entry = ctx.ledger.get_latest_entry_for_invoice(invoice.invoice_id, ledger_period)
        result.ledger_total = ledger_total
        result.previously_charged = ledger_total
        ledger_read = True

        # An interest invoice voided directly in the platform no longer carries the charge
        if previous_entry is not None and previous_entry.interest_invoice_id and ledger_total != 0:
            if await ctx.is_interest_invoice_voided(previous_entry.interest_invoice_id):
                logger.info(
                    "Interest invoice was voided - resetting charged amount",
                    extra={
                        "source_invoice": invoice.invoice_number,
                        "interest_invoice": previous_entry.interest_invoice_number,
                        "previously_charged": str(ledger_total),
                    },
                )
                result.voided_interest_invoice_id = previous_entry.interest_invoice_id
                result.voided_interest_invoice_number = previous_entry.interest_invoice_number
                result.previously_charged = ZERO

        result.reason = determine_reason(previous_entry, invoice)

        if invoice.is_voided:
            should_owe = ZERO
            result.reason = ReconcileReason.SOURCE_VOIDED

        if apply_minimum and result.previously_charged == 0 and should_owe > 0 and not meets_minimum(should_owe, config.min_charge_amount):
            result.suppressed = True
            should_owe = ZERO

        result.should_owe = round_money(should_owe)
        result.delta = round_money(result.should_owe - result.previously_charged)
        result.action = classify_action(result.delta, result.previously_charged, result.should_owe)

    except AccountingAuthError:
        raise
    except Exception as e:
        result.error = str(e)
        result.action = ReconcileAction.NO_CHANGE
        result.delta = ZERO
        # Keep the already-charged line on the invoice rather than silently dropping it
        result.should_owe = result.previously_charged if ledger_read else ZERO
        logger.error(
            f"Failed to reconcile {invoice.invoice_number}: {e}",
            extra={"source_invoice": invoice.invoice_number, "charge_period": charge_period},
        )

    return result


def build_ledger_entry(
    result: ReconciliationResult,
    invoice: SourceInvoice,
    config: InterestConfig,
    interest_invoice_id: str,
    interest_invoice_number: Optional[str],
    action: Optional[ReconcileAction] = None,
    credit_note_id: Optional[str] = None,
    credit_note_number: Optional[str] = None,
    notes: Optional[str] = None,
) -> InterestLedgerEntry:
    """Snapshot one reconciliation outcome as an append-only ledger entry"""
    return InterestLedgerEntry(
        source_invoice_id=result.source_invoice_id,
        source_invoice_number=result.source_invoice_number,
        interest_invoice_id=interest_invoice_id,
        interest_invoice_number=interest_invoice_number,
        charge_period=result.charge_period,
        action=action or result.action,
        previous_amount=result.previously_charged,
        new_amount=result.should_owe,
        delta=result.delta,
        reason=result.reason,
        source_due_date=invoice.due_date,
        source_amount_due=invoice.amount_due,
        days_overdue=result.days_overdue,
        rate=to_decimal(config.annual_rate),
        contact_id=config.contact_id,
        contact_name=config.contact_name,
        credit_note_id=credit_note_id,
        credit_note_number=credit_note_number,
        notes=notes,
    )


def record_void_reset(
    result: ReconciliationResult,
    invoice: SourceInvoice,
    config: InterestConfig,
    ctx: RunContext,
) -> Optional[int]:
    """
    Zero out the ledger balance of a voided interest invoice.

    The compensating entry keeps sum(delta) equal to what is actually
    charged before the new charge is recorded on top.
    """
    if not result.void_reset or result.ledger_total == 0:
        return None
    entry = InterestLedgerEntry(
        source_invoice_id=result.source_invoice_id,
        source_invoice_number=result.source_invoice_number,
        interest_invoice_id=result.voided_interest_invoice_id,
        interest_invoice_number=result.voided_interest_invoice_number,
        charge_period=result.charge_period,
        action=ReconcileAction.CREDITED,
        previous_amount=result.ledger_total,
        new_amount=ZERO,
        delta=-result.ledger_total,
        reason=ReconcileReason.MANUAL_ADJUSTMENT,
        source_due_date=invoice.due_date,
        source_amount_due=invoice.amount_due,
        days_overdue=result.days_overdue,
        rate=to_decimal(config.annual_rate),
        contact_id=config.contact_id,
        contact_name=config.contact_name,
        notes=f"Interest invoice {result.voided_interest_invoice_number or result.voided_interest_invoice_id} voided outside the ledger",
    )
    return ctx.ledger.create_entry(entry)


def record_result(
    result: ReconciliationResult,
    invoice: SourceInvoice,
    config: InterestConfig,
    ctx: RunContext,
    interest_invoice_id: str,
    interest_invoice_number: Optional[str],
    action: Optional[ReconcileAction] = None,
    credit_note_id: Optional[str] = None,
    credit_note_number: Optional[str] = None,
) -> Optional[int]:
    """Append the ledger entry for a changed result; NoChange writes nothing"""
    if not result.changed:
        return None
    entry = build_ledger_entry(
        result,
        invoice,
        config,
        interest_invoice_id,
        interest_invoice_number,
        action=action,
        credit_note_id=credit_note_id,
        credit_note_number=credit_note_number,
    )
    entry_id = ctx.ledger.create_entry(entry)
    result.interest_invoice_id = interest_invoice_id
    result.credit_note_id = credit_note_id
    logger.info(
        f"Reconciled {invoice.invoice_number}",
        extra={
            "action": entry.action.value,
            "reason": result.reason.value,
            "previously_charged": str(result.previously_charged),
            "should_owe": str(result.should_owe),
            "delta": str(result.delta),
            "charge_period": result.charge_period,
        },
    )
    return entry_id


async def reconcile_invoice(
    invoice: SourceInvoice,
    config: InterestConfig,
    interest_invoice: InterestInvoiceRef,
    ctx: RunContext,
) -> ReconciliationResult:
    """
    Reconcile a single source invoice against the running interest invoice.

    Flow:
    1. Should-owe from the payment timeline
    2. Previously-charged from the ledger (reset if its invoice was voided)
    3. Delta, reason and action
    4. One ledger entry when the delta is at least a cent (skipped on dry runs)
    """
    result = await evaluate_invoice(invoice, config, ctx)
    if ctx.dry_run or result.error:
        return result

    record_void_reset(result, invoice, config, ctx)
    record_result(result, invoice, config, ctx, interest_invoice.invoice_id, interest_invoice.invoice_number)
    return result


def format_rate(annual_rate) -> str:
    """24.00 -> '24', 24.50 -> '24.5'"""
    return f"{to_decimal(annual_rate).normalize():f}"


def build_line_items(
    results: Iterable[ReconciliationResult],
    config: InterestConfig,
    account_code: str,
    period_label: Optional[str] = None,
    item_code: Optional[str] = None,
) -> List[LineItem]:
    """
    Full line-item set for an interest invoice.

    The invoice is always rewritten with full amounts (one line per source
    invoice still owing interest); the ledger tracks the changes.
    """
    suffix = f" ({period_label})" if period_label else ""
    line_items = [
        LineItem(
            description=f"Interest on {r.source_invoice_number} @ {format_rate(config.annual_rate)}% p.a.{suffix}",
            unit_amount=r.should_owe,
            account_code=account_code,
            item_code=item_code,
        )
        for r in results
        if r.should_owe > 0
    ]
    if not line_items:
        description = f"No interest charges for {period_label}" if period_label else "No interest charges this period"
        return [placeholder_line(account_code, description, item_code)]
    return line_items


async def fetch_ledger_tracked_invoices(
    config: InterestConfig,
    ctx: RunContext,
    known_ids: Set[str],
    charge_period: Optional[str] = None,
    include: Callable[[SourceInvoice], bool] = lambda invoice: True,
) -> List[SourceInvoice]:
    """
    Invoices that still carry a ledger charge but dropped out of the overdue
    query (paid off, voided, deleted), so their charges can be corrected.

    A paid-off invoice the caller does not include is marked settled on a
    live run, so later runs stop fetching it.
    """
    tracked: List[SourceInvoice] = []
    for source_invoice_id in ctx.ledger.open_source_invoice_ids(config.contact_id, charge_period):
        if source_invoice_id in known_ids:
            continue
        invoice = await ctx.client.get_invoice(source_invoice_id)
        if invoice is None:
            logger.warning(
                "Ledger references an invoice the platform no longer returns",
                extra={"source_invoice_id": source_invoice_id, "contact_id": config.contact_id},
            )
            continue
        if include(invoice):
            tracked.append(invoice)
        elif is_settled(invoice) and not ctx.dry_run:
            mark_settled(invoice, config, ctx)
    return tracked


def is_settled(invoice: SourceInvoice) -> bool:
    """Paid off in full; its interest can no longer grow"""
    return invoice.amount_due <= 0 and not invoice.is_voided


def mark_settled(invoice: SourceInvoice, config: InterestConfig, ctx: RunContext) -> None:
    charged = ctx.ledger.sum_deltas_for_invoice(invoice.invoice_id)
    if charged == 0:
        return
    ctx.ledger.mark_settled(invoice.invoice_id, config.contact_id, charged)
    logger.info(
        f"{invoice.invoice_number} settled - no further lookups",
        extra={"source_invoice_id": invoice.invoice_id, "charged_total": str(charged)},
    )


def settled_source_ids(config: InterestConfig, ctx: RunContext) -> Dict[str, Decimal]:
    """Settled invoices whose ledger charge is still the one recorded at settlement"""
    return {
        source_invoice_id: charged
        for source_invoice_id, charged in ctx.ledger.settled_charges(config.contact_id).items()
        if charged != 0 and ctx.ledger.sum_deltas_for_invoice(source_invoice_id) == charged
    }


async def carry_settled_charges(
    config: InterestConfig, ctx: RunContext, known_ids: Set[str]
) -> List[ReconciliationResult]:
    """
    NoChange results for settled invoices, built from the ledger alone.

    They keep their line on the running invoice without another platform
    lookup. One whose interest invoice has since been voided is left out
    and goes back through the full evaluation.
    """
    carried: List[ReconciliationResult] = []
    for source_invoice_id, charged in settled_source_ids(config, ctx).items():
        if source_invoice_id in known_ids:
            continue
        entry = ctx.ledger.get_latest_entry_for_invoice(source_invoice_id)
        if entry is None:
            continue
        if entry.interest_invoice_id and await ctx.is_interest_invoice_voided(entry.interest_invoice_id):
            continue
        carried.append(
            ReconciliationResult(
                source_invoice_id=source_invoice_id,
                source_invoice_number=entry.source_invoice_number,
                charge_period=RUNNING_PERIOD,
                should_owe=charged,
                previously_charged=charged,
                ledger_total=charged,
                reason=entry.reason,
                days_overdue=entry.days_overdue,
                interest_invoice_id=entry.interest_invoice_id,
            )
        )
    return carried


def _totals(results: List[ReconciliationResult]) -> Tuple[Decimal, Decimal, Decimal]:
    total_should_owe = sum_money(r.should_owe for r in results)
    total_previously_charged = sum_money(r.previously_charged for r in results)
    return total_should_owe, total_previously_charged, round_money(total_should_owe - total_previously_charged)


async def run_reconciliation(config: InterestConfig, ctx: RunContext) -> ReconciliationSummary:
    """
    Running-mode reconciliation for one client: one consolidated interest
    invoice, continuously corrected.

    Flow:
    1. Fetch overdue invoices (with payment history) in one call, plus any
       invoice the ledger still charges that left the overdue set
    2. Evaluate every invoice (should-owe, previously-charged, delta)
    3. Dry run: return the computed results untouched
    4. Live: realize the full line-item set through the orchestrator, then
       append a ledger entry for every changed invoice
    """
    logger.info(
        f"Running reconciliation for {config.contact_name}",
        extra={"contact_id": config.contact_id, "as_of": ctx.as_of.isoformat(), "dry_run": ctx.dry_run},
    )

    invoices = await ctx.client.get_overdue_invoices(config.contact_id, config.min_days_overdue, config.currency_code)
    known_ids = {i.invoice_id for i in invoices}
    carried = await carry_settled_charges(config, ctx, known_ids)
    known_ids.update(r.source_invoice_id for r in carried)
    invoices += await fetch_ledger_tracked_invoices(config, ctx, known_ids)
    logger.info(
        f"Found {len(invoices)} invoices to reconcile",
        extra={"contact_id": config.contact_id, "settled": len(carried)},
    )

    results: List[ReconciliationResult] = []
    for invoice in invoices:
        logger.debug(
            f"Processing {invoice.invoice_number}",
            extra={
                "total": str(invoice.total),
                "amount_due": str(invoice.amount_due),
                "payments": len(invoice.payments),
                "credit_notes": len(invoice.credit_notes),
            },
        )
        results.append(await evaluate_invoice(invoice, config, ctx))
    results.extend(carried)

    total_should_owe, total_previously_charged, net_change = _totals(results)
    summary = ReconciliationSummary(
        contact_id=config.contact_id,
        contact_name=config.contact_name,
        results=results,
        total_should_owe=total_should_owe,
        total_previously_charged=total_previously_charged,
        net_change=net_change,
        dry_run=ctx.dry_run,
    )

    if ctx.dry_run:
        logger.info(
            "DRY RUN - no changes made",
            extra={
                "total_should_owe": str(total_should_owe),
                "total_previously_charged": str(total_previously_charged),
                "net_change": str(net_change),
                "invoices_with_changes": sum(1 for r in results if r.changed),
            },
        )
        return summary

    by_id = {invoice.invoice_id: invoice for invoice in invoices}

    for result in results:
        if result.void_reset:
            record_void_reset(result, by_id[result.source_invoice_id], config, ctx)

    changed = [r for r in results if r.changed]
    if not changed:
        settle_paid_invoices(results, by_id, config, ctx)
        logger.info("No interest changes", extra={"contact_id": config.contact_id})
        return summary

    item_code = await ctx.interest_item_code()
    orchestrator = InvoiceMutationOrchestrator(
        ctx.client,
        account_code=ctx.account_code,
        reference_prefix=ctx.reference_prefix,
        supplemental_due_days=ctx.supplemental_due_days,
        item_code=item_code,
    )
    due_date = add_days(ctx.as_of, ctx.monthly_due_days)
    target = await orchestrator.get_or_create_interest_invoice(
        config.contact_id,
        config.contact_name,
        RUNNING_PERIOD,
        ctx.as_of,
        due_date,
        config.currency_code,
    )
    logger.info(f"Interest invoice: {target.invoice_number}", extra={"is_new": target.is_new})

    outcome = await orchestrator.apply_change(
        target,
        build_line_items(results, config, ctx.account_code, item_code=item_code),
        net_change,
        ChangeRequest(
            contact_id=config.contact_id,
            contact_name=config.contact_name,
            period_key=RUNNING_PERIOD,
            as_of=ctx.as_of,
            invoice_date=ctx.as_of,
            due_date=due_date,
            currency_code=config.currency_code,
        ),
    )
    record_outcome(changed, by_id, config, ctx, outcome)
    settle_paid_invoices(results, by_id, config, ctx)

    summary.interest_invoice_id = outcome.invoice_id
    summary.interest_invoice_number = outcome.invoice_number
    summary.mutation = outcome.kind
    if outcome.credit_note:
        summary.credit_note_id = outcome.credit_note.id
        summary.credit_note_number = outcome.credit_note.number
    if outcome.supplemental_invoice:
        summary.additional_invoice_id = outcome.supplemental_invoice.id
        summary.additional_invoice_number = outcome.supplemental_invoice.number
    return summary


def record_outcome(
    changed: List[ReconciliationResult],
    by_id: Dict[str, SourceInvoice],
    config: InterestConfig,
    ctx: RunContext,
    outcome: MutationOutcome,
) -> None:
    """Write ledger entries pointing at whatever document now carries each charge"""
    for result in changed:
        invoice = by_id[result.source_invoice_id]
        if outcome.kind == MutationKind.CREDIT_NOTE and result.delta < 0:
            record_result(
                result, invoice, config, ctx, outcome.invoice_id, outcome.invoice_number,
                credit_note_id=outcome.credit_note.id,
                credit_note_number=outcome.credit_note.number,
            )
        elif outcome.kind == MutationKind.SUPPLEMENTAL_INVOICE and result.delta > 0:
            record_result(
                result, invoice, config, ctx,
                outcome.supplemental_invoice.id,
                outcome.supplemental_invoice.number,
                action=ReconcileAction.ADDITIONAL_CHARGE,
            )
        else:
            record_result(result, invoice, config, ctx, outcome.invoice_id, outcome.invoice_number)


def settle_paid_invoices(
    results: List[ReconciliationResult],
    by_id: Dict[str, SourceInvoice],
    config: InterestConfig,
    ctx: RunContext,
) -> None:
    """Mark every cleanly reconciled, paid-off invoice settled at its final charge"""
    for result in results:
        invoice = by_id.get(result.source_invoice_id)
        if invoice is not None and not result.error and is_settled(invoice):
            mark_settled(invoice, config, ctx)
