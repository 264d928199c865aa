"""Prometheus metrics for monitoring reconciliation actions, invoice mutations, and Xero API health"""

from prometheus_client import Counter, Histogram

from xero_interest.domain.models import MonthlyReconciliationSummary, ReconciliationSummary

# Reconciliation metrics
reconciliation_action_counter = Counter(
    "xint_reconciliation_actions_total",
    "Reconciliation outcomes per source invoice",
    ["action"],  # Created | Updated | Credited | AdditionalCharge | NoChange
)

ledger_entries_counter = Counter(
    "xint_ledger_entries_total",
    "Interest ledger entries written",
)

invoice_mutation_counter = Counter(
    "xint_invoice_mutations_total",
    "Changes applied to interest invoices",
    ["outcome"],  # updated | replaced | credit_note | supplemental_invoice | none
)

voided_interest_invoice_counter = Counter(
    "xint_voided_interest_invoices_total",
    "Interest invoices found voided outside the service",
)

# Xero API metrics
xero_latency_histogram = Histogram(
    "xero_api_latency_seconds",
    "Xero API response time",
    ["operation"],
    buckets=[0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0],
)

xero_failure_counter = Counter(
    "xero_api_failures_total",
    "Failed Xero API calls",
    ["status"],  # HTTP status, or "timeout" / "transport"
)

# Service health
request_duration_histogram = Histogram(
    "http_request_duration_seconds",
    "HTTP request latency",
    ["method", "endpoint", "status"],
)


def record_summary(summary: ReconciliationSummary) -> None:
    """Record per-invoice actions and the mutation applied for one running-mode run"""
    _record_results(summary.results, summary.dry_run)
    if summary.mutation is not None and not summary.dry_run:
        invoice_mutation_counter.labels(outcome=summary.mutation.value).inc()


def record_monthly_summary(summary: MonthlyReconciliationSummary) -> None:
    _record_results(summary.detailed_results, summary.dry_run)
    if summary.dry_run:
        return
    for month in summary.monthly_results:
        if month.mutation is not None:
            invoice_mutation_counter.labels(outcome=month.mutation.value).inc()


def _record_results(results, dry_run: bool) -> None:
    for result in results:
        reconciliation_action_counter.labels(action=result.action.value).inc()
        if result.void_reset:
            voided_interest_invoice_counter.inc()
        if dry_run:
            continue
        if result.changed:
            ledger_entries_counter.inc()
        if result.void_reset and result.ledger_total != 0:
            ledger_entries_counter.inc()
