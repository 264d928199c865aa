"""Domain models - pure Python dataclasses representing business entities"""

from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import List, Optional

# Charge-period key used by running (consolidated) mode; monthly mode uses YYYY-MM
RUNNING_PERIOD = "running"


class InvoiceStatus(str, Enum):
    """Xero invoice lifecycle states"""

    DRAFT = "DRAFT"
    SUBMITTED = "SUBMITTED"
    AUTHORISED = "AUTHORISED"
    PAID = "PAID"
    VOIDED = "VOIDED"
    DELETED = "DELETED"


class ReconcileAction(str, Enum):
    """Corrective action decided for one source invoice"""

    CREATED = "Created"
    UPDATED = "Updated"
    CREDITED = "Credited"
    ADDITIONAL_CHARGE = "AdditionalCharge"
    NO_CHANGE = "NoChange"  # never written to the ledger


class ReconcileReason(str, Enum):
    """Why the charged amount moved (audit trail)"""

    INITIAL = "Initial"
    DUE_DATE_CHANGED = "DueDateChanged"
    PARTIAL_PAYMENT = "PartialPayment"
    SOURCE_VOIDED = "SourceVoided"
    PRINCIPAL_CHANGED = "PrincipalChanged"
    DAILY_ACCRUAL = "DailyAccrual"
    MANUAL_ADJUSTMENT = "ManualAdjustment"


class MutationKind(str, Enum):
    """What the orchestrator ended up doing to the interest invoice"""

    UPDATED = "updated"
    REPLACED = "replaced"
    CREDIT_NOTE = "credit_note"
    SUPPLEMENTAL_INVOICE = "supplemental_invoice"
    NONE = "none"


@dataclass
class InterestConfig:
    """Per-client interest settings"""

    id: int
    contact_id: str
    contact_name: str
    annual_rate: Decimal  # percent, 24 means 24%/yr
    min_days_overdue: int = 30  # grace period
    min_charge_amount: Decimal = Decimal("1.00")
    currency_code: Optional[str] = None
    is_active: bool = True
    last_run_date: Optional[datetime] = None
    last_invoice_id: Optional[str] = None
    notes: Optional[str] = None


@dataclass(frozen=True)
class BalanceEvent:
    """Payment or applied credit note that reduced an invoice's balance"""

    date: date
    amount: Decimal
    kind: str  # "payment" | "credit_note"
    reference_id: Optional[str] = None


@dataclass
class SourceInvoice:
    """Overdue receivable invoice from the accounting platform (read-only)"""

    invoice_id: str
    invoice_number: str
    status: InvoiceStatus
    due_date: date
    total: Decimal
    amount_due: Decimal
    amount_paid: Decimal = Decimal("0")
    currency_code: Optional[str] = None
    issue_date: Optional[date] = None
    contact_id: Optional[str] = None
    reference: Optional[str] = None
    payments: List[BalanceEvent] = field(default_factory=list)
    credit_notes: List[BalanceEvent] = field(default_factory=list)

    @property
    def is_voided(self) -> bool:
        return self.status in (InvoiceStatus.VOIDED, InvoiceStatus.DELETED)

    def balance_events(self) -> List[BalanceEvent]:
        """Payments and credit notes merged, oldest first"""
        return sorted(self.payments + self.credit_notes, key=lambda e: e.date)


@dataclass
class InterestLedgerEntry:
    """Append-only record of one reconciliation action"""

    source_invoice_id: str
    source_invoice_number: str
    interest_invoice_id: str
    charge_period: str
    action: ReconcileAction
    previous_amount: Decimal
    new_amount: Decimal
    delta: Decimal
    reason: ReconcileReason
    source_due_date: date
    source_amount_due: Decimal
    days_overdue: int
    rate: Decimal
    contact_id: str
    contact_name: str
    interest_invoice_number: Optional[str] = None
    credit_note_id: Optional[str] = None
    credit_note_number: Optional[str] = None
    notes: Optional[str] = None
    id: Optional[int] = None
    created: Optional[datetime] = None


@dataclass
class BalancePeriod:
    """Span during which an invoice's outstanding balance was constant"""

    start_date: date
    end_date: date
    balance: Decimal
    days_in_period: int
    days_after_grace: int
    interest: Decimal


@dataclass
class TimelineInterestResult:
    periods: List[BalancePeriod]
    total_interest: Decimal
    total_days_overdue: int
    effective_days_charged: int


@dataclass
class LineItem:
    """Invoice line as sent to the accounting platform"""

    description: str
    unit_amount: Decimal
    account_code: str
    quantity: Decimal = Decimal("1")
    tax_type: str = "NONE"
    item_code: Optional[str] = None


@dataclass
class InterestInvoiceRef:
    invoice_id: str
    invoice_number: str
    is_new: bool = False


@dataclass
class InvoiceMutability:
    """Whether an interest invoice can still be edited in place"""

    can_modify: bool
    status: str
    is_paid: bool
    has_allocations: bool = False


@dataclass
class CreatedDocument:
    """Identifiers of an invoice or credit note the platform just created"""

    id: str
    number: str


@dataclass
class MutationOutcome:
    """Committed identifiers after applying a change"""

    kind: MutationKind
    invoice_id: str
    invoice_number: str
    credit_note: Optional[CreatedDocument] = None
    supplemental_invoice: Optional[CreatedDocument] = None
    error: Optional[str] = None


@dataclass
class ReconciliationResult:
    """Outcome of reconciling one source invoice for one charge period"""

    source_invoice_id: str
    source_invoice_number: str
    charge_period: str
    should_owe: Decimal = Decimal("0.00")
    previously_charged: Decimal = Decimal("0.00")
    delta: Decimal = Decimal("0.00")
    action: ReconcileAction = ReconcileAction.NO_CHANGE
    reason: ReconcileReason = ReconcileReason.INITIAL
    days_overdue: int = 0
    interest_invoice_id: Optional[str] = None
    credit_note_id: Optional[str] = None
    suppressed: bool = False
    voided_interest_invoice_id: Optional[str] = None  # set when the charged invoice was voided out of band
    ledger_total: Decimal = Decimal("0.00")  # raw ledger sum before any void reset
    voided_interest_invoice_number: Optional[str] = None
    error: Optional[str] = None

    @property
    def changed(self) -> bool:
        return self.action != ReconcileAction.NO_CHANGE

    @property
    def void_reset(self) -> bool:
        return self.voided_interest_invoice_id is not None


@dataclass
class ReconciliationSummary:
    """Running-mode result for one client"""

    contact_id: str
    contact_name: str
    results: List[ReconciliationResult]
    total_should_owe: Decimal
    total_previously_charged: Decimal
    net_change: Decimal
    dry_run: bool
    interest_invoice_id: Optional[str] = None
    interest_invoice_number: Optional[str] = None
    mutation: Optional[MutationKind] = None
    credit_note_id: Optional[str] = None
    credit_note_number: Optional[str] = None
    additional_invoice_id: Optional[str] = None
    additional_invoice_number: Optional[str] = None

    @property
    def errors(self) -> List[str]:
        return [f"{r.source_invoice_number}: {r.error}" for r in self.results if r.error]


@dataclass
class MonthlyResult:
    """One month's interest invoice"""

    charge_month: str
    invoice_id: str
    invoice_number: str
    total_interest: Decimal
    line_items: int
    is_new: bool
    net_change: Decimal = Decimal("0.00")
    mutation: Optional[MutationKind] = None


@dataclass
class MonthlyReconciliationSummary:
    contact_id: str
    contact_name: str
    monthly_results: List[MonthlyResult]
    detailed_results: List[ReconciliationResult]
    total_interest: Decimal
    dry_run: bool
    errors: List[str] = field(default_factory=list)


@dataclass
class AccrualResult:
    """Batch-level outcome for one client config"""

    config: InterestConfig
    summary: Optional[ReconciliationSummary] = None
    errors: List[str] = field(default_factory=list)

    @property
    def total_interest(self) -> Decimal:
        return self.summary.total_should_owe if self.summary else Decimal("0.00")

    @property
    def invoice_created(self) -> bool:
        if not self.summary:
            return False
        return any(r.action == ReconcileAction.CREATED for r in self.summary.results)
