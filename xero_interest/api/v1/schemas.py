"""Pydantic schemas for API request/response validation"""

from pydantic import BaseModel, Field
from datetime import date, datetime
from decimal import Decimal
from typing import List, Optional

from xero_interest.domain.models import (
    InterestConfig,
    InterestLedgerEntry,
    MonthlyResult,
    ReconciliationResult,
    ReconciliationSummary,
)


class AccrualRunRequest(BaseModel):
    """Request body for POST /v1/accrual/run"""

    contact_id: Optional[str] = Field(None, min_length=1, description="Xero ContactID; omit to run every active client")
    as_of_date: Optional[date] = Field(None, description="Accrue as of this date (defaults to today)")
    dry_run: bool = False
    force: bool = Field(False, description="Run even if the client already ran today")


class MonthlyRunRequest(BaseModel):
    """Request body for POST /v1/accrual/monthly"""

    contact_id: str = Field(..., min_length=1, description="Xero ContactID")
    as_of_date: Optional[date] = None
    dry_run: bool = False


class InvoiceResultSchema(BaseModel):
    """Reconciliation outcome for one source invoice"""

    source_invoice_id: str
    source_invoice_number: str
    charge_period: str
    should_owe: Decimal
    previously_charged: Decimal
    delta: Decimal
    action: str
    reason: str
    days_overdue: int
    suppressed: bool = False
    error: Optional[str] = None

    @classmethod
    def from_result(cls, result: ReconciliationResult) -> "InvoiceResultSchema":
        return cls(
            source_invoice_id=result.source_invoice_id,
            source_invoice_number=result.source_invoice_number,
            charge_period=result.charge_period,
            should_owe=result.should_owe,
            previously_charged=result.previously_charged,
            delta=result.delta,
            action=result.action.value,
            reason=result.reason.value,
            days_overdue=result.days_overdue,
            suppressed=result.suppressed,
            error=result.error,
        )


class ClientRunSchema(BaseModel):
    """Running-mode outcome for one client"""

    contact_id: str
    contact_name: str
    total_should_owe: Decimal
    total_previously_charged: Decimal
    net_change: Decimal
    interest_invoice_id: Optional[str] = None
    interest_invoice_number: Optional[str] = None
    mutation: Optional[str] = None
    credit_note_number: Optional[str] = None
    additional_invoice_number: Optional[str] = None
    results: List[InvoiceResultSchema]
    errors: List[str] = []

    @classmethod
    def from_summary(cls, summary: ReconciliationSummary, errors: List[str]) -> "ClientRunSchema":
        return cls(
            contact_id=summary.contact_id,
            contact_name=summary.contact_name,
            total_should_owe=summary.total_should_owe,
            total_previously_charged=summary.total_previously_charged,
            net_change=summary.net_change,
            interest_invoice_id=summary.interest_invoice_id,
            interest_invoice_number=summary.interest_invoice_number,
            mutation=summary.mutation.value if summary.mutation else None,
            credit_note_number=summary.credit_note_number,
            additional_invoice_number=summary.additional_invoice_number,
            results=[InvoiceResultSchema.from_result(r) for r in summary.results],
            errors=errors,
        )


class AccrualRunResponse(BaseModel):
    """Response for POST /v1/accrual/run"""

    as_of_date: date
    dry_run: bool
    clients_processed: int
    invoices_created: int
    total_interest: Decimal
    clients: List[ClientRunSchema]
    errors: List[str]


class MonthSchema(BaseModel):
    """One month's interest invoice"""

    charge_month: str
    invoice_id: str
    invoice_number: str
    total_interest: Decimal
    line_items: int
    is_new: bool
    net_change: Decimal
    mutation: Optional[str] = None

    @classmethod
    def from_result(cls, month: MonthlyResult) -> "MonthSchema":
        return cls(
            charge_month=month.charge_month,
            invoice_id=month.invoice_id,
            invoice_number=month.invoice_number,
            total_interest=month.total_interest,
            line_items=month.line_items,
            is_new=month.is_new,
            net_change=month.net_change,
            mutation=month.mutation.value if month.mutation else None,
        )


class MonthlyRunResponse(BaseModel):
    """Response for POST /v1/accrual/monthly"""

    contact_id: str
    contact_name: str
    as_of_date: date
    dry_run: bool
    total_interest: Decimal
    months: List[MonthSchema]
    results: List[InvoiceResultSchema]
    errors: List[str]


class LedgerEntrySchema(BaseModel):
    """Single ledger entry in history"""

    id: int
    source_invoice_id: str
    source_invoice_number: str
    interest_invoice_id: str
    interest_invoice_number: Optional[str] = None
    charge_period: str
    action: str
    reason: str
    previous_amount: Decimal
    new_amount: Decimal
    delta: Decimal
    days_overdue: int
    credit_note_number: Optional[str] = None
    notes: Optional[str] = None
    created: Optional[datetime] = None

    @classmethod
    def from_entry(cls, entry: InterestLedgerEntry) -> "LedgerEntrySchema":
        return cls(
            id=entry.id,
            source_invoice_id=entry.source_invoice_id,
            source_invoice_number=entry.source_invoice_number,
            interest_invoice_id=entry.interest_invoice_id,
            interest_invoice_number=entry.interest_invoice_number,
            charge_period=entry.charge_period,
            action=entry.action.value,
            reason=entry.reason.value,
            previous_amount=entry.previous_amount,
            new_amount=entry.new_amount,
            delta=entry.delta,
            days_overdue=entry.days_overdue,
            credit_note_number=entry.credit_note_number,
            notes=entry.notes,
            created=entry.created,
        )


class LedgerResponse(BaseModel):
    """Response for GET /v1/ledger"""

    contact_id: str
    entries: List[LedgerEntrySchema]


class ConfigRequest(BaseModel):
    """Request body for POST /v1/configs"""

    contact_id: str = Field(..., min_length=1, description="Xero ContactID")
    contact_name: str = Field(..., min_length=1)
    annual_rate: Decimal = Field(..., gt=0, le=100, description="Percent per year, 24 means 24%")
    min_days_overdue: int = Field(30, ge=0)
    min_charge_amount: Decimal = Field(Decimal("1.00"), ge=0)
    currency_code: Optional[str] = Field(None, min_length=3, max_length=3)
    is_active: bool = True
    notes: Optional[str] = None


class ConfigResponse(BaseModel):
    """Client interest config"""

    id: int
    contact_id: str
    contact_name: str
    annual_rate: Decimal
    min_days_overdue: int
    min_charge_amount: Decimal
    currency_code: Optional[str] = None
    is_active: bool
    last_run_date: Optional[datetime] = None
    last_invoice_id: Optional[str] = None

    @classmethod
    def from_config(cls, config: InterestConfig) -> "ConfigResponse":
        return cls(
            id=config.id,
            contact_id=config.contact_id,
            contact_name=config.contact_name,
            annual_rate=config.annual_rate,
            min_days_overdue=config.min_days_overdue,
            min_charge_amount=config.min_charge_amount,
            currency_code=config.currency_code,
            is_active=config.is_active,
            last_run_date=config.last_run_date,
            last_invoice_id=config.last_invoice_id,
        )
