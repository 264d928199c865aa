"""Interfaces the reconciliation core needs from its collaborators"""

from datetime import date, datetime
from decimal import Decimal
from typing import Dict, List, Optional, Protocol

from xero_interest.domain.models import (
    CreatedDocument,
    InterestConfig,
    InterestLedgerEntry,
    InvoiceMutability,
    LineItem,
    SourceInvoice,
)


class AccountingClient(Protocol):
    """Accounting platform operations (Xero in production)"""

    async def get_overdue_invoices(
        self, contact_id: str, min_days_overdue: int, currency_code: Optional[str] = None
    ) -> List[SourceInvoice]:
        """Overdue invoices WITH embedded payments and credit notes"""
        ...

    async def get_invoice(self, invoice_id: str) -> Optional[SourceInvoice]: ...

    async def find_invoices_by_reference(self, contact_id: str, reference: str) -> List[SourceInvoice]:
        """Non-voided, non-deleted invoices for the contact carrying this reference"""
        ...

    async def can_modify_invoice(self, invoice_id: str) -> InvoiceMutability: ...

    async def move_to_draft(self, invoice_id: str) -> None: ...

    async def update_line_items(self, invoice_id: str, line_items: List[LineItem]) -> None: ...

    async def update_dates(self, invoice_id: str, invoice_date: date, due_date: date) -> None: ...

    async def authorize(self, invoice_id: str) -> None: ...

    async def create_invoice(
        self,
        contact_id: str,
        invoice_date: date,
        due_date: date,
        reference: str,
        line_items: List[LineItem],
        status: str = "AUTHORISED",
        currency_code: Optional[str] = None,
    ) -> CreatedDocument: ...

    async def create_credit_note(
        self,
        contact_id: str,
        credit_date: date,
        reference: str,
        line_items: List[LineItem],
        currency_code: Optional[str] = None,
    ) -> CreatedDocument: ...

    async def is_voided(self, invoice_id: str) -> bool: ...

    async def add_invoice_history_note(self, invoice_id: str, note: str) -> None: ...

    async def add_credit_note_history_note(self, credit_note_id: str, note: str) -> None: ...

    async def get_or_create_interest_item(self, account_code: str) -> Optional[str]:
        """Item code for interest lines, or None when items are unavailable"""
        ...


class LedgerStore(Protocol):
    """Append-only interest ledger"""

    def create_entry(self, entry: InterestLedgerEntry) -> int: ...

    def get_latest_entry_for_invoice(
        self, source_invoice_id: str, charge_period: Optional[str] = None
    ) -> Optional[InterestLedgerEntry]: ...

    def sum_deltas_for_invoice(self, source_invoice_id: str, charge_period: Optional[str] = None) -> Decimal: ...

    def list_entries_for_contact(self, contact_id: str, limit: int = 100) -> List[InterestLedgerEntry]: ...

    def open_source_invoice_ids(self, contact_id: str, charge_period: Optional[str] = None) -> List[str]:
        """Source invoices whose deltas still sum to a non-zero charge"""
        ...

    def settled_charges(self, contact_id: str) -> Dict[str, Decimal]:
        """Paid-off source invoices and the charge standing when each was marked settled"""
        ...

    def mark_settled(self, source_invoice_id: str, contact_id: str, charged_total: Decimal) -> None: ...


class ConfigStore(Protocol):
    """Per-client interest configuration"""

    def get_active_configs(self) -> List[InterestConfig]: ...

    def get_config_by_contact_id(self, contact_id: str) -> Optional[InterestConfig]: ...

    def update_config_last_run(self, config_id: int, last_run_date: datetime, last_invoice_id: Optional[str]) -> None: ...
