"""Data access layer for interest configs, the interest ledger and Xero tokens"""

from datetime import datetime
from decimal import Decimal
from typing import Callable, Dict, List, Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from xero_interest.domain.models import InterestConfig, InterestLedgerEntry, ReconcileAction, ReconcileReason
from xero_interest.infrastructure.database.models import (
    InterestConfigRecord,
    InterestLedgerRecord,
    InterestSettlementRecord,
    XeroTokenRecord,
)
from xero_interest.infrastructure.database.session import session_scope
from xero_interest.utils.money import ZERO, round_money, to_decimal


def _to_entry(row: InterestLedgerRecord) -> InterestLedgerEntry:
    return InterestLedgerEntry(
        id=row.id,
        source_invoice_id=row.source_invoice_id,
        source_invoice_number=row.source_invoice_number,
        interest_invoice_id=row.interest_invoice_id,
        interest_invoice_number=row.interest_invoice_number,
        charge_period=row.charge_period,
        action=ReconcileAction(row.action),
        previous_amount=to_decimal(row.previous_amount),
        new_amount=to_decimal(row.new_amount),
        delta=to_decimal(row.delta),
        reason=ReconcileReason(row.reason),
        source_due_date=row.source_due_date,
        source_amount_due=to_decimal(row.source_amount_due),
        days_overdue=row.days_overdue,
        rate=to_decimal(row.rate),
        contact_id=row.contact_id,
        contact_name=row.contact_name,
        credit_note_id=row.credit_note_id,
        credit_note_number=row.credit_note_number,
        notes=row.notes,
        created=row.created,
    )


def _to_config(row: InterestConfigRecord) -> InterestConfig:
    return InterestConfig(
        id=row.id,
        contact_id=row.contact_id,
        contact_name=row.contact_name,
        annual_rate=to_decimal(row.annual_rate),
        min_days_overdue=row.min_days_overdue,
        min_charge_amount=to_decimal(row.min_charge_amount),
        currency_code=row.currency_code,
        is_active=row.is_active,
        last_run_date=row.last_run_date,
        last_invoice_id=row.last_invoice_id,
        notes=row.notes,
    )


class LedgerRepository:
    """Repository for the append-only interest ledger"""

    def __init__(self, db: Session):
        self.db = db

    def create_entry(self, entry: InterestLedgerEntry) -> int:
        """Append an entry; the caller owns the commit"""
        row = InterestLedgerRecord(
            source_invoice_id=entry.source_invoice_id,
            source_invoice_number=entry.source_invoice_number,
            interest_invoice_id=entry.interest_invoice_id,
            interest_invoice_number=entry.interest_invoice_number,
            charge_period=entry.charge_period,
            action=entry.action.value,
            previous_amount=round_money(entry.previous_amount),
            new_amount=round_money(entry.new_amount),
            delta=round_money(entry.delta),
            reason=entry.reason.value,
            source_due_date=entry.source_due_date,
            source_amount_due=round_money(entry.source_amount_due),
            days_overdue=entry.days_overdue,
            rate=to_decimal(entry.rate),
            contact_id=entry.contact_id,
            contact_name=entry.contact_name,
            credit_note_id=entry.credit_note_id,
            credit_note_number=entry.credit_note_number,
            notes=entry.notes,
        )
        self.db.add(row)
        self.db.flush()  # Get ID without committing
        return row.id

    def _for_invoice(self, source_invoice_id: str, charge_period: Optional[str]):
        query = self.db.query(InterestLedgerRecord).filter(InterestLedgerRecord.source_invoice_id == source_invoice_id)
        if charge_period is not None:
            query = query.filter(InterestLedgerRecord.charge_period == charge_period)
        return query

    def get_latest_entry_for_invoice(
        self, source_invoice_id: str, charge_period: Optional[str] = None
    ) -> Optional[InterestLedgerEntry]:
        """Most recent entry (created, then id, descending)"""
        row = (
            self._for_invoice(source_invoice_id, charge_period)
            .order_by(InterestLedgerRecord.created.desc(), InterestLedgerRecord.id.desc())
            .first()
        )
        return _to_entry(row) if row else None

    def sum_deltas_for_invoice(self, source_invoice_id: str, charge_period: Optional[str] = None) -> Decimal:
        """What is currently charged for the invoice (all periods unless one is given)"""
        query = self.db.query(func.coalesce(func.sum(InterestLedgerRecord.delta), 0)).filter(
            InterestLedgerRecord.source_invoice_id == source_invoice_id
        )
        if charge_period is not None:
            query = query.filter(InterestLedgerRecord.charge_period == charge_period)
        return round_money(query.scalar())

    def list_entries_for_contact(self, contact_id: str, limit: int = 100) -> List[InterestLedgerEntry]:
        """Fetch recent ledger history for a client"""
        rows = (
            self.db.query(InterestLedgerRecord)
            .filter(InterestLedgerRecord.contact_id == contact_id)
            .order_by(InterestLedgerRecord.created.desc(), InterestLedgerRecord.id.desc())
            .limit(limit)
            .all()
        )
        return [_to_entry(row) for row in rows]

    def open_source_invoice_ids(self, contact_id: str, charge_period: Optional[str] = None) -> List[str]:
        """Source invoices whose deltas still sum to a non-zero charge"""
        query = self.db.query(
            InterestLedgerRecord.source_invoice_id,
            func.sum(InterestLedgerRecord.delta),
        ).filter(InterestLedgerRecord.contact_id == contact_id)
        if charge_period is not None:
            query = query.filter(InterestLedgerRecord.charge_period == charge_period)
        rows = query.group_by(InterestLedgerRecord.source_invoice_id).all()
        return sorted(source_id for source_id, total in rows if round_money(total) != ZERO)

    def settled_charges(self, contact_id: str) -> Dict[str, Decimal]:
        """Settled source invoices and the charge standing when each was marked"""
        rows = (
            self.db.query(InterestSettlementRecord.source_invoice_id, InterestSettlementRecord.charged_total)
            .filter(InterestSettlementRecord.contact_id == contact_id)
            .all()
        )
        return {source_id: round_money(total) for source_id, total in rows}

    def mark_settled(self, source_invoice_id: str, contact_id: str, charged_total: Decimal) -> None:
        """Record that the source invoice is paid off with this much interest standing"""
        row = (
            self.db.query(InterestSettlementRecord)
            .filter(InterestSettlementRecord.source_invoice_id == source_invoice_id)
            .first()
        )
        if row is None:
            row = InterestSettlementRecord(source_invoice_id=source_invoice_id, contact_id=contact_id)
            self.db.add(row)
        row.charged_total = round_money(charged_total)
        self.db.flush()


class ConfigRepository:
    """Repository for per-client interest configs"""

    def __init__(self, db: Session):
        self.db = db

    def get_active_configs(self) -> List[InterestConfig]:
        rows = (
            self.db.query(InterestConfigRecord)
            .filter(InterestConfigRecord.is_active.is_(True))
            .order_by(InterestConfigRecord.contact_name)
            .all()
        )
        return [_to_config(row) for row in rows]

    def get_config_by_contact_id(self, contact_id: str) -> Optional[InterestConfig]:
        row = self.db.query(InterestConfigRecord).filter(InterestConfigRecord.contact_id == contact_id).first()
        return _to_config(row) if row else None

    def update_config_last_run(self, config_id: int, last_run_date: datetime, last_invoice_id: Optional[str]) -> None:
        row = self.db.get(InterestConfigRecord, config_id)
        if row is None:
            return
        row.last_run_date = last_run_date
        row.last_invoice_id = last_invoice_id
        self.db.flush()

    def create_config(
        self,
        contact_id: str,
        contact_name: str,
        annual_rate: Decimal,
        min_days_overdue: int = 30,
        min_charge_amount: Decimal = Decimal("1.00"),
        currency_code: Optional[str] = None,
        is_active: bool = True,
        notes: Optional[str] = None,
    ) -> InterestConfig:
        """Persist a new client config"""
        row = InterestConfigRecord(
            contact_id=contact_id,
            contact_name=contact_name,
            annual_rate=to_decimal(annual_rate),
            min_days_overdue=min_days_overdue,
            min_charge_amount=to_decimal(min_charge_amount),
            currency_code=currency_code,
            is_active=is_active,
            notes=notes,
        )
        self.db.add(row)
        self.db.flush()
        return _to_config(row)


class XeroTokenRepository:
    """Repository for the rotating Xero refresh token"""

    def __init__(self, db: Session):
        self.db = db

    def get_refresh_token(self, tenant_id: str) -> Optional[str]:
        row = self.db.query(XeroTokenRecord).filter(XeroTokenRecord.tenant_id == tenant_id).first()
        return row.refresh_token if row else None

    def save_refresh_token(self, tenant_id: str, refresh_token: str) -> None:
        row = self.db.query(XeroTokenRecord).filter(XeroTokenRecord.tenant_id == tenant_id).first()
        if row is None:
            row = XeroTokenRecord(tenant_id=tenant_id, refresh_token=refresh_token)
            self.db.add(row)
        else:
            row.refresh_token = refresh_token
        self.db.flush()


class DatabaseTokenStore:
    """
    Refresh-token store for XeroClient backed by the xero_tokens table.

    Each load or save runs in its own short session so a rotated token is
    committed immediately, independent of the request that triggered it.
    """

    def __init__(self, session_factory: Callable[[], Session]):
        self.session_factory = session_factory

    def load(self, tenant_id: str) -> Optional[str]:
        with session_scope(self.session_factory) as db:
            return XeroTokenRepository(db).get_refresh_token(tenant_id)

    def save(self, tenant_id: str, refresh_token: str) -> None:
        with session_scope(self.session_factory) as db:
            XeroTokenRepository(db).save_refresh_token(tenant_id, refresh_token)
