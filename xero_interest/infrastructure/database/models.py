"""SQLAlchemy ORM models for interest configs and the append-only interest ledger"""

from sqlalchemy import Boolean, Column, Date, DateTime, Index, Integer, Numeric, String, Text
from sqlalchemy.orm import declarative_base
from sqlalchemy.sql import func

Base = declarative_base()


class InterestConfigRecord(Base):
    """Per-client interest settings"""

    __tablename__ = "interest_configs"

    id = Column(Integer, primary_key=True, autoincrement=True)
    contact_id = Column(String(64), nullable=False, unique=True, index=True)
    contact_name = Column(Text, nullable=False)
    annual_rate = Column(Numeric(7, 4), nullable=False)
    min_days_overdue = Column(Integer, nullable=False, default=30)
    min_charge_amount = Column(Numeric(18, 2), nullable=False, default=1)
    currency_code = Column(String(3), nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)
    last_run_date = Column(DateTime(timezone=True), nullable=True)
    last_invoice_id = Column(String(64), nullable=True)
    notes = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now())


class InterestLedgerRecord(Base):
    """One reconciliation action; rows are never updated or deleted"""

    __tablename__ = "interest_ledger"
    __table_args__ = (
        Index("ix_interest_ledger_source_period", "source_invoice_id", "charge_period"),
        Index("ix_interest_ledger_contact_created", "contact_id", "created"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    source_invoice_id = Column(String(64), nullable=False)
    source_invoice_number = Column(Text, nullable=False)
    interest_invoice_id = Column(String(64), nullable=False)
    interest_invoice_number = Column(Text, nullable=True)
    charge_period = Column(String(16), nullable=False, default="running")
    action = Column(String(32), nullable=False)
    previous_amount = Column(Numeric(18, 2), nullable=False)
    new_amount = Column(Numeric(18, 2), nullable=False)
    delta = Column(Numeric(18, 2), nullable=False)
    reason = Column(String(32), nullable=False)
    source_due_date = Column(Date, nullable=False)
    source_amount_due = Column(Numeric(18, 2), nullable=False)
    days_overdue = Column(Integer, nullable=False)
    rate = Column(Numeric(7, 4), nullable=False)
    contact_id = Column(String(64), nullable=False)
    contact_name = Column(Text, nullable=False)
    credit_note_id = Column(String(64), nullable=True)
    credit_note_number = Column(Text, nullable=True)
    notes = Column(Text, nullable=True)
    created = Column(DateTime(timezone=True), nullable=False, server_default=func.now())


class XeroTokenRecord(Base):
    """Latest refresh token per tenant; Xero invalidates the old one on every refresh"""

    __tablename__ = "xero_tokens"

    id = Column(Integer, primary_key=True, autoincrement=True)
    tenant_id = Column(String(64), nullable=False, unique=True)
    refresh_token = Column(Text, nullable=False)
    updated_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now())


class InterestSettlementRecord(Base):
    """Source invoice paid off in Xero, with the charge standing when it was seen settled"""

    __tablename__ = "interest_settlements"

    id = Column(Integer, primary_key=True, autoincrement=True)
    source_invoice_id = Column(String(64), nullable=False, unique=True)
    contact_id = Column(String(64), nullable=False, index=True)
    charged_total = Column(Numeric(18, 2), nullable=False)
    settled_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now())
