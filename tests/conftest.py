"""Pytest fixtures for testing"""

import pytest
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import Callable, Dict, Generator, List, Optional
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, Session
from xero_interest.api.dependencies import get_xero_client
from xero_interest.api.main import create_app
from xero_interest.domain.context import RunContext
from xero_interest.domain.exceptions import AccountingAuthError, InvoiceMutationError
from xero_interest.domain.models import (
    BalanceEvent,
    CreatedDocument,
    InterestConfig,
    InvoiceMutability,
    InvoiceStatus,
    LineItem,
    SourceInvoice,
)
from xero_interest.infrastructure.database.models import Base
from xero_interest.infrastructure.database.repositories import ConfigRepository, DatabaseTokenStore, LedgerRepository
from xero_interest.infrastructure.database.session import get_db


# Test database
TEST_DATABASE_URL = "sqlite:///./test.db"
engine = create_engine(TEST_DATABASE_URL, connect_args={"check_same_thread": False})
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


@dataclass
class FakeDocument:
    """Interest invoice or credit note held by the fake platform"""

    id: str
    number: str
    contact_id: str
    reference: str
    status: str
    date: date
    due_date: Optional[date]
    line_items: List[LineItem]
    seq: int
    amount_paid: Decimal = Decimal("0.00")
    allocated_credit_notes: int = 0
    currency_code: Optional[str] = None
    history: List[str] = field(default_factory=list)

    @property
    def total(self) -> Decimal:
        return sum((item.unit_amount * item.quantity for item in self.line_items), Decimal("0.00"))


class FakeAccountingClient:
    """In-memory accounting platform implementing the AccountingClient port"""

    def __init__(self):
        self.sources: Dict[str, SourceInvoice] = {}
        self.invoices: Dict[str, FakeDocument] = {}
        self.credit_notes: Dict[str, FakeDocument] = {}
        self.calls: List[tuple] = []
        self.fail_updates = False
        self.auth_failure = False
        self.item_code: Optional[str] = "INTEREST"
        self._seq = 0

    def _next(self) -> int:
        self._seq += 1
        return self._seq

    def _check_auth(self) -> None:
        if self.auth_failure:
            raise AccountingAuthError("token expired", status_code=401)

    # Test helpers

    def add_source_invoice(
        self,
        invoice_id: str,
        total: Decimal,
        due_date: date,
        contact_id: str = "C1",
        payments: Optional[List[tuple]] = None,
        status: InvoiceStatus = InvoiceStatus.AUTHORISED,
        amount_due: Optional[Decimal] = None,
    ) -> SourceInvoice:
        events = [
            BalanceEvent(date=paid_on, amount=Decimal(str(amount)), kind="payment")
            for paid_on, amount in (payments or [])
        ]
        paid = sum((e.amount for e in events), Decimal("0"))
        invoice = SourceInvoice(
            invoice_id=invoice_id,
            invoice_number=f"INV-{invoice_id}",
            status=status,
            due_date=due_date,
            total=Decimal(str(total)),
            amount_due=Decimal(str(total)) - paid if amount_due is None else Decimal(str(amount_due)),
            amount_paid=paid,
            contact_id=contact_id,
            payments=events,
        )
        self.sources[invoice_id] = invoice
        return invoice

    def interest_invoices_for(self, contact_id: str) -> List[FakeDocument]:
        return [doc for doc in self.invoices.values() if doc.contact_id == contact_id]

    def pay_source(self, invoice_id: str, paid_on: date) -> None:
        """Settle a source invoice in full; it leaves the overdue query"""
        source = self.sources[invoice_id]
        payment = BalanceEvent(date=paid_on, amount=source.amount_due, kind="payment")
        source.payments = source.payments + [payment]
        source.amount_paid = source.total
        source.amount_due = Decimal("0.00")
        source.status = InvoiceStatus.PAID

    def mark_paid(self, invoice_id: str) -> None:
        doc = self.invoices[invoice_id]
        doc.status = InvoiceStatus.PAID.value
        doc.amount_paid = doc.total

    def void(self, invoice_id: str) -> None:
        self.invoices[invoice_id].status = InvoiceStatus.VOIDED.value

    def call_names(self) -> List[str]:
        return [call[0] for call in self.calls]

    # AccountingClient port

    async def get_overdue_invoices(self, contact_id, min_days_overdue, currency_code=None):
        self._check_auth()
        self.calls.append(("get_overdue_invoices", contact_id))
        return [
            invoice
            for invoice in self.sources.values()
            if invoice.contact_id == contact_id
            and invoice.status == InvoiceStatus.AUTHORISED
            and invoice.amount_due > 0
        ]

    async def get_invoice(self, invoice_id):
        self._check_auth()
        self.calls.append(("get_invoice", invoice_id))
        if invoice_id in self.sources:
            return self.sources[invoice_id]
        doc = self.invoices.get(invoice_id)
        if doc is None:
            return None
        return SourceInvoice(
            invoice_id=doc.id,
            invoice_number=doc.number,
            status=InvoiceStatus(doc.status),
            due_date=doc.due_date or doc.date,
            total=doc.total,
            amount_due=doc.total - doc.amount_paid,
            amount_paid=doc.amount_paid,
            contact_id=doc.contact_id,
            reference=doc.reference,
            credit_notes=[
                BalanceEvent(date=doc.date, amount=Decimal("0"), kind="credit_note")
                for _ in range(doc.allocated_credit_notes)
            ],
        )

    async def find_invoices_by_reference(self, contact_id, reference):
        self._check_auth()
        self.calls.append(("find_invoices_by_reference", reference))
        matches = [
            doc
            for doc in self.invoices.values()
            if doc.contact_id == contact_id
            and doc.reference == reference
            and doc.status not in (InvoiceStatus.VOIDED.value, InvoiceStatus.DELETED.value)
        ]
        matches.sort(key=lambda doc: doc.seq, reverse=True)
        return [await self.get_invoice(doc.id) for doc in matches]

    async def can_modify_invoice(self, invoice_id):
        self.calls.append(("can_modify_invoice", invoice_id))
        doc = self.invoices.get(invoice_id)
        if doc is None:
            return InvoiceMutability(can_modify=False, status="NOT_FOUND", is_paid=False)
        is_paid = doc.status == InvoiceStatus.PAID.value or doc.amount_paid > 0
        has_allocations = doc.allocated_credit_notes > 0
        voided = doc.status in (InvoiceStatus.VOIDED.value, InvoiceStatus.DELETED.value)
        return InvoiceMutability(
            can_modify=not is_paid and not has_allocations and not voided,
            status=doc.status,
            is_paid=is_paid,
            has_allocations=has_allocations,
        )

    def _mutate(self, name: str, invoice_id: str) -> FakeDocument:
        self.calls.append((name, invoice_id))
        if self.fail_updates:
            raise InvoiceMutationError("Invoice is locked", status_code=400)
        return self.invoices[invoice_id]

    async def move_to_draft(self, invoice_id):
        self._mutate("move_to_draft", invoice_id).status = InvoiceStatus.DRAFT.value

    async def update_line_items(self, invoice_id, line_items):
        self._mutate("update_line_items", invoice_id).line_items = list(line_items)

    async def update_dates(self, invoice_id, invoice_date, due_date):
        doc = self._mutate("update_dates", invoice_id)
        doc.date = invoice_date
        doc.due_date = due_date

    async def authorize(self, invoice_id):
        self._mutate("authorize", invoice_id).status = InvoiceStatus.AUTHORISED.value

    async def create_invoice(
        self, contact_id, invoice_date, due_date, reference, line_items, status="AUTHORISED", currency_code=None
    ):
        self._check_auth()
        seq = self._next()
        doc = FakeDocument(
            id=f"int-{seq}",
            number=f"INT-{1000 + seq}",
            contact_id=contact_id,
            reference=reference,
            status=status,
            date=invoice_date,
            due_date=due_date,
            line_items=list(line_items),
            seq=seq,
            currency_code=currency_code,
        )
        self.invoices[doc.id] = doc
        self.calls.append(("create_invoice", doc.id))
        return CreatedDocument(id=doc.id, number=doc.number)

    async def create_credit_note(self, contact_id, credit_date, reference, line_items, currency_code=None):
        seq = self._next()
        doc = FakeDocument(
            id=f"cn-{seq}",
            number=f"CN-{1000 + seq}",
            contact_id=contact_id,
            reference=reference,
            status=InvoiceStatus.AUTHORISED.value,
            date=credit_date,
            due_date=None,
            line_items=list(line_items),
            seq=seq,
            currency_code=currency_code,
        )
        self.credit_notes[doc.id] = doc
        self.calls.append(("create_credit_note", doc.id))
        return CreatedDocument(id=doc.id, number=doc.number)

    async def is_voided(self, invoice_id):
        self._check_auth()
        self.calls.append(("is_voided", invoice_id))
        doc = self.invoices.get(invoice_id)
        return doc is None or doc.status in (InvoiceStatus.VOIDED.value, InvoiceStatus.DELETED.value)

    async def add_invoice_history_note(self, invoice_id, note):
        self.invoices[invoice_id].history.append(note)

    async def add_credit_note_history_note(self, credit_note_id, note):
        self.credit_notes[credit_note_id].history.append(note)

    async def get_or_create_interest_item(self, account_code):
        self.calls.append(("get_or_create_interest_item", account_code))
        return self.item_code


@pytest.fixture
def db() -> Generator[Session, None, None]:
    """Create test database and session"""
    Base.metadata.create_all(bind=engine)
    db = TestingSessionLocal()
    try:
        yield db
    finally:
        db.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture
def fake_xero() -> FakeAccountingClient:
    return FakeAccountingClient()


@pytest.fixture
def ledger(db: Session) -> LedgerRepository:
    return LedgerRepository(db)


@pytest.fixture
def token_store(db: Session) -> DatabaseTokenStore:
    """Refresh-token store on the test database (tables created by the db fixture)"""
    return DatabaseTokenStore(TestingSessionLocal)


@pytest.fixture
def config(db: Session) -> InterestConfig:
    """Acme: 24% p.a., 30 day grace, $1 minimum"""
    config = ConfigRepository(db).create_config(
        contact_id="C1",
        contact_name="Acme Pty Ltd",
        annual_rate=Decimal("24"),
        min_days_overdue=30,
    )
    db.commit()
    return config


@pytest.fixture
def make_context(db: Session, fake_xero: FakeAccountingClient) -> Callable[..., RunContext]:
    """Factory for run contexts backed by the SQLite ledger and the fake platform"""

    def _make(as_of: date, dry_run: bool = False) -> RunContext:
        return RunContext(
            client=fake_xero,
            ledger=LedgerRepository(db),
            configs=ConfigRepository(db),
            as_of=as_of,
            dry_run=dry_run,
            commit=db.commit,
        )

    return _make


@pytest.fixture
def client(db: Session, fake_xero: FakeAccountingClient) -> TestClient:
    """Create FastAPI test client with test database and fake Xero"""
    app = create_app()

    def override_get_db():
        try:
            yield db
        finally:
            pass

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_xero_client] = lambda: fake_xero
    return TestClient(app)
