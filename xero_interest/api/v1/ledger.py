"""GET /v1/ledger - Fetch a client's interest ledger history"""

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from xero_interest.api.v1.schemas import LedgerResponse, LedgerEntrySchema
from xero_interest.infrastructure.database.session import get_db
from xero_interest.infrastructure.database.repositories import LedgerRepository

router = APIRouter()


@router.get("/ledger", response_model=LedgerResponse)
def get_ledger_history(
    contact_id: str = Query(..., description="Xero ContactID"),
    limit: int = Query(100, ge=1, le=1000),
    db: Session = Depends(get_db),
):
    """
    Retrieve recent ledger entries for a client, newest first.

    Returns:
        Every reconciliation action with its before/after amounts and delta
    """
    ledger_repo = LedgerRepository(db)
    entries = ledger_repo.list_entries_for_contact(contact_id, limit=limit)
    return LedgerResponse(contact_id=contact_id, entries=[LedgerEntrySchema.from_entry(e) for e in entries])
