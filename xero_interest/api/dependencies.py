"""Dependency injection for FastAPI endpoints"""

from datetime import date
from functools import lru_cache

from fastapi import Request
from sqlalchemy.orm import Session

from xero_interest.config import settings
from xero_interest.domain.context import RunContext
from xero_interest.domain.ports import AccountingClient
from xero_interest.infrastructure.clients.xero import XeroClient
from xero_interest.infrastructure.database.repositories import ConfigRepository, DatabaseTokenStore, LedgerRepository
from xero_interest.infrastructure.database.session import SessionLocal


def get_request_id(request: Request) -> str:
    """Extract request ID from request state"""
    return getattr(request.state, "request_id", "unknown")


@lru_cache
def get_xero_client() -> AccountingClient:
    """
    One Xero client for the whole process.

    Its access token and rate limiter carry across requests; the rotated
    refresh token is also persisted so a restart picks up the latest one.
    """
    return XeroClient(token_store=DatabaseTokenStore(SessionLocal))


def build_run_context(db: Session, client: AccountingClient, as_of: date, dry_run: bool) -> RunContext:
    """Per-request run context; ledger writes are committed at each checkpoint"""
    return RunContext(
        client=client,
        ledger=LedgerRepository(db),
        configs=ConfigRepository(db),
        as_of=as_of,
        dry_run=dry_run,
        account_code=settings.interest_account_code,
        reference_prefix=settings.interest_reference_prefix,
        supplemental_due_days=settings.supplemental_due_days,
        monthly_due_days=settings.monthly_due_days,
        commit=db.commit,
    )
