"""POST /v1/accrual/run and /v1/accrual/monthly - interest reconciliation endpoints"""

import time
import logging
from datetime import date
from fastapi import APIRouter, Depends, HTTPException, Request
from sqlalchemy.orm import Session

from xero_interest.api.v1.schemas import (
    AccrualRunRequest,
    AccrualRunResponse,
    ClientRunSchema,
    InvoiceResultSchema,
    MonthlyRunRequest,
    MonthlyRunResponse,
    MonthSchema,
)
from xero_interest.api.dependencies import build_run_context, get_request_id, get_xero_client
from xero_interest.infrastructure.database.session import get_db
from xero_interest.infrastructure.database.repositories import ConfigRepository
from xero_interest.domain.accrual import already_ran_on, run_accrual_for_all_clients, summarize_results
from xero_interest.domain.monthly import run_monthly_reconciliation
from xero_interest.domain.models import InterestConfig
from xero_interest.domain.ports import AccountingClient
from xero_interest.domain.exceptions import (
    AccountingAPIError,
    AccountingAuthError,
    ConfigNotFoundError,
    InactiveConfigError,
)
from xero_interest.infrastructure.observability.metrics import record_monthly_summary, record_summary
from xero_interest.infrastructure.observability.logging import log_reconciliation

router = APIRouter()


def load_active_config(repo: ConfigRepository, contact_id: str) -> InterestConfig:
    """
    Raises:
        ConfigNotFoundError: No config for the contact
        InactiveConfigError: Config exists but is switched off
    """
    config = repo.get_config_by_contact_id(contact_id)
    if config is None:
        raise ConfigNotFoundError(f"No interest config for contact {contact_id}")
    if not config.is_active:
        raise InactiveConfigError(f"Interest config for {config.contact_name} is inactive")
    return config


@router.post("/accrual/run", response_model=AccrualRunResponse)
async def run_accrual(
    request_body: AccrualRunRequest,
    request: Request,
    db: Session = Depends(get_db),
    xero_client: AccountingClient = Depends(get_xero_client),
):
    """
    Running-mode interest accrual for one client, or every active client.

    Flow:
    1. Load the client config(s)
    2. Reject a repeat live run for the same client on the same day unless forced
    3. Reconcile each client against its running interest invoice
    4. Record metrics and logs per client
    """
    start_time = time.time()
    request_id = get_request_id(request)
    as_of = request_body.as_of_date or date.today()
    config_repo = ConfigRepository(db)

    try:
        if request_body.contact_id:
            config = load_active_config(config_repo, request_body.contact_id)
            if not request_body.force and not request_body.dry_run and already_ran_on(config, as_of):
                raise HTTPException(
                    status_code=409,
                    detail=f"Already ran today for {config.contact_name} "
                    f"(last run {config.last_run_date.isoformat()}); pass force to run again",
                )
            configs = [config]
        else:
            configs = config_repo.get_active_configs()

        ctx = build_run_context(db, xero_client, as_of, request_body.dry_run)
        results = await run_accrual_for_all_clients(configs, ctx)

    except ConfigNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))

    except InactiveConfigError as e:
        raise HTTPException(status_code=400, detail=str(e))

    except AccountingAuthError as e:
        db.rollback()
        logging.error(f"Xero authentication failed: {e}", extra={"request_id": request_id})
        raise HTTPException(status_code=503, detail="Xero authorization required")

    duration_ms = (time.time() - start_time) * 1000
    clients = []
    for result in results:
        if result.summary is None:
            continue
        record_summary(result.summary)
        log_reconciliation(request_id, result.summary, duration_ms)
        clients.append(ClientRunSchema.from_summary(result.summary, result.errors))

    totals = summarize_results(results)
    return AccrualRunResponse(
        as_of_date=as_of,
        dry_run=request_body.dry_run,
        clients_processed=totals["clients_processed"],
        invoices_created=totals["invoices_created"],
        total_interest=totals["total_interest"],
        clients=clients,
        errors=totals["errors"],
    )


@router.post("/accrual/monthly", response_model=MonthlyRunResponse)
async def run_monthly_accrual(
    request_body: MonthlyRunRequest,
    request: Request,
    db: Session = Depends(get_db),
    xero_client: AccountingClient = Depends(get_xero_client),
):
    """
    Monthly-mode accrual for one client: one interest invoice per month,
    backfilled from the earliest overdue invoice.
    """
    request_id = get_request_id(request)
    as_of = request_body.as_of_date or date.today()
    config_repo = ConfigRepository(db)

    try:
        config = load_active_config(config_repo, request_body.contact_id)
        ctx = build_run_context(db, xero_client, as_of, request_body.dry_run)
        summary = await run_monthly_reconciliation(config, ctx)
        ctx.checkpoint()

    except ConfigNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))

    except InactiveConfigError as e:
        raise HTTPException(status_code=400, detail=str(e))

    except AccountingAuthError as e:
        db.rollback()
        logging.error(f"Xero authentication failed: {e}", extra={"request_id": request_id})
        raise HTTPException(status_code=503, detail="Xero authorization required")

    except AccountingAPIError as e:
        # Months already realized were committed at their checkpoint
        db.rollback()
        logging.error(f"Xero API error: {e}", extra={"request_id": request_id})
        raise HTTPException(status_code=502, detail="Xero API error")

    record_monthly_summary(summary)
    logging.info(
        "Monthly reconciliation completed",
        extra={
            "request_id": request_id,
            "contact_id": summary.contact_id,
            "months": len(summary.monthly_results),
            "total_interest": str(summary.total_interest),
            "dry_run": summary.dry_run,
        },
    )

    return MonthlyRunResponse(
        contact_id=summary.contact_id,
        contact_name=summary.contact_name,
        as_of_date=as_of,
        dry_run=summary.dry_run,
        total_interest=summary.total_interest,
        months=[MonthSchema.from_result(m) for m in summary.monthly_results],
        results=[InvoiceResultSchema.from_result(r) for r in summary.detailed_results],
        errors=summary.errors,
    )
