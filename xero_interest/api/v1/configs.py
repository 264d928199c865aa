"""POST/GET /v1/configs - Administer client interest configs"""

from typing import List
from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from xero_interest.api.v1.schemas import ConfigRequest, ConfigResponse
from xero_interest.infrastructure.database.session import get_db
from xero_interest.infrastructure.database.repositories import ConfigRepository

router = APIRouter()


@router.post("/configs", response_model=ConfigResponse, status_code=201)
def create_config(request_body: ConfigRequest, db: Session = Depends(get_db)):
    """Register a client for interest accrual"""
    config_repo = ConfigRepository(db)
    if config_repo.get_config_by_contact_id(request_body.contact_id) is not None:
        raise HTTPException(status_code=409, detail=f"Config already exists for contact {request_body.contact_id}")

    config = config_repo.create_config(
        contact_id=request_body.contact_id,
        contact_name=request_body.contact_name,
        annual_rate=request_body.annual_rate,
        min_days_overdue=request_body.min_days_overdue,
        min_charge_amount=request_body.min_charge_amount,
        currency_code=request_body.currency_code,
        is_active=request_body.is_active,
        notes=request_body.notes,
    )
    db.commit()
    return ConfigResponse.from_config(config)


@router.get("/configs", response_model=List[ConfigResponse])
def list_active_configs(db: Session = Depends(get_db)):
    """Active client configs, by contact name"""
    return [ConfigResponse.from_config(c) for c in ConfigRepository(db).get_active_configs()]
