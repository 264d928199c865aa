"""Structured JSON logging for production observability"""

import logging
import sys
from datetime import datetime
from typing import Any, Dict
from pythonjsonlogger import jsonlogger

from xero_interest.config import settings
from xero_interest.domain.models import ReconciliationSummary


class CustomJsonFormatter(jsonlogger.JsonFormatter):
    """Custom JSON formatter with timestamp and service metadata"""

    def add_fields(self, log_record: Dict[str, Any], record: logging.LogRecord, message_dict: Dict[str, Any]) -> None:
        super().add_fields(log_record, record, message_dict)
        log_record["timestamp"] = datetime.utcnow().isoformat()
        log_record["level"] = record.levelname
        log_record["service"] = settings.service_name


def setup_logging(level: str = "INFO") -> None:
    """Configure structured JSON logging"""
    logger = logging.getLogger()
    logger.setLevel(level)

    # Remove existing handlers
    logger.handlers.clear()

    # JSON handler for stdout
    handler = logging.StreamHandler(sys.stdout)
    formatter = CustomJsonFormatter(
        "%(timestamp)s %(level)s %(name)s %(message)s"
    )
    handler.setFormatter(formatter)
    logger.addHandler(handler)


def log_reconciliation(request_id: str, summary: ReconciliationSummary, duration_ms: float) -> None:
    """Log structured per-client reconciliation outcome for analysis"""
    logging.info(
        "Reconciliation completed",
        extra={
            "request_id": request_id,
            "contact_id": summary.contact_id,
            "step": "reconciliation_complete",
            "dry_run": summary.dry_run,
            "total_should_owe": str(summary.total_should_owe),
            "total_previously_charged": str(summary.total_previously_charged),
            "net_change": str(summary.net_change),
            "interest_invoice": summary.interest_invoice_number,
            "mutation": summary.mutation.value if summary.mutation else None,
            "errors": len(summary.errors),
            "duration_ms": duration_ms,
        },
    )
