"""Structured JSON logging for production observability"""

import logging
import sys
from datetime import datetime, timezone
from typing import Any, Dict
from pythonjsonlogger import jsonlogger

from billing_gateway.config import settings


class CustomJsonFormatter(jsonlogger.JsonFormatter):
    """Custom JSON formatter with timestamp and service metadata"""

    def add_fields(self, log_record: Dict[str, Any], record: logging.LogRecord, message_dict: Dict[str, Any]) -> None:
        super().add_fields(log_record, record, message_dict)
        log_record["timestamp"] = datetime.now(timezone.utc).isoformat()
        log_record["level"] = record.levelname
        log_record["service"] = settings.service_name


def setup_logging(level: str = "INFO") -> None:
    """Configure structured JSON logging"""
    logger = logging.getLogger()
    logger.setLevel(level)

    # Remove existing handlers
    logger.handlers.clear()

    handler = logging.StreamHandler(sys.stdout)
    formatter = CustomJsonFormatter(
        "%(timestamp)s %(level)s %(name)s %(message)s"
    )
    handler.setFormatter(formatter)
    logger.addHandler(handler)


def log_notification_outcome(
    installment_id: str,
    invoice_id: str,
    outcome: str,
    duration_ms: float,
    reason: str | None = None,
) -> None:
    """Log the terminal state of one overdue notification for analysis"""
    logging.info(
        "Overdue notification handled",
        extra={
            "installment_id": installment_id,
            "invoice_id": invoice_id,
            "step": "notification_complete",
            "outcome": outcome,
            "reason": reason,
            "duration_ms": duration_ms,
        },
    )


def log_billing_mutation(operation: str, user_id: str, invoice_id: str, **fields: Any) -> None:
    """Log one committed aggregate mutation"""
    logging.info(
        f"Billing mutation committed: {operation}",
        extra={"operation": operation, "user_id": user_id, "invoice_id": invoice_id, **fields},
    )
