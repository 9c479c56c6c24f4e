"""Structured JSON logging for production observability"""

import logging
import sys
from datetime import datetime, timezone
from typing import Any, Dict, Optional
from pythonjsonlogger import jsonlogger

from capping_gateway.config import settings


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

    # JSON handler for stdout
    handler = logging.StreamHandler(sys.stdout)
    formatter = CustomJsonFormatter(
        "%(timestamp)s %(level)s %(name)s %(message)s"
    )
    handler.setFormatter(formatter)
    logger.addHandler(handler)


def log_transaction(
    request_id: str,
    transaction_type: str,
    step: str,
    outcome: str,
    reason: Optional[str] = None,
    duration_ms: Optional[float] = None,
) -> None:
    """Log structured transaction lifecycle step for analysis"""
    logging.info(
        "Transaction %s",
        step,
        extra={
            "request_id": request_id,
            "transaction_type": transaction_type,
            "step": step,
            "outcome": outcome,
            "reason": reason,
            "duration_ms": duration_ms,
        },
    )


def log_policy_update(distributor_floor_cents: int, reseller_floor_cents: int) -> None:
    """Log capping policy replacement"""
    logging.info(
        "Capping policy updated",
        extra={
            "step": "policy_update",
            "distributor_floor_cents": distributor_floor_cents,
            "reseller_floor_cents": reseller_floor_cents,
        },
    )
