"""Structured JSON logging for production observability"""

import logging
import sys
from typing import Any, Dict, Optional
from pythonjsonlogger import jsonlogger
from zimcrowd_gateway.config import settings
from zimcrowd_gateway.utils.date_utils import utcnow


class CustomJsonFormatter(jsonlogger.JsonFormatter):
    """Custom JSON formatter with timestamp and service metadata"""

    def add_fields(self, log_record: Dict[str, Any], record: logging.LogRecord, message_dict: Dict[str, Any]) -> None:
        super().add_fields(log_record, record, message_dict)
        log_record["timestamp"] = utcnow().isoformat()
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


def log_settlement(
    operation: str,
    reference_id: str,
    amount_cents: int,
    payer_id: Optional[str] = None,
    payee_id: Optional[str] = None,
    fee_cents: int = 0,
) -> None:
    """Log a completed money movement for reconciliation and audit"""
    logging.getLogger("zimcrowd_gateway.settlement").info(
        "Settlement completed",
        extra={
            "step": "settlement_complete",
            "operation": operation,
            "reference_id": reference_id,
            "amount_cents": amount_cents,
            "fee_cents": fee_cents,
            "payer_id": payer_id,
            "payee_id": payee_id,
        },
    )
