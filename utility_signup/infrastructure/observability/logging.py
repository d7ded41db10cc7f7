"""Structured JSON logging for production observability"""

import logging
import sys
from datetime import datetime, timezone
from typing import Any, Dict, Optional
from pythonjsonlogger import jsonlogger

from utility_signup.config import settings


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


def log_transition(contract_id: int, from_status: str, to_status: str, reason: Optional[str] = None) -> None:
    """Log a contract status change"""
    logging.info(
        "Contract status changed",
        extra={
            "contract_id": contract_id,
            "step": "status_transition",
            "from_status": from_status,
            "to_status": to_status,
            "reason": reason,
        },
    )


def log_sweep_outcome(checked: int, skipped_fresh: int, better_deal_found: int, failed: int, duration_ms: float) -> None:
    """Log the summary of one deal re-evaluation pass"""
    logging.info(
        "Deal sweep completed",
        extra={
            "step": "deal_sweep_complete",
            "checked": checked,
            "skipped_fresh": skipped_fresh,
            "better_deal_found": better_deal_found,
            "failed": failed,
            "duration_ms": duration_ms,
        },
    )
