"""Structured JSON logging for background jobs"""

import logging
import sys
from datetime import datetime, timezone
from typing import Any, Dict

from pythonjsonlogger import jsonlogger

from commitments_engine.config import settings
from commitments_engine.domain.models import BatchReport, CommitmentStatus


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


def log_transition(commitment_id, user_id, from_status: CommitmentStatus, to_status: CommitmentStatus, job: str) -> None:
    """Log a lifecycle transition performed by a job"""
    logging.getLogger("commitments_engine.transitions").info(
        "Commitment transitioned",
        extra={
            "commitment_id": str(commitment_id),
            "user_id": str(user_id),
            "from_status": from_status.value,
            "to_status": to_status.value,
            "job": job,
        },
    )


def log_batch_report(report: BatchReport, duration_ms: float) -> None:
    """Log the summary of one job run"""
    logger = logging.getLogger("commitments_engine.jobs")
    errors = report.errors
    logger.log(
        logging.WARNING if errors else logging.INFO,
        "Batch completed",
        extra={
            "job": report.job,
            "step": "batch_complete",
            "processed": len(report.results),
            "succeeded": report.succeeded,
            "skipped": report.skipped,
            "errors": len(errors),
            "cancelled": report.cancelled,
            "duration_ms": duration_ms,
        },
    )
