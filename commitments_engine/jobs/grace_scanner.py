"""Grace expiry scanner - moves commitments past their deadline through the lifecycle"""

import logging
import threading
import time
from datetime import timedelta
from typing import List, Optional

from sqlalchemy.orm import Session

from commitments_engine.config import settings
from commitments_engine.domain.commitment import Commitment
from commitments_engine.domain.models import (
    BatchReport,
    CommitmentStatus,
    RecordOutcome,
    ReminderEvent,
    ReminderType,
)
from commitments_engine.infrastructure.database.repositories import (
    AuditLogRepository,
    CommitmentRepository,
    ReminderEventRepository,
)
from commitments_engine.infrastructure.observability.logging import log_batch_report, log_transition
from commitments_engine.infrastructure.observability.metrics import record_batch, transition_counter
from commitments_engine.utils.clock import Clock

logger = logging.getLogger(__name__)

JOB_NAME = "grace_expiry_scanner"


class GraceExpiryScanner:
    """
    Periodic sweep over commitments whose deadline or grace window has passed.

    Each run:
    1. Active commitments with deadline <= now become DecisionNeeded with
       grace_expires = deadline + grace window; a final-warning reminder is queued
       at grace_expires - final_warning_lead when that is still in the future.
    2. DecisionNeeded commitments whose grace has expired are failed.

    A stored row that cannot be loaded, or a transition that fails for one
    record, is reported as an error and the run continues.
    All changes are committed together at the end.
    """

    def __init__(
        self,
        db: Session,
        clock: Clock,
        grace_window: Optional[timedelta] = None,
        final_warning_lead: Optional[timedelta] = None,
        batch_size: Optional[int] = None,
    ):
        self.db = db
        self.clock = clock
        self.grace_window = grace_window or timedelta(minutes=settings.grace_window_minutes)
        self.final_warning_lead = final_warning_lead or timedelta(minutes=settings.final_warning_lead_minutes)
        self.batch_size = batch_size or settings.scanner_batch_size

        self.commitments = CommitmentRepository(db)
        self.reminders = ReminderEventRepository(db)
        self.audit = AuditLogRepository(db)

    def scan(self, cancel_event: Optional[threading.Event] = None) -> BatchReport:
        start_time = time.time()
        now = self.clock.now()
        report = BatchReport(job=JOB_NAME)
        changed: List[Commitment] = []
        warnings: List[ReminderEvent] = []

        for commitment in self.commitments.list_active_past_deadline(
            now, limit=self.batch_size, on_error=report.recorder(RecordOutcome.ERROR, "load")
        ):
            if cancel_event is not None and cancel_event.is_set():
                report.cancelled = True
                break
            if self._open_grace(commitment, now, report, warnings):
                changed.append(commitment)

        if not report.cancelled:
            for commitment in self.commitments.list_expired_grace(
                now, limit=self.batch_size, on_error=report.recorder(RecordOutcome.ERROR, "load")
            ):
                if cancel_event is not None and cancel_event.is_set():
                    report.cancelled = True
                    break
                if self._expire_grace(commitment, now, report):
                    changed.append(commitment)

        if changed or warnings:
            self.commitments.save_all(changed)
            self.reminders.add_all(warnings)
            self.db.commit()

        duration = time.time() - start_time
        record_batch(report, duration)
        log_batch_report(report, duration * 1000)
        return report

    def _open_grace(self, commitment: Commitment, now, report: BatchReport, warnings: List[ReminderEvent]) -> bool:
        try:
            commitment.transition_to_decision_needed(self.grace_window, now)
        except Exception as e:
            logger.exception(
                "Failed to transition commitment",
                extra={"commitment_id": str(commitment.id), "job": JOB_NAME},
            )
            report.add(commitment.id, RecordOutcome.ERROR, "decision_needed", str(e))
            return False

        final_warning_at = commitment.grace_expires_utc - self.final_warning_lead
        if final_warning_at > now:
            warnings.append(
                ReminderEvent(
                    commitment_id=commitment.id,
                    occurrence_utc=final_warning_at,
                    scheduled_for_utc=final_warning_at,
                    type=ReminderType.GRACE_FINAL_WARNING,
                )
            )

        self._record_transition(commitment, CommitmentStatus.ACTIVE, now, {
            "grace_expires_utc": commitment.grace_expires_utc.isoformat(),
        })
        report.add(commitment.id, RecordOutcome.SUCCESS, "decision_needed")
        return True

    def _expire_grace(self, commitment: Commitment, now, report: BatchReport) -> bool:
        try:
            commitment.fail(now)
        except Exception as e:
            logger.exception(
                "Failed to transition commitment",
                extra={"commitment_id": str(commitment.id), "job": JOB_NAME},
            )
            report.add(commitment.id, RecordOutcome.ERROR, "fail", str(e))
            return False

        self._record_transition(commitment, CommitmentStatus.DECISION_NEEDED, now, {"reason": "grace_expired"})
        report.add(commitment.id, RecordOutcome.SUCCESS, "fail")
        return True

    def _record_transition(self, commitment: Commitment, from_status: CommitmentStatus, now, data: dict) -> None:
        self.audit.record(
            commitment_id=commitment.id,
            user_id=commitment.user_id,
            event_type=f"commitment.{commitment.status.value}",
            now=now,
            data=data,
        )
        transition_counter.labels(to_status=commitment.status.value).inc()
        log_transition(commitment.id, commitment.user_id, from_status, commitment.status, JOB_NAME)
