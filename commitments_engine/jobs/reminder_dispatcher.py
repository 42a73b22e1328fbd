"""Quiet-hours reminder dispatcher - sends due reminders or defers them past quiet hours"""

import logging
import threading
import time
import uuid
from datetime import datetime
from typing import Dict, Optional, Tuple

from sqlalchemy.orm import Session

from commitments_engine.config import settings
from commitments_engine.domain.commitment import Commitment
from commitments_engine.domain.models import (
    BatchReport,
    CommitmentStatus,
    QuietHours,
    RecordOutcome,
    ReminderEvent,
    ReminderStatus,
    ReminderType,
)
from commitments_engine.domain.quiet_hours import quiet_deferral_target, resolve_quiet_hours
from commitments_engine.infrastructure.database.repositories import (
    CommitmentRepository,
    QuietHoursRepository,
    ReminderEventRepository,
)
from commitments_engine.infrastructure.notifications import NotificationSender
from commitments_engine.infrastructure.observability.logging import log_batch_report
from commitments_engine.infrastructure.observability.metrics import record_batch, reminder_counter
from commitments_engine.utils.clock import Clock

logger = logging.getLogger(__name__)

JOB_NAME = "reminder_dispatcher"


def build_message(reminder: ReminderEvent, commitment: Commitment) -> Tuple[str, str]:
    """Subject and body for a reminder"""
    if reminder.type == ReminderType.GRACE_FINAL_WARNING:
        expires = commitment.grace_expires_utc.isoformat() if commitment.grace_expires_utc else "soon"
        return (
            "Final warning: decision needed",
            f"Your commitment '{commitment.goal}' will be marked failed at {expires} unless you complete it.",
        )
    return (
        "Time to check in",
        f"Reminder for commitment {commitment.goal}",
    )


class ReminderDispatcher:
    """
    Delivers pending reminders whose scheduled time has come.

    Per reminder:
    - owning commitment missing, a check-in reminder for a commitment that is
      no longer active, or a final warning for a commitment no longer awaiting
      a decision: mark skipped
    - now inside the owner's quiet window and fewer than max_deferrals deferrals:
      move scheduled_for to the window's end and count the deferral
    - otherwise send and mark sent
    - delivery or loading failed: count the attempt and keep it pending; after
      max_attempts failures mark it skipped so it stops occupying the batch

    Quiet hours are evaluated in the window's own time zone. Users without a stored
    window get the default hours in their commitment's time zone.
    """

    def __init__(
        self,
        db: Session,
        sender: NotificationSender,
        clock: Clock,
        max_deferrals: Optional[int] = None,
        batch_size: Optional[int] = None,
        default_quiet_start_hour: Optional[int] = None,
        default_quiet_end_hour: Optional[int] = None,
        channel: Optional[str] = None,
        max_attempts: Optional[int] = None,
    ):
        self.db = db
        self.sender = sender
        self.clock = clock
        self.max_deferrals = settings.max_quiet_deferrals if max_deferrals is None else max_deferrals
        self.batch_size = batch_size or settings.dispatcher_batch_size
        self.default_quiet_start_hour = (
            settings.default_quiet_start_hour if default_quiet_start_hour is None else default_quiet_start_hour
        )
        self.default_quiet_end_hour = (
            settings.default_quiet_end_hour if default_quiet_end_hour is None else default_quiet_end_hour
        )
        self.channel = channel or settings.notification_channel
        self.max_attempts = max_attempts or settings.max_send_attempts

        self.reminders = ReminderEventRepository(db)
        self.commitments = CommitmentRepository(db)
        self.quiet_hours = QuietHoursRepository(db)

    def dispatch(self, cancel_event: Optional[threading.Event] = None) -> BatchReport:
        start_time = time.time()
        now = self.clock.now()
        report = BatchReport(job=JOB_NAME)

        due = self.reminders.list_due(now, limit=self.batch_size)
        if due:
            unreadable: Dict[uuid.UUID, Exception] = {}
            commitments = self.commitments.get_many((r.commitment_id for r in due), on_error=unreadable.__setitem__)
            windows = self.quiet_hours.get_for_users(c.user_id for c in commitments.values())

            for reminder in due:
                if cancel_event is not None and cancel_event.is_set():
                    report.cancelled = True
                    break
                if reminder.commitment_id in unreadable:
                    self._fail(reminder, now, report, unreadable[reminder.commitment_id])
                    continue
                try:
                    self._process(reminder, commitments.get(reminder.commitment_id), windows, now, report)
                except Exception as e:
                    logger.exception(
                        "Failed to dispatch reminder",
                        extra={"reminder_id": str(reminder.id), "job": JOB_NAME},
                    )
                    self._fail(reminder, now, report, e)

            self.reminders.save_all(due)
            self.db.commit()

        duration = time.time() - start_time
        record_batch(report, duration)
        log_batch_report(report, duration * 1000)
        return report

    def _process(
        self,
        reminder: ReminderEvent,
        commitment: Optional[Commitment],
        windows: Dict,
        now: datetime,
        report: BatchReport,
    ) -> None:
        if commitment is None:
            self._skip(reminder, now, report, "commitment missing")
            return
        # Final warnings only make sense while the decision is still open
        expected_status = (
            CommitmentStatus.DECISION_NEEDED
            if reminder.type == ReminderType.GRACE_FINAL_WARNING
            else CommitmentStatus.ACTIVE
        )
        if commitment.status != expected_status:
            self._skip(reminder, now, report, f"commitment {commitment.status.value}")
            return

        window: QuietHours = resolve_quiet_hours(
            windows.get(commitment.user_id),
            commitment.user_id,
            self.default_quiet_start_hour,
            self.default_quiet_end_hour,
            commitment.timezone,
        )
        deliver_at = quiet_deferral_target(now, window)

        if deliver_at is not None and reminder.deferral_count < self.max_deferrals:
            reminder.scheduled_for_utc = deliver_at
            reminder.deferral_count += 1
            reminder_counter.labels(outcome="deferred").inc()
            report.add(reminder.id, RecordOutcome.SUCCESS, "defer", deliver_at.isoformat())
            return

        subject, body = build_message(reminder, commitment)
        self.sender.send(commitment.user_id, self.channel, subject, body)
        reminder.status = ReminderStatus.SENT
        reminder.processed_at_utc = now
        reminder_counter.labels(outcome="sent").inc()
        report.add(reminder.id, RecordOutcome.SUCCESS, "send")

    @staticmethod
    def _skip(reminder: ReminderEvent, now: datetime, report: BatchReport, reason: str) -> None:
        reminder.status = ReminderStatus.SKIPPED
        reminder.processed_at_utc = now
        reminder_counter.labels(outcome="skipped").inc()
        report.add(reminder.id, RecordOutcome.SKIPPED, "skip", reason)

    def _fail(self, reminder: ReminderEvent, now: datetime, report: BatchReport, error: Exception) -> None:
        reminder.attempt_count += 1
        reminder_counter.labels(outcome="error").inc()
        detail = str(error)
        if reminder.attempt_count >= self.max_attempts:
            reminder.status = ReminderStatus.SKIPPED
            reminder.processed_at_utc = now
            detail = f"{detail} (gave up after {reminder.attempt_count} attempts)"
        report.add(reminder.id, RecordOutcome.ERROR, "send", detail)
