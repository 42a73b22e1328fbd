"""Reminder horizon builder - materializes upcoming check-in reminders"""

import logging
import threading
import time
from datetime import timedelta
from typing import List, Optional

from sqlalchemy.orm import Session

from commitments_engine.config import settings
from commitments_engine.domain.models import BatchReport, RecordOutcome, ReminderEvent, ReminderType
from commitments_engine.infrastructure.database.repositories import CommitmentRepository, ReminderEventRepository
from commitments_engine.infrastructure.observability.logging import log_batch_report
from commitments_engine.infrastructure.observability.metrics import horizon_events_counter, record_batch
from commitments_engine.utils.clock import Clock

logger = logging.getLogger(__name__)

JOB_NAME = "reminder_horizon_builder"


class ReminderHorizonBuilder:
    """
    Creates one pending check-in reminder per occurrence inside [now, now + horizon).

    Re-running never duplicates events: a slot is identified by the commitment
    and its occurrence instant, which deferrals do not change. Active commitments
    are read in pages of batch_size; each page is committed on its own.
    """

    def __init__(
        self,
        db: Session,
        clock: Clock,
        horizon: Optional[timedelta] = None,
        max_events_per_commitment: Optional[int] = None,
        batch_size: Optional[int] = None,
    ):
        self.db = db
        self.clock = clock
        self.horizon = horizon or timedelta(days=settings.horizon_days)
        self.max_events_per_commitment = max_events_per_commitment or settings.horizon_max_events_per_commitment
        self.batch_size = batch_size or settings.horizon_batch_size

        self.commitments = CommitmentRepository(db)
        self.reminders = ReminderEventRepository(db)

    def build(self, cancel_event: Optional[threading.Event] = None) -> BatchReport:
        start_time = time.time()
        now = self.clock.now()
        horizon_end = now + self.horizon
        report = BatchReport(job=JOB_NAME)

        record_unreadable = report.recorder(RecordOutcome.ERROR, "load")
        offset = 0
        while not report.cancelled:
            unreadable_before = report.count(RecordOutcome.ERROR, "load")
            page = self.commitments.list_active(limit=self.batch_size, offset=offset, on_error=record_unreadable)
            # Unreadable rows still occupy their place in the page
            fetched = len(page) + report.count(RecordOutcome.ERROR, "load") - unreadable_before
            if not fetched:
                break
            offset += fetched

            existing = self.reminders.existing_slots(
                (c.id for c in page), ReminderType.CHECKIN_DUE, now, horizon_end
            )
            created: List[ReminderEvent] = []

            for commitment in page:
                if cancel_event is not None and cancel_event.is_set():
                    report.cancelled = True
                    break
                try:
                    until = min(horizon_end, commitment.deadline_utc)
                    occurrences = commitment.recurrence.preview_occurrences(
                        now, until, self.max_events_per_commitment
                    )
                    new_events = [
                        ReminderEvent(
                            commitment_id=commitment.id,
                            occurrence_utc=occurrence,
                            scheduled_for_utc=occurrence,
                            type=ReminderType.CHECKIN_DUE,
                        )
                        for occurrence in occurrences
                        if (commitment.id, occurrence) not in existing
                    ]
                except Exception as e:
                    logger.exception(
                        "Failed to compute reminders",
                        extra={"commitment_id": str(commitment.id), "job": JOB_NAME},
                    )
                    report.add(commitment.id, RecordOutcome.ERROR, "materialize", str(e))
                    continue

                existing.update((commitment.id, event.occurrence_utc) for event in new_events)
                created.extend(new_events)
                if new_events:
                    report.add(commitment.id, RecordOutcome.SUCCESS, "materialize", f"{len(new_events)} created")
                else:
                    report.add(commitment.id, RecordOutcome.SKIPPED, "materialize", "up to date")

            if created:
                self.reminders.add_all(created)
                self.db.commit()
                horizon_events_counter.inc(len(created))

            if fetched < self.batch_size:
                break

        duration = time.time() - start_time
        record_batch(report, duration)
        log_batch_report(report, duration * 1000)
        return report
