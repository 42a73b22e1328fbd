"""Data access layer mapping domain entities to ORM rows"""

import logging
import uuid
from datetime import datetime
from typing import Any, Callable, Dict, Iterable, List, Optional, Set, Tuple

from sqlalchemy.orm import Session, selectinload

from commitments_engine.domain.commitment import Commitment
from commitments_engine.domain.exceptions import CommitmentNotFoundError, DomainException
from commitments_engine.domain.models import (
    CheckIn,
    CommitmentStatus,
    QuietHours,
    ReminderEvent,
    ReminderStatus,
    ReminderType,
)
from commitments_engine.domain.recurrence import pattern_from_dict
from commitments_engine.infrastructure.database.models import (
    AuditLogRecord,
    CheckInRecord,
    CommitmentRecord,
    QuietHoursRecord,
    ReminderEventRecord,
)

logger = logging.getLogger(__name__)

# Called with (commitment id, error) for stored rows that cannot be rebuilt
RowErrorHandler = Callable[[uuid.UUID, Exception], None]

_COMMITMENT_FIELDS = (
    "user_id",
    "goal",
    "stake_amount_minor",
    "currency",
    "deadline_utc",
    "timezone",
    "grace_expires_utc",
    "created_at_utc",
    "updated_at_utc",
    "editing_locked_at_utc",
    "cancelled_at_utc",
    "completed_at_utc",
    "failed_at_utc",
    "deleted_at_utc",
)


def _commitment_to_domain(row: CommitmentRecord) -> Commitment:
    return Commitment(
        id=row.id,
        recurrence=pattern_from_dict(row.schedule),
        status=CommitmentStatus(row.status),
        check_ins=[
            CheckIn(
                id=ci.id,
                commitment_id=row.id,
                occurred_at_utc=ci.occurred_at_utc,
                note=ci.note,
                photo_url=ci.photo_url,
            )
            for ci in row.check_ins
        ],
        **{name: getattr(row, name) for name in _COMMITMENT_FIELDS},
    )


def _reminder_to_domain(row: ReminderEventRecord) -> ReminderEvent:
    return ReminderEvent(
        id=row.id,
        commitment_id=row.commitment_id,
        occurrence_utc=row.occurrence_utc,
        scheduled_for_utc=row.scheduled_for_utc,
        type=ReminderType(row.type),
        status=ReminderStatus(row.status),
        deferral_count=row.deferral_count,
        attempt_count=row.attempt_count,
        processed_at_utc=row.processed_at_utc,
    )


class CommitmentRepository:
    """Repository for commitments and their check-ins"""

    def __init__(self, db: Session):
        self.db = db

    def _query(self):
        return self.db.query(CommitmentRecord).options(selectinload(CommitmentRecord.check_ins))

    @staticmethod
    def _to_domain(rows: Iterable[CommitmentRecord], on_error: Optional[RowErrorHandler]) -> List[Commitment]:
        """
        Rebuild rows one at a time.

        A row whose stored schedule or status can no longer be parsed is logged,
        handed to on_error and left out of the result.
        """
        commitments: List[Commitment] = []
        for row in rows:
            try:
                commitments.append(_commitment_to_domain(row))
            except (DomainException, ValueError) as e:
                logger.warning(
                    f"Unreadable commitment row: {e}",
                    extra={"commitment_id": str(row.id)},
                )
                if on_error is not None:
                    on_error(row.id, e)
        return commitments

    def add(self, commitment: Commitment) -> Commitment:
        """Persist a new commitment (flushed, not committed)"""
        row = CommitmentRecord(id=commitment.id)
        self._apply(row, commitment)
        self.db.add(row)
        self.db.flush()
        return commitment

    def get(self, commitment_id: uuid.UUID) -> Commitment:
        row = self._query().filter(CommitmentRecord.id == commitment_id).first()
        if row is None:
            raise CommitmentNotFoundError(f"Commitment {commitment_id} not found")
        return _commitment_to_domain(row)

    def get_many(
        self, commitment_ids: Iterable[uuid.UUID], on_error: Optional[RowErrorHandler] = None
    ) -> Dict[uuid.UUID, Commitment]:
        ids = list(set(commitment_ids))
        if not ids:
            return {}
        rows = self._query().filter(CommitmentRecord.id.in_(ids)).all()
        return {c.id: c for c in self._to_domain(rows, on_error)}

    def list_active_past_deadline(
        self, now: datetime, limit: int = 200, on_error: Optional[RowErrorHandler] = None
    ) -> List[Commitment]:
        rows = (
            self._query()
            .filter(
                CommitmentRecord.status == CommitmentStatus.ACTIVE.value,
                CommitmentRecord.deadline_utc <= now,
            )
            .order_by(CommitmentRecord.deadline_utc)
            .limit(limit)
            .all()
        )
        return self._to_domain(rows, on_error)

    def list_expired_grace(
        self, now: datetime, limit: int = 200, on_error: Optional[RowErrorHandler] = None
    ) -> List[Commitment]:
        rows = (
            self._query()
            .filter(
                CommitmentRecord.status == CommitmentStatus.DECISION_NEEDED.value,
                CommitmentRecord.grace_expires_utc.is_not(None),
                CommitmentRecord.grace_expires_utc <= now,
            )
            .order_by(CommitmentRecord.grace_expires_utc)
            .limit(limit)
            .all()
        )
        return self._to_domain(rows, on_error)

    def list_active(
        self, limit: int = 200, offset: int = 0, on_error: Optional[RowErrorHandler] = None
    ) -> List[Commitment]:
        rows = (
            self._query()
            .filter(CommitmentRecord.status == CommitmentStatus.ACTIVE.value)
            .order_by(CommitmentRecord.deadline_utc, CommitmentRecord.id)
            .offset(offset)
            .limit(limit)
            .all()
        )
        return self._to_domain(rows, on_error)

    def save_all(self, commitments: Iterable[Commitment]) -> None:
        """Write back state changes and append new check-ins"""
        for commitment in commitments:
            row = self.db.get(CommitmentRecord, commitment.id)
            if row is None:
                row = CommitmentRecord(id=commitment.id)
                self.db.add(row)
            self._apply(row, commitment)
        self.db.flush()

    @staticmethod
    def _apply(row: CommitmentRecord, commitment: Commitment) -> None:
        for name in _COMMITMENT_FIELDS:
            setattr(row, name, getattr(commitment, name))
        row.status = commitment.status.value
        row.schedule = commitment.recurrence.to_dict()

        known = {ci.id for ci in row.check_ins}
        for ci in commitment.check_ins:
            if ci.id not in known:
                row.check_ins.append(
                    CheckInRecord(
                        id=ci.id,
                        occurred_at_utc=ci.occurred_at_utc,
                        note=ci.note,
                        photo_url=ci.photo_url,
                    )
                )


class ReminderEventRepository:
    """Repository for the reminder queue"""

    def __init__(self, db: Session):
        self.db = db

    def add_all(self, events: Iterable[ReminderEvent]) -> None:
        for event in events:
            self.db.add(
                ReminderEventRecord(
                    id=event.id,
                    commitment_id=event.commitment_id,
                    occurrence_utc=event.occurrence_utc,
                    scheduled_for_utc=event.scheduled_for_utc,
                    type=event.type.value,
                    status=event.status.value,
                    deferral_count=event.deferral_count,
                    attempt_count=event.attempt_count,
                    processed_at_utc=event.processed_at_utc,
                )
            )
        self.db.flush()

    def list_due(self, now: datetime, limit: int = 200) -> List[ReminderEvent]:
        """Pending reminders due at or before now, oldest first"""
        rows = (
            self.db.query(ReminderEventRecord)
            .filter(
                ReminderEventRecord.status == ReminderStatus.PENDING.value,
                ReminderEventRecord.scheduled_for_utc <= now,
            )
            .order_by(ReminderEventRecord.scheduled_for_utc, ReminderEventRecord.id)
            .limit(limit)
            .all()
        )
        return [_reminder_to_domain(r) for r in rows]

    def existing_slots(
        self,
        commitment_ids: Iterable[uuid.UUID],
        event_type: ReminderType,
        start: datetime,
        end: datetime,
    ) -> Set[Tuple[uuid.UUID, datetime]]:
        """(commitment id, occurrence) pairs already materialized inside [start, end]"""
        ids = list(set(commitment_ids))
        if not ids:
            return set()
        rows = (
            self.db.query(ReminderEventRecord.commitment_id, ReminderEventRecord.occurrence_utc)
            .filter(
                ReminderEventRecord.commitment_id.in_(ids),
                ReminderEventRecord.type == event_type.value,
                ReminderEventRecord.occurrence_utc >= start,
                ReminderEventRecord.occurrence_utc <= end,
            )
            .all()
        )
        return {(commitment_id, occurrence) for commitment_id, occurrence in rows}

    def list_for_commitment(self, commitment_id: uuid.UUID) -> List[ReminderEvent]:
        rows = (
            self.db.query(ReminderEventRecord)
            .filter(ReminderEventRecord.commitment_id == commitment_id)
            .order_by(ReminderEventRecord.occurrence_utc)
            .all()
        )
        return [_reminder_to_domain(r) for r in rows]

    def save_all(self, events: Iterable[ReminderEvent]) -> None:
        for event in events:
            row = self.db.get(ReminderEventRecord, event.id)
            if row is None:
                self.add_all([event])
                continue
            row.scheduled_for_utc = event.scheduled_for_utc
            row.status = event.status.value
            row.deferral_count = event.deferral_count
            row.attempt_count = event.attempt_count
            row.processed_at_utc = event.processed_at_utc
        self.db.flush()


class QuietHoursRepository:
    """Repository for per-user quiet windows"""

    def __init__(self, db: Session):
        self.db = db

    def get_for_users(self, user_ids: Iterable[uuid.UUID]) -> Dict[uuid.UUID, QuietHours]:
        ids = list(set(user_ids))
        if not ids:
            return {}
        rows = self.db.query(QuietHoursRecord).filter(QuietHoursRecord.user_id.in_(ids)).all()
        return {
            row.user_id: QuietHours(
                user_id=row.user_id,
                start_hour=row.start_hour,
                end_hour=row.end_hour,
                timezone=row.timezone,
            )
            for row in rows
        }

    def upsert(self, quiet_hours: QuietHours, now: datetime) -> None:
        row = self.db.get(QuietHoursRecord, quiet_hours.user_id)
        if row is None:
            row = QuietHoursRecord(user_id=quiet_hours.user_id)
            self.db.add(row)
        row.start_hour = quiet_hours.start_hour
        row.end_hour = quiet_hours.end_hour
        row.timezone = quiet_hours.timezone
        row.updated_at_utc = now
        self.db.flush()


class AuditLogRepository:
    """Append-only audit trail"""

    def __init__(self, db: Session):
        self.db = db

    def record(
        self,
        commitment_id: Optional[uuid.UUID],
        user_id: uuid.UUID,
        event_type: str,
        now: datetime,
        data: Optional[Dict[str, Any]] = None,
    ) -> AuditLogRecord:
        row = AuditLogRecord(
            commitment_id=commitment_id,
            user_id=user_id,
            event_type=event_type,
            data=data or {},
            created_at_utc=now,
        )
        self.db.add(row)
        return row

    def list_for_commitment(self, commitment_id: uuid.UUID) -> List[AuditLogRecord]:
        return (
            self.db.query(AuditLogRecord)
            .filter(AuditLogRecord.commitment_id == commitment_id)
            .order_by(AuditLogRecord.created_at_utc)
            .all()
        )
