"""SQLAlchemy ORM models for commitments, check-ins, reminders and quiet hours"""

import uuid
from datetime import timezone

from sqlalchemy import (
    JSON,
    BigInteger,
    Column,
    DateTime,
    ForeignKey,
    Integer,
    String,
    Text,
    TypeDecorator,
    UniqueConstraint,
    Uuid,
)
from sqlalchemy.orm import declarative_base, relationship

Base = declarative_base()


class UtcDateTime(TypeDecorator):
    """Stores naive UTC, always returns tz-aware UTC (SQLite drops offsets)"""

    impl = DateTime
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            return value
        return value.astimezone(timezone.utc).replace(tzinfo=None)

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)


class CommitmentRecord(Base):
    """Commitment with its recurrence stored as JSON"""

    __tablename__ = "commitment"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id = Column(Uuid, nullable=False, index=True)
    goal = Column(String(200), nullable=False)
    stake_amount_minor = Column(BigInteger, nullable=False)
    currency = Column(String(3), nullable=False)
    deadline_utc = Column(UtcDateTime, nullable=False, index=True)
    timezone = Column(Text, nullable=False, default="UTC")
    schedule = Column(JSON, nullable=False)
    status = Column(Text, nullable=False, default="active", index=True)
    grace_expires_utc = Column(UtcDateTime, nullable=True)
    created_at_utc = Column(UtcDateTime, nullable=False)
    updated_at_utc = Column(UtcDateTime, nullable=False)
    editing_locked_at_utc = Column(UtcDateTime, nullable=False)
    cancelled_at_utc = Column(UtcDateTime, nullable=True)
    completed_at_utc = Column(UtcDateTime, nullable=True)
    failed_at_utc = Column(UtcDateTime, nullable=True)
    deleted_at_utc = Column(UtcDateTime, nullable=True)

    check_ins = relationship(
        "CheckInRecord",
        back_populates="commitment",
        cascade="all, delete-orphan",
        order_by="CheckInRecord.occurred_at_utc",
    )


class CheckInRecord(Base):
    """Append-only check-in log entry"""

    __tablename__ = "check_in"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    commitment_id = Column(Uuid, ForeignKey("commitment.id", ondelete="CASCADE"), nullable=False, index=True)
    occurred_at_utc = Column(UtcDateTime, nullable=False)
    note = Column(Text, nullable=True)
    photo_url = Column(Text, nullable=True)

    commitment = relationship("CommitmentRecord", back_populates="check_ins")


class ReminderEventRecord(Base):
    """Reminder queue; (commitment, type, occurrence) identifies a materialized slot"""

    __tablename__ = "reminder_event"
    __table_args__ = (
        UniqueConstraint("commitment_id", "type", "occurrence_utc", name="uq_reminder_event_slot"),
    )

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    commitment_id = Column(Uuid, nullable=False, index=True)
    occurrence_utc = Column(UtcDateTime, nullable=False)
    scheduled_for_utc = Column(UtcDateTime, nullable=False, index=True)
    type = Column(Text, nullable=False, default="reminder.checkin_due")
    status = Column(Text, nullable=False, default="pending", index=True)
    deferral_count = Column(Integer, nullable=False, default=0)
    attempt_count = Column(Integer, nullable=False, default=0)
    processed_at_utc = Column(UtcDateTime, nullable=True)


class QuietHoursRecord(Base):
    """Per-user notification quiet window"""

    __tablename__ = "notification_quiet_hours"

    user_id = Column(Uuid, primary_key=True)
    start_hour = Column(Integer, nullable=False)
    end_hour = Column(Integer, nullable=False)
    timezone = Column(Text, nullable=False, default="UTC")
    updated_at_utc = Column(UtcDateTime, nullable=True)


class AuditLogRecord(Base):
    """Lifecycle transitions performed by background jobs"""

    __tablename__ = "audit_log"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    commitment_id = Column(Uuid, nullable=True, index=True)
    user_id = Column(Uuid, nullable=False)
    event_type = Column(Text, nullable=False)
    data = Column(JSON, nullable=False, default=dict)
    created_at_utc = Column(UtcDateTime, nullable=False)
