"""Domain models - pure Python dataclasses representing business entities"""

import uuid
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum, IntEnum
from typing import Callable, List, Optional

from commitments_engine.domain.exceptions import ValidationError


class CommitmentStatus(str, Enum):
    """Lifecycle states of a commitment"""

    ACTIVE = "active"
    DECISION_NEEDED = "decision_needed"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"
    DELETED = "deleted"


class RiskBadge(str, Enum):
    """Derived adherence indicator shown next to a commitment"""

    ON_TRACK = "OnTrack"
    SLIGHTLY_BEHIND = "SlightlyBehind"
    BEHIND = "Behind"
    AT_RISK = "AtRisk"
    CRITICAL = "Critical"
    DECISION_NEEDED = "DecisionNeeded"


class ReminderStatus(str, Enum):
    PENDING = "pending"
    SENT = "sent"
    SKIPPED = "skipped"


class ReminderType(str, Enum):
    CHECKIN_DUE = "reminder.checkin_due"
    GRACE_FINAL_WARNING = "commitment.grace_final_warning"


class Weekday(IntEnum):
    """Monday-based weekday numbering, matching date.weekday()"""

    MONDAY = 0
    TUESDAY = 1
    WEDNESDAY = 2
    THURSDAY = 3
    FRIDAY = 4
    SATURDAY = 5
    SUNDAY = 6


@dataclass
class CheckIn:
    """Single progress report against a commitment"""

    commitment_id: uuid.UUID
    occurred_at_utc: datetime
    note: Optional[str] = None
    photo_url: Optional[str] = None
    id: uuid.UUID = field(default_factory=uuid.uuid4)


@dataclass
class ReminderEvent:
    """
    A notification due for a commitment.

    occurrence_utc is the slot the event was materialized for and never changes;
    scheduled_for_utc moves forward when the dispatcher defers the event.
    attempt_count counts failed delivery attempts.
    """

    commitment_id: uuid.UUID
    occurrence_utc: datetime
    scheduled_for_utc: datetime
    type: ReminderType = ReminderType.CHECKIN_DUE
    status: ReminderStatus = ReminderStatus.PENDING
    deferral_count: int = 0
    attempt_count: int = 0
    processed_at_utc: Optional[datetime] = None
    id: uuid.UUID = field(default_factory=uuid.uuid4)


@dataclass
class QuietHours:
    """Local hour window (start inclusive, end exclusive) during which reminders wait"""

    user_id: uuid.UUID
    start_hour: int
    end_hour: int
    timezone: str = "UTC"

    def __post_init__(self) -> None:
        for name in ("start_hour", "end_hour"):
            value = getattr(self, name)
            if not isinstance(value, int) or not 0 <= value <= 23:
                raise ValidationError(f"{name} must be 0..23, got {value!r}", field=name)


class RecordOutcome(str, Enum):
    SUCCESS = "success"
    SKIPPED = "skipped"
    ERROR = "error"


@dataclass
class RecordResult:
    """Outcome of processing one record inside a batch job"""

    record_id: uuid.UUID
    outcome: RecordOutcome
    action: str
    detail: Optional[str] = None


@dataclass
class BatchReport:
    """Per-record results collected by a batch job run"""

    job: str
    results: List[RecordResult] = field(default_factory=list)
    cancelled: bool = False

    def add(self, record_id: uuid.UUID, outcome: RecordOutcome, action: str, detail: Optional[str] = None) -> RecordResult:
        result = RecordResult(record_id=record_id, outcome=outcome, action=action, detail=detail)
        self.results.append(result)
        return result

    def recorder(self, outcome: RecordOutcome, action: str) -> Callable[[uuid.UUID, Exception], None]:
        """Callback recording (record_id, error) pairs reported outside the per-record loop"""

        def _record(record_id: uuid.UUID, error: Exception) -> None:
            self.add(record_id, outcome, action, str(error))

        return _record

    def count(self, outcome: RecordOutcome, action: Optional[str] = None) -> int:
        return sum(
            1 for r in self.results
            if r.outcome == outcome and (action is None or r.action == action)
        )

    @property
    def succeeded(self) -> int:
        return self.count(RecordOutcome.SUCCESS)

    @property
    def skipped(self) -> int:
        return self.count(RecordOutcome.SKIPPED)

    @property
    def errors(self) -> List[RecordResult]:
        return [r for r in self.results if r.outcome == RecordOutcome.ERROR]

    @property
    def changed(self) -> bool:
        return any(r.outcome != RecordOutcome.ERROR for r in self.results)
