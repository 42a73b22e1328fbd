"""Commitment entity and its lifecycle state machine"""

import re
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import List, Optional

from commitments_engine.domain.exceptions import InvalidTransitionError, LockedWindowError, ValidationError
from commitments_engine.domain.models import CheckIn, CommitmentStatus, RiskBadge
from commitments_engine.domain.recurrence import RecurrencePattern
from commitments_engine.domain.risk import calculate_progress_percent, compute_risk_badge
from commitments_engine.utils.date_utils import ensure_utc, is_valid_timezone

GOAL_MAX_LENGTH = 200
MIN_DEADLINE_LEAD = timedelta(hours=1)
EDITING_LOCK = timedelta(hours=24)

CURRENCY_RE = re.compile(r"^[A-Z]{3}$")

TERMINAL_STATUSES = frozenset(
    {CommitmentStatus.COMPLETED, CommitmentStatus.FAILED, CommitmentStatus.CANCELLED}
)


@dataclass
class Commitment:
    """
    A goal backed by a monetary stake, a deadline and a check-in schedule.

    Lifecycle:
        active -> decision_needed -> completed | failed
        active -> cancelled | failed
        completed | failed | cancelled -> deleted (soft)

    Build new instances with Commitment.create(); mutate only through the
    transition methods. The plain constructor is for rehydrating stored rows.
    """

    user_id: uuid.UUID
    goal: str
    stake_amount_minor: int
    currency: str
    deadline_utc: datetime
    timezone: str
    recurrence: RecurrencePattern
    created_at_utc: datetime
    updated_at_utc: datetime
    editing_locked_at_utc: datetime
    status: CommitmentStatus = CommitmentStatus.ACTIVE
    check_ins: List[CheckIn] = field(default_factory=list)
    grace_expires_utc: Optional[datetime] = None
    cancelled_at_utc: Optional[datetime] = None
    completed_at_utc: Optional[datetime] = None
    failed_at_utc: Optional[datetime] = None
    deleted_at_utc: Optional[datetime] = None
    id: uuid.UUID = field(default_factory=uuid.uuid4)

    @classmethod
    def create(
        cls,
        user_id: uuid.UUID,
        goal: str,
        stake_amount_minor: int,
        currency: str,
        deadline_utc: datetime,
        timezone: str,
        recurrence: RecurrencePattern,
        now: datetime,
        goal_max_length: int = GOAL_MAX_LENGTH,
        min_deadline_lead: timedelta = MIN_DEADLINE_LEAD,
        editing_lock: timedelta = EDITING_LOCK,
    ) -> "Commitment":
        """
        Validate inputs and build an active commitment.

        Raises:
            ValidationError: empty or too long goal, non-positive stake, bad currency
                or timezone, deadline less than min_deadline_lead ahead, or a schedule
                whose first occurrence is not before the deadline
        """
        now = ensure_utc(now)
        if goal is None or not goal.strip():
            raise ValidationError("Goal required", field="goal")
        if len(goal) > goal_max_length:
            raise ValidationError(f"Goal too long (max {goal_max_length} characters)", field="goal")
        if isinstance(stake_amount_minor, bool) or not isinstance(stake_amount_minor, int) or stake_amount_minor <= 0:
            raise ValidationError("Stake must be > 0", field="stake_amount_minor")

        currency = (currency or "").strip().upper()
        if not CURRENCY_RE.match(currency):
            raise ValidationError("Currency must be a 3-letter code", field="currency")
        if not is_valid_timezone(timezone):
            raise ValidationError(f"Unknown timezone: {timezone!r}", field="timezone")

        deadline_utc = ensure_utc(deadline_utc)
        if deadline_utc < now + min_deadline_lead:
            raise ValidationError("Deadline must be at least 1h ahead", field="deadline_utc")

        if recurrence is None:
            raise ValidationError("Schedule required", field="recurrence")
        if recurrence.first_occurrence() >= deadline_utc:
            raise ValidationError("Schedule must occur before deadline", field="recurrence")

        return cls(
            user_id=user_id,
            goal=goal.strip(),
            stake_amount_minor=stake_amount_minor,
            currency=currency,
            deadline_utc=deadline_utc,
            timezone=timezone,
            recurrence=recurrence,
            created_at_utc=now,
            updated_at_utc=now,
            editing_locked_at_utc=deadline_utc - editing_lock,
        )

    def _guard(self, allowed, action: str, message: str) -> None:
        if self.status not in allowed:
            raise InvalidTransitionError(
                f"{message} (status={self.status.value})",
                current_status=self.status,
                action=action,
            )

    def transition_to_decision_needed(self, grace_window: timedelta, now: datetime) -> None:
        self._guard({CommitmentStatus.ACTIVE}, "decision_needed", "Must be active")
        self.status = CommitmentStatus.DECISION_NEEDED
        self.grace_expires_utc = self.deadline_utc + grace_window
        self.updated_at_utc = ensure_utc(now)

    def complete(self, now: datetime) -> None:
        self._guard({CommitmentStatus.DECISION_NEEDED}, "complete", "Not in decision state")
        now = ensure_utc(now)
        self.status = CommitmentStatus.COMPLETED
        self.completed_at_utc = now
        self.updated_at_utc = now

    def fail(self, now: datetime) -> None:
        self._guard(
            {CommitmentStatus.ACTIVE, CommitmentStatus.DECISION_NEEDED},
            "fail",
            "Can only fail from active/decision",
        )
        now = ensure_utc(now)
        self.status = CommitmentStatus.FAILED
        self.failed_at_utc = now
        self.updated_at_utc = now

    def cancel(self, now: datetime) -> None:
        """Cancel an active commitment; refused once the editing lock has started"""
        self._guard({CommitmentStatus.ACTIVE}, "cancel", "Only active can cancel")
        now = ensure_utc(now)
        if now >= self.editing_locked_at_utc:
            raise LockedWindowError(
                "Locked window: cancellation is closed this close to the deadline",
                current_status=self.status,
                action="cancel",
            )
        self.status = CommitmentStatus.CANCELLED
        self.cancelled_at_utc = now
        self.updated_at_utc = now

    def soft_delete(self, now: datetime) -> None:
        self._guard(TERMINAL_STATUSES, "delete", "Only completed, failed or cancelled can be deleted")
        now = ensure_utc(now)
        self.status = CommitmentStatus.DELETED
        self.deleted_at_utc = now
        self.updated_at_utc = now

    def add_check_in(self, now: datetime, note: Optional[str] = None, photo_url: Optional[str] = None) -> CheckIn:
        self._guard({CommitmentStatus.ACTIVE}, "check_in", "Check-in only when active")
        now = ensure_utc(now)
        check_in = CheckIn(commitment_id=self.id, occurred_at_utc=now, note=note, photo_url=photo_url)
        self.check_ins.append(check_in)
        self.updated_at_utc = now
        return check_in

    def is_in_grace(self, now: datetime) -> bool:
        return (
            self.status == CommitmentStatus.DECISION_NEEDED
            and self.grace_expires_utc is not None
            and ensure_utc(now) <= self.grace_expires_utc
        )

    def risk_badge(self, now: datetime, cap: Optional[int] = None) -> RiskBadge:
        return compute_risk_badge(self, ensure_utc(now), cap)

    def progress_percent(self, now: datetime) -> float:
        return calculate_progress_percent(self.created_at_utc, self.deadline_utc, ensure_utc(now))
