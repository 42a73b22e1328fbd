"""Integration tests for the grace expiry scanner against a real database"""

import threading
from datetime import timedelta

import pytest

from commitments_engine.domain.commitment import Commitment
from commitments_engine.domain.exceptions import InvalidTransitionError
from commitments_engine.domain.models import CommitmentStatus, RecordOutcome, ReminderStatus, ReminderType
from commitments_engine.infrastructure.database.repositories import (
    AuditLogRepository,
    CommitmentRepository,
    ReminderEventRepository,
)
from commitments_engine.jobs.grace_scanner import GraceExpiryScanner


@pytest.fixture
def deadline(clock):
    return clock.now() + timedelta(hours=2)


def test_past_deadline_moves_to_decision_needed(db, clock, seed_commitment, deadline):
    commitment = seed_commitment(deadline)
    clock.set(deadline + timedelta(minutes=5))

    report = GraceExpiryScanner(db, clock).scan()

    stored = CommitmentRepository(db).get(commitment.id)
    assert stored.status == CommitmentStatus.DECISION_NEEDED
    assert stored.grace_expires_utc == deadline + timedelta(minutes=60)
    assert report.count(RecordOutcome.SUCCESS, "decision_needed") == 1
    assert not report.errors


def test_final_warning_queued_before_grace_expiry(db, clock, seed_commitment, deadline):
    commitment = seed_commitment(deadline)
    clock.set(deadline + timedelta(minutes=5))

    GraceExpiryScanner(db, clock).scan()

    events = ReminderEventRepository(db).list_for_commitment(commitment.id)
    assert len(events) == 1
    warning = events[0]
    assert warning.type == ReminderType.GRACE_FINAL_WARNING
    assert warning.status == ReminderStatus.PENDING
    assert warning.scheduled_for_utc == deadline + timedelta(minutes=45)
    assert warning.occurrence_utc == warning.scheduled_for_utc


def test_no_final_warning_when_scanned_late(db, clock, seed_commitment, deadline):
    commitment = seed_commitment(deadline)
    clock.set(deadline + timedelta(minutes=50))

    GraceExpiryScanner(db, clock).scan()

    assert CommitmentRepository(db).get(commitment.id).status == CommitmentStatus.DECISION_NEEDED
    assert ReminderEventRepository(db).list_for_commitment(commitment.id) == []


def test_expired_grace_fails_commitment(db, clock, seed_commitment, deadline):
    commitment = seed_commitment(deadline)
    scanner = GraceExpiryScanner(db, clock)

    clock.set(deadline + timedelta(minutes=5))
    scanner.scan()
    clock.set(deadline + timedelta(minutes=62))
    report = scanner.scan()

    stored = CommitmentRepository(db).get(commitment.id)
    assert stored.status == CommitmentStatus.FAILED
    assert stored.failed_at_utc == deadline + timedelta(minutes=62)
    assert report.count(RecordOutcome.SUCCESS, "fail") == 1


def test_commitment_inside_grace_left_alone(db, clock, seed_commitment, deadline):
    commitment = seed_commitment(deadline)
    scanner = GraceExpiryScanner(db, clock)

    clock.set(deadline + timedelta(minutes=5))
    scanner.scan()
    clock.set(deadline + timedelta(minutes=30))
    report = scanner.scan()

    assert CommitmentRepository(db).get(commitment.id).status == CommitmentStatus.DECISION_NEEDED
    assert report.results == []


def test_future_deadline_untouched(db, clock, seed_commitment):
    commitment = seed_commitment(clock.now() + timedelta(days=3))

    report = GraceExpiryScanner(db, clock).scan()

    assert CommitmentRepository(db).get(commitment.id).status == CommitmentStatus.ACTIVE
    assert report.results == []


def test_transition_is_audited(db, clock, seed_commitment, deadline):
    commitment = seed_commitment(deadline)
    clock.set(deadline + timedelta(minutes=5))

    GraceExpiryScanner(db, clock).scan()

    entries = AuditLogRepository(db).list_for_commitment(commitment.id)
    assert [e.event_type for e in entries] == ["commitment.decision_needed"]
    assert entries[0].user_id == commitment.user_id


def test_one_failing_record_does_not_stop_the_run(db, clock, seed_commitment, deadline, monkeypatch):
    broken = seed_commitment(deadline)
    healthy = seed_commitment(deadline)
    original = Commitment.transition_to_decision_needed

    def flaky(self, grace_window, now):
        if self.id == broken.id:
            raise InvalidTransitionError("simulated failure", current_status=self.status, action="decision_needed")
        return original(self, grace_window, now)

    monkeypatch.setattr(Commitment, "transition_to_decision_needed", flaky)
    clock.set(deadline + timedelta(minutes=5))

    report = GraceExpiryScanner(db, clock).scan()

    repo = CommitmentRepository(db)
    assert repo.get(broken.id).status == CommitmentStatus.ACTIVE
    assert repo.get(healthy.id).status == CommitmentStatus.DECISION_NEEDED
    assert [e.record_id for e in report.errors] == [broken.id]
    assert report.succeeded == 1


def test_cancelled_run_changes_nothing(db, clock, seed_commitment, deadline):
    commitment = seed_commitment(deadline)
    clock.set(deadline + timedelta(minutes=5))
    cancel_event = threading.Event()
    cancel_event.set()

    report = GraceExpiryScanner(db, clock).scan(cancel_event=cancel_event)

    assert report.cancelled
    assert CommitmentRepository(db).get(commitment.id).status == CommitmentStatus.ACTIVE


def test_batch_size_limits_one_run(db, clock, seed_commitment, deadline):
    for _ in range(3):
        seed_commitment(deadline)
    clock.set(deadline + timedelta(minutes=5))
    scanner = GraceExpiryScanner(db, clock, batch_size=2)

    assert scanner.scan().succeeded == 2
    assert scanner.scan().succeeded == 1


def test_unreadable_commitment_does_not_abort_scan(db, clock, seed_commitment, deadline, corrupt_schedule):
    broken = seed_commitment(deadline)
    healthy = seed_commitment(deadline + timedelta(minutes=1))
    corrupt_schedule(broken.id)
    clock.set(deadline + timedelta(minutes=5))

    report = GraceExpiryScanner(db, clock).scan()

    assert CommitmentRepository(db).get(healthy.id).status == CommitmentStatus.DECISION_NEEDED
    assert [(r.record_id, r.action) for r in report.errors] == [(broken.id, "load")]
    assert report.count(RecordOutcome.SUCCESS, "decision_needed") == 1


def test_unexpected_error_does_not_stop_the_run(db, clock, seed_commitment, deadline, monkeypatch):
    broken = seed_commitment(deadline)
    healthy = seed_commitment(deadline)
    original = Commitment.transition_to_decision_needed

    def flaky(self, grace_window, now):
        if self.id == broken.id:
            raise RuntimeError("storage hiccup")
        return original(self, grace_window, now)

    monkeypatch.setattr(Commitment, "transition_to_decision_needed", flaky)
    clock.set(deadline + timedelta(minutes=5))

    report = GraceExpiryScanner(db, clock).scan()

    assert CommitmentRepository(db).get(healthy.id).status == CommitmentStatus.DECISION_NEEDED
    assert [e.record_id for e in report.errors] == [broken.id]
    assert "storage hiccup" in report.errors[0].detail
