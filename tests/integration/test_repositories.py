"""Integration tests for the SQLAlchemy repositories"""

import uuid
from datetime import date, time, timedelta

import pytest
from sqlalchemy.exc import IntegrityError

from commitments_engine.domain.commitment import Commitment
from commitments_engine.domain.exceptions import CommitmentNotFoundError
from commitments_engine.domain.models import (
    CommitmentStatus,
    QuietHours,
    ReminderEvent,
    ReminderStatus,
    ReminderType,
    Weekday,
)
from commitments_engine.domain.recurrence import WeeklyPattern
from commitments_engine.infrastructure.database.repositories import (
    AuditLogRepository,
    CommitmentRepository,
    QuietHoursRepository,
    ReminderEventRepository,
)


def test_commitment_round_trip(db, clock):
    now = clock.now()
    pattern = WeeklyPattern(
        anchor_date=date(2030, 6, 10),
        time_of_day=time(6, 45),
        timezone_id="Europe/Budapest",
        interval=2,
        weekdays=frozenset({Weekday.TUESDAY, Weekday.THURSDAY}),
    )
    commitment = Commitment.create(
        user_id=uuid.uuid4(),
        goal="Swim 1km",
        stake_amount_minor=15000,
        currency="HUF",
        deadline_utc=now + timedelta(days=60),
        timezone="Europe/Budapest",
        recurrence=pattern,
        now=now,
    )
    commitment.add_check_in(now, note="first lap")
    repo = CommitmentRepository(db)
    repo.add(commitment)
    db.commit()
    db.expire_all()

    stored = repo.get(commitment.id)

    assert stored.recurrence == pattern
    assert stored.deadline_utc == commitment.deadline_utc
    assert stored.deadline_utc.tzinfo is not None
    assert stored.status == CommitmentStatus.ACTIVE
    assert [c.note for c in stored.check_ins] == ["first lap"]


def test_save_appends_new_check_ins_only(db, clock, seed_commitment):
    commitment = seed_commitment(clock.now() + timedelta(days=10))
    repo = CommitmentRepository(db)

    stored = repo.get(commitment.id)
    stored.add_check_in(clock.now())
    repo.save_all([stored])
    stored.add_check_in(clock.now() + timedelta(hours=1))
    repo.save_all([stored])
    db.commit()

    assert len(repo.get(commitment.id).check_ins) == 2


def test_get_unknown_commitment_raises(db):
    with pytest.raises(CommitmentNotFoundError):
        CommitmentRepository(db).get(uuid.uuid4())


def test_lifecycle_queries(db, clock, seed_commitment):
    repo = CommitmentRepository(db)
    due = seed_commitment(clock.now() + timedelta(hours=2))
    later = seed_commitment(clock.now() + timedelta(days=5))
    clock.advance(timedelta(hours=3))

    assert [c.id for c in repo.list_active_past_deadline(clock.now())] == [due.id]
    assert {c.id for c in repo.list_active()} == {due.id, later.id}

    stored = repo.get(due.id)
    stored.transition_to_decision_needed(timedelta(minutes=120), clock.now())
    repo.save_all([stored])
    db.commit()

    assert repo.list_expired_grace(clock.now()) == []
    assert [c.id for c in repo.list_expired_grace(clock.now() + timedelta(hours=1))] == [due.id]
    assert [c.id for c in repo.list_active()] == [later.id]


def test_get_many_ignores_unknown_ids(db, clock, seed_commitment):
    commitment = seed_commitment(clock.now() + timedelta(days=10))

    found = CommitmentRepository(db).get_many([commitment.id, uuid.uuid4()])

    assert list(found) == [commitment.id]


def test_unreadable_rows_reported_and_left_out(db, clock, seed_commitment, corrupt_schedule):
    broken = seed_commitment(clock.now() + timedelta(days=5))
    healthy = seed_commitment(clock.now() + timedelta(days=10))
    corrupt_schedule(broken.id)
    repo = CommitmentRepository(db)
    unreadable = {}

    assert [c.id for c in repo.list_active(on_error=unreadable.__setitem__)] == [healthy.id]
    assert list(repo.get_many([broken.id, healthy.id])) == [healthy.id]
    assert list(unreadable) == [broken.id]


def test_duplicate_reminder_slot_rejected(db, clock, seed_commitment):
    commitment = seed_commitment(clock.now() + timedelta(days=10))
    slot = clock.now() + timedelta(hours=1)
    repo = ReminderEventRepository(db)
    repo.add_all([ReminderEvent(commitment_id=commitment.id, occurrence_utc=slot, scheduled_for_utc=slot)])
    db.commit()

    with pytest.raises(IntegrityError):
        repo.add_all([ReminderEvent(commitment_id=commitment.id, occurrence_utc=slot, scheduled_for_utc=slot)])
    db.rollback()


def test_same_slot_allowed_for_different_types(db, clock, seed_commitment):
    commitment = seed_commitment(clock.now() + timedelta(days=10))
    slot = clock.now() + timedelta(hours=1)
    repo = ReminderEventRepository(db)

    repo.add_all([
        ReminderEvent(commitment_id=commitment.id, occurrence_utc=slot, scheduled_for_utc=slot),
        ReminderEvent(
            commitment_id=commitment.id,
            occurrence_utc=slot,
            scheduled_for_utc=slot,
            type=ReminderType.GRACE_FINAL_WARNING,
        ),
    ])
    db.commit()

    assert len(repo.list_for_commitment(commitment.id)) == 2


def test_list_due_returns_pending_in_schedule_order(db, clock, seed_commitment):
    commitment = seed_commitment(clock.now() + timedelta(days=10))
    now = clock.now()
    late = ReminderEvent(commitment_id=commitment.id, occurrence_utc=now, scheduled_for_utc=now)
    early = ReminderEvent(
        commitment_id=commitment.id, occurrence_utc=now - timedelta(hours=1), scheduled_for_utc=now - timedelta(hours=1)
    )
    future = ReminderEvent(
        commitment_id=commitment.id, occurrence_utc=now + timedelta(hours=1), scheduled_for_utc=now + timedelta(hours=1)
    )
    done = ReminderEvent(
        commitment_id=commitment.id,
        occurrence_utc=now - timedelta(hours=2),
        scheduled_for_utc=now - timedelta(hours=2),
        status=ReminderStatus.SENT,
    )
    repo = ReminderEventRepository(db)
    repo.add_all([late, early, future, done])
    db.commit()

    assert [r.id for r in repo.list_due(now)] == [early.id, late.id]
    assert [r.id for r in repo.list_due(now, limit=1)] == [early.id]


def test_quiet_hours_upsert_replaces_window(db, clock):
    user_id = uuid.uuid4()
    repo = QuietHoursRepository(db)

    repo.upsert(QuietHours(user_id=user_id, start_hour=22, end_hour=7), clock.now())
    repo.upsert(QuietHours(user_id=user_id, start_hour=23, end_hour=6, timezone="Europe/Paris"), clock.now())
    db.commit()

    window = repo.get_for_users([user_id])[user_id]
    assert (window.start_hour, window.end_hour, window.timezone) == (23, 6, "Europe/Paris")


def test_audit_log_entries_in_order(db, clock, seed_commitment):
    commitment = seed_commitment(clock.now() + timedelta(days=10))
    audit = AuditLogRepository(db)

    audit.record(commitment.id, commitment.user_id, "commitment.decision_needed", clock.now())
    audit.record(commitment.id, commitment.user_id, "commitment.failed", clock.now() + timedelta(hours=1), {"reason": "grace_expired"})
    db.commit()

    entries = audit.list_for_commitment(commitment.id)
    assert [e.event_type for e in entries] == ["commitment.decision_needed", "commitment.failed"]
    assert entries[1].data == {"reason": "grace_expired"}
