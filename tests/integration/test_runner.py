"""Integration tests for the job entry points"""

import logging
from datetime import timedelta

from commitments_engine.domain.models import CommitmentStatus, ReminderStatus
from commitments_engine.infrastructure.database.repositories import CommitmentRepository, ReminderEventRepository
from commitments_engine.infrastructure.notifications import InMemoryNotificationSender
from commitments_engine.infrastructure.observability.logging import CustomJsonFormatter
from commitments_engine.jobs.runner import configure, run_grace_scan, run_horizon_build, run_reminder_dispatch


def test_jobs_run_end_to_end(db, clock, session_factory, seed_commitment):
    commitment = seed_commitment(clock.now() + timedelta(days=2))
    sender = InMemoryNotificationSender()

    build = run_horizon_build(session_factory, clock)
    assert build.succeeded == 1

    # First check-in slot: 2030-06-16 09:00Z
    clock.set(clock.now().replace(day=16, hour=9))
    dispatch = run_reminder_dispatch(session_factory, clock, sender)
    assert dispatch.succeeded == 1
    assert len(sender.sent) == 1

    clock.set(commitment.deadline_utc + timedelta(minutes=1))
    scan = run_grace_scan(session_factory, clock)
    assert scan.succeeded == 1

    db.expire_all()
    assert CommitmentRepository(db).get(commitment.id).status == CommitmentStatus.DECISION_NEEDED
    statuses = [r.status for r in ReminderEventRepository(db).list_for_commitment(commitment.id)]
    assert ReminderStatus.SENT in statuses


def test_configure_installs_json_handler():
    root = logging.getLogger()
    saved_handlers, saved_level = list(root.handlers), root.level
    try:
        configure()
        assert len(root.handlers) == 1
        assert isinstance(root.handlers[0].formatter, CustomJsonFormatter)
    finally:
        root.handlers[:] = saved_handlers
        root.setLevel(saved_level)
