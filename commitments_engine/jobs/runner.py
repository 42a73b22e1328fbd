"""Entry points invoked by the external scheduler, one job run per call"""

from typing import Callable, Optional

from sqlalchemy.orm import Session

from commitments_engine.config import settings
from commitments_engine.domain.models import BatchReport
from commitments_engine.infrastructure.database.session import SessionLocal
from commitments_engine.infrastructure.notifications import LoggingNotificationSender, NotificationSender
from commitments_engine.infrastructure.observability.logging import setup_logging
from commitments_engine.jobs.grace_scanner import GraceExpiryScanner
from commitments_engine.jobs.horizon_builder import ReminderHorizonBuilder
from commitments_engine.jobs.reminder_dispatcher import ReminderDispatcher
from commitments_engine.utils.clock import Clock, SystemClock

SessionFactory = Callable[[], Session]


def configure() -> None:
    """Setup structured logging once per host process"""
    setup_logging(settings.log_level)


def run_grace_scan(session_factory: SessionFactory = SessionLocal, clock: Optional[Clock] = None) -> BatchReport:
    db = session_factory()
    try:
        return GraceExpiryScanner(db, clock or SystemClock()).scan()
    finally:
        db.close()


def run_horizon_build(session_factory: SessionFactory = SessionLocal, clock: Optional[Clock] = None) -> BatchReport:
    db = session_factory()
    try:
        return ReminderHorizonBuilder(db, clock or SystemClock()).build()
    finally:
        db.close()


def run_reminder_dispatch(
    session_factory: SessionFactory = SessionLocal,
    clock: Optional[Clock] = None,
    sender: Optional[NotificationSender] = None,
) -> BatchReport:
    db = session_factory()
    try:
        return ReminderDispatcher(db, sender or LoggingNotificationSender(), clock or SystemClock()).dispatch()
    finally:
        db.close()
