"""Pytest fixtures for testing"""

import uuid
from datetime import date, datetime, time, timedelta, timezone
from typing import Callable, Generator

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from commitments_engine.domain.commitment import Commitment
from commitments_engine.domain.recurrence import DailyPattern
from commitments_engine.infrastructure.database.models import Base, CommitmentRecord
from commitments_engine.infrastructure.database.repositories import CommitmentRepository
from commitments_engine.utils.clock import FixedClock

# Mid-June: no DST transition nearby in any zone used by the tests
BASE_NOW = datetime(2030, 6, 15, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def engine():
    """Fresh in-memory database per test"""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def session_factory(engine) -> sessionmaker:
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db(session_factory) -> Generator[Session, None, None]:
    db = session_factory()
    try:
        yield db
    finally:
        db.close()


@pytest.fixture
def clock() -> FixedClock:
    return FixedClock(BASE_NOW)


def new_commitment(
    now: datetime,
    deadline: datetime,
    anchor: date | None = None,
    at: time = time(9, 0),
    tz: str = "UTC",
    user_id: uuid.UUID | None = None,
) -> Commitment:
    """Daily 09:00 commitment anchored two days before now unless told otherwise"""
    pattern = DailyPattern(
        anchor_date=anchor or (now.date() - timedelta(days=2)),
        time_of_day=at,
        timezone_id=tz,
    )
    return Commitment.create(
        user_id=user_id or uuid.uuid4(),
        goal="Run three times a week",
        stake_amount_minor=500,
        currency="EUR",
        deadline_utc=deadline,
        timezone=tz,
        recurrence=pattern,
        now=now,
    )


@pytest.fixture
def seed_commitment(db: Session, clock: FixedClock) -> Callable[..., Commitment]:
    """Persist a commitment created at the clock's current time"""

    def _seed(deadline: datetime, **kwargs) -> Commitment:
        commitment = new_commitment(clock.now(), deadline, **kwargs)
        CommitmentRepository(db).add(commitment)
        db.commit()
        return commitment

    return _seed


@pytest.fixture
def build_commitment() -> Callable[..., Commitment]:
    """Unpersisted commitment factory"""
    return new_commitment


@pytest.fixture
def corrupt_schedule(db: Session) -> Callable[[uuid.UUID], None]:
    """Overwrite a stored schedule with data no pattern can be rebuilt from"""

    def _corrupt(commitment_id: uuid.UUID) -> None:
        db.query(CommitmentRecord).filter(CommitmentRecord.id == commitment_id).update(
            {"schedule": {"kind": "hourly"}}, synchronize_session=False
        )
        db.commit()

    return _corrupt
