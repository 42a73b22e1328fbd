"""Clock abstraction injected wherever the current instant is needed"""

from datetime import datetime, timedelta
from typing import Protocol

from commitments_engine.utils.date_utils import UTC, ensure_utc


class Clock(Protocol):
    def now(self) -> datetime:
        ...


class SystemClock:
    """Wall clock in UTC"""

    def now(self) -> datetime:
        return datetime.now(UTC)


class FixedClock:
    """Manually driven clock for deterministic runs and tests"""

    def __init__(self, current: datetime):
        self.current = ensure_utc(current)

    def now(self) -> datetime:
        return self.current

    def set(self, current: datetime) -> None:
        self.current = ensure_utc(current)

    def advance(self, delta: timedelta) -> datetime:
        self.current = self.current + delta
        return self.current
