"""
Recurrence engine - converts a local-time recurrence pattern into UTC instants.

Every candidate occurrence is built from a local calendar date plus the
pattern's time of day in its own zone, then resolved to UTC. Because of this,
a daily pattern is 23 hours apart across a spring-forward transition and
25 hours apart across a fall-back one.

Patterns are immutable and hold no state between calls, so they can be shared
freely between jobs and threads.
"""

from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta
from typing import Any, ClassVar, Dict, FrozenSet, Iterable, List, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from dateutil.relativedelta import relativedelta

from commitments_engine.domain.exceptions import InvalidRecurrenceError
from commitments_engine.domain.models import Weekday
from commitments_engine.utils.date_utils import (
    clamp_day,
    combine_local,
    ensure_utc,
    get_zone,
    months_between,
    nth_weekday_of_month,
    to_local_date,
)

# Scan bounds: a pattern that cannot match inside these windows is exhausted
WEEK_SCAN_LIMIT = 260  # ~5 years
MONTH_SCAN_LIMIT = 120  # ~10 years
DST_GAP_MAX_MINUTES = 120
DEFAULT_COUNT_CAP = 1000

LAST = -1


@dataclass(frozen=True, kw_only=True)
class RecurrencePattern:
    """Common fields and public contract shared by every pattern kind"""

    kind: ClassVar[str] = ""

    anchor_date: date
    time_of_day: time
    timezone_id: str = "UTC"
    interval: int = 1

    def __post_init__(self) -> None:
        if not self.kind:
            raise InvalidRecurrenceError(
                f"{type(self).__name__} is abstract; use one of {', '.join(sorted(PATTERN_KINDS))}"
            )
        if isinstance(self.interval, bool) or not isinstance(self.interval, int) or self.interval < 1:
            raise InvalidRecurrenceError(f"Interval must be >= 1, got {self.interval!r}", field="interval")
        if not isinstance(self.anchor_date, date) or isinstance(self.anchor_date, datetime):
            raise InvalidRecurrenceError("Anchor date must be a calendar date", field="anchor_date")
        if not isinstance(self.time_of_day, time):
            raise InvalidRecurrenceError("Time of day must be a time", field="time_of_day")
        try:
            get_zone(self.timezone_id)
        except (ZoneInfoNotFoundError, ValueError, TypeError) as e:
            raise InvalidRecurrenceError(f"Unknown timezone: {self.timezone_id!r}", field="timezone_id") from e
        # Second precision, no attached zone
        object.__setattr__(self, "time_of_day", self.time_of_day.replace(microsecond=0, tzinfo=None))

    @property
    def zone(self) -> ZoneInfo:
        return get_zone(self.timezone_id)

    def _at(self, day: date) -> datetime:
        return combine_local(day, self.time_of_day, self.zone, DST_GAP_MAX_MINUTES)

    def first_occurrence(self) -> datetime:
        """Anchor date and time of day resolved to UTC"""
        return self._at(self.anchor_date)

    def next_occurrence(self, after_utc: datetime, deadline_utc: datetime) -> Optional[datetime]:
        """
        Earliest occurrence strictly after after_utc and strictly before deadline_utc.

        Returns None when the pattern is exhausted: its first occurrence is at or
        past the deadline, or the bounded scan found nothing.
        """
        after_utc = ensure_utc(after_utc)
        deadline_utc = ensure_utc(deadline_utc)

        first = self.first_occurrence()
        if first >= deadline_utc:
            return None
        if after_utc < first:
            return first

        candidate = self._next_after(after_utc)
        if candidate is None or candidate >= deadline_utc:
            return None
        return candidate

    def preview_occurrences(self, after_utc: datetime, deadline_utc: datetime, count: int) -> List[datetime]:
        """Up to count ascending occurrences after after_utc, all before the deadline"""
        occurrences: List[datetime] = []
        cursor = after_utc
        while len(occurrences) < count:
            nxt = self.next_occurrence(cursor, deadline_utc)
            if nxt is None:
                break
            occurrences.append(nxt)
            cursor = nxt
        return occurrences

    def count_occurrences_up_to(
        self,
        until_exclusive_utc: datetime,
        deadline_utc: datetime,
        cap: int = DEFAULT_COUNT_CAP,
    ) -> int:
        """Number of occurrences in [first, min(until, deadline)), never more than cap"""
        until_exclusive_utc = ensure_utc(until_exclusive_utc)
        deadline_utc = ensure_utc(deadline_utc)

        current = self.first_occurrence()
        count = 0
        while current < until_exclusive_utc and current < deadline_utc and count < cap:
            count += 1
            nxt = self.next_occurrence(current, deadline_utc)
            if nxt is None:
                break
            current = nxt
        return count

    def _next_after(self, after_utc: datetime) -> Optional[datetime]:
        raise NotImplementedError

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kind": self.kind,
            "anchor_date": self.anchor_date.isoformat(),
            "time_of_day": self.time_of_day.isoformat(),
            "timezone_id": self.timezone_id,
            "interval": self.interval,
        }


@dataclass(frozen=True, kw_only=True)
class DailyPattern(RecurrencePattern):
    """Every interval days at time_of_day"""

    kind: ClassVar[str] = "daily"

    def _next_after(self, after_utc: datetime) -> Optional[datetime]:
        offset = (to_local_date(after_utc, self.zone) - self.anchor_date).days
        index = max(offset, 0)
        if index % self.interval:
            index += self.interval - index % self.interval

        # The aligned day may already be behind after_utc; at most one step forward
        # is normally needed, two when a DST shift lands on the boundary.
        for _ in range(3):
            candidate = self._at(self.anchor_date + timedelta(days=index))
            if candidate > after_utc:
                return candidate
            index += self.interval
        return None


def _coerce_weekdays(values: Iterable[Any]) -> FrozenSet[Weekday]:
    try:
        days = frozenset(Weekday(int(v)) for v in values)
    except (ValueError, TypeError) as e:
        raise InvalidRecurrenceError(f"Invalid weekday in {values!r}", field="weekdays") from e
    return days or frozenset({Weekday.MONDAY})


@dataclass(frozen=True, kw_only=True)
class WeeklyPattern(RecurrencePattern):
    """
    Selected weekdays in every interval-th week.

    Weeks are counted in 7-day blocks starting at the anchor date, not calendar weeks.
    An empty weekday selection means Monday.
    """

    kind: ClassVar[str] = "weekly"

    weekdays: FrozenSet[Weekday] = field(default_factory=lambda: frozenset({Weekday.MONDAY}))

    def __post_init__(self) -> None:
        super().__post_init__()
        object.__setattr__(self, "weekdays", _coerce_weekdays(self.weekdays))

    def _next_after(self, after_utc: datetime) -> Optional[datetime]:
        days_since_anchor = (to_local_date(after_utc, self.zone) - self.anchor_date).days
        week = max(days_since_anchor, 0) // 7

        for _ in range(WEEK_SCAN_LIMIT):
            if week % self.interval == 0:
                week_start = self.anchor_date + timedelta(weeks=week)
                for offset in range(7):
                    day = week_start + timedelta(days=offset)
                    if day.weekday() not in self.weekdays:
                        continue
                    candidate = self._at(day)
                    if candidate > after_utc:
                        return candidate
            week += 1
        return None

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data["weekdays"] = sorted(int(d) for d in self.weekdays)
        return data


@dataclass(frozen=True, kw_only=True)
class _MonthlyPattern(RecurrencePattern):
    """Month-by-month scan shared by the monthly pattern kinds"""

    def _candidate_date(self, year: int, month: int) -> Optional[date]:
        raise NotImplementedError

    def _next_after(self, after_utc: datetime) -> Optional[datetime]:
        local = to_local_date(after_utc, self.zone)
        month_start = date(local.year, local.month, 1)

        for step in range(MONTH_SCAN_LIMIT):
            cursor = month_start + relativedelta(months=step)
            offset = months_between(self.anchor_date, cursor)
            if offset < 0 or offset % self.interval:
                continue
            day = self._candidate_date(cursor.year, cursor.month)
            if day is None:
                continue
            candidate = self._at(day)
            if candidate > after_utc:
                return candidate
        return None


@dataclass(frozen=True, kw_only=True)
class MonthlyByDayPattern(_MonthlyPattern):
    """Fixed day of month, clamped to the last day of shorter months"""

    kind: ClassVar[str] = "monthly_day"

    day_of_month: int = 1

    def __post_init__(self) -> None:
        super().__post_init__()
        if isinstance(self.day_of_month, bool) or not isinstance(self.day_of_month, int) or not 1 <= self.day_of_month <= 31:
            raise InvalidRecurrenceError(
                f"Day of month must be 1..31, got {self.day_of_month!r}", field="day_of_month"
            )

    def _candidate_date(self, year: int, month: int) -> Optional[date]:
        return clamp_day(year, month, self.day_of_month)

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data["day_of_month"] = self.day_of_month
        return data


@dataclass(frozen=True, kw_only=True)
class MonthlyByNthWeekdayPattern(_MonthlyPattern):
    """Nth weekday of the month (nth 1..5), or the last one when nth is -1"""

    kind: ClassVar[str] = "monthly_nth"

    nth: int = 1
    weekday: Weekday = Weekday.MONDAY

    def __post_init__(self) -> None:
        super().__post_init__()
        if isinstance(self.nth, bool) or self.nth not in (1, 2, 3, 4, 5, LAST):
            raise InvalidRecurrenceError(f"nth must be 1..5 or -1, got {self.nth!r}", field="nth")
        try:
            object.__setattr__(self, "weekday", Weekday(int(self.weekday)))
        except (ValueError, TypeError) as e:
            raise InvalidRecurrenceError(f"Invalid weekday: {self.weekday!r}", field="weekday") from e

    def _candidate_date(self, year: int, month: int) -> Optional[date]:
        return nth_weekday_of_month(year, month, self.nth, int(self.weekday))

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data["nth"] = self.nth
        data["weekday"] = int(self.weekday)
        return data


PATTERN_KINDS = {
    cls.kind: cls
    for cls in (DailyPattern, WeeklyPattern, MonthlyByDayPattern, MonthlyByNthWeekdayPattern)
}


def pattern_from_dict(data: Dict[str, Any]) -> RecurrencePattern:
    """Rebuild a pattern from its to_dict() form"""
    try:
        kind = data["kind"]
        cls = PATTERN_KINDS[kind]
        common = {
            "anchor_date": date.fromisoformat(data["anchor_date"]),
            "time_of_day": time.fromisoformat(data["time_of_day"]),
            "timezone_id": data.get("timezone_id", "UTC"),
            "interval": int(data.get("interval", 1)),
        }
    except (KeyError, ValueError, TypeError) as e:
        raise InvalidRecurrenceError(f"Malformed recurrence data: {e}") from e

    if cls is WeeklyPattern:
        return WeeklyPattern(**common, weekdays=frozenset(data.get("weekdays", [])))
    if cls is MonthlyByDayPattern:
        return MonthlyByDayPattern(**common, day_of_month=data.get("day_of_month"))
    if cls is MonthlyByNthWeekdayPattern:
        return MonthlyByNthWeekdayPattern(**common, nth=data.get("nth"), weekday=data.get("weekday"))
    return cls(**common)
