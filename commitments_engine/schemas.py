"""Pydantic schemas validating commitment input before it reaches the domain factory"""

import re
import uuid
from datetime import date, datetime, time, timedelta
from typing import List, Literal, Optional

from pydantic import BaseModel, Field, field_validator, model_validator

from commitments_engine.config import settings
from commitments_engine.domain.commitment import Commitment
from commitments_engine.domain.recurrence import (
    DailyPattern,
    MonthlyByDayPattern,
    MonthlyByNthWeekdayPattern,
    RecurrencePattern,
    WeeklyPattern,
)
from commitments_engine.utils.date_utils import is_valid_timezone


class ScheduleInput(BaseModel):
    """Recurrence definition as submitted by a client"""

    pattern_type: Literal["daily", "weekly", "monthly_day", "monthly_nth"]
    interval: int = Field(1, ge=1, description="Every N days / weeks / months")
    weekdays: Optional[List[int]] = Field(None, description="0=Mon .. 6=Sun, weekly only")
    month_day: Optional[int] = Field(None, ge=1, le=31)
    nth_week: Optional[int] = Field(None, description="1..5, or -1 for the last week")
    nth_weekday: Optional[int] = Field(None, ge=0, le=6)
    start_date: date
    time_of_day: time

    @field_validator("weekdays")
    @classmethod
    def check_weekdays(cls, value: Optional[List[int]]) -> Optional[List[int]]:
        if value is not None and any(d < 0 or d > 6 for d in value):
            raise ValueError("Weekdays must be 0..6")
        return value

    @model_validator(mode="after")
    def check_pattern_fields(self) -> "ScheduleInput":
        if self.pattern_type == "weekly" and not self.weekdays:
            raise ValueError("weekdays required for weekly")
        if self.pattern_type == "monthly_day" and self.month_day is None:
            raise ValueError("month_day 1-31 required for monthly_day")
        if self.pattern_type == "monthly_nth":
            if self.nth_week not in (1, 2, 3, 4, 5, -1):
                raise ValueError("nth_week 1-5 or -1 required for monthly_nth")
            if self.nth_weekday is None:
                raise ValueError("nth_weekday 0-6 required for monthly_nth")
        return self

    def to_pattern(self, timezone_id: str) -> RecurrencePattern:
        common = dict(
            anchor_date=self.start_date,
            time_of_day=self.time_of_day,
            timezone_id=timezone_id,
            interval=self.interval,
        )
        if self.pattern_type == "weekly":
            return WeeklyPattern(**common, weekdays=frozenset(self.weekdays or []))
        if self.pattern_type == "monthly_day":
            return MonthlyByDayPattern(**common, day_of_month=self.month_day)
        if self.pattern_type == "monthly_nth":
            return MonthlyByNthWeekdayPattern(**common, nth=self.nth_week, weekday=self.nth_weekday)
        return DailyPattern(**common)


class CommitmentInput(BaseModel):
    """Request to create a commitment"""

    user_id: uuid.UUID
    goal: str = Field(..., min_length=1, max_length=200)
    stake_amount_minor: int = Field(..., gt=0, description="Stake in minor currency units")
    currency: str
    deadline_utc: datetime
    timezone: str = "UTC"
    schedule: ScheduleInput

    @field_validator("goal")
    @classmethod
    def check_goal(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("Goal length 1-200 required")
        return value

    @field_validator("currency")
    @classmethod
    def check_currency(cls, value: str) -> str:
        code = value.strip().upper()
        if not re.fullmatch(r"[A-Z]{3}", code):
            raise ValueError("Invalid format")
        if code not in settings.allowed_currencies:
            raise ValueError("Unsupported currency")
        return code

    @field_validator("timezone")
    @classmethod
    def check_timezone(cls, value: str) -> str:
        if not is_valid_timezone(value):
            raise ValueError(f"Unknown timezone: {value}")
        return value

    def to_commitment(self, now: datetime) -> Commitment:
        """Build the domain entity; schedule/deadline consistency is checked by the factory"""
        return Commitment.create(
            user_id=self.user_id,
            goal=self.goal,
            stake_amount_minor=self.stake_amount_minor,
            currency=self.currency,
            deadline_utc=self.deadline_utc,
            timezone=self.timezone,
            recurrence=self.schedule.to_pattern(self.timezone),
            now=now,
            goal_max_length=settings.goal_max_length,
            min_deadline_lead=timedelta(minutes=settings.min_deadline_lead_minutes),
            editing_lock=timedelta(hours=settings.editing_lock_hours),
        )
