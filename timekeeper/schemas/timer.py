from datetime import datetime
from typing import List, Optional

import pytz
from pydantic import BaseModel, ConfigDict, Field, field_validator

from timekeeper.config import settings
from timekeeper.models.time_logs import TimeLog


def check_timezone_name(value: Optional[str]) -> Optional[str]:
    if value is None:
        return value
    try:
        pytz.timezone(value)
    except pytz.UnknownTimeZoneError:
        raise ValueError(f"Unknown timezone '{value}'")
    return value


class StartTimer(BaseModel):
    task_id: Optional[str] = None
    description: Optional[str] = Field(None, max_length=settings.DESCRIPTION_MAX_LENGTH)
    category: Optional[str] = None
    timezone: Optional[str] = None

    @field_validator("timezone")
    @classmethod
    def check_timezone(cls, value):
        return check_timezone_name(value)


class UpdateTimer(BaseModel):
    model_config = ConfigDict(extra="forbid")

    description: Optional[str] = Field(None, max_length=settings.DESCRIPTION_MAX_LENGTH)
    task_id: Optional[str] = None
    category: Optional[str] = None


class CurrentTimer(BaseModel):
    timer: Optional[TimeLog] = None
    current_duration: int = 0


class ActiveTimers(BaseModel):
    timers: List[TimeLog]
    total_active_time: int


class DeletedTimer(BaseModel):
    message: str
    deleted_timer: TimeLog


class PeriodTotals(BaseModel):
    start: datetime
    end: datetime
    count: int
    total_duration: int


class Trend(BaseModel):
    percentage: float
    direction: str  # up, down or neutral


class TimerStats(BaseModel):
    timezone: str
    today: PeriodTotals
    yesterday: PeriodTotals
    this_week: PeriodTotals
    last_week: PeriodTotals
    today_trend: Trend
    week_trend: Trend


class RecentEntries(BaseModel):
    entries: List[TimeLog]


class Pagination(BaseModel):
    page: int
    limit: int
    total: int
    pages: int


class TimerHistory(BaseModel):
    timers: List[TimeLog]
    pagination: Pagination


class UserActivity(BaseModel):
    user_id: str
    total_time: int
    total_entries: int
    active_timer: Optional[TimeLog] = None
    recent_entries: List[TimeLog] = Field(default_factory=list)


class TeamActivity(BaseModel):
    team_activity: List[UserActivity]
    total_logs: int
