import math
from datetime import datetime
from typing import Optional

from pydantic import BaseModel, computed_field


class TimeLog(BaseModel):
    id: str
    user_id: str
    org_id: str
    task_id: Optional[str] = None
    description: str = ""
    category: str = "work"
    begin: datetime
    end: Optional[datetime] = None  # None while the timer is running
    duration: Optional[int] = None  # whole seconds, frozen at stop
    timezone: str = "UTC"
    clock_skew: bool = False  # duration was clamped because end < begin

    @computed_field
    @property
    def status(self) -> str:
        return "running" if self.end is None else "stopped"

    @property
    def is_active(self) -> bool:
        return self.end is None

    def current_duration(self, now: datetime) -> int:
        """Elapsed seconds for display; stopped logs report their frozen duration."""
        if self.end is not None:
            return self.duration or 0
        return max(0, math.floor((now - self.begin).total_seconds()))
