import logging
import math
from datetime import datetime, timedelta
from typing import Dict, List, Optional, Tuple

import pytz
from pytz import UTC

from timekeeper.models.time_logs import TimeLog
from timekeeper.utils.clock import Clock, SystemClock
from timekeeper.utils.timer_store import TimeLogStore

logger = logging.getLogger(__name__)


def _local_midnight(zone, day) -> datetime:
    return zone.localize(datetime(day.year, day.month, day.day)).astimezone(UTC)


def get_period_ranges(now: datetime, timezone: Optional[str] = None) -> Dict[str, Tuple[datetime, datetime]]:
    """
    Half-open [start, end) UTC ranges for today, yesterday, this week and last
    week. Calendar boundaries follow `timezone` (UTC when omitted); weeks
    start on Monday.
    """
    zone = pytz.timezone(timezone) if timezone else UTC
    today = now.astimezone(zone).date()
    monday = today - timedelta(days=today.weekday())

    return {
        "today": (_local_midnight(zone, today), _local_midnight(zone, today + timedelta(days=1))),
        "yesterday": (_local_midnight(zone, today - timedelta(days=1)), _local_midnight(zone, today)),
        "this_week": (_local_midnight(zone, monday), _local_midnight(zone, monday + timedelta(days=7))),
        "last_week": (_local_midnight(zone, monday - timedelta(days=7)), _local_midnight(zone, monday)),
    }


def calculate_trend(current: int, previous: int) -> Dict:
    percentage = round((current - previous) / previous * 100, 1) if previous > 0 else 0.0
    if percentage > 0:
        direction = "up"
    elif percentage < 0:
        direction = "down"
    else:
        direction = "neutral"
    return {"percentage": abs(percentage), "direction": direction}


class TimerAggregator:
    """Read-only reporting over the time log store."""

    def __init__(self, store: TimeLogStore, clock: Optional[Clock] = None):
        self.store = store
        self.clock = clock or SystemClock()

    async def active_timers(self, user_id: str, org_id: str) -> List[TimeLog]:
        timers = await self.store.find_active(user_id, org_id)
        if len(timers) > 1:
            logger.warning(f"{len(timers)} active timers reported for user {user_id} in org {org_id}")
        return timers

    def total_active_time(self, timers: List[TimeLog], now: Optional[datetime] = None) -> int:
        now = now or self.clock.now()
        return sum(timer.current_duration(now) for timer in timers if timer.is_active)

    async def active_summary(self, user_id: str, org_id: str) -> Dict:
        timers = await self.active_timers(user_id, org_id)
        return {
            "timers": timers,
            "total_active_time": self.total_active_time(timers, self.clock.now()),
        }

    async def stats(self, user_id: str, org_id: str, timezone: Optional[str] = None) -> Dict:
        ranges = get_period_ranges(self.clock.now(), timezone)

        totals = {}
        for period, (start, end) in ranges.items():
            totals[period] = await self._period_totals(user_id, org_id, start, end)

        return {
            "timezone": timezone or "UTC",
            **totals,
            "today_trend": calculate_trend(totals["today"]["total_duration"], totals["yesterday"]["total_duration"]),
            "week_trend": calculate_trend(totals["this_week"]["total_duration"], totals["last_week"]["total_duration"]),
        }

    async def recent_entries(self, user_id: str, org_id: str, limit: int) -> List[TimeLog]:
        return await self.store.find(org_id, user_id=user_id, limit=limit)

    async def history(self, user_id: str, org_id: str, page: int = 1, limit: int = 50,
                      task_id: Optional[str] = None) -> Dict:
        timers = await self.store.find(
            org_id, user_id=user_id, active=False, task_id=task_id,
            skip=(page - 1) * limit, limit=limit,
        )
        total = await self.store.count(org_id, user_id=user_id, active=False, task_id=task_id)
        return {
            "timers": timers,
            "pagination": {
                "page": page,
                "limit": limit,
                "total": total,
                "pages": math.ceil(total / limit) if limit else 0,
            },
        }

    async def team_activity(self, org_id: str, start: Optional[datetime] = None, end: Optional[datetime] = None,
                            recent_limit: Optional[int] = None) -> Dict:
        """
        Per-user view of an organization's time logs, newest first.

        Completed logs count towards `total_time`/`total_entries`; the running
        log, if any, is reported separately as `active_timer`. Only the list of
        `recent_entries` is capped by `recent_limit`, never the totals.
        """
        logs = await self.store.find(org_id, begin_from=start, begin_to=end)

        summaries: Dict[str, Dict] = {}
        for log in logs:
            summary = summaries.setdefault(log.user_id, {
                "user_id": log.user_id,
                "total_time": 0,
                "total_entries": 0,
                "active_timer": None,
                "recent_entries": [],
            })

            if log.end is not None:
                summary["total_time"] += log.duration or 0
                summary["total_entries"] += 1
                if recent_limit is None or len(summary["recent_entries"]) < recent_limit:
                    summary["recent_entries"].append(log)
            elif summary["active_timer"] is None:
                summary["active_timer"] = log
            else:
                logger.warning(f"Extra active timer {log.id} for user {log.user_id} in org {org_id}")

        return {
            "team_activity": list(summaries.values()),
            "total_logs": len(logs),
        }

    async def _period_totals(self, user_id: str, org_id: str, start: datetime, end: datetime) -> Dict:
        logs = await self.store.find(
            org_id, user_id=user_id, active=False,
            begin_from=start, begin_to=end - timedelta(microseconds=1),
        )
        return {
            "start": start,
            "end": end,
            "count": len(logs),
            "total_duration": sum(log.duration or 0 for log in logs),
        }
