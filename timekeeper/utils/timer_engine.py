import logging
import math
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

from timekeeper.config import settings
from timekeeper.exceptions import (ActiveTimerConflict, AlreadyStoppedError, InvariantViolation,
                                   NotFoundError, StoreError, ValidationError)
from timekeeper.models.time_logs import TimeLog
from timekeeper.utils.clock import Clock, SystemClock, truncate_to_millis
from timekeeper.utils.timer_store import TimeLogStore

logger = logging.getLogger(__name__)

MUTABLE_FIELDS = ("description", "task_id", "category")


def compute_duration(begin: datetime, end: datetime) -> Tuple[int, bool]:
    """
    Whole seconds between begin and end, and whether the value was clamped.
    A negative span (clock moved backwards) is reported as 0.
    """
    seconds = math.floor((end - begin).total_seconds())
    if seconds < 0:
        return 0, True
    return seconds, False


def format_duration(seconds: int) -> str:
    if seconds <= 0:
        return "0s"

    hours = seconds // 3600
    minutes = (seconds % 3600) // 60
    secs = seconds % 60

    parts = []
    if hours:
        parts.append(f"{hours}h")
    if minutes:
        parts.append(f"{minutes}m")
    if secs and not hours:
        parts.append(f"{secs}s")
    return " ".join(parts)


class TimerEngine:
    """
    Timer state machine over a TimeLogStore.

    Per (user_id, org_id) a timer goes NONE -> ACTIVE -> STOPPED, and at most
    one log is ACTIVE at a time. Starting while a timer runs stops the running
    one first.
    """

    def __init__(self, store: TimeLogStore, clock: Optional[Clock] = None,
                 start_retry_attempts: int = settings.START_RETRY_ATTEMPTS):
        self.store = store
        self.clock = clock or SystemClock()
        self.start_retry_attempts = max(1, start_retry_attempts)

    async def start(
        self,
        user_id: str,
        org_id: str,
        task_id: Optional[str] = None,
        description: Optional[str] = None,
        category: Optional[str] = None,
        timezone: Optional[str] = None,
    ) -> TimeLog:
        if not user_id or not org_id:
            raise ValidationError("user_id and org_id are required")

        async with self.store.active_lock(user_id, org_id):
            for attempt in range(1, self.start_retry_attempts + 1):
                now = self._now()
                running_logs = await self.store.find_active(user_id, org_id)
                if len(running_logs) > 1:
                    violation = InvariantViolation(user_id=user_id, org_id=org_id, count=len(running_logs))
                    logger.error(
                        f"{violation.message}: {len(running_logs)} running for user {user_id} in org {org_id} "
                        f"while starting a timer; stopping all of them"
                    )
                for running in running_logs:
                    stopped = await self._close(running, now)
                    if stopped is not None:
                        logger.info(
                            f"Implicitly stopped timer {stopped.id} for user {user_id} in org {org_id} "
                            f"after {format_duration(stopped.duration)}"
                        )

                log = TimeLog(
                    id=self.store.new_id(),
                    user_id=user_id,
                    org_id=org_id,
                    task_id=task_id,
                    description=description if description is not None else settings.DEFAULT_DESCRIPTION,
                    category=category if category is not None else settings.DEFAULT_CATEGORY,
                    begin=now,
                    timezone=timezone or settings.DEFAULT_TIMEZONE,
                )
                try:
                    created = await self.store.insert(log)
                except ActiveTimerConflict:
                    # another writer got its timer in between; stop it and try again
                    logger.warning(
                        f"Active timer conflict for user {user_id} in org {org_id} "
                        f"(attempt {attempt}/{self.start_retry_attempts})"
                    )
                    continue

                logger.info(f"Started timer {created.id} for user {user_id} in org {org_id} (task {task_id})")
                return created

        logger.error(f"Giving up starting a timer for user {user_id} in org {org_id} after repeated conflicts")
        raise StoreError("Could not start timer", user_id=user_id, org_id=org_id)

    async def stop(self, timer_id: str, user_id: str) -> TimeLog:
        log = await self._get_owned(timer_id, user_id)
        if log.end is not None:
            raise AlreadyStoppedError(timer_id=timer_id)

        async with self.store.active_lock(log.user_id, log.org_id):
            stopped = await self._close(log, self._now())

        if stopped is None:
            # a concurrent request got there first
            if await self.store.get(timer_id) is None:
                raise NotFoundError(timer_id=timer_id)
            raise AlreadyStoppedError(timer_id=timer_id)

        logger.info(f"Stopped timer {timer_id} for user {user_id} after {format_duration(stopped.duration)}")
        return stopped

    async def get_active(self, user_id: str, org_id: str) -> Optional[TimeLog]:
        running = await self.store.find_active(user_id, org_id)
        if len(running) > 1:
            return await self._heal(user_id, org_id)
        return running[0] if running else None

    async def update(self, timer_id: str, user_id: str, changes: Dict[str, Any]) -> TimeLog:
        rejected = sorted(set(changes) - set(MUTABLE_FIELDS))
        if rejected:
            raise ValidationError(f"Fields cannot be updated: {', '.join(rejected)}")
        for field in ("description", "category"):
            if field in changes and changes[field] is None:
                raise ValidationError(f"{field} cannot be empty")

        log = await self._get_owned(timer_id, user_id)
        if not changes:
            return log

        updated = await self.store.update_fields(timer_id, changes)
        if updated is None:
            raise NotFoundError(timer_id=timer_id)
        logger.info(f"Updated timer {timer_id} ({', '.join(sorted(changes))})")
        return updated

    async def restart(self, timer_id: str, user_id: str, org_id: str) -> TimeLog:
        source = await self._get_owned(timer_id, user_id)
        if source.org_id != org_id:
            raise NotFoundError(timer_id=timer_id)

        restarted = await self.start(
            user_id,
            org_id,
            task_id=source.task_id,
            description=source.description,
            category=source.category,
            timezone=source.timezone,
        )
        logger.info(f"Restarted timer {timer_id} as {restarted.id}")
        return restarted

    async def delete(self, timer_id: str, user_id: str) -> TimeLog:
        await self._get_owned(timer_id, user_id)
        deleted = await self.store.delete(timer_id)
        if deleted is None:
            raise NotFoundError(timer_id=timer_id)
        logger.info(f"Deleted timer {timer_id} for user {user_id}")
        return deleted

    async def heal_duplicates(self) -> int:
        """Repair every (user_id, org_id) with more than one running log. Returns how many were repaired."""
        pairs = await self.store.find_duplicate_active()
        for user_id, org_id in pairs:
            await self._heal(user_id, org_id)
        return len(pairs)

    async def _heal(self, user_id: str, org_id: str) -> Optional[TimeLog]:
        async with self.store.active_lock(user_id, org_id):
            running: List[TimeLog] = await self.store.find_active(user_id, org_id)
            if len(running) <= 1:
                return running[0] if running else None

            violation = InvariantViolation(user_id=user_id, org_id=org_id, count=len(running))
            survivor, extras = running[0], running[1:]
            logger.error(
                f"{violation.message}: {len(running)} running for user {user_id} in org {org_id}; "
                f"keeping {survivor.id}, stopping {', '.join(log.id for log in extras)}"
            )
            now = self._now()
            for extra in extras:
                await self._close(extra, now)
            return survivor

    async def _get_owned(self, timer_id: str, user_id: str) -> TimeLog:
        if not timer_id or not user_id:
            raise ValidationError("timer_id and user_id are required")
        log = await self.store.get(timer_id)
        if log is None or log.user_id != user_id:
            raise NotFoundError(timer_id=timer_id)
        return log

    def _now(self) -> datetime:
        return truncate_to_millis(self.clock.now())

    async def _close(self, log: TimeLog, now: datetime) -> Optional[TimeLog]:
        duration, clock_skew = compute_duration(log.begin, now)
        if clock_skew:
            logger.warning(
                f"Clock skew stopping timer {log.id}: end {now.isoformat()} is before "
                f"begin {log.begin.isoformat()}, duration clamped to 0"
            )
        return await self.store.close(log.id, now, duration, clock_skew)
