from datetime import datetime
from typing import Any, Dict, Optional, Type, Union

from pydantic import BaseModel
from pydantic import ValidationError as SchemaValidationError

from timekeeper.config import settings
from timekeeper.exceptions import ValidationError
from timekeeper.models.time_logs import TimeLog
from timekeeper.schemas.timer import StartTimer, UpdateTimer, check_timezone_name
from timekeeper.utils.clock import ensure_utc
from timekeeper.utils.timer_aggregator import TimerAggregator
from timekeeper.utils.timer_engine import TimerEngine


class Identity(BaseModel):
    """The authenticated caller, as resolved by the auth gateway."""

    user_id: str
    org_id: str


def _parse(schema: Type[BaseModel], payload: Union[BaseModel, Dict[str, Any], None]) -> BaseModel:
    if isinstance(payload, schema):
        return payload
    try:
        return schema(**(payload or {}))
    except SchemaValidationError as e:
        messages = "; ".join(f"{'.'.join(str(part) for part in error['loc'])}: {error['msg']}" for error in e.errors())
        raise ValidationError(messages)


def _check_limit(name: str, value: int) -> int:
    if value < 1 or value > settings.MAX_PAGE_SIZE:
        raise ValidationError(f"{name} must be between 1 and {settings.MAX_PAGE_SIZE}")
    return value


class TimerService:
    """
    Entry point for request handlers.

    The caller's identity is always passed separately from the payload, so a
    payload field can never stand in for the owner of a timer.
    """

    def __init__(self, engine: TimerEngine, aggregator: TimerAggregator):
        self.engine = engine
        self.aggregator = aggregator

    @staticmethod
    def _require_identity(identity: Optional[Identity]) -> Identity:
        if identity is None or not identity.user_id or not identity.org_id:
            raise ValidationError("user_id and org_id are required")
        return identity

    async def start(self, identity: Identity, payload: Union[StartTimer, Dict[str, Any], None] = None) -> TimeLog:
        identity = self._require_identity(identity)
        data = _parse(StartTimer, payload)
        return await self.engine.start(
            identity.user_id,
            identity.org_id,
            task_id=data.task_id,
            description=data.description,
            category=data.category,
            timezone=data.timezone,
        )

    async def stop(self, identity: Identity, timer_id: str) -> TimeLog:
        identity = self._require_identity(identity)
        return await self.engine.stop(timer_id, identity.user_id)

    async def update(self, identity: Identity, timer_id: str,
                     payload: Union[UpdateTimer, Dict[str, Any], None]) -> TimeLog:
        identity = self._require_identity(identity)
        data = _parse(UpdateTimer, payload)
        return await self.engine.update(timer_id, identity.user_id, data.model_dump(exclude_unset=True))

    async def restart(self, identity: Identity, timer_id: str) -> TimeLog:
        identity = self._require_identity(identity)
        return await self.engine.restart(timer_id, identity.user_id, identity.org_id)

    async def delete(self, identity: Identity, timer_id: str) -> Dict[str, Any]:
        identity = self._require_identity(identity)
        deleted = await self.engine.delete(timer_id, identity.user_id)
        return {"message": "Timer deleted successfully", "deleted_timer": deleted}

    async def current(self, identity: Identity) -> Dict[str, Any]:
        identity = self._require_identity(identity)
        timer = await self.engine.get_active(identity.user_id, identity.org_id)
        if timer is None:
            return {"timer": None, "current_duration": 0}
        return {"timer": timer, "current_duration": timer.current_duration(self.engine.clock.now())}

    async def active_timers(self, identity: Identity) -> Dict[str, Any]:
        identity = self._require_identity(identity)
        return await self.aggregator.active_summary(identity.user_id, identity.org_id)

    async def stats(self, identity: Identity, timezone: Optional[str] = None) -> Dict[str, Any]:
        identity = self._require_identity(identity)
        try:
            check_timezone_name(timezone)
        except ValueError as e:
            raise ValidationError(str(e))
        return await self.aggregator.stats(identity.user_id, identity.org_id, timezone)

    async def recent_entries(self, identity: Identity, limit: Optional[int] = None) -> Dict[str, Any]:
        identity = self._require_identity(identity)
        limit = _check_limit("limit", limit if limit is not None else settings.RECENT_ENTRIES_LIMIT)
        entries = await self.aggregator.recent_entries(identity.user_id, identity.org_id, limit)
        return {"entries": entries}

    async def history(self, identity: Identity, page: int = 1, limit: int = 50,
                      task_id: Optional[str] = None) -> Dict[str, Any]:
        identity = self._require_identity(identity)
        if page < 1:
            raise ValidationError("page must be 1 or greater")
        _check_limit("limit", limit)
        return await self.aggregator.history(identity.user_id, identity.org_id, page, limit, task_id)

    async def team_activity(self, identity: Identity, start: Optional[datetime] = None,
                            end: Optional[datetime] = None) -> Dict[str, Any]:
        # org membership of the caller is confirmed by the gateway
        identity = self._require_identity(identity)
        start = ensure_utc(start) if start else None
        end = ensure_utc(end) if end else None
        if start and end and start > end:
            raise ValidationError("start must not be after end")
        return await self.aggregator.team_activity(
            identity.org_id, start, end, recent_limit=settings.TEAM_RECENT_ENTRIES_LIMIT,
        )
