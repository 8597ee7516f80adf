from typing import Optional

from fastapi import Header

from timekeeper.exceptions import get_identity_exception
from timekeeper.utils.clock import SystemClock
from timekeeper.utils.timer_aggregator import TimerAggregator
from timekeeper.utils.timer_engine import TimerEngine
from timekeeper.utils.timer_service import Identity, TimerService

# Module-level singleton
_timer_service: Optional[TimerService] = None


def build_timer_service(store, clock=None) -> TimerService:
    clock = clock or SystemClock()
    return TimerService(TimerEngine(store, clock), TimerAggregator(store, clock))


def get_timer_service() -> TimerService:
    """Service backed by the MongoDB time log collection, created on first use."""
    global _timer_service
    if _timer_service is None:
        from timekeeper.db import time_logs_collection
        from timekeeper.utils.mongo_timer_store import MongoTimeLogStore

        _timer_service = build_timer_service(MongoTimeLogStore(time_logs_collection))
    return _timer_service


async def get_current_identity(
    x_user_id: Optional[str] = Header(None),
    x_org_id: Optional[str] = Header(None),
) -> Identity:
    """
    Caller identity as forwarded by the authentication gateway.
    The gateway has already checked that the user belongs to the org.
    """
    if not x_user_id or not x_org_id:
        raise get_identity_exception()
    return Identity(user_id=x_user_id, org_id=x_org_id)
