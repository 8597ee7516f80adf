import logging

from apscheduler.schedulers.asyncio import AsyncIOScheduler

from timekeeper.config import settings
from timekeeper.exceptions import TimerError
from timekeeper.utils.app_utils import get_timer_service

logger = logging.getLogger(__name__)

# Create a shared scheduler instance
scheduler = AsyncIOScheduler()


async def heal_active_timers(service=None):
    """Stop the surplus running timers of any user that somehow has more than one."""
    service = service or get_timer_service()
    try:
        healed = await service.engine.heal_duplicates()
    except TimerError as e:
        logger.error(f"Error during active timer sweep: {e}")
        return 0

    if healed:
        logger.warning(f"Active timer sweep repaired {healed} user(s)")
    else:
        logger.info("Active timer sweep found nothing to repair")
    return healed

# Add active timer sweep job to scheduler
scheduler.add_job(
    heal_active_timers,
    "interval",
    minutes=settings.INVARIANT_SWEEP_MINUTES,
)
