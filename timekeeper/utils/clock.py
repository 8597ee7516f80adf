from abc import ABC, abstractmethod
from datetime import datetime

from pytz import UTC


def ensure_utc(value: datetime) -> datetime:
    """Treat naive datetimes as UTC and convert aware ones to UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


def truncate_to_millis(value: datetime) -> datetime:
    # MongoDB keeps millisecond precision
    return value.replace(microsecond=value.microsecond // 1000 * 1000)


class Clock(ABC):
    """Source of the current instant. Tests swap in a deterministic one."""

    @abstractmethod
    def now(self) -> datetime:
        ...


class SystemClock(Clock):
    def now(self) -> datetime:
        return datetime.now(UTC)
