"""Shared fixtures: a controllable clock and services over the in-memory store."""

from datetime import datetime, timedelta

import pytest
from pytz import UTC

from timekeeper.utils.app_utils import build_timer_service
from timekeeper.utils.clock import Clock
from timekeeper.utils.timer_aggregator import TimerAggregator
from timekeeper.utils.timer_engine import TimerEngine
from timekeeper.utils.timer_store import InMemoryTimeLogStore

# Wednesday; the ISO week starts on Monday 2026-03-02
T0 = datetime(2026, 3, 4, 9, 0, 0, tzinfo=UTC)


class FakeClock(Clock):
    """Clock that only moves when told to."""

    def __init__(self, start: datetime = T0):
        self.current = start

    def now(self) -> datetime:
        return self.current

    def advance(self, seconds: float = 0, **kwargs) -> datetime:
        self.current += timedelta(seconds=seconds, **kwargs)
        return self.current

    def set(self, value: datetime) -> datetime:
        self.current = value
        return self.current


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store():
    return InMemoryTimeLogStore()


@pytest.fixture
def loose_store():
    """Store without the unique running-timer index, to seed broken data."""
    return InMemoryTimeLogStore(unique_active=False)


@pytest.fixture
def engine(store, clock):
    return TimerEngine(store, clock)


@pytest.fixture
def aggregator(store, clock):
    return TimerAggregator(store, clock)


@pytest.fixture
def service(store, clock):
    return build_timer_service(store, clock)
