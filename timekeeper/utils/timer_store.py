import asyncio
import uuid
import weakref
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

from timekeeper.exceptions import ActiveTimerConflict
from timekeeper.models.time_logs import TimeLog


class TimeLogStore(ABC):
    """
    Persistence contract for time logs.

    Implementations must reject a second running log for the same
    (user_id, org_id) with ActiveTimerConflict when they can, and must write
    `end` and `duration` of a log in a single operation.
    """

    def __init__(self):
        # one lock per (user_id, org_id), dropped once nobody holds or waits on it
        self._locks: "weakref.WeakValueDictionary[Tuple[str, str], asyncio.Lock]" = weakref.WeakValueDictionary()

    def active_lock(self, user_id: str, org_id: str) -> asyncio.Lock:
        key = (org_id, user_id)
        lock = self._locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[key] = lock
        return lock

    @abstractmethod
    def new_id(self) -> str:
        ...

    @abstractmethod
    async def insert(self, log: TimeLog) -> TimeLog:
        ...

    @abstractmethod
    async def get(self, timer_id: str) -> Optional[TimeLog]:
        ...

    @abstractmethod
    async def find_active(self, user_id: str, org_id: str) -> List[TimeLog]:
        """All running logs for the pair, newest `begin` first."""

    @abstractmethod
    async def close(self, timer_id: str, end: datetime, duration: int, clock_skew: bool = False) -> Optional[TimeLog]:
        """Stop a running log. Returns None when it is missing or already stopped."""

    @abstractmethod
    async def update_fields(self, timer_id: str, changes: Dict[str, Any]) -> Optional[TimeLog]:
        ...

    @abstractmethod
    async def delete(self, timer_id: str) -> Optional[TimeLog]:
        ...

    @abstractmethod
    async def find(
        self,
        org_id: str,
        user_id: Optional[str] = None,
        active: Optional[bool] = None,
        begin_from: Optional[datetime] = None,
        begin_to: Optional[datetime] = None,
        task_id: Optional[str] = None,
        skip: int = 0,
        limit: Optional[int] = None,
    ) -> List[TimeLog]:
        """Logs matching the filters, newest `begin` first."""

    @abstractmethod
    async def count(
        self,
        org_id: str,
        user_id: Optional[str] = None,
        active: Optional[bool] = None,
        begin_from: Optional[datetime] = None,
        begin_to: Optional[datetime] = None,
        task_id: Optional[str] = None,
    ) -> int:
        ...

    @abstractmethod
    async def find_duplicate_active(self) -> List[Tuple[str, str]]:
        """(user_id, org_id) pairs that currently have more than one running log."""


class InMemoryTimeLogStore(TimeLogStore):
    """
    Process-local store.

    With `unique_active` (the default) a per-pair index plays the role of the
    unique constraint; turning it off models a backend without one.
    """

    def __init__(self, unique_active: bool = True):
        super().__init__()
        self.unique_active = unique_active
        self._logs: Dict[str, TimeLog] = {}
        self._active_index: Dict[Tuple[str, str], str] = {}

    def new_id(self) -> str:
        return uuid.uuid4().hex

    async def insert(self, log: TimeLog) -> TimeLog:
        if log.end is None and self.unique_active:
            key = (log.user_id, log.org_id)
            if key in self._active_index:
                raise ActiveTimerConflict(user_id=log.user_id, org_id=log.org_id)
            self._active_index[key] = log.id
        self._logs[log.id] = log.model_copy()
        return log.model_copy()

    async def get(self, timer_id: str) -> Optional[TimeLog]:
        log = self._logs.get(timer_id)
        return log.model_copy() if log else None

    async def find_active(self, user_id: str, org_id: str) -> List[TimeLog]:
        return await self.find(org_id, user_id=user_id, active=True)

    async def close(self, timer_id: str, end: datetime, duration: int, clock_skew: bool = False) -> Optional[TimeLog]:
        log = self._logs.get(timer_id)
        if log is None or log.end is not None:
            return None

        stopped = log.model_copy(update={"end": end, "duration": duration, "clock_skew": clock_skew})
        self._logs[timer_id] = stopped
        self._release_active(stopped)
        return stopped.model_copy()

    async def update_fields(self, timer_id: str, changes: Dict[str, Any]) -> Optional[TimeLog]:
        log = self._logs.get(timer_id)
        if log is None:
            return None

        updated = log.model_copy(update=changes)
        self._logs[timer_id] = updated
        return updated.model_copy()

    async def delete(self, timer_id: str) -> Optional[TimeLog]:
        log = self._logs.pop(timer_id, None)
        if log is None:
            return None
        self._release_active(log)
        return log

    async def find(
        self,
        org_id: str,
        user_id: Optional[str] = None,
        active: Optional[bool] = None,
        begin_from: Optional[datetime] = None,
        begin_to: Optional[datetime] = None,
        task_id: Optional[str] = None,
        skip: int = 0,
        limit: Optional[int] = None,
    ) -> List[TimeLog]:
        matches = [
            log for log in self._logs.values()
            if self._matches(log, org_id, user_id, active, begin_from, begin_to, task_id)
        ]
        matches.sort(key=lambda log: log.begin, reverse=True)
        matches = matches[skip:]
        if limit is not None:
            matches = matches[:limit]
        return [log.model_copy() for log in matches]

    async def count(
        self,
        org_id: str,
        user_id: Optional[str] = None,
        active: Optional[bool] = None,
        begin_from: Optional[datetime] = None,
        begin_to: Optional[datetime] = None,
        task_id: Optional[str] = None,
    ) -> int:
        return sum(
            1 for log in self._logs.values()
            if self._matches(log, org_id, user_id, active, begin_from, begin_to, task_id)
        )

    async def find_duplicate_active(self) -> List[Tuple[str, str]]:
        counts: Dict[Tuple[str, str], int] = {}
        for log in self._logs.values():
            if log.end is None:
                pair = (log.user_id, log.org_id)
                counts[pair] = counts.get(pair, 0) + 1
        return [pair for pair, total in counts.items() if total > 1]

    def _release_active(self, log: TimeLog) -> None:
        key = (log.user_id, log.org_id)
        if self._active_index.get(key) == log.id:
            del self._active_index[key]

    @staticmethod
    def _matches(log, org_id, user_id, active, begin_from, begin_to, task_id) -> bool:
        if log.org_id != org_id:
            return False
        if user_id is not None and log.user_id != user_id:
            return False
        if active is not None and log.is_active != active:
            return False
        if begin_from is not None and log.begin < begin_from:
            return False
        if begin_to is not None and log.begin > begin_to:
            return False
        if task_id is not None and log.task_id != task_id:
            return False
        return True
