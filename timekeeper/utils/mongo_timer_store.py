import logging
from contextlib import contextmanager
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

from bson import ObjectId
from pymongo import DESCENDING, ReturnDocument
from pymongo.errors import DuplicateKeyError, PyMongoError

from timekeeper.exceptions import ActiveTimerConflict, StoreError
from timekeeper.models.time_logs import TimeLog
from timekeeper.utils.clock import ensure_utc
from timekeeper.utils.timer_store import TimeLogStore

logger = logging.getLogger(__name__)


@contextmanager
def store_errors(operation: str, **context):
    """Translate driver failures into timer errors, logging what was attempted."""
    try:
        yield
    except DuplicateKeyError as e:
        raise ActiveTimerConflict(**context) from e
    except PyMongoError as e:
        logger.error(f"Time log store failure during {operation} ({context}): {e}")
        raise StoreError(operation=operation, **context) from e


def active_key(user_id: str, org_id: str) -> Dict[str, str]:
    # kept as a sub-document so no two (user_id, org_id) pairs share a key
    return {"user_id": user_id, "org_id": org_id}


def build_query(org_id, user_id=None, active=None, begin_from=None, begin_to=None, task_id=None) -> Dict[str, Any]:
    query: Dict[str, Any] = {"org_id": org_id}
    if user_id is not None:
        query["user_id"] = user_id
    if active is True:
        query["end"] = None
    elif active is False:
        query["end"] = {"$ne": None}
    if begin_from is not None or begin_to is not None:
        query["begin"] = {}
        if begin_from is not None:
            query["begin"]["$gte"] = begin_from
        if begin_to is not None:
            query["begin"]["$lte"] = begin_to
    if task_id is not None:
        query["task_id"] = task_id
    return query


class MongoTimeLogStore(TimeLogStore):
    """Time logs in a MongoDB collection (see db.ensure_indexes for the active index)."""

    def __init__(self, collection):
        super().__init__()
        self.collection = collection

    def new_id(self) -> str:
        return str(ObjectId())

    @staticmethod
    def _object_id(timer_id: str) -> Optional[ObjectId]:
        return ObjectId(timer_id) if ObjectId.is_valid(timer_id) else None

    @staticmethod
    def _to_document(log: TimeLog) -> Dict[str, Any]:
        document = log.model_dump(exclude={"id", "status"})
        document["_id"] = ObjectId(log.id)
        if log.end is None:
            document["active_key"] = active_key(log.user_id, log.org_id)
        return document

    @staticmethod
    def _to_time_log(document: Dict[str, Any]) -> TimeLog:
        document = dict(document)
        document["id"] = str(document.pop("_id"))
        document.pop("active_key", None)
        document["begin"] = ensure_utc(document["begin"])
        if document.get("end") is not None:
            document["end"] = ensure_utc(document["end"])
        return TimeLog(**document)

    async def insert(self, log: TimeLog) -> TimeLog:
        with store_errors("insert", timer_id=log.id, user_id=log.user_id, org_id=log.org_id):
            await self.collection.insert_one(self._to_document(log))
        return log

    async def get(self, timer_id: str) -> Optional[TimeLog]:
        object_id = self._object_id(timer_id)
        if object_id is None:
            return None
        with store_errors("get", timer_id=timer_id):
            document = await self.collection.find_one({"_id": object_id})
        return self._to_time_log(document) if document else None

    async def find_active(self, user_id: str, org_id: str) -> List[TimeLog]:
        return await self.find(org_id, user_id=user_id, active=True)

    async def close(self, timer_id: str, end: datetime, duration: int, clock_skew: bool = False) -> Optional[TimeLog]:
        object_id = self._object_id(timer_id)
        if object_id is None:
            return None
        with store_errors("close", timer_id=timer_id):
            document = await self.collection.find_one_and_update(
                {"_id": object_id, "end": None},
                {
                    "$set": {"end": end, "duration": duration, "clock_skew": clock_skew},
                    "$unset": {"active_key": ""},
                },
                return_document=ReturnDocument.AFTER,
            )
        return self._to_time_log(document) if document else None

    async def update_fields(self, timer_id: str, changes: Dict[str, Any]) -> Optional[TimeLog]:
        object_id = self._object_id(timer_id)
        if object_id is None:
            return None
        with store_errors("update", timer_id=timer_id):
            document = await self.collection.find_one_and_update(
                {"_id": object_id},
                {"$set": changes},
                return_document=ReturnDocument.AFTER,
            )
        return self._to_time_log(document) if document else None

    async def delete(self, timer_id: str) -> Optional[TimeLog]:
        object_id = self._object_id(timer_id)
        if object_id is None:
            return None
        with store_errors("delete", timer_id=timer_id):
            document = await self.collection.find_one_and_delete({"_id": object_id})
        return self._to_time_log(document) if document else None

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
        query = build_query(org_id, user_id, active, begin_from, begin_to, task_id)
        with store_errors("find", org_id=org_id, user_id=user_id):
            cursor = self.collection.find(query).sort("begin", DESCENDING).skip(skip)
            if limit is not None:
                cursor = cursor.limit(limit)
            documents = await cursor.to_list(length=None)
        return [self._to_time_log(document) for document in documents]

    async def count(
        self,
        org_id: str,
        user_id: Optional[str] = None,
        active: Optional[bool] = None,
        begin_from: Optional[datetime] = None,
        begin_to: Optional[datetime] = None,
        task_id: Optional[str] = None,
    ) -> int:
        query = build_query(org_id, user_id, active, begin_from, begin_to, task_id)
        with store_errors("count", org_id=org_id, user_id=user_id):
            return await self.collection.count_documents(query)

    async def find_duplicate_active(self) -> List[Tuple[str, str]]:
        pipeline = [
            {"$match": {"end": None}},
            {"$group": {"_id": {"user_id": "$user_id", "org_id": "$org_id"}, "count": {"$sum": 1}}},
            {"$match": {"count": {"$gt": 1}}},
        ]
        with store_errors("find_duplicate_active"):
            groups = await self.collection.aggregate(pipeline).to_list(length=None)
        return [(group["_id"]["user_id"], group["_id"]["org_id"]) for group in groups]
