from motor.motor_asyncio import AsyncIOMotorClient
from pymongo import ASCENDING, DESCENDING
from timekeeper.config import settings


client = AsyncIOMotorClient(settings.MONGODB_URL, tz_aware=True)
db = client[settings.DATABASE_NAME]


time_logs_collection = db.time_logs


async def ensure_indexes():
    # active_key ({user_id, org_id}) only exists while a log is running, so
    # the sparse unique index allows at most one running log per pair
    await time_logs_collection.create_index("active_key", unique=True, sparse=True)
    await time_logs_collection.create_index(
        [("org_id", ASCENDING), ("user_id", ASCENDING), ("begin", DESCENDING)]
    )
    await time_logs_collection.create_index([("org_id", ASCENDING), ("end", ASCENDING)])
