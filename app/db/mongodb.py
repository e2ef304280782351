import logging
from datetime import datetime, timezone
from typing import Optional

from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorDatabase

from app.core.config import settings

logger = logging.getLogger(__name__)


class MongoDB:
    client: Optional[AsyncIOMotorClient] = None

    def __init__(self, url: str = None, database_name: str = None) -> None:
        self.url = url or settings.MONGODB_URL
        self.database_name = database_name or settings.MONGODB_DATABASE

    async def connect_to_mongo(self) -> None:
        """Create database connection"""
        # tz_aware keeps expiry comparisons between stored and fresh timestamps valid
        self.client = AsyncIOMotorClient(self.url, tz_aware=True)
        logger.info("Connected to MongoDB database %s", self.database_name)

    async def close_mongo_connection(self) -> None:
        """Close database connection"""
        if self.client:
            self.client.close()
            self.client = None
        logger.info("Disconnected from MongoDB")

    def get_database(self) -> AsyncIOMotorDatabase:
        """Get database instance"""
        if self.client is None:
            raise RuntimeError("MongoDB client not connected. Call connect_to_mongo() first.")
        return self.client[self.database_name]


def utcnow() -> datetime:
    """Timezone-aware current UTC time"""
    return datetime.now(timezone.utc)


def ensure_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Treat naive datetimes coming back from the store as UTC"""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


mongodb = MongoDB()
