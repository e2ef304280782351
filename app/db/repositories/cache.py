import logging
from datetime import datetime
from typing import Generic, Optional, Type, TypeVar

from motor.motor_asyncio import AsyncIOMotorCollection, AsyncIOMotorDatabase
from pydantic import BaseModel
from pymongo.errors import DuplicateKeyError

from app.db.repositories.base import document_to_dict
from app.models.extraction import ExtractionCacheEntry
from app.models.geocode import GeocodeCacheEntry

logger = logging.getLogger(__name__)

EntryT = TypeVar("EntryT", bound=BaseModel)


class KeyedCacheRepository(Generic[EntryT]):
    """Cache collection holding one entry per unique key field"""

    key_field: str
    entry_class: Type[EntryT]

    def __init__(self, collection: AsyncIOMotorCollection) -> None:
        self.collection = collection

    async def get(self, key: str) -> Optional[EntryT]:
        document = await self.collection.find_one({self.key_field: key})
        if document is None:
            return None
        return self.entry_class.model_validate(document_to_dict(document))

    async def touch(self, key: str, now: datetime) -> None:
        await self.collection.update_one({self.key_field: key}, {"$set": {"last_used_at": now}})

    async def delete_expired(self, key: str, now: datetime) -> bool:
        """Evict the entry for key only if it is still expired"""
        result = await self.collection.delete_one({self.key_field: key, "expires_at": {"$lte": now}})
        return result.deleted_count > 0

    async def save(self, entry: EntryT) -> bool:
        """Upsert an entry; False when a concurrent writer won the insert race"""
        data = entry.model_dump(exclude={"id", "created_at"})
        key = data[self.key_field]
        try:
            await self.collection.update_one(
                {self.key_field: key},
                {"$set": data, "$setOnInsert": {"created_at": entry.created_at}},
                upsert=True,
            )
        except DuplicateKeyError:
            logger.debug("Cache entry for %s was written concurrently", key)
            return False
        return True

    async def purge_expired(self, now: datetime) -> int:
        result = await self.collection.delete_many({"expires_at": {"$lte": now}})
        return result.deleted_count


class ExtractionCacheRepository(KeyedCacheRepository[ExtractionCacheEntry]):
    key_field = "text_hash"
    entry_class = ExtractionCacheEntry

    def __init__(self, db: AsyncIOMotorDatabase) -> None:
        super().__init__(db.extraction_cache)


class GeocodeCacheRepository(KeyedCacheRepository[GeocodeCacheEntry]):
    key_field = "address"
    entry_class = GeocodeCacheEntry

    def __init__(self, db: AsyncIOMotorDatabase) -> None:
        super().__init__(db.geocode_cache)
