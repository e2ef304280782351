import logging
from datetime import datetime
from enum import Enum
from typing import List, Optional, Tuple

from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo import ReturnDocument
from pymongo.errors import DuplicateKeyError

from app.db.mongodb import utcnow
from app.db.repositories.base import document_to_dict, to_object_id
from app.models.raw_post import RawPost

logger = logging.getLogger(__name__)


class PostUpsertStatus(str, Enum):
    CREATED = "created"      # First time this (channel, message id) was seen
    CHANGED = "changed"      # Text was edited since the last scrape
    UNCHANGED = "unchanged"  # Same text, nothing to re-parse


class RawPostRepository:
    """Access to the telegram_posts collection"""

    def __init__(self, db: AsyncIOMotorDatabase) -> None:
        self.collection = db.telegram_posts

    async def upsert(self, post: RawPost, now: Optional[datetime] = None) -> Tuple[str, PostUpsertStatus]:
        """Store a scraped post, deduplicated by (channel, message id)"""
        now = now or utcnow()
        key = {"channel_username": post.channel_username, "message_id": post.message_id}
        update = {
            "$set": {
                "text": post.text,
                "photos": post.photos,
                "video_urls": post.video_urls,
                "link": post.link,
                "views": post.views,
                "forwards": post.forwards,
                "raw_data": post.raw_data,
                "updated_at": now,
            },
            "$setOnInsert": {
                "channel_id": post.channel_id,
                "post_date": post.post_date,
                "processed": False,
                "listing_id": None,
                "processing_error": None,
                "created_at": now,
            },
        }

        try:
            before = await self.collection.find_one_and_update(
                key, update, upsert=True, return_document=ReturnDocument.BEFORE
            )
        except DuplicateKeyError:
            # Concurrent upsert of the same post inserted first; the retry is a plain update
            before = await self.collection.find_one_and_update(
                key, update, upsert=True, return_document=ReturnDocument.BEFORE
            )

        if before is None:
            stored = await self.collection.find_one(key, projection={"_id": 1})
            return str(stored["_id"]), PostUpsertStatus.CREATED

        post_id = str(before["_id"])
        if (before.get("text") or "") != (post.text or ""):
            await self.collection.update_one(
                {"_id": before["_id"]}, {"$set": {"processed": False, "processing_error": None}}
            )
            return post_id, PostUpsertStatus.CHANGED

        return post_id, PostUpsertStatus.UNCHANGED

    async def get(self, post_id: str) -> Optional[RawPost]:
        object_id = to_object_id(post_id)
        if object_id is None:
            return None
        document = await self.collection.find_one({"_id": object_id})
        if document is None:
            return None
        return RawPost.model_validate(document_to_dict(document))

    async def mark_processed(
        self, post_id: str, listing_id: Optional[str] = None, error: Optional[str] = None
    ) -> None:
        """Flip the processed flag and attach the listing back-reference"""
        await self.collection.update_one(
            {"_id": to_object_id(post_id)},
            {
                "$set": {
                    "processed": True,
                    "listing_id": listing_id,
                    "processing_error": error,
                    "updated_at": utcnow(),
                }
            },
        )

    async def mark_failed(self, post_id: str, error: str) -> None:
        """Record a terminal processing failure so the backlog sweep skips the post"""
        await self.collection.update_one(
            {"_id": to_object_id(post_id), "processed": False},
            {"$set": {"processing_error": error, "updated_at": utcnow()}},
        )

    async def find_unprocessed(self, limit: int = 50) -> List[RawPost]:
        """Posts still waiting for a first successful parse; terminally failed ones are excluded"""
        query = {"processed": False, "processing_error": None}
        cursor = self.collection.find(query).sort("created_at", -1).limit(limit)
        documents = await cursor.to_list(length=limit)
        return [RawPost.model_validate(document_to_dict(document)) for document in documents]
