import logging
from datetime import datetime
from typing import List, Optional

from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo import ReturnDocument
from pymongo.errors import DuplicateKeyError

from app.db.mongodb import utcnow
from app.db.repositories.base import document_to_dict, to_object_id
from app.models.geocode import GeocodeResult
from app.models.listing import Listing
from app.models.status_enums import ListingStatus

logger = logging.getLogger(__name__)

# Statuses a re-parse of the same post may overwrite; None covers a fresh insert
REPARSE_MUTABLE_STATUSES = [ListingStatus.ACTIVE.value, ListingStatus.PENDING_REVIEW.value, None]


class ListingRepository:
    """Access to the listings collection"""

    def __init__(self, db: AsyncIOMotorDatabase) -> None:
        self.collection = db.listings

    async def upsert_for_post(self, listing: Listing, now: Optional[datetime] = None) -> Listing:
        """Insert or update the listing linked to listing.raw_post_id.

        Runs as one pipeline update on one document, so a post's listing is
        written atomically. Terminal statuses (EXPIRED, RENTED, INACTIVE) are
        kept as they are.
        """
        if not listing.raw_post_id:
            raise ValueError("upsert_for_post requires raw_post_id")

        now = now or utcnow()
        fields = listing.model_dump(exclude={"id", "raw_post_id", "status", "created_at", "updated_at"})
        stage = {name: {"$literal": value} for name, value in fields.items()}
        stage["raw_post_id"] = {"$literal": listing.raw_post_id}
        stage["updated_at"] = {"$literal": now}
        stage["created_at"] = {"$ifNull": ["$created_at", {"$literal": now}]}
        stage["status"] = {
            "$cond": [
                {"$in": [{"$ifNull": ["$status", None]}, REPARSE_MUTABLE_STATUSES]},
                {"$literal": listing.status.value},
                "$status",
            ]
        }

        try:
            document = await self._upsert(listing.raw_post_id, stage)
        except DuplicateKeyError:
            # Lost an insert race on the unique raw_post_id index; the retry updates
            logger.debug("Retrying listing upsert for post %s after duplicate key", listing.raw_post_id)
            document = await self._upsert(listing.raw_post_id, stage)

        return Listing.model_validate(document_to_dict(document))

    async def _upsert(self, raw_post_id: str, stage: dict) -> dict:
        return await self.collection.find_one_and_update(
            {"raw_post_id": raw_post_id},
            [{"$set": stage}],
            upsert=True,
            return_document=ReturnDocument.AFTER,
        )

    async def get(self, listing_id: str) -> Optional[Listing]:
        object_id = to_object_id(listing_id)
        if object_id is None:
            return None
        document = await self.collection.find_one({"_id": object_id})
        return Listing.model_validate(document_to_dict(document)) if document else None

    async def get_by_raw_post_id(self, raw_post_id: str) -> Optional[Listing]:
        document = await self.collection.find_one({"raw_post_id": raw_post_id})
        return Listing.model_validate(document_to_dict(document)) if document else None

    async def update_location(self, listing_id: str, geocode: GeocodeResult) -> bool:
        """Attach coordinates resolved after the listing was created"""
        update = {
            "latitude": geocode.latitude,
            "longitude": geocode.longitude,
            "updated_at": utcnow(),
        }
        if geocode.district:
            update["district"] = geocode.district

        result = await self.collection.update_one({"_id": to_object_id(listing_id)}, {"$set": update})
        return result.matched_count > 0

    async def update_status(
        self, listing_id: str, status: ListingStatus, from_statuses: List[ListingStatus]
    ) -> bool:
        """Move a listing to status only while it is still in one of from_statuses"""
        result = await self.collection.update_one(
            {"_id": to_object_id(listing_id), "status": {"$in": [value.value for value in from_statuses]}},
            {"$set": {"status": status.value, "updated_at": utcnow()}},
        )
        return result.modified_count > 0

    async def expire_stale(self, cutoff: datetime, now: Optional[datetime] = None) -> int:
        """Expire active listings not updated since cutoff; returns how many were expired"""
        result = await self.collection.update_many(
            {"status": ListingStatus.ACTIVE.value, "updated_at": {"$lt": cutoff}},
            {"$set": {"status": ListingStatus.EXPIRED.value, "updated_at": now or utcnow()}},
        )
        return result.modified_count
