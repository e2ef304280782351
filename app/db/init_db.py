import logging

from pymongo import ASCENDING, DESCENDING
from motor.motor_asyncio import AsyncIOMotorDatabase

logger = logging.getLogger(__name__)


async def init_database(db: AsyncIOMotorDatabase) -> None:
    """Initialize database with collections and indexes"""
    try:
        # Raw scraped posts, unique per channel
        await db.telegram_posts.create_index(
            [("channel_username", ASCENDING), ("message_id", ASCENDING)], unique=True
        )
        await db.telegram_posts.create_index("processed")
        await db.telegram_posts.create_index([("post_date", DESCENDING)])

        # Listings, one per originating post
        await db.listings.create_index(
            "raw_post_id", unique=True, partialFilterExpression={"raw_post_id": {"$type": "string"}}
        )
        await db.listings.create_index("status")
        await db.listings.create_index("district")
        await db.listings.create_index("price")
        await db.listings.create_index("bedrooms")
        await db.listings.create_index([("created_at", DESCENDING)])

        # Caches keyed by text hash / normalized address
        await db.extraction_cache.create_index("text_hash", unique=True)
        await db.extraction_cache.create_index("expires_at")
        await db.geocode_cache.create_index("address", unique=True)
        await db.geocode_cache.create_index("expires_at")

        # Job queue
        await db.parse_jobs.create_index([("status", ASCENDING), ("next_attempt_at", ASCENDING)])
        await db.parse_jobs.create_index(
            "dedupe_key", unique=True, partialFilterExpression={"active": {"$eq": True}}
        )
        await db.parse_jobs.create_index([("status", ASCENDING), ("processing_started_at", ASCENDING)])

        # AI usage tracking
        await db.ai_usage.create_index([("created_at", DESCENDING)])
        await db.ai_usage.create_index([("provider", ASCENDING), ("model", ASCENDING)])

        logger.info("Database indexes created successfully")

    except Exception as e:
        logger.error("Error initializing database: %s", e)
        raise
