"""
Repositories wrapping the MongoDB collections used by the ingestion pipeline
"""

from app.db.repositories.ai_usage import AIUsageRepository
from app.db.repositories.cache import ExtractionCacheRepository, GeocodeCacheRepository
from app.db.repositories.listings import ListingRepository
from app.db.repositories.parse_jobs import ParseJobRepository
from app.db.repositories.raw_posts import RawPostRepository

__all__ = [
    "AIUsageRepository",
    "ExtractionCacheRepository",
    "GeocodeCacheRepository",
    "ListingRepository",
    "ParseJobRepository",
    "RawPostRepository",
]
