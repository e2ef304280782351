"""
Services module initialization
"""

from dataclasses import dataclass
from typing import Optional

from motor.motor_asyncio import AsyncIOMotorDatabase

from app.core.config import Settings, settings
from app.db.repositories import (
    AIUsageRepository,
    ExtractionCacheRepository,
    GeocodeCacheRepository,
    ListingRepository,
    ParseJobRepository,
    RawPostRepository,
)
from app.services.ai_cost_service import AICostService
from app.services.extraction_service import ExtractionService
from app.services.geocoding_service import GeocodingService
from app.services.ingestion_service import IngestionService
from app.services.job_queue_service import JobQueueService
from app.services.listing_normalizer import ListingNormalizer
from app.services.metrics_service import MetricsService
from app.services.post_processor import PostProcessor
from app.services.rate_limiter import TokenBucket
from app.services.scraper_service import ApifyScraperService
from app.services.worker_pool import WorkerPool


@dataclass
class Pipeline:
    """Wired service graph for one process"""

    metrics: MetricsService
    extraction_service: ExtractionService
    geocoding_service: GeocodingService
    normalizer: ListingNormalizer
    job_queue: JobQueueService
    processor: PostProcessor
    worker_pool: WorkerPool
    ingestion_service: IngestionService
    cost_service: AICostService


def create_pipeline(
    db: AsyncIOMotorDatabase,
    config: Settings = settings,
    metrics: Optional[MetricsService] = None,
) -> Pipeline:
    """Build every service on top of one database handle"""
    metrics = metrics or MetricsService()

    raw_posts = RawPostRepository(db)
    listings = ListingRepository(db)
    jobs = ParseJobRepository(db)

    cost_service = AICostService(AIUsageRepository(db), config.AI_MONTHLY_SPENDING_LIMIT_USD)
    extraction_service = ExtractionService(
        ExtractionCacheRepository(db),
        cost_service,
        TokenBucket("ai", config.AI_RATE_LIMIT_PER_MINUTE, config.AI_RATE_LIMIT_BURST),
        metrics=metrics,
        config=config,
    )
    geocoding_service = GeocodingService(
        GeocodeCacheRepository(db),
        TokenBucket("geocoding", config.GEOCODING_RATE_LIMIT_PER_MINUTE, config.GEOCODING_RATE_LIMIT_BURST),
        metrics=metrics,
        config=config,
    )
    normalizer = ListingNormalizer(listings, raw_posts, config=config)
    job_queue = JobQueueService(jobs, config=config, raw_post_repository=raw_posts)
    processor = PostProcessor(
        raw_posts, listings, extraction_service, geocoding_service, normalizer, job_queue, config=config
    )
    worker_pool = WorkerPool(
        job_queue,
        processor,
        metrics=metrics,
        concurrency=config.WORKER_CONCURRENCY,
        poll_interval=config.WORKER_POLL_INTERVAL_SECONDS,
        sweep_interval=config.RECOVERY_SWEEP_INTERVAL_SECONDS,
    )
    ingestion_service = IngestionService(raw_posts, job_queue, ApifyScraperService(config))

    return Pipeline(
        metrics=metrics,
        extraction_service=extraction_service,
        geocoding_service=geocoding_service,
        normalizer=normalizer,
        job_queue=job_queue,
        processor=processor,
        worker_pool=worker_pool,
        ingestion_service=ingestion_service,
        cost_service=cost_service,
    )
