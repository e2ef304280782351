"""
Pytest configuration and fixtures for testing
"""

from types import SimpleNamespace

import pytest

from app.core.config import Settings
from app.models.raw_post import RawPost
from app.services.ai_cost_service import AICostService
from app.services.extraction_service import ExtractionService
from app.services.geocoding_service import GeocodingService
from app.services.ingestion_service import IngestionService
from app.services.job_queue_service import JobQueueService
from app.services.listing_normalizer import ListingNormalizer
from app.services.metrics_service import MetricsService
from app.services.post_processor import PostProcessor
from app.services.rate_limiter import TokenBucket
from app.services.worker_pool import WorkerPool
from tests.fakes import (
    FakeAIUsageRepository,
    FakeClock,
    FakeListingRepository,
    FakeParseJobRepository,
    FakeRawPostRepository,
    fake_extraction_cache,
    fake_geocode_cache,
)


@pytest.fixture
def test_settings():
    """Settings isolated from the developer's .env"""
    return Settings(
        _env_file=None,
        AI_PROVIDER="mock",
        AI_MODEL="gpt-4o-mini",
        GEOCODING_PROVIDER="mock",
        JOB_MAX_ATTEMPTS=3,
        JOB_BACKOFF_BASE_SECONDS=2.0,
        JOB_BACKOFF_MAX_SECONDS=300.0,
        JOB_PROCESSING_TIMEOUT_SECONDS=600.0,
        EXTRACTION_ACCEPTANCE_THRESHOLD=0.6,
    )


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def services(test_settings, clock):
    """Full service graph over in-memory repositories"""
    metrics = MetricsService()
    raw_posts = FakeRawPostRepository()
    listings = FakeListingRepository()
    jobs = FakeParseJobRepository()
    usage = FakeAIUsageRepository()
    extraction_cache = fake_extraction_cache()
    geocode_cache = fake_geocode_cache()

    cost_service = AICostService(usage, test_settings.AI_MONTHLY_SPENDING_LIMIT_USD, clock=clock)
    extraction_service = ExtractionService(
        extraction_cache,
        cost_service,
        TokenBucket("ai", 6000, burst=100),
        metrics=metrics,
        config=test_settings,
        clock=clock,
    )
    geocoding_service = GeocodingService(
        geocode_cache,
        TokenBucket("geocoding", 6000, burst=100),
        metrics=metrics,
        config=test_settings,
        clock=clock,
    )
    normalizer = ListingNormalizer(listings, raw_posts, config=test_settings)
    job_queue = JobQueueService(jobs, config=test_settings, clock=clock, raw_post_repository=raw_posts)
    processor = PostProcessor(
        raw_posts, listings, extraction_service, geocoding_service, normalizer, job_queue, config=test_settings
    )
    worker_pool = WorkerPool(job_queue, processor, metrics=metrics, concurrency=2, poll_interval=0.01)

    return SimpleNamespace(
        settings=test_settings,
        clock=clock,
        metrics=metrics,
        raw_posts=raw_posts,
        listings=listings,
        jobs=jobs,
        usage=usage,
        extraction_cache=extraction_cache,
        geocode_cache=geocode_cache,
        cost_service=cost_service,
        extraction_service=extraction_service,
        geocoding_service=geocoding_service,
        normalizer=normalizer,
        job_queue=job_queue,
        processor=processor,
        worker_pool=worker_pool,
        ingestion_service=IngestionService(raw_posts, job_queue),
    )


@pytest.fixture
def sample_post():
    """Sample rental post for testing"""
    return RawPost(
        channel_username="tbilisi_rent",
        channel_id="-1001234567890",
        message_id=101,
        text="Сдается 2-комнатная квартира в Ваке, 65 кв.м, 800$ в месяц. Мебель есть. +995 555 123 456",
        photos=["https://cdn.example.com/photo1.jpg"],
    )
