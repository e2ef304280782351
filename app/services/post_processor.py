"""
Job handlers for the ingestion pipeline.

A process_post job runs the sequential per-post flow: load the raw post,
extract (cache-first), geocode (cache-first), normalize and upsert the
listing. A geocode_address job fills in coordinates for a listing whose
geocoding failed transiently during post processing.
"""

import logging
from typing import Any, Dict, Optional

from pydantic import ValidationError

from app.core.config import Settings, settings
from app.db.repositories.listings import ListingRepository
from app.db.repositories.raw_posts import RawPostRepository
from app.exceptions import (
    EmptyPostError,
    InvalidJobPayloadError,
    PipelineError,
    PostNotFoundError,
)
from app.models.extraction import ExtractionResult
from app.models.geocode import GeocodeResult
from app.models.parse_job import GeocodeAddressPayload, ParseJob, ProcessPostPayload
from app.models.status_enums import JobType
from app.services.extraction_service import ExtractionService
from app.services.geocoding_service import GeocodingService
from app.services.job_queue_service import JobQueueService
from app.services.listing_normalizer import ListingNormalizer

logger = logging.getLogger(__name__)


class PostProcessor:
    """Dispatches claimed jobs to their handlers"""

    def __init__(
        self,
        raw_post_repository: RawPostRepository,
        listing_repository: ListingRepository,
        extraction_service: ExtractionService,
        geocoding_service: GeocodingService,
        normalizer: ListingNormalizer,
        job_queue: JobQueueService,
        config: Settings = settings,
    ) -> None:
        self.raw_post_repository = raw_post_repository
        self.listing_repository = listing_repository
        self.extraction_service = extraction_service
        self.geocoding_service = geocoding_service
        self.normalizer = normalizer
        self.job_queue = job_queue
        self.city = config.GEOCODING_CITY

    async def handle(self, job: ParseJob) -> Dict[str, Any]:
        if job.type == JobType.PROCESS_POST:
            return await self.process_post(job)
        if job.type == JobType.GEOCODE_ADDRESS:
            return await self.geocode_listing(job)
        raise InvalidJobPayloadError(f"Unsupported job type: {job.type}")

    async def process_post(self, job: ParseJob) -> Dict[str, Any]:
        try:
            payload = ProcessPostPayload.model_validate(job.payload)
        except ValidationError as e:
            raise InvalidJobPayloadError(f"Invalid process_post payload: {e}") from e

        post = await self.raw_post_repository.get(payload.post_id)
        if post is None:
            raise PostNotFoundError(f"Raw post {payload.post_id} not found")

        if not post.has_text:
            await self.raw_post_repository.mark_processed(post.id, error="Post has no text")
            raise EmptyPostError(f"Raw post {post.id} has no text")

        extraction = await self.extraction_service.extract(post.text)

        if not extraction.is_rental:
            await self.normalizer.normalize(post, extraction)
            logger.info("Post %s is not a rental (confidence %.2f)", post.id, extraction.confidence)
            return {"is_rental": False, "confidence": extraction.confidence, "cached": extraction.cached}

        address = self.geocoding_address(extraction)
        geocode: Optional[GeocodeResult] = None
        geocode_deferred = False
        if address:
            try:
                geocode = await self.geocoding_service.geocode(address)
            except PipelineError as e:
                if e.retryable:
                    geocode_deferred = True
                logger.warning("Geocoding failed for post %s, saving listing unmapped: %s", post.id, e.message)

        listing = await self.normalizer.normalize(post, extraction, geocode)

        if geocode_deferred:
            await self.job_queue.enqueue_geocode(listing.id, address)

        return {
            "is_rental": True,
            "listing_id": listing.id,
            "status": listing.status.value,
            "confidence": extraction.confidence,
            "cached": extraction.cached,
            "mapped": listing.is_mapped,
            "geocode_deferred": geocode_deferred,
        }

    def geocoding_address(self, extraction: ExtractionResult) -> Optional[str]:
        """Street address when extracted, otherwise the district within the city"""
        fields = extraction.fields
        if fields.address:
            return fields.address
        if fields.district:
            return f"{fields.district}, {self.city}"
        return None

    async def geocode_listing(self, job: ParseJob) -> Dict[str, Any]:
        try:
            payload = GeocodeAddressPayload.model_validate(job.payload)
        except ValidationError as e:
            raise InvalidJobPayloadError(f"Invalid geocode_address payload: {e}") from e

        listing = await self.listing_repository.get(payload.listing_id)
        if listing is None:
            raise InvalidJobPayloadError(f"Listing {payload.listing_id} not found")

        geocode = await self.geocoding_service.geocode(payload.address)
        if geocode is None:
            logger.info("Address %r for listing %s could not be resolved", payload.address, listing.id)
            return {"found": False}

        await self.listing_repository.update_location(listing.id, geocode)
        return {
            "found": True,
            "latitude": geocode.latitude,
            "longitude": geocode.longitude,
            "district": geocode.district,
        }
