"""
Listing normalizer.

Merges the AI extraction, the geocoding result and the raw post metadata into
one canonical Listing, then upserts it by the originating post.
"""

import logging
from datetime import datetime, timedelta
from typing import Optional, Tuple

from app.core.config import Settings, settings
from app.db.mongodb import utcnow
from app.db.repositories.listings import ListingRepository
from app.db.repositories.raw_posts import RawPostRepository
from app.models.extraction import ExtractedFields, ExtractionResult
from app.models.geocode import GeocodeResult
from app.models.listing import Listing
from app.models.raw_post import RawPost
from app.models.status_enums import ListingStatus
from app.utils.districts import canonical_district

logger = logging.getLogger(__name__)

DESCRIPTION_MAX_LENGTH = 4000

Pricing = Tuple[Optional[float], Optional[float], Optional[float]]


def _positive(value: Optional[float]) -> Optional[float]:
    if value is None or value <= 0:
        return None
    return float(value)


def resolve_pricing(fields: ExtractedFields) -> Pricing:
    """
    Pick exactly one pricing mode as (price, price_min, price_max).

    Examples:
        price=800                    -> (800, None, None)
        price=None, min=600, max=800 -> (None, 600, 800)
        min=700, max=700             -> (700, None, None)
        min=900, max=600             -> (None, 600, 900)
        min=600 only                 -> (600, None, None)
    """
    price = _positive(fields.price)
    if price is not None:
        return price, None, None

    low = _positive(fields.price_min)
    high = _positive(fields.price_max)
    if low is None and high is None:
        return None, None, None
    if low is None or high is None:
        return low or high, None, None
    if low == high:
        return low, None, None
    if low > high:
        low, high = high, low
    return None, low, high


class ListingNormalizer:
    """Builds canonical listings and persists them per post"""

    def __init__(
        self,
        listing_repository: ListingRepository,
        raw_post_repository: RawPostRepository,
        config: Settings = settings,
    ) -> None:
        self.listing_repository = listing_repository
        self.raw_post_repository = raw_post_repository
        self.acceptance_threshold = config.EXTRACTION_ACCEPTANCE_THRESHOLD
        self.default_currency = config.DEFAULT_CURRENCY
        self.max_bedrooms = config.MAX_BEDROOMS
        self.max_area_sqm = config.MAX_AREA_SQM
        self.listing_ttl = timedelta(days=config.LISTING_EXPIRY_DAYS)

    def build(
        self, post: RawPost, extraction: ExtractionResult, geocode: Optional[GeocodeResult] = None
    ) -> Optional[Listing]:
        """Map one post to a Listing without touching the store; None for non-rentals"""
        if not extraction.is_rental:
            return None

        fields = extraction.fields
        price, price_min, price_max = resolve_pricing(fields)

        listing = Listing(
            raw_post_id=post.id,
            price=price,
            price_min=price_min,
            price_max=price_max,
            currency=fields.currency or self.default_currency,
            district=canonical_district(fields.district),
            address=fields.address,
            bedrooms=self._bedrooms(fields.bedrooms),
            area_sqm=self._area(fields.area),
            furnished=fields.furnished,
            pets_allowed=fields.pets_allowed,
            amenities=fields.amenities,
            description=(post.text or "").strip()[:DESCRIPTION_MAX_LENGTH] or None,
            contact_info=fields.contact_info,
            source_url=post.source_url,
            image_urls=list(post.photos),
            confidence=extraction.confidence,
        )

        if geocode is not None:
            listing.latitude = geocode.latitude
            listing.longitude = geocode.longitude
            # Provider district is more reliable than the AI guess
            if geocode.district:
                listing.district = geocode.district
            if not listing.address and geocode.formatted_address:
                listing.address = geocode.formatted_address

        listing.status = self.route_status(listing)
        return listing

    def route_status(self, listing: Listing) -> ListingStatus:
        if (listing.confidence or 0.0) < self.acceptance_threshold or not listing.has_pricing:
            return ListingStatus.PENDING_REVIEW
        return ListingStatus.ACTIVE

    def _bedrooms(self, value: Optional[int]) -> Optional[int]:
        if value is None or value <= 0 or value > self.max_bedrooms:
            return None
        return value

    def _area(self, value: Optional[float]) -> Optional[float]:
        if value is None or value <= 0 or value > self.max_area_sqm:
            return None
        return float(value)

    async def normalize(
        self, post: RawPost, extraction: ExtractionResult, geocode: Optional[GeocodeResult] = None
    ) -> Optional[Listing]:
        """Build, upsert by raw_post_id and link the post back to its listing"""
        listing = self.build(post, extraction, geocode)
        if listing is None:
            await self._withdraw_existing(post)
            return None

        stored = await self.listing_repository.upsert_for_post(listing)
        await self.raw_post_repository.mark_processed(post.id, listing_id=stored.id)

        if stored.status != listing.status:
            logger.info(
                "Listing %s kept status %s on re-parse (computed %s)", stored.id, stored.status.value, listing.status.value
            )
        logger.info(
            "Normalized post %s into listing %s (%s, confidence %.2f)",
            post.id,
            stored.id,
            stored.status.value,
            stored.confidence or 0.0,
        )
        return stored

    async def _withdraw_existing(self, post: RawPost) -> None:
        """Post no longer reads as a rental; its earlier listing goes back to review"""
        existing = await self.listing_repository.get_by_raw_post_id(post.id)
        if existing is None:
            await self.raw_post_repository.mark_processed(post.id)
            return

        target = ListingStatus.PENDING_REVIEW
        if existing.status != target and existing.status.can_transition_to(target):
            if await self.listing_repository.update_status(existing.id, target, [existing.status]):
                logger.info("Listing %s moved to %s: post %s is no longer a rental", existing.id, target.value, post.id)
        await self.raw_post_repository.mark_processed(post.id, listing_id=existing.id)

    async def expire_stale_listings(self, now: Optional[datetime] = None) -> int:
        """Expire ACTIVE listings whose post has not been re-parsed within the listing TTL"""
        now = now or utcnow()
        expired = await self.listing_repository.expire_stale(now - self.listing_ttl, now)
        if expired:
            logger.info("Expired %d listing(s) not updated since %s", expired, (now - self.listing_ttl).isoformat())
        return expired
