"""
Tests for the listing normalizer
"""

from datetime import datetime, timedelta, timezone

import pytest

from app.models.extraction import ExtractedFields, ExtractionResult
from app.models.geocode import GeocodeResult
from app.models.status_enums import ListingStatus
from app.services.listing_normalizer import resolve_pricing


def rental(confidence=0.9, **fields):
    return ExtractionResult(is_rental=True, confidence=confidence, fields=ExtractedFields(**fields))


class TestResolvePricing:
    """Pricing mode selection"""

    def test_single_price_wins_over_range(self):
        assert resolve_pricing(ExtractedFields(price=800, price_min=600, price_max=900)) == (800, None, None)

    def test_range(self):
        assert resolve_pricing(ExtractedFields(price_min=600, price_max=900)) == (None, 600, 900)

    def test_equal_bounds_collapse_to_price(self):
        assert resolve_pricing(ExtractedFields(price_min=700, price_max=700)) == (700, None, None)

    def test_inverted_bounds_are_swapped(self):
        assert resolve_pricing(ExtractedFields(price_min=900, price_max=600)) == (None, 600, 900)

    def test_single_bound_becomes_price(self):
        assert resolve_pricing(ExtractedFields(price_min=600)) == (600, None, None)
        assert resolve_pricing(ExtractedFields(price_max=900)) == (900, None, None)

    def test_non_positive_values_are_dropped(self):
        assert resolve_pricing(ExtractedFields(price=0, price_min=-5, price_max=500)) == (500, None, None)
        assert resolve_pricing(ExtractedFields()) == (None, None, None)


class TestListingNormalizer:
    """Test class for ListingNormalizer"""

    @pytest.fixture
    def normalizer(self, services):
        return services.normalizer

    @pytest.fixture
    def post(self, services, sample_post):
        return services.raw_posts.add(sample_post)

    def test_non_rental_returns_none(self, normalizer, post):
        assert normalizer.build(post, ExtractionResult(is_rental=False, confidence=0.8)) is None

    def test_build_maps_fields(self, normalizer, post):
        listing = normalizer.build(
            post,
            rental(
                price=800,
                currency="USD",
                bedrooms=2,
                area=65,
                district="ვაკე",
                amenities=["Balcony", "balcony", "Parking"],
                furnished=True,
                contact_info="+995 555 123 456",
            ),
        )

        assert listing.raw_post_id == post.id
        assert listing.price == 800
        assert listing.price_min is None and listing.price_max is None
        assert listing.currency == "USD"
        assert listing.bedrooms == 2
        assert listing.area_sqm == 65
        assert listing.district == "Vake"
        assert listing.amenities == ["Balcony", "Parking"]
        assert listing.image_urls == post.photos
        assert listing.source_url == "https://t.me/tbilisi_rent/101"
        assert listing.description == post.text
        assert listing.status == ListingStatus.ACTIVE

    def test_default_currency(self, normalizer, post):
        assert normalizer.build(post, rental(price=1500)).currency == "GEL"

    @pytest.mark.parametrize("bedrooms", [0, -1, 21, 150])
    def test_implausible_bedrooms_dropped(self, normalizer, post, bedrooms):
        assert normalizer.build(post, rental(price=500, bedrooms=bedrooms)).bedrooms is None

    @pytest.mark.parametrize("area", [0, -20, 5000.5, 1e6])
    def test_implausible_area_dropped(self, normalizer, post, area):
        assert normalizer.build(post, rental(price=500, area=area)).area_sqm is None

    def test_geocode_merges_and_overrides_district(self, normalizer, post):
        geocode = GeocodeResult(latitude=41.726, longitude=44.771, district="Saburtalo", formatted_address="Pekini 12")

        listing = normalizer.build(post, rental(price=500, district="Vake"), geocode)

        assert listing.latitude == 41.726
        assert listing.longitude == 44.771
        assert listing.district == "Saburtalo"
        assert listing.address == "Pekini 12"

    def test_geocode_without_district_keeps_ai_district(self, normalizer, post):
        geocode = GeocodeResult(latitude=41.71, longitude=44.75)

        listing = normalizer.build(post, rental(price=500, district="Vake", address="Abashidze 5"), geocode)

        assert listing.district == "Vake"
        assert listing.address == "Abashidze 5"

    def test_missing_geocode_leaves_listing_unmapped(self, normalizer, post):
        listing = normalizer.build(post, rental(price=500, district="Isani"))

        assert listing.latitude is None
        assert listing.longitude is None
        assert listing.is_mapped is False

    def test_low_confidence_goes_to_review(self, normalizer, post):
        assert normalizer.build(post, rental(confidence=0.59, price=500)).status == ListingStatus.PENDING_REVIEW

    def test_threshold_confidence_is_active(self, normalizer, post):
        assert normalizer.build(post, rental(confidence=0.6, price=500)).status == ListingStatus.ACTIVE

    def test_missing_price_goes_to_review(self, normalizer, post):
        assert normalizer.build(post, rental(confidence=0.95)).status == ListingStatus.PENDING_REVIEW

    @pytest.mark.asyncio
    async def test_normalize_links_post(self, normalizer, post, services):
        listing = await normalizer.normalize(post, rental(price=800, currency="USD"))

        stored_post = services.raw_posts.posts[post.id]
        assert stored_post.processed is True
        assert stored_post.listing_id == listing.id

    @pytest.mark.asyncio
    async def test_normalize_non_rental_marks_processed_without_listing(self, normalizer, post, services):
        result = await normalizer.normalize(post, ExtractionResult(is_rental=False, confidence=0.9))

        assert result is None
        assert services.raw_posts.posts[post.id].processed is True
        assert services.listings.listings == {}

    @pytest.mark.asyncio
    async def test_normalize_twice_updates_in_place(self, normalizer, post, services):
        first = await normalizer.normalize(post, rental(price=800))
        second = await normalizer.normalize(post, rental(price=850))

        assert first.id == second.id
        assert len(services.listings.listings) == 1
        assert second.price == 850
        assert second.created_at == first.created_at

    @pytest.mark.asyncio
    async def test_reparse_follows_confidence_between_active_and_review(self, normalizer, post):
        first = await normalizer.normalize(post, rental(confidence=0.9, price=800))
        second = await normalizer.normalize(post, rental(confidence=0.3, price=800))

        assert first.status == ListingStatus.ACTIVE
        assert second.status == ListingStatus.PENDING_REVIEW

    @pytest.mark.asyncio
    @pytest.mark.parametrize("terminal", [ListingStatus.RENTED, ListingStatus.EXPIRED, ListingStatus.INACTIVE])
    async def test_reparse_keeps_terminal_status(self, normalizer, post, services, terminal):
        listing = await normalizer.normalize(post, rental(price=800))
        services.listings.listings[listing.id].status = terminal

        updated = await normalizer.normalize(post, rental(price=900))

        assert updated.status == terminal
        assert updated.price == 900

    @pytest.mark.asyncio
    async def test_reparse_as_non_rental_sends_listing_to_review(self, normalizer, post, services):
        listing = await normalizer.normalize(post, rental(price=800))

        result = await normalizer.normalize(post, ExtractionResult(is_rental=False, confidence=0.9))

        assert result is None
        assert services.listings.listings[listing.id].status == ListingStatus.PENDING_REVIEW
        assert services.raw_posts.posts[post.id].listing_id == listing.id
        assert services.raw_posts.posts[post.id].processed is True

    @pytest.mark.asyncio
    async def test_reparse_as_non_rental_keeps_terminal_listing(self, normalizer, post, services):
        listing = await normalizer.normalize(post, rental(price=800))
        services.listings.listings[listing.id].status = ListingStatus.RENTED

        await normalizer.normalize(post, ExtractionResult(is_rental=False, confidence=0.9))

        assert services.listings.listings[listing.id].status == ListingStatus.RENTED
        assert services.raw_posts.posts[post.id].listing_id == listing.id

    @pytest.mark.asyncio
    async def test_expire_stale_listings(self, normalizer, services, sample_post):
        now = datetime(2025, 3, 1, 12, 0, tzinfo=timezone.utc)
        ages = {1: 31, 2: 1, 3: 45}
        listings = {}
        for message_id, age_days in ages.items():
            post = services.raw_posts.add(sample_post.model_copy(update={"message_id": message_id}))
            confidence = 0.3 if message_id == 3 else 0.9
            listing = await normalizer.normalize(post, rental(confidence=confidence, price=800))
            services.listings.listings[listing.id].updated_at = now - timedelta(days=age_days)
            listings[message_id] = listing.id

        expired = await normalizer.expire_stale_listings(now)

        assert expired == 1
        assert services.listings.listings[listings[1]].status == ListingStatus.EXPIRED
        assert services.listings.listings[listings[2]].status == ListingStatus.ACTIVE
        assert services.listings.listings[listings[3]].status == ListingStatus.PENDING_REVIEW
