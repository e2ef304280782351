"""
Geocoding service for listing addresses.

Addresses are resolved cache-first. Successful lookups are cached for a long
time; addresses that cannot be resolved, or that resolve outside the
operating city, are cached as negative entries with a much shorter TTL.
"""

import logging
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, Optional

import httpx

from app.core.config import Settings, settings
from app.db.mongodb import utcnow
from app.db.repositories.cache import GeocodeCacheRepository
from app.exceptions import PipelineError, ProviderRequestError, classify_error
from app.models.geocode import GeocodeCacheEntry, GeocodeResult
from app.services.metrics_service import MetricsService
from app.services.rate_limiter import TokenBucket
from app.utils.districts import (
    DISTRICT_CENTERS,
    canonical_district,
    district_center,
    district_for_coordinates,
    find_district_in_text,
)
from app.utils.text_utils import normalize_address

logger = logging.getLogger(__name__)

NOT_FOUND = "not_found"
OUT_OF_BOUNDS = "out_of_bounds"

# Local spellings of the operating city that count as "city already mentioned"
CITY_SPELLINGS = {"tbilisi": ("tbilisi", "თბილისი", "тбилиси")}

# OpenCage component keys that may carry a district name
DISTRICT_COMPONENT_KEYS = ("city_district", "suburb", "quarter", "neighbourhood")


class GeocodingService:
    """Cache-first address resolution bounded to the operating city"""

    def __init__(
        self,
        cache_repository: GeocodeCacheRepository,
        rate_limiter: TokenBucket,
        metrics: Optional[MetricsService] = None,
        config: Settings = settings,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.cache_repository = cache_repository
        self.rate_limiter = rate_limiter
        self.metrics = metrics or MetricsService()
        self.clock = clock

        self.provider = str(config.GEOCODING_PROVIDER).lower()
        self.api_key = config.OPENCAGE_API_KEY
        self.base_url = config.OPENCAGE_BASE_URL
        self.city = config.GEOCODING_CITY
        self.country = config.GEOCODING_COUNTRY
        self.country_code = config.GEOCODING_COUNTRY_CODE
        self.bounds = config.geocoding_bounds
        self.timeout = config.AI_REQUEST_TIMEOUT_SECONDS
        self.positive_ttl = timedelta(days=config.GEOCODING_CACHE_TTL_DAYS)
        self.negative_ttl = timedelta(hours=config.GEOCODING_NEGATIVE_CACHE_TTL_HOURS)

    async def geocode(self, address: Optional[str]) -> Optional[GeocodeResult]:
        """Resolve an address; None means not found or outside the city"""
        key = normalize_address(address)
        if not key:
            return None

        now = self.clock()
        entry = await self.cache_repository.get(key)
        if entry is not None:
            if entry.is_expired(now):
                await self.cache_repository.delete_expired(key, now)
            else:
                await self.cache_repository.touch(key, now)
                self.metrics.record_geocode(cached=True, found=entry.found, reason=entry.reason or "")
                return entry.to_result()

        await self.rate_limiter.acquire()
        try:
            result = await self._call_provider(self.build_query(address))
        except PipelineError:
            raise
        except Exception as e:
            error = classify_error(e, provider=self.provider)
            logger.warning("Geocoding provider %s failed for %r: %s", self.provider, address, error.message)
            raise error from e

        if result is None:
            logger.info("No geocoding result for %r", address)
            await self._store_negative(key, NOT_FOUND, now)
            return None

        if not self.is_in_bounds(result.latitude, result.longitude):
            logger.info(
                "Geocoding result for %r is outside %s (%.5f, %.5f)",
                address,
                self.city,
                result.latitude,
                result.longitude,
            )
            await self._store_negative(key, OUT_OF_BOUNDS, now)
            return None

        await self.cache_repository.save(
            GeocodeCacheEntry(
                address=key,
                found=True,
                latitude=result.latitude,
                longitude=result.longitude,
                district=result.district,
                formatted_address=result.formatted_address,
                confidence=result.confidence,
                created_at=now,
                last_used_at=now,
                expires_at=now + self.positive_ttl,
            )
        )
        self.metrics.record_geocode(cached=False, found=True)
        return result

    async def purge_expired_cache(self) -> int:
        return await self.cache_repository.purge_expired(self.clock())

    async def _store_negative(self, key: str, reason: str, now: datetime) -> None:
        await self.cache_repository.save(
            GeocodeCacheEntry(
                address=key,
                found=False,
                reason=reason,
                created_at=now,
                last_used_at=now,
                expires_at=now + self.negative_ttl,
            )
        )
        self.metrics.record_geocode(cached=False, found=False, reason=reason)

    def build_query(self, address: str) -> str:
        """Append city and country unless the address already names the city"""
        cleaned = " ".join(address.split())
        lowered = cleaned.casefold()
        spellings = CITY_SPELLINGS.get(self.city.casefold(), (self.city.casefold(),))
        if any(spelling in lowered for spelling in spellings):
            return cleaned
        return f"{cleaned}, {self.city}, {self.country}"

    def is_in_bounds(self, latitude: float, longitude: float) -> bool:
        south, west, north, east = self.bounds
        return south <= latitude <= north and west <= longitude <= east

    async def _call_provider(self, query: str) -> Optional[GeocodeResult]:
        if self.provider == "opencage":
            return await self._call_opencage(query)
        if self.provider == "mock":
            return await self._call_mock(query)
        raise ProviderRequestError(f"Unknown geocoding provider: {self.provider}", provider=self.provider)

    async def _call_opencage(self, query: str) -> Optional[GeocodeResult]:
        if not self.api_key:
            raise ProviderRequestError("OPENCAGE_API_KEY not configured", provider="opencage")

        south, west, north, east = self.bounds
        async with httpx.AsyncClient(timeout=self.timeout) as client:
            response = await client.get(
                self.base_url,
                params={
                    "q": query,
                    "key": self.api_key,
                    "language": "en",
                    "limit": 1,
                    "no_annotations": 1,
                    "countrycode": self.country_code,
                    "bounds": f"{west},{south},{east},{north}",
                },
            )
            response.raise_for_status()
            data = response.json()

        results = data.get("results") or []
        if not results:
            return None
        return self._result_from_opencage(results[0])

    def _result_from_opencage(self, candidate: Dict[str, Any]) -> GeocodeResult:
        geometry = candidate["geometry"]
        latitude = float(geometry["lat"])
        longitude = float(geometry["lng"])
        components = candidate.get("components") or {}

        district = None
        for component_key in DISTRICT_COMPONENT_KEYS:
            name = canonical_district(components.get(component_key))
            if name in DISTRICT_CENTERS:
                district = name
                break
        if district is None:
            district = district_for_coordinates(latitude, longitude)

        # OpenCage confidence is 1-10
        raw_confidence = candidate.get("confidence")
        confidence = min(1.0, float(raw_confidence) / 10) if raw_confidence else None

        return GeocodeResult(
            latitude=latitude,
            longitude=longitude,
            district=district,
            formatted_address=candidate.get("formatted"),
            confidence=confidence,
        )

    async def _call_mock(self, query: str) -> Optional[GeocodeResult]:
        """Resolve to the centre of a district named in the query"""
        district = find_district_in_text(query)
        center = district_center(district)
        if center is None:
            return None
        return GeocodeResult(
            latitude=center[0],
            longitude=center[1],
            district=district,
            formatted_address=f"{district}, {self.city}, {self.country}",
            confidence=0.5,
        )
