"""
Models for geocoding results and their cache entries
"""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from app.db.mongodb import ensure_utc, utcnow


class GeocodeResult(BaseModel):
    """Resolved coordinates for an address"""
    latitude: float = Field(..., ge=-90.0, le=90.0)
    longitude: float = Field(..., ge=-180.0, le=180.0)
    district: Optional[str] = None
    formatted_address: Optional[str] = None
    confidence: Optional[float] = Field(default=None, ge=0.0, le=1.0)


class GeocodeCacheEntry(BaseModel):
    """Stored geocoding outcome, one per normalized address.

    Negative outcomes (not found, outside the operating area) are stored with
    ``found=False`` and a shorter expiry so unresolvable addresses are not
    retried on every post.
    """

    model_config = ConfigDict(populate_by_name=True)

    id: Optional[str] = Field(None, alias="_id")
    address: str
    found: bool = True
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    district: Optional[str] = None
    formatted_address: Optional[str] = None
    confidence: Optional[float] = None
    reason: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)
    last_used_at: datetime = Field(default_factory=utcnow)
    expires_at: datetime

    def is_expired(self, now: datetime) -> bool:
        return ensure_utc(self.expires_at) <= now

    def to_result(self) -> Optional[GeocodeResult]:
        if not self.found or self.latitude is None or self.longitude is None:
            return None
        return GeocodeResult(
            latitude=self.latitude,
            longitude=self.longitude,
            district=self.district,
            formatted_address=self.formatted_address,
            confidence=self.confidence,
        )
