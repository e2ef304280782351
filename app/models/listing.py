from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from app.db.mongodb import utcnow
from app.models.status_enums import ListingStatus


class Listing(BaseModel):
    """Canonical rental listing derived from one raw post"""

    model_config = ConfigDict(populate_by_name=True)

    id: Optional[str] = Field(None, alias="_id")
    raw_post_id: Optional[str] = None  # None for manually entered listings

    # Pricing: either a single price or a range, never both
    price: Optional[float] = Field(default=None, gt=0)
    price_min: Optional[float] = Field(default=None, gt=0)
    price_max: Optional[float] = Field(default=None, gt=0)
    currency: str = "GEL"

    # Location
    district: Optional[str] = None
    address: Optional[str] = None
    latitude: Optional[float] = Field(default=None, ge=-90.0, le=90.0)
    longitude: Optional[float] = Field(default=None, ge=-180.0, le=180.0)

    # Property details
    bedrooms: Optional[int] = Field(default=None, gt=0)
    area_sqm: Optional[float] = Field(default=None, gt=0)
    furnished: Optional[bool] = None
    pets_allowed: Optional[bool] = None
    amenities: List[str] = Field(default_factory=list)

    description: Optional[str] = None
    contact_info: Optional[str] = None
    source_url: Optional[str] = None
    image_urls: List[str] = Field(default_factory=list)

    status: ListingStatus = ListingStatus.ACTIVE
    confidence: Optional[float] = Field(default=None, ge=0.0, le=1.0)

    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    @field_validator("amenities")
    @classmethod
    def dedupe_amenities(cls, value: List[str]) -> List[str]:
        seen = set()
        result = []
        for amenity in value:
            key = amenity.strip().lower()
            if key and key not in seen:
                seen.add(key)
                result.append(amenity.strip())
        return result

    @model_validator(mode="after")
    def check_pricing_mode(self) -> "Listing":
        has_range = self.price_min is not None or self.price_max is not None
        if self.price is not None and has_range:
            raise ValueError("Listing cannot have both a single price and a price range")
        if has_range and (self.price_min is None or self.price_max is None):
            raise ValueError("Price range needs both price_min and price_max")
        if has_range and self.price_min > self.price_max:
            raise ValueError("price_min must not exceed price_max")
        return self

    @property
    def has_pricing(self) -> bool:
        return self.price is not None or (self.price_min is not None and self.price_max is not None)

    @property
    def is_mapped(self) -> bool:
        return self.latitude is not None and self.longitude is not None
