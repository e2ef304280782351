"""
Models for AI extraction results and their cache entries
"""

import math
from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from app.db.mongodb import ensure_utc, utcnow


def _to_float(value: Any) -> Optional[float]:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, str):
        value = value.replace(",", "").replace(" ", "").strip()
        if not value:
            return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    return number if math.isfinite(number) else None


def _to_int(value: Any) -> Optional[int]:
    number = _to_float(value)
    if number is None or number != int(number):
        return None
    return int(number)


def _to_bool(value: Any) -> Optional[bool]:
    if value is None:
        return None
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in ("true", "yes", "1"):
            return True
        if lowered in ("false", "no", "0"):
            return False
        return None
    return bool(value)


def _to_str(value: Any) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


class ExtractedFields(BaseModel):
    """Structured listing fields extracted from a post"""

    price: Optional[float] = None
    price_min: Optional[float] = None
    price_max: Optional[float] = None
    currency: Optional[str] = None
    area: Optional[float] = None
    bedrooms: Optional[int] = None
    district: Optional[str] = None
    address: Optional[str] = None
    contact_info: Optional[str] = None
    amenities: List[str] = Field(default_factory=list)
    pets_allowed: Optional[bool] = None
    furnished: Optional[bool] = None

    @field_validator("currency")
    @classmethod
    def upper_currency(cls, value: Optional[str]) -> Optional[str]:
        return value.strip().upper() if value else None

    @classmethod
    def from_provider(cls, data: Optional[Dict[str, Any]]) -> "ExtractedFields":
        """Build fields from a provider payload.

        Accepts both the nested shape (``price: {amount, currency}``,
        ``priceRange: {min, max, currency}``) and a flat one
        (``price``, ``price_min``, ``currency``). Individual values that
        cannot be coerced are dropped instead of failing the whole result.
        """
        if not isinstance(data, dict):
            return cls()

        currency = _to_str(data.get("currency"))

        price_value = data.get("price")
        if isinstance(price_value, dict):
            currency = _to_str(price_value.get("currency")) or currency
            price_value = price_value.get("amount")
        price = _to_float(price_value)

        price_min = _to_float(data.get("price_min", data.get("priceMin")))
        price_max = _to_float(data.get("price_max", data.get("priceMax")))
        price_range = data.get("priceRange", data.get("price_range"))
        if isinstance(price_range, dict):
            price_min = _to_float(price_range.get("min"))
            price_max = _to_float(price_range.get("max"))
            currency = currency or _to_str(price_range.get("currency"))

        amenities = data.get("amenities") or []
        if isinstance(amenities, str):
            amenities = [amenities]
        if not isinstance(amenities, list):
            amenities = []

        return cls(
            price=price,
            price_min=price_min,
            price_max=price_max,
            currency=currency,
            area=_to_float(data.get("area", data.get("area_sqm"))),
            bedrooms=_to_int(data.get("bedrooms", data.get("rooms"))),
            district=_to_str(data.get("district")),
            address=_to_str(data.get("address")),
            contact_info=_to_str(data.get("contact_info", data.get("contactInfo"))),
            amenities=[str(item).strip() for item in amenities if item is not None and str(item).strip()],
            pets_allowed=_to_bool(data.get("pets_allowed", data.get("petsAllowed"))),
            furnished=_to_bool(data.get("furnished")),
        )


class ExtractionResult(BaseModel):
    """Verdict of the AI extraction step for one post text"""

    is_rental: bool
    confidence: float = Field(default=0.0, ge=0.0, le=1.0)
    fields: ExtractedFields = Field(default_factory=ExtractedFields)
    language: str = "en"
    reasoning: Optional[str] = None
    provider: Optional[str] = None
    model: Optional[str] = None
    cached: bool = False

    @field_validator("confidence", mode="before")
    @classmethod
    def clamp_confidence(cls, value: Any) -> float:
        number = _to_float(value)
        if number is None:
            return 0.0
        return min(1.0, max(0.0, number))


class ExtractionCacheEntry(BaseModel):
    """Stored AI verdict, one per normalized text hash"""

    model_config = ConfigDict(populate_by_name=True)

    id: Optional[str] = Field(None, alias="_id")
    text_hash: str
    is_rental: bool
    confidence: float
    extracted_data: ExtractedFields = Field(default_factory=ExtractedFields)
    language: str = "en"
    reasoning: Optional[str] = None
    provider: str
    model: str
    created_at: datetime = Field(default_factory=utcnow)
    last_used_at: datetime = Field(default_factory=utcnow)
    expires_at: datetime

    def is_expired(self, now: datetime) -> bool:
        return ensure_utc(self.expires_at) <= now

    def to_result(self) -> ExtractionResult:
        return ExtractionResult(
            is_rental=self.is_rental,
            confidence=self.confidence,
            fields=self.extracted_data,
            language=self.language,
            reasoning=self.reasoning,
            provider=self.provider,
            model=self.model,
            cached=True,
        )

    @classmethod
    def from_result(
        cls, text_hash: str, result: ExtractionResult, now: datetime, expires_at: datetime
    ) -> "ExtractionCacheEntry":
        return cls(
            text_hash=text_hash,
            is_rental=result.is_rental,
            confidence=result.confidence,
            extracted_data=result.fields,
            language=result.language,
            reasoning=result.reasoning,
            provider=result.provider or "unknown",
            model=result.model or "unknown",
            created_at=now,
            last_used_at=now,
            expires_at=expires_at,
        )
