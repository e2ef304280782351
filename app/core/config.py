from typing import List, Optional, Tuple

from pydantic import Field
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # === PUBLIC DATA (not secrets) ===
    PROJECT_NAME: str = "Tbilisi Rental Listings Ingestion"

    # === DATABASE SETTINGS (from .env) ===
    MONGODB_URL: str = Field(default="mongodb://localhost:27017", description="MongoDB connection string")
    MONGODB_DATABASE: str = Field(default="rental_listings", description="Database name")

    # === APPLICATION SETTINGS ===
    LOG_LEVEL: str = Field(default="INFO")

    # === AI EXTRACTION SETTINGS (from .env) ===
    AI_PROVIDER: str = Field(default="mock", description="AI provider: openai, anthropic, openrouter, mock")
    OPENAI_API_KEY: Optional[str] = Field(default=None, description="API key for OpenAI")
    ANTHROPIC_API_KEY: Optional[str] = Field(default=None, description="API key for Anthropic")
    OPENROUTER_API_KEY: Optional[str] = Field(default=None, description="API key for OpenRouter")
    OPENROUTER_BASE_URL: str = Field(default="https://openrouter.ai/api/v1")
    AI_MODEL: str = Field(default="gpt-4o-mini", description="Model used for rental extraction")
    AI_MAX_TOKENS: int = Field(default=1000, description="Maximum tokens for AI response")
    AI_TEMPERATURE: float = Field(default=0.1, description="Temperature for AI generation (0.0-1.0)")
    AI_REQUEST_TIMEOUT_SECONDS: float = Field(default=60.0)
    AI_CACHE_TTL_DAYS: int = Field(default=30, description="How long an extraction verdict is reused")
    AI_MONTHLY_SPENDING_LIMIT_USD: float = Field(default=100.0, description="Paid AI calls stop above this")
    AI_RATE_LIMIT_PER_MINUTE: int = Field(default=60, description="Token bucket refill rate for AI calls")
    AI_RATE_LIMIT_BURST: int = Field(default=5)

    # === NORMALIZATION SETTINGS ===
    EXTRACTION_ACCEPTANCE_THRESHOLD: float = Field(
        default=0.6, ge=0.0, le=1.0, description="Listings below this confidence go to PENDING_REVIEW"
    )
    DEFAULT_CURRENCY: str = Field(default="GEL")
    MAX_BEDROOMS: int = Field(default=20)
    MAX_AREA_SQM: float = Field(default=5000.0)
    LISTING_EXPIRY_DAYS: int = Field(
        default=30, ge=1, description="ACTIVE listings not updated for this long become EXPIRED"
    )

    # === GEOCODING SETTINGS (from .env) ===
    GEOCODING_PROVIDER: str = Field(default="mock", description="Geocoding provider: opencage, mock")
    OPENCAGE_API_KEY: Optional[str] = Field(default=None)
    OPENCAGE_BASE_URL: str = Field(default="https://api.opencagedata.com/geocode/v1/json")
    GEOCODING_CACHE_TTL_DAYS: int = Field(default=90, description="TTL for resolved addresses")
    GEOCODING_NEGATIVE_CACHE_TTL_HOURS: int = Field(default=24, description="TTL for unresolvable addresses")
    GEOCODING_CITY: str = Field(default="Tbilisi")
    GEOCODING_COUNTRY: str = Field(default="Georgia")
    GEOCODING_COUNTRY_CODE: str = Field(default="ge")
    GEOCODING_BOUNDS: str = Field(
        default="41.6,44.7,41.8,44.9", description="Operating area as 'south,west,north,east'"
    )
    GEOCODING_RATE_LIMIT_PER_MINUTE: int = Field(default=60)
    GEOCODING_RATE_LIMIT_BURST: int = Field(default=1)

    # === JOB QUEUE SETTINGS ===
    JOB_MAX_ATTEMPTS: int = Field(default=3, ge=1)
    JOB_BACKOFF_BASE_SECONDS: float = Field(default=2.0)
    JOB_BACKOFF_MAX_SECONDS: float = Field(default=300.0)
    JOB_PROCESSING_TIMEOUT_SECONDS: float = Field(default=600.0, description="Stale PROCESSING jobs are recovered")
    WORKER_CONCURRENCY: int = Field(default=4, ge=1)
    WORKER_POLL_INTERVAL_SECONDS: float = Field(default=1.0)
    RECOVERY_SWEEP_INTERVAL_SECONDS: float = Field(default=60.0)

    # === SCRAPER SETTINGS (from .env) ===
    APIFY_TOKEN: Optional[str] = Field(default=None, description="Apify API token")
    APIFY_ACTOR_ID: str = Field(default="CIHG1VRwmC01rsPar")
    APIFY_BASE_URL: str = Field(default="https://api.apify.com/v2")
    APIFY_TIMEOUT_SECONDS: float = Field(default=180.0)
    TELEGRAM_CHANNELS: str = Field(
        default="kvartiry_v_tbilisi,propertyintbilisi,GeorgiaRealEstateGroup",
        description="Channels to ingest (comma-separated)",
    )
    PARSING_BATCH_SIZE: int = Field(default=20)

    @property
    def telegram_channels_list(self) -> List[str]:
        """Get configured channels as a list"""
        if not self.TELEGRAM_CHANNELS:
            return []

        return [channel.strip().lstrip("@") for channel in self.TELEGRAM_CHANNELS.split(",") if channel.strip()]

    @property
    def geocoding_bounds(self) -> Tuple[float, float, float, float]:
        """Get operating area as (south, west, north, east)"""
        south, west, north, east = (float(part) for part in self.GEOCODING_BOUNDS.split(","))
        return south, west, north, east

    class Config:
        env_file = ".env"
        case_sensitive = True
        extra = "ignore"


settings = Settings()
