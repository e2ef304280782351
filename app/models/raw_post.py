"""
Model for raw posts scraped from Telegram channels
"""

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from app.db.mongodb import utcnow


class RawPost(BaseModel):
    """Scraped Telegram message, stored once per (channel, message id)"""

    model_config = ConfigDict(populate_by_name=True)

    id: Optional[str] = Field(None, alias="_id")
    channel_id: Optional[str] = None
    channel_username: str
    message_id: int
    text: Optional[str] = None

    # Media information
    photos: List[str] = Field(default_factory=list)
    video_urls: List[str] = Field(default_factory=list)

    # Message statistics (from Telegram)
    link: Optional[str] = None
    views: Optional[int] = None
    forwards: Optional[int] = None
    post_date: datetime = Field(default_factory=utcnow)

    # Opaque actor payload, kept for diagnostics only
    raw_data: Optional[Dict[str, Any]] = None

    # Processing state
    processed: bool = False
    listing_id: Optional[str] = None
    processing_error: Optional[str] = None

    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    @property
    def source_url(self) -> str:
        """Public link to the original message"""
        return self.link or f"https://t.me/{self.channel_username}/{self.message_id}"

    @property
    def has_text(self) -> bool:
        return bool(self.text and self.text.strip())
