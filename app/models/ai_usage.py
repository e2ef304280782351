from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from app.db.mongodb import utcnow


class AIUsage(BaseModel):
    """Model for tracking AI provider token usage and cost"""

    model_config = ConfigDict(populate_by_name=True)

    id: Optional[str] = Field(None, alias="_id")
    provider: str = Field(..., description="AI provider name")
    model: str = Field(..., description="Model used")
    input_tokens: int = Field(..., description="Number of tokens in prompt")
    output_tokens: int = Field(..., description="Number of tokens in completion")
    total_tokens: int = Field(..., description="Total tokens used")
    cost_usd: float = Field(..., description="Cost in USD")
    request_id: Optional[str] = None
    purpose: str = Field(default="rental_analysis")
    text_length: Optional[int] = None
    created_at: datetime = Field(default_factory=utcnow)
