"""
Service for tracking AI token usage, cost and the monthly spending limit
"""

import logging
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from app.db.mongodb import utcnow
from app.db.repositories.ai_usage import AIUsageRepository
from app.exceptions import LLMQuotaExceededError
from app.models.ai_usage import AIUsage

logger = logging.getLogger(__name__)

# USD per 1K tokens
AI_MODEL_PRICING: Dict[str, Dict[str, Dict[str, float]]] = {
    "openai": {
        "gpt-3.5-turbo": {"input": 0.0005, "output": 0.0015},
        "gpt-4": {"input": 0.03, "output": 0.06},
        "gpt-4-turbo": {"input": 0.01, "output": 0.03},
        "gpt-4o": {"input": 0.005, "output": 0.015},
        "gpt-4o-mini": {"input": 0.00015, "output": 0.0006},
    },
    "anthropic": {
        "claude-3-opus": {"input": 0.015, "output": 0.075},
        "claude-3-sonnet": {"input": 0.003, "output": 0.015},
        "claude-3-haiku": {"input": 0.00025, "output": 0.00125},
        "claude-3-5-haiku": {"input": 0.0008, "output": 0.004},
        "claude-3-5-sonnet": {"input": 0.003, "output": 0.015},
    },
    "openrouter": {
        "deepseek/deepseek-chat": {"input": 0.00014, "output": 0.00028},
    },
    "mock": {},
}

# Used when a paid provider reports a model missing from the table
DEFAULT_PRICING = {"input": 0.001, "output": 0.002}


def month_start(now: datetime) -> datetime:
    return now.replace(day=1, hour=0, minute=0, second=0, microsecond=0)


class AICostService:
    """Prices provider calls and persists usage records"""

    def __init__(
        self,
        repository: AIUsageRepository,
        monthly_limit_usd: float,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.repository = repository
        self.monthly_limit_usd = monthly_limit_usd
        self.clock = clock

    def get_model_pricing(self, provider: str, model: str) -> Optional[Dict[str, float]]:
        """Exact match first, then the longest known prefix (gpt-4o-mini-2024-07-18 -> gpt-4o-mini)"""
        provider_pricing = AI_MODEL_PRICING.get(provider.lower())
        if provider_pricing is None:
            return None
        if model in provider_pricing:
            return provider_pricing[model]

        matches = [key for key in provider_pricing if model.startswith(key)]
        if not matches:
            return None
        return provider_pricing[max(matches, key=len)]

    def calculate_cost(self, provider: str, model: str, input_tokens: int, output_tokens: int) -> float:
        if provider.lower() == "mock":
            return 0.0

        pricing = self.get_model_pricing(provider, model)
        if pricing is None:
            logger.warning("No pricing found for %s/%s, using default", provider, model)
            pricing = DEFAULT_PRICING

        input_cost = (input_tokens / 1000) * pricing["input"]
        output_cost = (output_tokens / 1000) * pricing["output"]
        return float(input_cost + output_cost)

    async def record_usage(
        self,
        provider: str,
        model: str,
        input_tokens: int,
        output_tokens: int,
        request_id: Optional[str] = None,
        text_length: Optional[int] = None,
    ) -> Optional[AIUsage]:
        """Persist one usage record; failures are logged, never raised"""
        usage = AIUsage(
            provider=provider,
            model=model,
            input_tokens=input_tokens,
            output_tokens=output_tokens,
            total_tokens=input_tokens + output_tokens,
            cost_usd=self.calculate_cost(provider, model, input_tokens, output_tokens),
            request_id=request_id,
            text_length=text_length,
            created_at=self.clock(),
        )
        try:
            usage.id = await self.repository.insert(usage)
        except Exception as e:
            logger.error("Error saving AI usage: %s", e)
            return None

        logger.info("Saved AI usage: $%.6f for %s/%s (%d tokens)", usage.cost_usd, provider, model, usage.total_tokens)
        return usage

    async def get_monthly_cost(self) -> float:
        return await self.repository.total_cost_since(month_start(self.clock()))

    async def check_spending_limit(self, provider: str) -> None:
        """Raise LLMQuotaExceededError when this month's spend reached the limit"""
        if provider.lower() == "mock" or self.monthly_limit_usd <= 0:
            return

        spent = await self.get_monthly_cost()
        if spent >= self.monthly_limit_usd:
            logger.warning(
                "Monthly AI spending limit reached: $%.2f of $%.2f", spent, self.monthly_limit_usd
            )
            raise LLMQuotaExceededError(
                f"Monthly AI spending limit of ${self.monthly_limit_usd:.2f} reached (spent ${spent:.2f})",
                provider=provider,
            )

    async def get_usage_summary(self) -> List[Dict[str, Any]]:
        return await self.repository.summary_since(month_start(self.clock()))
