"""
Tests for AI cost tracking and the monthly spending limit
"""

from datetime import datetime, timezone
from unittest.mock import AsyncMock

import pytest

from app.exceptions import LLMQuotaExceededError
from app.services.ai_cost_service import AICostService, DEFAULT_PRICING, month_start
from tests.fakes import FakeAIUsageRepository


class TestAICostService:
    """Test class for AICostService"""

    @pytest.fixture
    def usage(self):
        return FakeAIUsageRepository()

    @pytest.fixture
    def service(self, usage, clock):
        return AICostService(usage, monthly_limit_usd=1.0, clock=clock)

    def test_exact_model_pricing(self, service):
        assert service.get_model_pricing("openai", "gpt-4o") == {"input": 0.005, "output": 0.015}

    def test_dated_model_uses_longest_prefix(self, service):
        assert service.get_model_pricing("openai", "gpt-4o-mini-2024-07-18") == {"input": 0.00015, "output": 0.0006}
        assert service.get_model_pricing("anthropic", "claude-3-5-haiku-20241022")["input"] == 0.0008

    def test_unknown_model_falls_back_to_default(self, service):
        assert service.get_model_pricing("openai", "o9-preview") is None
        assert service.calculate_cost("openai", "o9-preview", 1000, 1000) == pytest.approx(
            DEFAULT_PRICING["input"] + DEFAULT_PRICING["output"]
        )

    def test_mock_provider_is_free(self, service):
        assert service.calculate_cost("mock", "mock-gpt-4o-mini", 10_000, 10_000) == 0.0

    def test_cost_per_thousand_tokens(self, service):
        assert service.calculate_cost("openai", "gpt-4", 2000, 500) == pytest.approx(2 * 0.03 + 0.5 * 0.06)

    @pytest.mark.asyncio
    async def test_record_usage(self, service, usage, clock):
        record = await service.record_usage("openai", "gpt-4o-mini", 1000, 200, request_id="req-1", text_length=300)

        assert record is not None
        assert record.total_tokens == 1200
        assert record.created_at == clock.now
        assert usage.records == [record]

    @pytest.mark.asyncio
    async def test_record_usage_never_raises(self, service, usage):
        usage.insert = AsyncMock(side_effect=RuntimeError("db down"))

        assert await service.record_usage("openai", "gpt-4o-mini", 10, 10) is None

    @pytest.mark.asyncio
    async def test_spending_limit(self, service):
        await service.check_spending_limit("openai")

        await service.record_usage("openai", "gpt-4", 20_000, 10_000)

        with pytest.raises(LLMQuotaExceededError):
            await service.check_spending_limit("openai")

    @pytest.mark.asyncio
    async def test_mock_and_disabled_limit_are_never_blocked(self, service, usage):
        await service.record_usage("openai", "gpt-4", 20_000, 10_000)

        await service.check_spending_limit("mock")
        service.monthly_limit_usd = 0
        await service.check_spending_limit("openai")

    @pytest.mark.asyncio
    async def test_previous_month_does_not_count(self, service, clock):
        await service.record_usage("openai", "gpt-4", 20_000, 10_000)
        clock.advance(days=31)

        assert await service.get_monthly_cost() == 0.0

    def test_month_start(self):
        assert month_start(datetime(2025, 3, 17, 8, 30, tzinfo=timezone.utc)) == datetime(
            2025, 3, 1, tzinfo=timezone.utc
        )
