"""
AI extraction service for rental posts.

This module classifies scraped Telegram posts as rental listings and extracts
structured fields using one of several AI providers (OpenAI, Anthropic,
OpenRouter, or a deterministic mock). Verdicts are cached by a hash of the
normalized post text, so the same text is never sent to a provider twice
while its cache entry is fresh.
"""

import json
import logging
import re
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, Optional

import httpx
from anthropic import AsyncAnthropic
from openai import AsyncOpenAI
from pydantic import ValidationError

from app.core.config import Settings, settings
from app.db.mongodb import utcnow
from app.db.repositories.cache import ExtractionCacheRepository
from app.exceptions import (
    MalformedProviderResponseError,
    PipelineError,
    ProviderRequestError,
    classify_error,
)
from app.models.extraction import ExtractedFields, ExtractionCacheEntry, ExtractionResult
from app.services.ai_cost_service import AICostService
from app.services.metrics_service import MetricsService
from app.services.rate_limiter import TokenBucket
from app.utils.districts import find_district_in_text
from app.utils.text_utils import detect_language, normalize_text, text_hash

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = (
    "You are an expert at analyzing real estate rental listings in Tbilisi, Georgia. "
    "You understand Georgian, Russian, and English languages. Always respond with valid JSON."
)

SUPPORTED_LANGUAGES = ("ka", "ru", "en")

_JSON_OBJECT_RE = re.compile(r"\{[\s\S]*\}")


class ExtractionService:
    """Cache-first rental classification and field extraction"""

    def __init__(
        self,
        cache_repository: ExtractionCacheRepository,
        cost_service: AICostService,
        rate_limiter: TokenBucket,
        metrics: Optional[MetricsService] = None,
        config: Settings = settings,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.cache_repository = cache_repository
        self.cost_service = cost_service
        self.rate_limiter = rate_limiter
        self.metrics = metrics or MetricsService()
        self.clock = clock

        self.provider = str(config.AI_PROVIDER).lower()
        self.model = str(config.AI_MODEL)
        self.max_tokens = config.AI_MAX_TOKENS
        self.temperature = config.AI_TEMPERATURE
        self.timeout = config.AI_REQUEST_TIMEOUT_SECONDS
        self.cache_ttl = timedelta(days=config.AI_CACHE_TTL_DAYS)
        self.openrouter_api_key = config.OPENROUTER_API_KEY
        self.openrouter_base_url = config.OPENROUTER_BASE_URL.rstrip("/")

        # Initialize client based on provider
        self.client: Optional[Any] = None
        if self.provider == "openai":
            self.client = AsyncOpenAI(api_key=config.OPENAI_API_KEY, timeout=self.timeout)
        elif self.provider == "anthropic":
            self.client = AsyncAnthropic(api_key=config.ANTHROPIC_API_KEY, timeout=self.timeout)

    async def extract(self, post_text: Optional[str], language: Optional[str] = None) -> ExtractionResult:
        """Classify a post and extract listing fields, reusing a fresh cached verdict"""
        normalized = normalize_text(post_text)
        if not normalized:
            return ExtractionResult(
                is_rental=False,
                confidence=0.0,
                language=language or "en",
                reasoning="Empty or invalid text",
            )

        key = text_hash(normalized)
        now = self.clock()

        cached = await self._get_cached(key, now)
        if cached is not None:
            logger.debug("Extraction cache hit for %s", key[:12])
            self.metrics.record_ai_call(cached.provider or self.provider, cached.model or self.model, cached=True)
            return cached

        result = await self._analyze(normalized, language)
        return await self._store(key, result, now)

    async def purge_expired_cache(self) -> int:
        return await self.cache_repository.purge_expired(self.clock())

    async def _get_cached(self, key: str, now: datetime) -> Optional[ExtractionResult]:
        entry = await self.cache_repository.get(key)
        if entry is None:
            return None

        if entry.is_expired(now):
            await self.cache_repository.delete_expired(key, now)
            logger.debug("Evicted expired extraction cache entry %s", key[:12])
            return None

        await self.cache_repository.touch(key, now)
        return entry.to_result()

    async def _store(self, key: str, result: ExtractionResult, now: datetime) -> ExtractionResult:
        entry = ExtractionCacheEntry.from_result(key, result, now=now, expires_at=now + self.cache_ttl)
        if await self.cache_repository.save(entry):
            return result

        # Another worker cached the same text first; its verdict is authoritative
        existing = await self.cache_repository.get(key)
        return existing.to_result() if existing is not None else result

    async def _analyze(self, text: str, language: Optional[str]) -> ExtractionResult:
        await self.cost_service.check_spending_limit(self.provider)
        await self.rate_limiter.acquire()

        prompt = self._create_analysis_prompt(text, language)
        try:
            llm_result = await self._call_llm(prompt)
        except PipelineError:
            raise
        except Exception as e:
            error = classify_error(e, provider=self.provider)
            logger.warning("AI provider %s failed: %s", self.provider, error.message)
            raise error from e

        cost_info = llm_result["cost_info"]
        usage = await self.cost_service.record_usage(
            provider=self.provider,
            model=cost_info["model_name"],
            input_tokens=cost_info["prompt_tokens"],
            output_tokens=cost_info["completion_tokens"],
            request_id=cost_info.get("request_id"),
            text_length=len(text),
        )
        self.metrics.record_ai_call(
            self.provider, cost_info["model_name"], cached=False, cost_usd=usage.cost_usd if usage else 0.0
        )

        result = self._parse_ai_response(llm_result["response"], text, language)
        return result.model_copy(update={"provider": self.provider, "model": cost_info["model_name"]})

    def _create_analysis_prompt(self, text: str, language: Optional[str] = None) -> str:
        """Create prompt for rental extraction"""
        language_hint = f"The post is most likely written in '{language}'.\n" if language else ""
        return f"""Analyze the following text and determine if it's a rental listing for property in Tbilisi, Georgia.
{language_hint}
Respond with a JSON object containing:
{{
  "isRental": boolean (true only if this clearly OFFERS a property for rent),
  "confidence": number (0-1, how confident you are),
  "extractedData": {{
    "price": {{"amount": number, "currency": "GEL"|"USD"|"EUR"}} (if single price),
    "priceRange": {{"min": number, "max": number, "currency": string}} (if price range),
    "area": number (square meters),
    "rooms": number (number of bedrooms),
    "district": "Vake"|"Saburtalo"|"Old Tbilisi"|"Gldani"|"Isani"|"Didube"|"Nadzaladevi"|"Mtatsminda"|"Chugureti"|"Krtsanisi"|"Samgori"|"other",
    "address": string (street address if mentioned),
    "contactInfo": string (phone number or contact),
    "amenities": string[] (list of amenities mentioned),
    "petsAllowed": boolean or null,
    "furnished": boolean or null
  }},
  "language": "ka"|"ru"|"en",
  "reasoning": string (brief explanation of your decision)
}}

Key patterns to recognize:
- Georgian: გასაქირავებელია, ქირავდება, ლარი, ოთახი, კვადრატი
- Russian: сдается, сдаю, аренда, комната, квадрат, лари, доллар
- English: for rent, rental, bedroom, room, sqm, GEL, USD
- "ლარი" / "лари" / "₾" = GEL, "დოლარი" / "доллар" / "$" = USD
- Phone formats: +995XXXXXXXXX, 995XXXXXXXXX, 5XXXXXXXX

RULES:
- Messages SEARCHING for a flat ("ищу", "сниму", "looking for", "ვეძებ") are NOT rentals
- Use a single price OR a price range, never both
- Use null for missing data, don't guess
- Lower confidence for ambiguous listings

Text to analyze:
{text}"""

    async def _call_llm(self, prompt: str) -> Dict[str, Any]:
        """Call AI API based on provider - raises on provider errors"""
        if self.provider == "openai":
            return await self._call_openai(prompt)
        if self.provider == "anthropic":
            return await self._call_anthropic(prompt)
        if self.provider == "openrouter":
            return await self._call_openrouter(prompt)
        if self.provider == "mock":
            return await self._call_mock(prompt)
        raise ProviderRequestError(f"Unknown AI provider: {self.provider}", provider=self.provider)

    async def _call_openai(self, prompt: str) -> Dict[str, Any]:
        response = await self.client.chat.completions.create(
            model=self.model,
            messages=[
                {"role": "system", "content": SYSTEM_PROMPT},
                {"role": "user", "content": prompt},
            ],
            max_tokens=self.max_tokens,
            temperature=self.temperature,
            response_format={"type": "json_object"},
        )

        if not response.choices:
            raise MalformedProviderResponseError("OpenAI returned no choices", provider="openai")

        usage = response.usage
        return {
            "response": response.choices[0].message.content or "",
            "cost_info": {
                "prompt_tokens": usage.prompt_tokens if usage else 0,
                "completion_tokens": usage.completion_tokens if usage else 0,
                "model_name": response.model or self.model,
                "request_id": response.id,
            },
        }

    async def _call_anthropic(self, prompt: str) -> Dict[str, Any]:
        response = await self.client.messages.create(
            model=self.model,
            max_tokens=self.max_tokens,
            temperature=self.temperature,
            system=SYSTEM_PROMPT,
            messages=[{"role": "user", "content": prompt}],
        )

        text_blocks = [block.text for block in response.content if getattr(block, "type", None) == "text"]
        if not text_blocks:
            raise MalformedProviderResponseError("Anthropic returned no text content", provider="anthropic")

        usage = response.usage
        return {
            "response": "".join(text_blocks),
            "cost_info": {
                "prompt_tokens": usage.input_tokens if usage else 0,
                "completion_tokens": usage.output_tokens if usage else 0,
                "model_name": response.model or self.model,
                "request_id": response.id,
            },
        }

    async def _call_openrouter(self, prompt: str) -> Dict[str, Any]:
        """Call an OpenAI-compatible chat endpoint on OpenRouter (DeepSeek and friends)"""
        if not self.openrouter_api_key:
            raise ProviderRequestError("OPENROUTER_API_KEY not configured", provider="openrouter")

        async with httpx.AsyncClient(timeout=self.timeout) as client:
            response = await client.post(
                f"{self.openrouter_base_url}/chat/completions",
                headers={
                    "Authorization": f"Bearer {self.openrouter_api_key}",
                    "Content-Type": "application/json",
                },
                json={
                    "model": self.model,
                    "messages": [
                        {"role": "system", "content": SYSTEM_PROMPT},
                        {"role": "user", "content": prompt},
                    ],
                    "max_tokens": self.max_tokens,
                    "temperature": self.temperature,
                },
            )
            response.raise_for_status()

        try:
            data = response.json()
            content = data["choices"][0]["message"]["content"]
        except (ValueError, KeyError, IndexError, TypeError) as e:
            raise MalformedProviderResponseError(
                f"Unexpected OpenRouter payload: {e}", provider="openrouter", raw_response=response.text[:500]
            ) from e

        usage = data.get("usage") or {}
        return {
            "response": content or "",
            "cost_info": {
                "prompt_tokens": int(usage.get("prompt_tokens") or 0),
                "completion_tokens": int(usage.get("completion_tokens") or 0),
                "model_name": data.get("model") or self.model,
                "request_id": data.get("id"),
            },
        }

    async def _call_mock(self, prompt: str) -> Dict[str, Any]:
        """Deterministic keyword extractor for development and tests"""
        text = prompt.split("Text to analyze:")[-1].strip()
        response = json.dumps(mock_analysis(text), ensure_ascii=False)

        # Simulate token usage
        prompt_tokens = int(len(prompt.split()) * 1.3)
        completion_tokens = int(len(response.split()) * 1.3)

        return {
            "response": response,
            "cost_info": {
                "prompt_tokens": prompt_tokens,
                "completion_tokens": completion_tokens,
                "model_name": f"mock-{self.model}",
            },
        }

    def _parse_ai_response(self, response: str, text: str, language: Optional[str] = None) -> ExtractionResult:
        """Parse provider JSON into an ExtractionResult"""
        cleaned = (response or "").strip()
        if cleaned.startswith("```json"):
            cleaned = cleaned[7:]
        if cleaned.endswith("```"):
            cleaned = cleaned[:-3]

        match = _JSON_OBJECT_RE.search(cleaned)
        if not match:
            raise MalformedProviderResponseError(
                "No JSON object in AI response", provider=self.provider, raw_response=response[:500] if response else None
            )

        try:
            data = json.loads(match.group(0))
        except json.JSONDecodeError as e:
            raise MalformedProviderResponseError(
                f"Invalid JSON in AI response: {e}", provider=self.provider, raw_response=response[:500]
            ) from e

        if not isinstance(data, dict):
            raise MalformedProviderResponseError("AI response is not a JSON object", provider=self.provider)

        is_rental = data.get("isRental", data.get("is_rental"))
        if not isinstance(is_rental, bool):
            raise MalformedProviderResponseError(
                "AI response has no boolean isRental", provider=self.provider, raw_response=response[:500]
            )

        reported_language = data.get("language")
        if reported_language not in SUPPORTED_LANGUAGES:
            reported_language = language or detect_language(text)

        extracted = data.get("extractedData", data.get("extracted_data"))
        try:
            return ExtractionResult(
                is_rental=is_rental,
                confidence=data.get("confidence", 0.0),
                fields=ExtractedFields.from_provider(extracted) if is_rental else ExtractedFields(),
                language=reported_language,
                reasoning=str(data["reasoning"]) if data.get("reasoning") else None,
            )
        except ValidationError as e:
            raise MalformedProviderResponseError(
                f"AI response failed validation: {e}", provider=self.provider, raw_response=response[:500]
            ) from e


RENTAL_KEYWORDS = [
    "сдается",
    "сдаётся",
    "сдаю",
    "сдам",
    "аренда",
    "в аренду",
    "for rent",
    "for lease",
    "rent",
    "rental",
    "გასაქირავებელია",
    "ქირავდება",
]

SEARCH_KEYWORDS = ["ищу", "ищем", "сниму", "looking for", "searching for", "ვეძებ"]

_CURRENCY_PATTERN = r"(\$|usd|dollars?|долл\w*|დოლარ\w*|gel|₾|лари|лар|ლარი|€|eur|euro?)"
_PRICE_RANGE_RE = re.compile(r"(\d[\d,]*)\s*[-–]\s*(\d[\d,]*)\s*" + _CURRENCY_PATTERN, re.IGNORECASE)
_PRICE_AFTER_RE = re.compile(r"(\d[\d,]*)\s*" + _CURRENCY_PATTERN, re.IGNORECASE)
_PRICE_BEFORE_RE = re.compile(r"(\$|€)\s*(\d[\d,]*)")
_ROOMS_RE = re.compile(r"(\d+)[\s-]*(?:bedrooms?|beds?|rooms?|комн\w*|ком\b|спал\w*|ოთახ\w*)", re.IGNORECASE)
_AREA_RE = re.compile(r"(\d+(?:[.,]\d+)?)\s*(?:sqm|sq\.?\s?m|m2|m²|м2|м²|кв\.?\s?м|кв\b|კვ\w*)", re.IGNORECASE)
_PHONE_RE = re.compile(r"\+?995\s?\d{3}\s?\d{3}\s?\d{3}")


def _currency_code(token: str) -> str:
    token = token.lower()
    if token in ("$", "usd") or token.startswith(("dollar", "долл", "დოლარ")):
        return "USD"
    if token in ("€", "eur", "euro", "eu"):
        return "EUR"
    return "GEL"


def _amount(value: str) -> float:
    return float(value.replace(",", ""))


def mock_analysis(text: str) -> Dict[str, Any]:
    """Keyword and regex based stand-in for a provider verdict"""
    lowered = text.lower()
    language = detect_language(text)

    if any(keyword in lowered for keyword in SEARCH_KEYWORDS):
        return {
            "isRental": False,
            "confidence": 0.8,
            "extractedData": {},
            "language": language,
            "reasoning": "This is a search request, not an offer",
        }

    if not any(keyword in lowered for keyword in RENTAL_KEYWORDS):
        return {
            "isRental": False,
            "confidence": 0.3,
            "extractedData": {},
            "language": language,
            "reasoning": "No rental keywords found",
        }

    data: Dict[str, Any] = {}
    range_match = _PRICE_RANGE_RE.search(text)
    if range_match:
        data["priceRange"] = {
            "min": _amount(range_match.group(1)),
            "max": _amount(range_match.group(2)),
            "currency": _currency_code(range_match.group(3)),
        }
    else:
        before_match = _PRICE_BEFORE_RE.search(text)
        after_match = _PRICE_AFTER_RE.search(text)
        if before_match:
            data["price"] = {"amount": _amount(before_match.group(2)), "currency": _currency_code(before_match.group(1))}
        elif after_match:
            data["price"] = {"amount": _amount(after_match.group(1)), "currency": _currency_code(after_match.group(2))}

    rooms_match = _ROOMS_RE.search(text)
    if rooms_match:
        data["rooms"] = int(rooms_match.group(1))

    area_match = _AREA_RE.search(text)
    if area_match:
        data["area"] = float(area_match.group(1).replace(",", "."))

    phone_match = _PHONE_RE.search(text)
    if phone_match:
        data["contactInfo"] = phone_match.group(0)

    district = find_district_in_text(text)
    if district:
        data["district"] = district

    amenities = []
    if any(word in lowered for word in ("мебель", "furnished", "furniture", "ავეჯ")):
        amenities.append("furnished")
        data["furnished"] = True
    if any(word in lowered for word in ("животн", "pets", "ცხოველ")):
        amenities.append("pets allowed")
        data["petsAllowed"] = True
    if any(word in lowered for word in ("balcony", "балкон", "აივან")):
        amenities.append("balcony")
    if any(word in lowered for word in ("parking", "парков", "პარკინგ")):
        amenities.append("parking")
    data["amenities"] = amenities

    confidence = 0.7
    if "price" in data or "priceRange" in data:
        confidence += 0.1
    if district:
        confidence += 0.1

    return {
        "isRental": True,
        "confidence": round(confidence, 2),
        "extractedData": data,
        "language": language,
        "reasoning": "Mock analysis based on simple pattern matching",
    }
