"""
Client for the Apify Telegram channel scraper actor
"""

import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import httpx

from app.core.config import Settings, settings
from app.db.mongodb import utcnow
from app.exceptions import PipelineError, ScraperNotConfiguredError, classify_error
from app.models.raw_post import RawPost

logger = logging.getLogger(__name__)

IMAGE_FIELDS = ("photos", "images", "media", "attachments")


def clean_text(value: Any) -> str:
    if not value:
        return ""
    if isinstance(value, str):
        return value.strip()
    if isinstance(value, dict) and value.get("text"):
        return clean_text(value["text"])
    return str(value).strip()


def parse_date(value: Any) -> datetime:
    """Parse ISO strings and unix timestamps; unknown values fall back to now"""
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        # Millisecond timestamps are common in actor output
        seconds = value / 1000 if value > 1e11 else value
        return datetime.fromtimestamp(seconds, tz=timezone.utc)
    if isinstance(value, str) and value.strip():
        try:
            parsed = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
        except ValueError:
            logger.warning("Invalid date value: %s", value)
            return utcnow()
        return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)
    return utcnow()


def extract_images(item: Dict[str, Any]) -> List[str]:
    """Collect photo URLs from the several shapes the actor may return"""
    candidates: List[Any] = []
    for field in IMAGE_FIELDS:
        value = item.get(field)
        if isinstance(value, list):
            candidates.extend(
                entry
                for entry in value
                if not isinstance(entry, dict) or entry.get("type", "photo") == "photo"
            )
    for field in ("imageUrl", "photoUrl"):
        if item.get(field):
            candidates.append(item[field])

    images: List[str] = []
    for candidate in candidates:
        url = candidate
        if isinstance(candidate, dict):
            url = candidate.get("url") or candidate.get("file_path") or candidate.get("src") or candidate.get("href")
        if isinstance(url, str) and url.startswith("http") and url not in images:
            images.append(url)
    return images


def transform_item(item: Dict[str, Any], channel_username: str) -> Optional[RawPost]:
    """Map one actor dataset item to a RawPost; None when it has no id or content"""
    message_id = item.get("messageId") or item.get("message_id") or item.get("id") or item.get("postId")
    try:
        message_id = int(message_id)
    except (TypeError, ValueError):
        logger.warning("Skipping item without a usable message id in %s", channel_username)
        return None
    if message_id <= 0:
        logger.warning("Skipping item without a usable message id in %s", channel_username)
        return None

    text = clean_text(item.get("text") or item.get("message") or item.get("content") or item.get("caption"))
    photos = extract_images(item)
    if not text and not photos:
        logger.debug("Skipping empty post %s/%s", channel_username, message_id)
        return None

    videos = [url for url in item.get("videos") or [] if isinstance(url, str) and url.startswith("http")]

    return RawPost(
        channel_id=str(item["channelId"]) if item.get("channelId") else None,
        channel_username=channel_username,
        message_id=message_id,
        text=text or None,
        photos=photos,
        video_urls=videos,
        link=item.get("url") or item.get("link") or f"https://t.me/{channel_username}/{message_id}",
        views=item.get("views") or item.get("viewCount") or item.get("view_count") or 0,
        forwards=item.get("forwards") or item.get("forwardCount") or item.get("forward_count") or 0,
        post_date=parse_date(item.get("date") or item.get("timestamp") or item.get("created_at") or item.get("postDate")),
        raw_data=item,
    )


class ApifyScraperService:
    """Runs the scraping actor synchronously and returns its dataset as RawPosts"""

    def __init__(self, config: Settings = settings) -> None:
        self.token = config.APIFY_TOKEN
        self.actor_id = config.APIFY_ACTOR_ID
        self.base_url = config.APIFY_BASE_URL.rstrip("/")
        self.timeout = config.APIFY_TIMEOUT_SECONDS

    @property
    def is_configured(self) -> bool:
        return bool(self.token)

    async def fetch_channel_posts(self, channel: str, limit: int = 20) -> List[RawPost]:
        if not self.is_configured:
            raise ScraperNotConfiguredError("APIFY_TOKEN is not set")

        channel_username = channel.lstrip("@").strip()
        logger.info("Starting Apify parsing for channel %s, limit %d", channel_username, limit)

        try:
            items = await self._run_actor({"channel": channel_username, "limit": limit})
        except PipelineError:
            raise
        except Exception as e:
            raise classify_error(e, provider="apify") from e

        posts = [post for post in (transform_item(item, channel_username) for item in items) if post]
        logger.info("Fetched %d posts (%d items) from %s", len(posts), len(items), channel_username)
        return posts

    async def _run_actor(self, actor_input: Dict[str, Any]) -> List[Dict[str, Any]]:
        # Apify addresses actors as "user~name" in URLs
        actor = self.actor_id.replace("/", "~")
        async with httpx.AsyncClient(timeout=self.timeout) as client:
            response = await client.post(
                f"{self.base_url}/acts/{actor}/run-sync-get-dataset-items",
                params={"token": self.token},
                json=actor_input,
            )
            response.raise_for_status()
            data = response.json()

        if not isinstance(data, list):
            logger.warning("Unexpected Apify dataset payload: %s", type(data).__name__)
            return []
        return [item for item in data if isinstance(item, dict)]
