"""
Tests for the Apify scraper client and channel ingestion
"""

from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock, patch

import httpx
import pytest

from app.core.config import Settings
from app.exceptions import ProviderUnavailableError, ScraperNotConfiguredError
from app.services.ingestion_service import IngestionService
from app.services.scraper_service import (
    ApifyScraperService,
    clean_text,
    extract_images,
    parse_date,
    transform_item,
)


class TestItemTransformation:
    def test_transform_item(self):
        item = {
            "messageId": "412",
            "text": "  Сдается квартира в Ваке  ",
            "date": "2025-02-28T09:15:00Z",
            "views": 120,
            "photos": [{"url": "https://cdn.example.com/a.jpg"}, "https://cdn.example.com/b.jpg"],
            "channelId": -100123,
        }

        post = transform_item(item, "tbilisi_rent")

        assert post.message_id == 412
        assert post.text == "Сдается квартира в Ваке"
        assert post.channel_id == "-100123"
        assert post.photos == ["https://cdn.example.com/a.jpg", "https://cdn.example.com/b.jpg"]
        assert post.link == "https://t.me/tbilisi_rent/412"
        assert post.views == 120
        assert post.post_date == datetime(2025, 2, 28, 9, 15, tzinfo=timezone.utc)
        assert post.raw_data == item

    @pytest.mark.parametrize("message_id", [None, "abc", 0, -5])
    def test_items_without_message_id_are_skipped(self, message_id):
        assert transform_item({"messageId": message_id, "text": "Flat"}, "tbilisi_rent") is None

    def test_items_without_content_are_skipped(self):
        assert transform_item({"id": 5, "text": "   "}, "tbilisi_rent") is None

    def test_photo_only_item_is_kept(self):
        post = transform_item({"id": 5, "imageUrl": "https://cdn.example.com/a.jpg"}, "tbilisi_rent")

        assert post.text is None
        assert post.photos == ["https://cdn.example.com/a.jpg"]

    def test_extract_images_skips_videos_and_duplicates(self):
        item = {
            "media": [
                {"type": "photo", "url": "https://cdn.example.com/a.jpg"},
                {"type": "video", "url": "https://cdn.example.com/v.mp4"},
            ],
            "images": ["https://cdn.example.com/a.jpg", "/relative.jpg"],
        }

        assert extract_images(item) == ["https://cdn.example.com/a.jpg"]

    def test_clean_text(self):
        assert clean_text({"text": " hi "}) == "hi"
        assert clean_text(None) == ""
        assert clean_text(42) == "42"

    def test_parse_date_formats(self):
        expected = datetime(2025, 2, 28, 9, 15, tzinfo=timezone.utc)

        assert parse_date("2025-02-28T09:15:00+00:00") == expected
        assert parse_date(int(expected.timestamp())) == expected
        assert parse_date(int(expected.timestamp()) * 1000) == expected
        assert parse_date("2025-02-28T09:15:00") == expected

    def test_invalid_date_falls_back_to_now(self):
        assert parse_date("yesterday").tzinfo is not None


class TestApifyScraperService:
    @pytest.fixture
    def scraper(self):
        return ApifyScraperService(config=Settings(_env_file=None, APIFY_TOKEN="token"))

    def _mock_client(self, response):
        client = MagicMock()
        client.__aenter__ = AsyncMock(return_value=client)
        client.__aexit__ = AsyncMock(return_value=False)
        client.post = AsyncMock(return_value=response)
        return client

    @pytest.mark.asyncio
    async def test_requires_token(self):
        scraper = ApifyScraperService(config=Settings(_env_file=None, APIFY_TOKEN=None))

        assert scraper.is_configured is False
        with pytest.raises(ScraperNotConfiguredError):
            await scraper.fetch_channel_posts("tbilisi_rent")

    @pytest.mark.asyncio
    async def test_fetch_channel_posts(self, scraper):
        request = httpx.Request("POST", scraper.base_url)
        response = httpx.Response(
            200,
            json=[{"id": 1, "text": "Flat for rent"}, {"id": 2, "text": ""}, "garbage"],
            request=request,
        )
        client = self._mock_client(response)

        with patch("app.services.scraper_service.httpx.AsyncClient", return_value=client):
            posts = await scraper.fetch_channel_posts("@tbilisi_rent", limit=5)

        assert [post.message_id for post in posts] == [1]
        assert posts[0].channel_username == "tbilisi_rent"
        assert client.post.call_args.kwargs["json"] == {"channel": "tbilisi_rent", "limit": 5}

    @pytest.mark.asyncio
    async def test_server_error_is_transient(self, scraper):
        response = httpx.Response(502, request=httpx.Request("POST", scraper.base_url))

        with patch("app.services.scraper_service.httpx.AsyncClient", return_value=self._mock_client(response)):
            with pytest.raises(ProviderUnavailableError):
                await scraper.fetch_channel_posts("tbilisi_rent")


class TestChannelIngestion:
    @pytest.mark.asyncio
    async def test_ingest_channels_continues_after_failure(self, services, sample_post):
        scraper = MagicMock()
        scraper.fetch_channel_posts = AsyncMock(
            side_effect=[ProviderUnavailableError("502", provider="apify"), [sample_post]]
        )
        ingestion = IngestionService(services.raw_posts, services.job_queue, scraper=scraper)

        results = await ingestion.ingest_channels(["broken_channel", "tbilisi_rent"])

        assert list(results) == ["tbilisi_rent"]
        assert results["tbilisi_rent"]["created"] == 1
        assert results["tbilisi_rent"]["enqueued"] == 1

    @pytest.mark.asyncio
    async def test_missing_credentials_stop_the_run(self, services):
        scraper = MagicMock()
        scraper.fetch_channel_posts = AsyncMock(side_effect=ScraperNotConfiguredError("APIFY_TOKEN is not set"))
        ingestion = IngestionService(services.raw_posts, services.job_queue, scraper=scraper)

        with pytest.raises(ScraperNotConfiguredError):
            await ingestion.ingest_channels(["a", "b"])

        assert scraper.fetch_channel_posts.await_count == 1

    @pytest.mark.asyncio
    async def test_ingest_channel_without_scraper(self, services):
        with pytest.raises(RuntimeError):
            await services.ingestion_service.ingest_channel("tbilisi_rent")
