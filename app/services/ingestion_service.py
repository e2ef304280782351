"""
Ingestion of scraped posts into the raw post store and the job queue
"""

import logging
from typing import Dict, List, Optional

from app.db.repositories.raw_posts import PostUpsertStatus, RawPostRepository
from app.exceptions import PipelineError, ScraperNotConfiguredError
from app.models.raw_post import RawPost
from app.services.job_queue_service import JobQueueService
from app.services.scraper_service import ApifyScraperService

logger = logging.getLogger(__name__)


class IngestionService:
    """Stores scraped posts idempotently and enqueues the ones needing a parse"""

    def __init__(
        self,
        raw_post_repository: RawPostRepository,
        job_queue: JobQueueService,
        scraper: Optional[ApifyScraperService] = None,
    ) -> None:
        self.raw_post_repository = raw_post_repository
        self.job_queue = job_queue
        self.scraper = scraper

    async def ingest_posts(self, posts: List[RawPost]) -> Dict[str, int]:
        stats = {"fetched": len(posts), "created": 0, "changed": 0, "unchanged": 0, "enqueued": 0}
        for post in posts:
            post_id, status = await self.raw_post_repository.upsert(post)
            stats[status.value] += 1
            if status in (PostUpsertStatus.CREATED, PostUpsertStatus.CHANGED):
                await self.job_queue.enqueue_post(post_id)
                stats["enqueued"] += 1
        return stats

    async def ingest_channel(self, channel: str, limit: int = 20) -> Dict[str, int]:
        if self.scraper is None:
            raise RuntimeError("No scraper configured for channel ingestion")
        posts = await self.scraper.fetch_channel_posts(channel, limit)
        stats = await self.ingest_posts(posts)
        logger.info(
            "Ingested %s: %d new, %d changed, %d unchanged, %d job(s) enqueued",
            channel,
            stats["created"],
            stats["changed"],
            stats["unchanged"],
            stats["enqueued"],
        )
        return stats

    async def ingest_channels(self, channels: List[str], limit: int = 20) -> Dict[str, Dict[str, int]]:
        """Ingest every channel; one failing channel does not stop the rest"""
        results: Dict[str, Dict[str, int]] = {}
        for channel in channels:
            try:
                results[channel] = await self.ingest_channel(channel, limit)
            except ScraperNotConfiguredError:
                raise
            except PipelineError as e:
                logger.error("Ingestion of %s failed: %s", channel, e.message)
        return results

    async def enqueue_backlog(self, limit: int = 50) -> int:
        """Enqueue jobs for stored posts that were never processed"""
        posts = await self.raw_post_repository.find_unprocessed(limit)
        for post in posts:
            await self.job_queue.enqueue_post(post.id)
        if posts:
            logger.info("Enqueued %d unprocessed post(s) from the backlog", len(posts))
        return len(posts)
