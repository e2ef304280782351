"""
Service for managing the parse job queue stored in MongoDB
"""

import logging
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, Optional

from app.core.config import Settings, settings
from app.db.mongodb import utcnow
from app.db.repositories.parse_jobs import ParseJobRepository
from app.db.repositories.raw_posts import RawPostRepository
from app.exceptions import PipelineError
from app.models.parse_job import GeocodeAddressPayload, ParseJob, ProcessPostPayload
from app.models.status_enums import JobStatus, JobType

logger = logging.getLogger(__name__)


def dedupe_key_for(job_type: JobType, payload: Dict[str, Any]) -> str:
    """One active job per post, or per listing for geocoding"""
    if job_type == JobType.PROCESS_POST:
        return f"{job_type.value}:{payload['post_id']}"
    return f"{job_type.value}:{payload['listing_id']}"


class JobQueueService:
    """Enqueue, claim and settle parse jobs with bounded retries"""

    def __init__(
        self,
        repository: ParseJobRepository,
        config: Settings = settings,
        clock: Callable[[], datetime] = utcnow,
        raw_post_repository: Optional[RawPostRepository] = None,
    ) -> None:
        self.repository = repository
        self.raw_post_repository = raw_post_repository
        self.clock = clock
        self.max_attempts = config.JOB_MAX_ATTEMPTS
        self.backoff_base_seconds = config.JOB_BACKOFF_BASE_SECONDS
        self.backoff_max_seconds = config.JOB_BACKOFF_MAX_SECONDS
        self.processing_timeout = timedelta(seconds=config.JOB_PROCESSING_TIMEOUT_SECONDS)

    async def enqueue(
        self, job_type: JobType, payload: Dict[str, Any], max_attempts: Optional[int] = None
    ) -> ParseJob:
        """Add a job; returns the existing active job for the same target instead of a duplicate"""
        now = self.clock()
        job = ParseJob(
            type=job_type,
            payload=payload,
            max_attempts=max_attempts or self.max_attempts,
            next_attempt_at=now,
            dedupe_key=dedupe_key_for(job_type, payload),
            created_at=now,
            updated_at=now,
        )
        stored, created = await self.repository.insert(job)
        if created:
            logger.info("Enqueued %s job %s", job_type.value, stored.id)
        else:
            logger.debug("Job %s already active for %s", stored.id, job.dedupe_key)
        return stored

    async def enqueue_post(self, post_id: str) -> ParseJob:
        return await self.enqueue(JobType.PROCESS_POST, ProcessPostPayload(post_id=post_id).model_dump())

    async def enqueue_geocode(self, listing_id: str, address: str) -> ParseJob:
        return await self.enqueue(
            JobType.GEOCODE_ADDRESS, GeocodeAddressPayload(listing_id=listing_id, address=address).model_dump()
        )

    async def claim_next(self) -> Optional[ParseJob]:
        return await self.repository.claim_next(self.clock())

    def backoff_delay(self, attempts: int) -> float:
        """
        Seconds to wait before the next attempt.

        Examples (base 2s, max 300s):
            attempts=1 -> 2.0
            attempts=2 -> 4.0
            attempts=3 -> 8.0
            attempts=10 -> 300.0
        """
        exponent = max(0, attempts - 1)
        return min(self.backoff_base_seconds * (2 ** exponent), self.backoff_max_seconds)

    async def complete(self, job: ParseJob, result: Optional[Dict[str, Any]] = None) -> None:
        await self.repository.mark_completed(job.id, result, self.clock())
        logger.info("Job %s (%s) completed after %d attempt(s)", job.id, job.type.value, job.attempts)

    async def fail(self, job: ParseJob, error: PipelineError) -> JobStatus:
        """Reschedule a transient failure or record a terminal one"""
        now = self.clock()
        message = f"{type(error).__name__}: {error.message}"

        if error.retryable and job.attempts < job.max_attempts:
            delay = self.backoff_delay(job.attempts)
            await self.repository.reschedule(job.id, message, now + timedelta(seconds=delay), now)
            logger.warning(
                "Job %s (%s) attempt %d/%d failed, retrying in %.1fs: %s",
                job.id,
                job.type.value,
                job.attempts,
                job.max_attempts,
                delay,
                message,
            )
            return JobStatus.PENDING

        await self.repository.mark_failed(job.id, message, now)
        logger.error(
            "Job %s (%s) failed permanently after %d attempt(s): %s",
            job.id,
            job.type.value,
            job.attempts,
            message,
        )
        await self._record_post_failure(job, message)
        return JobStatus.FAILED

    async def recover_stale_jobs(self) -> Dict[str, int]:
        """Return PROCESSING jobs abandoned by dead workers to the queue"""
        now = self.clock()
        requeued, failed_jobs = await self.repository.recover_stale(now - self.processing_timeout, now)
        for job in failed_jobs:
            await self._record_post_failure(job, job.error or "")
        failed = len(failed_jobs)
        if requeued or failed:
            logger.warning("Recovery sweep: %d job(s) requeued, %d job(s) failed", requeued, failed)
        return {"requeued": requeued, "failed": failed}

    async def _record_post_failure(self, job: ParseJob, message: str) -> None:
        """Stamp the post of a terminally failed process_post job; only retry_failed revives it"""
        if self.raw_post_repository is None or job.type != JobType.PROCESS_POST:
            return
        post_id = job.payload.get("post_id")
        if post_id:
            await self.raw_post_repository.mark_failed(post_id, message)

    async def retry_failed(self, job_id: str) -> Optional[ParseJob]:
        """Manually give a terminally failed job a fresh attempt budget"""
        job = await self.repository.requeue_failed(job_id, self.clock())
        if job is None:
            logger.warning("Job %s is not a failed job or cannot be requeued", job_id)
        else:
            logger.info("Job %s requeued manually", job_id)
        return job

    async def get_queue_stats(self) -> Dict[str, Any]:
        """Job counts by type and status"""
        by_type = await self.repository.count_by_status()
        by_status: Dict[str, int] = {}
        for counts in by_type.values():
            for status, count in counts.items():
                by_status[status] = by_status.get(status, 0) + count
        return {
            "by_status": by_status,
            "by_type": by_type,
            "total": sum(by_status.values()),
        }
