"""
Asyncio worker pool pulling parse jobs from the queue
"""

import asyncio
import logging
import time
from typing import List, Optional

from pymongo.errors import ServerSelectionTimeoutError

from app.exceptions import classify_error
from app.models.parse_job import JobOutcome, ParseJob
from app.models.status_enums import JobStatus
from app.services.job_queue_service import JobQueueService
from app.services.metrics_service import MetricsService
from app.services.post_processor import PostProcessor

logger = logging.getLogger(__name__)


class WorkerPool:
    """N concurrent workers plus a periodic recovery sweep"""

    def __init__(
        self,
        job_queue: JobQueueService,
        processor: PostProcessor,
        metrics: Optional[MetricsService] = None,
        concurrency: int = 4,
        poll_interval: float = 1.0,
        sweep_interval: float = 60.0,
    ) -> None:
        self.job_queue = job_queue
        self.processor = processor
        self.metrics = metrics or MetricsService()
        self.concurrency = concurrency
        self.poll_interval = poll_interval
        self.sweep_interval = sweep_interval
        self._stopping = asyncio.Event()
        self._tasks: List[asyncio.Task] = []

    @property
    def is_running(self) -> bool:
        return any(not task.done() for task in self._tasks)

    async def run_job(self, job: ParseJob) -> JobOutcome:
        """Run one claimed job and settle it as completed, rescheduled or failed"""
        start_time = time.monotonic()
        try:
            result = await self.processor.handle(job)
        except Exception as e:
            error = classify_error(e)
            status = await self.job_queue.fail(job, error)
            processing_time = time.monotonic() - start_time
            self.metrics.record_job(job.type.value, status.value, processing_time)
            return JobOutcome(
                success=False,
                job_id=job.id,
                job_type=job.type,
                status=status,
                attempts=job.attempts,
                error=error.message,
                retryable=error.retryable,
                processing_time_seconds=processing_time,
            )

        await self.job_queue.complete(job, result)
        processing_time = time.monotonic() - start_time
        self.metrics.record_job(job.type.value, JobStatus.COMPLETED.value, processing_time)
        return JobOutcome(
            success=True,
            job_id=job.id,
            job_type=job.type,
            status=JobStatus.COMPLETED,
            attempts=job.attempts,
            result=result,
            processing_time_seconds=processing_time,
        )

    async def drain(self, max_jobs: Optional[int] = None) -> List[JobOutcome]:
        """Process due jobs one by one until none is left"""
        outcomes: List[JobOutcome] = []
        while max_jobs is None or len(outcomes) < max_jobs:
            job = await self.job_queue.claim_next()
            if job is None:
                break
            outcomes.append(await self.run_job(job))
        return outcomes

    async def start(self) -> None:
        """Start worker tasks and the recovery sweep"""
        if self.is_running:
            logger.warning("Worker pool is already running")
            return

        self._stopping.clear()
        self._tasks = [asyncio.create_task(self._worker_loop(index)) for index in range(self.concurrency)]
        self._tasks.append(asyncio.create_task(self._sweep_loop()))
        logger.info("Started worker pool with %d worker(s)", self.concurrency)

    async def stop(self) -> None:
        """Stop taking jobs; in-flight jobs are left to the recovery sweep"""
        self._stopping.set()
        for task in self._tasks:
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks = []
        logger.info("Worker pool stopped")

    async def wait(self) -> None:
        """Block until every worker has exited"""
        await asyncio.gather(*self._tasks, return_exceptions=True)

    async def _sleep(self, seconds: float) -> None:
        try:
            await asyncio.wait_for(self._stopping.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            pass

    async def _worker_loop(self, index: int) -> None:
        logger.debug("Worker %d started", index)
        try:
            while not self._stopping.is_set():
                try:
                    job = await self.job_queue.claim_next()
                except ServerSelectionTimeoutError as e:
                    logger.critical("Database unreachable, worker pool stops taking jobs: %s", e)
                    self._stopping.set()
                    break
                except Exception as e:
                    logger.error("Worker %d could not claim a job: %s", index, classify_error(e).message)
                    await self._sleep(self.poll_interval)
                    continue

                if job is None:
                    await self._sleep(self.poll_interval)
                    continue

                try:
                    outcome = await self.run_job(job)
                except Exception as e:
                    # Settling the job failed; the recovery sweep will pick it up
                    logger.error("Worker %d could not settle job %s: %s", index, job.id, e)
                    await self._sleep(5)
                    continue

                if outcome.success:
                    logger.info("Worker %d processed job %s in %.2fs", index, outcome.job_id, outcome.processing_time_seconds)
        except asyncio.CancelledError:
            logger.debug("Worker %d cancelled", index)
            raise

    async def _sweep_loop(self) -> None:
        try:
            while not self._stopping.is_set():
                try:
                    await self.job_queue.recover_stale_jobs()
                except ServerSelectionTimeoutError as e:
                    logger.error("Recovery sweep skipped, database unreachable: %s", e)
                except Exception as e:
                    logger.error("Error in recovery sweep: %s", e)
                await self._sleep(self.sweep_interval)
        except asyncio.CancelledError:
            logger.debug("Recovery sweep cancelled")
            raise
