import logging
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo import ASCENDING, ReturnDocument
from pymongo.errors import DuplicateKeyError

from app.db.repositories.base import document_to_dict, to_object_id
from app.models.parse_job import ParseJob
from app.models.status_enums import JobStatus

logger = logging.getLogger(__name__)


class ParseJobRepository:
    """Access to the parse_jobs collection"""

    def __init__(self, db: AsyncIOMotorDatabase) -> None:
        self.collection = db.parse_jobs

    async def insert(self, job: ParseJob) -> Tuple[ParseJob, bool]:
        """Insert a job; returns (job, created).

        When an active job with the same dedupe key exists, that job is
        returned with created=False.
        """
        document = job.model_dump(exclude={"id"})
        try:
            result = await self.collection.insert_one(document)
        except DuplicateKeyError:
            existing = await self.find_active_by_dedupe_key(job.dedupe_key)
            if existing is None:
                # The active job was archived between the insert and the lookup
                result = await self.collection.insert_one(document)
            else:
                return existing, False

        return job.model_copy(update={"id": str(result.inserted_id)}), True

    async def find_active_by_dedupe_key(self, dedupe_key: Optional[str]) -> Optional[ParseJob]:
        if not dedupe_key:
            return None
        document = await self.collection.find_one({"dedupe_key": dedupe_key, "active": True})
        return ParseJob.model_validate(document_to_dict(document)) if document else None

    async def get(self, job_id: str) -> Optional[ParseJob]:
        object_id = to_object_id(job_id)
        if object_id is None:
            return None
        document = await self.collection.find_one({"_id": object_id})
        return ParseJob.model_validate(document_to_dict(document)) if document else None

    async def claim_next(self, now: datetime) -> Optional[ParseJob]:
        """Atomically move the oldest due pending job to processing.

        The attempt counter is incremented here, at claim time, so a worker
        that dies mid-job still consumes an attempt.
        """
        document = await self.collection.find_one_and_update(
            {
                "status": JobStatus.PENDING.value,
                "next_attempt_at": {"$lte": now},
                "$expr": {"$lt": ["$attempts", "$max_attempts"]},
            },
            {
                "$set": {
                    "status": JobStatus.PROCESSING.value,
                    "processing_started_at": now,
                    "updated_at": now,
                },
                "$inc": {"attempts": 1},
            },
            sort=[("next_attempt_at", ASCENDING)],
            return_document=ReturnDocument.AFTER,
        )
        return ParseJob.model_validate(document_to_dict(document)) if document else None

    async def mark_completed(self, job_id: str, result: Optional[Dict[str, Any]], now: datetime) -> None:
        await self.collection.update_one(
            {"_id": to_object_id(job_id)},
            {
                "$set": {
                    "status": JobStatus.COMPLETED.value,
                    "result": result,
                    "error": None,
                    "completed_at": now,
                    "updated_at": now,
                    "active": False,
                }
            },
        )

    async def reschedule(self, job_id: str, error: str, next_attempt_at: datetime, now: datetime) -> None:
        await self.collection.update_one(
            {"_id": to_object_id(job_id)},
            {
                "$set": {
                    "status": JobStatus.PENDING.value,
                    "error": error,
                    "next_attempt_at": next_attempt_at,
                    "processing_started_at": None,
                    "updated_at": now,
                }
            },
        )

    async def mark_failed(self, job_id: str, error: str, now: datetime) -> None:
        await self.collection.update_one(
            {"_id": to_object_id(job_id)},
            {
                "$set": {
                    "status": JobStatus.FAILED.value,
                    "error": error,
                    "completed_at": now,
                    "updated_at": now,
                    "active": False,
                }
            },
        )

    async def recover_stale(self, stale_before: datetime, now: datetime) -> Tuple[int, List[ParseJob]]:
        """Release jobs stuck in processing since before stale_before.

        Jobs with attempts left go back to pending; exhausted ones fail.
        Returns (requeued count, failed jobs).
        """
        stale = {"status": JobStatus.PROCESSING.value, "processing_started_at": {"$lt": stale_before}}
        error = "Processing timed out; worker presumed dead"

        exhausted_filter = {**stale, "$expr": {"$gte": ["$attempts", "$max_attempts"]}}
        exhausted = await self.collection.find(exhausted_filter).to_list(length=None)
        failed_jobs = []
        if exhausted:
            await self.collection.update_many(
                {**stale, "_id": {"$in": [document["_id"] for document in exhausted]}},
                {
                    "$set": {
                        "status": JobStatus.FAILED.value,
                        "error": error,
                        "completed_at": now,
                        "updated_at": now,
                        "active": False,
                    }
                },
            )
            failed_jobs = [
                ParseJob.model_validate(document_to_dict(document)).model_copy(
                    update={"status": JobStatus.FAILED, "error": error, "active": False}
                )
                for document in exhausted
            ]

        requeued = await self.collection.update_many(
            {**stale, "$expr": {"$lt": ["$attempts", "$max_attempts"]}},
            {
                "$set": {
                    "status": JobStatus.PENDING.value,
                    "error": error,
                    "next_attempt_at": now,
                    "processing_started_at": None,
                    "updated_at": now,
                }
            },
        )
        return requeued.modified_count, failed_jobs

    async def requeue_failed(self, job_id: str, now: datetime) -> Optional[ParseJob]:
        """Give a failed job a fresh set of attempts"""
        try:
            document = await self.collection.find_one_and_update(
                {"_id": to_object_id(job_id), "status": JobStatus.FAILED.value},
                {
                    "$set": {
                        "status": JobStatus.PENDING.value,
                        "attempts": 0,
                        "error": None,
                        "next_attempt_at": now,
                        "processing_started_at": None,
                        "completed_at": None,
                        "updated_at": now,
                        "active": True,
                    }
                },
                return_document=ReturnDocument.AFTER,
            )
        except DuplicateKeyError:
            logger.info("Job %s not requeued: another active job has the same dedupe key", job_id)
            return None
        return ParseJob.model_validate(document_to_dict(document)) if document else None

    async def count_by_status(self) -> Dict[str, Dict[str, int]]:
        """Job counts grouped by type then status"""
        pipeline = [{"$group": {"_id": {"type": "$type", "status": "$status"}, "count": {"$sum": 1}}}]
        rows = await self.collection.aggregate(pipeline).to_list(length=None)
        counts: Dict[str, Dict[str, int]] = {}
        for row in rows:
            counts.setdefault(row["_id"]["type"], {})[row["_id"]["status"]] = row["count"]
        return counts
