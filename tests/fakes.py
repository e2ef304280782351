"""
In-memory stand-ins for the MongoDB repositories.

They follow the same method contracts as app/db/repositories so services can
be exercised end to end without a database.
"""

from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional, Tuple

from bson import ObjectId

from app.db.repositories.raw_posts import PostUpsertStatus
from app.models.ai_usage import AIUsage
from app.models.geocode import GeocodeResult
from app.models.listing import Listing
from app.models.parse_job import ParseJob
from app.models.raw_post import RawPost
from app.models.status_enums import JobStatus, ListingStatus


class FakeClock:
    """Controllable replacement for utcnow"""

    def __init__(self, start: Optional[datetime] = None) -> None:
        self.now = start or datetime(2025, 3, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


def new_id() -> str:
    return str(ObjectId())


class FakeRawPostRepository:
    def __init__(self) -> None:
        self.posts: Dict[str, RawPost] = {}

    def add(self, post: RawPost) -> RawPost:
        stored = post.model_copy(update={"id": post.id or new_id()})
        self.posts[stored.id] = stored
        return stored

    async def upsert(self, post: RawPost, now: Optional[datetime] = None) -> Tuple[str, PostUpsertStatus]:
        for stored in self.posts.values():
            if stored.channel_username == post.channel_username and stored.message_id == post.message_id:
                if (stored.text or "") != (post.text or ""):
                    stored.text = post.text
                    stored.processed = False
                    stored.processing_error = None
                    return stored.id, PostUpsertStatus.CHANGED
                return stored.id, PostUpsertStatus.UNCHANGED
        stored = self.add(post)
        return stored.id, PostUpsertStatus.CREATED

    async def get(self, post_id: str) -> Optional[RawPost]:
        post = self.posts.get(post_id)
        return post.model_copy() if post else None

    async def mark_processed(
        self, post_id: str, listing_id: Optional[str] = None, error: Optional[str] = None
    ) -> None:
        post = self.posts[post_id]
        post.processed = True
        post.listing_id = listing_id
        post.processing_error = error

    async def mark_failed(self, post_id: str, error: str) -> None:
        post = self.posts.get(post_id)
        if post is not None and not post.processed:
            post.processing_error = error

    async def find_unprocessed(self, limit: int = 50) -> List[RawPost]:
        pending = [post for post in self.posts.values() if not post.processed and post.processing_error is None]
        return [post.model_copy() for post in pending][:limit]


class FakeListingRepository:
    def __init__(self) -> None:
        self.listings: Dict[str, Listing] = {}
        self.upsert_calls = 0

    async def upsert_for_post(self, listing: Listing, now: Optional[datetime] = None) -> Listing:
        self.upsert_calls += 1
        existing = await self.get_by_raw_post_id(listing.raw_post_id)
        if existing is None:
            stored = listing.model_copy(update={"id": new_id()})
        else:
            status = existing.status if existing.status.is_terminal else listing.status
            stored = listing.model_copy(
                update={"id": existing.id, "created_at": existing.created_at, "status": status}
            )
        self.listings[stored.id] = stored
        return stored.model_copy()

    async def get(self, listing_id: str) -> Optional[Listing]:
        listing = self.listings.get(listing_id)
        return listing.model_copy() if listing else None

    async def get_by_raw_post_id(self, raw_post_id: str) -> Optional[Listing]:
        for listing in self.listings.values():
            if listing.raw_post_id == raw_post_id:
                return listing.model_copy()
        return None

    async def update_location(self, listing_id: str, geocode: GeocodeResult) -> bool:
        listing = self.listings.get(listing_id)
        if listing is None:
            return False
        listing.latitude = geocode.latitude
        listing.longitude = geocode.longitude
        if geocode.district:
            listing.district = geocode.district
        return True

    async def update_status(self, listing_id: str, status: ListingStatus, from_statuses: List[ListingStatus]) -> bool:
        listing = self.listings.get(listing_id)
        if listing is None or listing.status not in from_statuses:
            return False
        listing.status = status
        return True

    async def expire_stale(self, cutoff: datetime, now: Optional[datetime] = None) -> int:
        expired = 0
        for listing in self.listings.values():
            if listing.status == ListingStatus.ACTIVE and listing.updated_at < cutoff:
                listing.status = ListingStatus.EXPIRED
                listing.updated_at = now or listing.updated_at
                expired += 1
        return expired


class FakeCacheRepository:
    def __init__(self, key_field: str) -> None:
        self.key_field = key_field
        self.entries: Dict[str, Any] = {}
        self.touches: List[str] = []
        self.lose_next_race_to: Optional[Any] = None

    async def get(self, key: str):
        entry = self.entries.get(key)
        return entry.model_copy() if entry else None

    async def touch(self, key: str, now: datetime) -> None:
        self.touches.append(key)
        if key in self.entries:
            self.entries[key].last_used_at = now

    async def delete_expired(self, key: str, now: datetime) -> bool:
        entry = self.entries.get(key)
        if entry is not None and entry.is_expired(now):
            del self.entries[key]
            return True
        return False

    async def save(self, entry) -> bool:
        key = getattr(entry, self.key_field)
        if self.lose_next_race_to is not None:
            # Simulate a concurrent writer inserting first
            self.entries[key] = self.lose_next_race_to
            self.lose_next_race_to = None
            return False
        self.entries[key] = entry.model_copy()
        return True

    async def purge_expired(self, now: datetime) -> int:
        expired = [key for key, entry in self.entries.items() if entry.is_expired(now)]
        for key in expired:
            del self.entries[key]
        return len(expired)


def fake_extraction_cache() -> FakeCacheRepository:
    return FakeCacheRepository("text_hash")


def fake_geocode_cache() -> FakeCacheRepository:
    return FakeCacheRepository("address")


class FakeParseJobRepository:
    def __init__(self) -> None:
        self.jobs: Dict[str, ParseJob] = {}

    async def insert(self, job: ParseJob) -> Tuple[ParseJob, bool]:
        existing = await self.find_active_by_dedupe_key(job.dedupe_key)
        if existing is not None:
            return existing, False
        stored = job.model_copy(update={"id": new_id()})
        self.jobs[stored.id] = stored
        return stored.model_copy(), True

    async def find_active_by_dedupe_key(self, dedupe_key: Optional[str]) -> Optional[ParseJob]:
        if not dedupe_key:
            return None
        for job in self.jobs.values():
            if job.dedupe_key == dedupe_key and job.active:
                return job.model_copy()
        return None

    async def get(self, job_id: str) -> Optional[ParseJob]:
        job = self.jobs.get(job_id)
        return job.model_copy() if job else None

    async def claim_next(self, now: datetime) -> Optional[ParseJob]:
        due = [
            job
            for job in self.jobs.values()
            if job.status == JobStatus.PENDING and job.next_attempt_at <= now and job.attempts < job.max_attempts
        ]
        if not due:
            return None
        job = min(due, key=lambda candidate: candidate.next_attempt_at)
        job.status = JobStatus.PROCESSING
        job.processing_started_at = now
        job.attempts += 1
        return job.model_copy()

    async def mark_completed(self, job_id: str, result: Optional[Dict[str, Any]], now: datetime) -> None:
        job = self.jobs[job_id]
        job.status = JobStatus.COMPLETED
        job.result = result
        job.error = None
        job.completed_at = now
        job.active = False

    async def reschedule(self, job_id: str, error: str, next_attempt_at: datetime, now: datetime) -> None:
        job = self.jobs[job_id]
        job.status = JobStatus.PENDING
        job.error = error
        job.next_attempt_at = next_attempt_at
        job.processing_started_at = None

    async def mark_failed(self, job_id: str, error: str, now: datetime) -> None:
        job = self.jobs[job_id]
        job.status = JobStatus.FAILED
        job.error = error
        job.completed_at = now
        job.active = False

    async def recover_stale(self, stale_before: datetime, now: datetime) -> Tuple[int, List[ParseJob]]:
        requeued = 0
        failed_jobs = []
        for job in self.jobs.values():
            if job.status != JobStatus.PROCESSING or job.processing_started_at >= stale_before:
                continue
            if job.attempts >= job.max_attempts:
                job.status = JobStatus.FAILED
                job.active = False
                job.error = "Processing timed out; worker presumed dead"
                job.completed_at = now
                failed_jobs.append(job.model_copy())
            else:
                job.status = JobStatus.PENDING
                job.next_attempt_at = now
                job.processing_started_at = None
                requeued += 1
        return requeued, failed_jobs

    async def requeue_failed(self, job_id: str, now: datetime) -> Optional[ParseJob]:
        job = self.jobs.get(job_id)
        if job is None or job.status != JobStatus.FAILED:
            return None
        if await self.find_active_by_dedupe_key(job.dedupe_key):
            return None
        job.status = JobStatus.PENDING
        job.attempts = 0
        job.error = None
        job.next_attempt_at = now
        job.active = True
        return job.model_copy()

    async def count_by_status(self) -> Dict[str, Dict[str, int]]:
        counts: Dict[str, Dict[str, int]] = {}
        for job in self.jobs.values():
            by_status = counts.setdefault(job.type.value, {})
            by_status[job.status.value] = by_status.get(job.status.value, 0) + 1
        return counts


class FakeAIUsageRepository:
    def __init__(self) -> None:
        self.records: List[AIUsage] = []

    async def insert(self, usage: AIUsage) -> str:
        self.records.append(usage)
        return new_id()

    async def total_cost_since(self, since: datetime) -> float:
        return sum(record.cost_usd for record in self.records if record.created_at >= since)

    async def summary_since(self, since: datetime) -> List[Dict[str, Any]]:
        return []

