"""
Models for the parse job queue
"""

from datetime import datetime
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field

from app.db.mongodb import utcnow
from app.models.status_enums import JobStatus, JobType


class ParseJob(BaseModel):
    """Unit of ingestion work with bounded retries"""

    model_config = ConfigDict(populate_by_name=True)

    id: Optional[str] = Field(None, alias="_id")
    type: JobType
    status: JobStatus = JobStatus.PENDING
    payload: Dict[str, Any] = Field(default_factory=dict)
    result: Optional[Dict[str, Any]] = None
    error: Optional[str] = None

    attempts: int = Field(default=0, ge=0)
    max_attempts: int = Field(default=3, ge=1)
    next_attempt_at: datetime = Field(default_factory=utcnow)
    processing_started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    # Only one active job per dedupe key; archived jobs keep their history
    dedupe_key: Optional[str] = None
    active: bool = True

    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class ProcessPostPayload(BaseModel):
    """Payload of a process_post job"""
    post_id: str


class GeocodeAddressPayload(BaseModel):
    """Payload of a geocode_address job"""
    listing_id: str
    address: str


class JobOutcome(BaseModel):
    """Result of running one job through its handler"""
    success: bool
    job_id: str
    job_type: JobType
    status: JobStatus
    attempts: int
    result: Optional[Dict[str, Any]] = None
    error: Optional[str] = None
    retryable: Optional[bool] = None
    processing_time_seconds: Optional[float] = None
