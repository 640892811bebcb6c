"""
Pydantic schemas for the job pipeline API.
"""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field

from mediaqueue.v1.jobs.models import JobKind, TransferState


class JobEnqueueRequest(BaseModel):
    """Schema for enqueueing an analysis job via API."""

    type: JobKind = Field(..., description="Job kind")
    media_id: str = Field(..., min_length=1, description="Media record to analyse")
    project_id: str = Field(..., min_length=1, description="Owning project")
    user_id: str = Field(..., min_length=1, description="Owning user")
    organization_id: str | None = Field(default=None, description="Owning organization")
    estimated_size: int | None = Field(
        default=None, ge=0, description="Payload size hint in bytes"
    )
    frame_timestamp: float | None = Field(
        default=None, ge=0, description="Frame position for video frames"
    )
    source: str | None = Field(default=None, description="Upload source tag")


class JobEnqueueResponse(BaseModel):
    """Schema for job enqueue response."""

    job_id: str
    status: TransferState = TransferState.QUEUED
    message: str = (
        "Analysis started. Your inventory will be updated automatically."
    )


class TransferStatusRequest(BaseModel):
    """Schema for a transfer status query."""

    job_ids: list[str] = Field(..., min_length=1, description="Job ids to look up")


class TransferStatusDetail(BaseModel):
    """Last known transfer state of a single job."""

    state: TransferState
    error: str | None = None
    updated_at: datetime | None = None


class TransferSummary(BaseModel):
    """Aggregated transfer state for a set of job ids."""

    total: int = 0
    queued: int = 0
    sending: int = 0
    sent: int = 0
    failed: int = 0
    unknown: int = 0
    per_id: dict[str, TransferStatusDetail] = Field(default_factory=dict)


class TransferStatusResponse(TransferSummary):
    """Transfer summary decorated for UI consumption."""

    pending: int
    all_transferred: bool
    has_failures: bool
    summary: dict[str, Any]


class BreakerSnapshot(BaseModel):
    state: str
    failure_count: int
    threshold: int
    cooldown_s: float
    retry_in_s: float | None = None
    seconds_since_failure: float | None = None


class QueueSnapshot(BaseModel):
    """Advisory diagnostic view of the pipeline."""

    queue_length: int
    eligible: int
    capacity: int
    active_workers: int
    max_workers: int
    downstream_in_flight: int
    downstream_ceiling: int
    breaker: BreakerSnapshot
    recent_errors: int
    processed: int
    succeeded: int
    retried: int
    abandoned: int
    running: bool
    items: list[dict[str, Any]] = Field(default_factory=list)
    timestamp: datetime


class ProcessingCompleteRequest(BaseModel):
    """Completion callback posted by the analysis service."""

    project_id: str = Field(..., min_length=1)
    media_id: str = Field(..., min_length=1)
    success: bool
    items_processed: int = 0
    error: str | None = None
    source: str | None = None
