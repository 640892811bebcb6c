"""
In-memory job model for the media analysis pipeline.
"""

import itertools
import uuid
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any

MIB = 1024 * 1024

# Monotonic tie-breaker for jobs created within the same clock tick
_sequence = itertools.count()


class JobKind(str, Enum):
    """Kinds of analysis work the pipeline accepts."""

    IMAGE_ANALYSIS = "image_analysis"
    VIDEO_FRAME_ANALYSIS = "video_frame_analysis"


class TransferState(str, Enum):
    """Externally observed lifecycle of a job."""

    QUEUED = "queued"
    SENDING = "sending"
    SENT = "sent"
    FAILED = "failed"
    # Only produced by status queries for ids that are not tracked
    UNKNOWN = "unknown"


# (base, < 1 MiB, < 5 MiB, > 20 MiB)
_PRIORITY_BANDS: dict[JobKind, tuple[int, int, int, int]] = {
    JobKind.IMAGE_ANALYSIS: (50, 80, 60, 30),
    JobKind.VIDEO_FRAME_ANALYSIS: (45, 75, 55, 25),
}


def derive_priority(kind: JobKind, estimated_size: int | None = None) -> int:
    """
    Derive a job priority from its kind and an optional size hint.

    Higher values are served first. Small payloads are promoted so quick jobs
    are not starved behind large uploads.
    """
    base, tiny, small, huge = _PRIORITY_BANDS.get(kind, (50, 80, 60, 30))

    if estimated_size is None:
        return base
    if estimated_size < MIB:
        return tiny
    if estimated_size < 5 * MIB:
        return small
    if estimated_size > 20 * MIB:
        return huge
    return base


def new_job_id(kind: JobKind, now: datetime | None = None) -> str:
    """Generate an opaque job id, stable for the job's lifetime."""
    now = now or datetime.now(UTC)
    return f"{kind.value}-{int(now.timestamp() * 1000)}-{uuid.uuid4()}"


@dataclass(frozen=True)
class JobPayload:
    """Reference data needed to analyse one media item."""

    media_id: str
    project_id: str
    user_id: str
    organization_id: str | None = None
    frame_timestamp: float | None = None
    source: str | None = None
    estimated_size: int | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "mediaId": self.media_id,
            "projectId": self.project_id,
            "userId": self.user_id,
            "organizationId": self.organization_id,
            "frameTimestamp": self.frame_timestamp,
            "source": self.source,
            "estimatedSize": self.estimated_size,
        }


@dataclass
class Job:
    """
    One unit of enqueued analysis work.

    A job is owned by either the queue or a single in-flight worker at any
    time. Only the owning worker mutates ``attempt``, ``scheduled_for`` and
    ``last_error``.
    """

    id: str
    kind: JobKind
    payload: JobPayload
    priority: int
    max_attempts: int
    scheduled_for: datetime
    created_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    attempt: int = 0
    last_error: str | None = None
    sequence: int = field(default_factory=lambda: next(_sequence))

    def sort_key(self) -> tuple[int, datetime, int]:
        """Ordering among eligible jobs: priority desc, then FIFO."""
        return (-self.priority, self.created_at, self.sequence)

    def describe(self) -> dict[str, Any]:
        """Diagnostic view used by queue snapshots."""
        return {
            "id": self.id,
            "kind": self.kind.value,
            "priority": self.priority,
            "attempt": self.attempt,
            "max_attempts": self.max_attempts,
            "scheduled_for": self.scheduled_for.isoformat(),
            "created_at": self.created_at.isoformat(),
            "media_id": self.payload.media_id,
            "project_id": self.payload.project_id,
        }
