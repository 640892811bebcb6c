"""
Media record models shared by the store implementations.
"""

from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any

from sqlalchemy import JSON, TIMESTAMP, BigInteger, CheckConstraint, Index, Text, func
from sqlalchemy.orm import Mapped, mapped_column

from mediaqueue.infra.database import Base


class MediaStatus(str, Enum):
    """Analysis state persisted on the media record."""

    UPLOADED = "uploaded"
    QUEUED = "queued"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


TERMINAL_STATUSES = (MediaStatus.COMPLETED, MediaStatus.FAILED)


@dataclass
class MediaRecord:
    """Plain view of a stored media item."""

    id: str
    project_id: str
    kind: str = "image"
    name: str | None = None
    size: int | None = None
    storage_url: str | None = None
    status: MediaStatus = MediaStatus.UPLOADED
    job_id: str | None = None
    result: dict[str, Any] | None = None
    error: str | None = None
    created_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    updated_at: datetime = field(default_factory=lambda: datetime.now(UTC))

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES


@dataclass(frozen=True)
class MediaChange:
    """A completed/failed transition observed on the change feed."""

    media_id: str
    project_id: str
    status: MediaStatus
    error: str | None = None
    items_processed: int = 0
    occurred_at: datetime = field(default_factory=lambda: datetime.now(UTC))

    @property
    def success(self) -> bool:
        return self.status is MediaStatus.COMPLETED


class MediaAsset(Base):
    """Persisted media item and its analysis outcome."""

    __tablename__ = "media_assets"

    id: Mapped[str] = mapped_column(Text, primary_key=True)
    project_id: Mapped[str] = mapped_column(
        Text, nullable=False, comment="Owning project"
    )
    kind: Mapped[str] = mapped_column(
        Text, nullable=False, default="image", comment="image|video"
    )
    name: Mapped[str | None] = mapped_column(Text, nullable=True)
    size: Mapped[int | None] = mapped_column(
        BigInteger, nullable=True, comment="Blob size in bytes"
    )
    storage_url: Mapped[str | None] = mapped_column(Text, nullable=True)

    status: Mapped[str] = mapped_column(
        Text,
        nullable=False,
        default=MediaStatus.UPLOADED.value,
        comment="uploaded|queued|processing|completed|failed",
    )
    job_id: Mapped[str | None] = mapped_column(
        Text, nullable=True, comment="Pipeline job handling this record"
    )
    result: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)
    error: Mapped[str | None] = mapped_column(Text, nullable=True)

    deleted_at: Mapped[datetime | None] = mapped_column(
        TIMESTAMP(timezone=True), nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True),
        nullable=False,
        server_default=func.now(),
        default=lambda: datetime.now(UTC),
    )
    updated_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True),
        nullable=False,
        server_default=func.now(),
        default=lambda: datetime.now(UTC),
    )

    __table_args__ = (
        CheckConstraint(
            "status IN ('uploaded', 'queued', 'processing', 'completed', 'failed')",
            name="media_assets_status_check",
        ),
        Index("ix_media_assets_project_status", "project_id", "status"),
        Index("ix_media_assets_updated_at", "updated_at"),
    )

    def to_record(self) -> MediaRecord:
        return MediaRecord(
            id=self.id,
            project_id=self.project_id,
            kind=self.kind,
            name=self.name,
            size=self.size,
            storage_url=self.storage_url,
            status=MediaStatus(self.status),
            job_id=self.job_id,
            result=self.result,
            error=self.error,
            created_at=self.created_at,
            updated_at=self.updated_at,
        )
