"""
Media store collaborators.

The pipeline only talks to the ``MediaStore`` protocol. ``InMemoryMediaStore``
backs development and tests; ``SqlMediaStore`` persists to the
``media_assets`` table.
"""

import asyncio
from collections.abc import AsyncIterator
from datetime import UTC, datetime
from typing import Any, Protocol

from sqlalchemy import and_, select, update

from mediaqueue.config.logging import get_logger
from mediaqueue.infra.database import Database
from mediaqueue.v1.media.models import (
    TERMINAL_STATUSES,
    MediaAsset,
    MediaChange,
    MediaRecord,
    MediaStatus,
)

logger = get_logger(__name__)


class MediaStore(Protocol):
    """Durable storage of media records and their analysis outcome."""

    async def load(self, media_id: str) -> MediaRecord | None: ...

    async def exists(self, media_id: str) -> bool: ...

    async def mark_queued(self, media_id: str, job_id: str) -> None: ...

    async def mark_processing(self, media_id: str, job_id: str) -> None: ...

    async def mark_completed(
        self, media_id: str, result: dict[str, Any] | None = None
    ) -> None: ...

    async def mark_failed(self, media_id: str, error: str) -> None: ...

    async def list_outstanding(self, project_id: str) -> list[MediaRecord]: ...

    def watch_changes(self) -> AsyncIterator[MediaChange]:
        """Yield completed/failed transitions as they happen."""
        ...


def _items_processed(result: dict[str, Any] | None) -> int:
    if not result:
        return 0
    return int(result.get("itemsProcessed", result.get("items_processed", 0)) or 0)


class InMemoryMediaStore:
    """Dict-backed media store with a push-based change feed."""

    def __init__(self) -> None:
        self._records: dict[str, MediaRecord] = {}
        self._watchers: set[asyncio.Queue[MediaChange]] = set()

    def add(self, record: MediaRecord) -> MediaRecord:
        self._records[record.id] = record
        return record

    def remove(self, media_id: str) -> None:
        self._records.pop(media_id, None)

    async def load(self, media_id: str) -> MediaRecord | None:
        return self._records.get(media_id)

    async def exists(self, media_id: str) -> bool:
        return media_id in self._records

    async def mark_queued(self, media_id: str, job_id: str) -> None:
        self._update(media_id, status=MediaStatus.QUEUED, job_id=job_id)

    async def mark_processing(self, media_id: str, job_id: str) -> None:
        self._update(media_id, status=MediaStatus.PROCESSING, job_id=job_id)

    async def mark_completed(
        self, media_id: str, result: dict[str, Any] | None = None
    ) -> None:
        record = self._update(
            media_id, status=MediaStatus.COMPLETED, result=result, error=None
        )
        if record:
            self._emit(record)

    async def mark_failed(self, media_id: str, error: str) -> None:
        record = self._update(media_id, status=MediaStatus.FAILED, error=error)
        if record:
            self._emit(record)

    async def list_outstanding(self, project_id: str) -> list[MediaRecord]:
        return [
            record
            for record in self._records.values()
            if record.project_id == project_id
            and record.status in (MediaStatus.QUEUED, MediaStatus.PROCESSING)
        ]

    async def watch_changes(self) -> AsyncIterator[MediaChange]:
        queue: asyncio.Queue[MediaChange] = asyncio.Queue()
        self._watchers.add(queue)
        try:
            while True:
                yield await queue.get()
        finally:
            self._watchers.discard(queue)

    def _update(self, media_id: str, **fields: Any) -> MediaRecord | None:
        record = self._records.get(media_id)
        if record is None:
            logger.debug("Media record missing on update", media_id=media_id)
            return None
        for name, value in fields.items():
            setattr(record, name, value)
        record.updated_at = datetime.now(UTC)
        return record

    def _emit(self, record: MediaRecord) -> None:
        change = MediaChange(
            media_id=record.id,
            project_id=record.project_id,
            status=record.status,
            error=record.error,
            items_processed=_items_processed(record.result),
            occurred_at=record.updated_at,
        )
        for queue in self._watchers:
            queue.put_nowait(change)


class SqlMediaStore:
    """Media store on the ``media_assets`` table.

    Postgres has no change streams, so ``watch_changes`` tails the table by
    ``updated_at``.
    """

    def __init__(self, database: Database, poll_interval_s: float = 2.0):
        self.database = database
        self.poll_interval_s = poll_interval_s

    async def load(self, media_id: str) -> MediaRecord | None:
        async with self.database.session() as session:
            asset = await session.get(MediaAsset, media_id)
            if asset is None or asset.deleted_at is not None:
                return None
            return asset.to_record()

    async def exists(self, media_id: str) -> bool:
        return await self.load(media_id) is not None

    async def mark_queued(self, media_id: str, job_id: str) -> None:
        await self._update(media_id, status=MediaStatus.QUEUED.value, job_id=job_id)

    async def mark_processing(self, media_id: str, job_id: str) -> None:
        await self._update(
            media_id, status=MediaStatus.PROCESSING.value, job_id=job_id
        )

    async def mark_completed(
        self, media_id: str, result: dict[str, Any] | None = None
    ) -> None:
        await self._update(
            media_id, status=MediaStatus.COMPLETED.value, result=result, error=None
        )

    async def mark_failed(self, media_id: str, error: str) -> None:
        await self._update(media_id, status=MediaStatus.FAILED.value, error=error)

    async def list_outstanding(self, project_id: str) -> list[MediaRecord]:
        async with self.database.session() as session:
            result = await session.execute(
                select(MediaAsset)
                .where(
                    and_(
                        MediaAsset.project_id == project_id,
                        MediaAsset.deleted_at.is_(None),
                        MediaAsset.status.in_(
                            [MediaStatus.QUEUED.value, MediaStatus.PROCESSING.value]
                        ),
                    )
                )
                .order_by(MediaAsset.created_at)
            )
            return [asset.to_record() for asset in result.scalars().all()]

    async def watch_changes(self) -> AsyncIterator[MediaChange]:
        cursor = datetime.now(UTC)
        # Rows already yielded at the cursor tick; later commits may share it
        at_cursor: set[str] = set()
        while True:
            async with self.database.session() as session:
                result = await session.execute(
                    select(MediaAsset)
                    .where(
                        and_(
                            MediaAsset.updated_at >= cursor,
                            MediaAsset.status.in_([s.value for s in TERMINAL_STATUSES]),
                        )
                    )
                    .order_by(MediaAsset.updated_at)
                )
                assets = result.scalars().all()

            for asset in assets:
                if asset.updated_at == cursor and asset.id in at_cursor:
                    continue
                if asset.updated_at > cursor:
                    cursor = asset.updated_at
                    at_cursor = set()
                at_cursor.add(asset.id)
                yield MediaChange(
                    media_id=asset.id,
                    project_id=asset.project_id,
                    status=MediaStatus(asset.status),
                    error=asset.error,
                    items_processed=_items_processed(asset.result),
                    occurred_at=asset.updated_at,
                )

            await asyncio.sleep(self.poll_interval_s)

    async def _update(self, media_id: str, **values: Any) -> None:
        values["updated_at"] = datetime.now(UTC)
        async with self.database.session() as session:
            result = await session.execute(
                update(MediaAsset)
                .where(
                    and_(MediaAsset.id == media_id, MediaAsset.deleted_at.is_(None))
                )
                .values(**values)
            )
            await session.commit()

        if result.rowcount == 0:
            logger.debug("Media record missing on update", media_id=media_id)
