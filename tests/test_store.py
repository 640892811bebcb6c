"""Tests for the media store implementations."""

import asyncio
import uuid
from datetime import UTC, datetime, timedelta
from collections.abc import AsyncGenerator

import pytest
from sqlalchemy import delete, update

from mediaqueue.config.settings import Settings
from mediaqueue.infra.database import Database
from mediaqueue.v1.media.models import MediaAsset, MediaRecord, MediaStatus
from mediaqueue.v1.media.store import InMemoryMediaStore, SqlMediaStore


class TestInMemoryMediaStore:
    async def test_status_transitions(self, media_store: InMemoryMediaStore):
        await media_store.mark_queued("media-1", "job-1")
        assert (await media_store.load("media-1")).status is MediaStatus.QUEUED

        await media_store.mark_processing("media-1", "job-1")
        assert (await media_store.load("media-1")).status is MediaStatus.PROCESSING

        await media_store.mark_completed("media-1", {"itemsProcessed": 2})
        record = await media_store.load("media-1")
        assert record.status is MediaStatus.COMPLETED
        assert record.result == {"itemsProcessed": 2}
        assert record.is_terminal

    async def test_updates_to_missing_record_are_ignored(self, media_store):
        await media_store.mark_failed("missing", "boom")

        assert await media_store.exists("missing") is False

    async def test_list_outstanding(self, media_store):
        await media_store.mark_queued("media-1", "job-1")
        await media_store.mark_processing("media-2", "job-2")
        await media_store.mark_completed("media-3")

        outstanding = await media_store.list_outstanding("project-1")

        assert {record.id for record in outstanding} == {"media-1", "media-2"}

    async def test_watch_changes_yields_terminal_transitions(self, media_store):
        changes = media_store.watch_changes()
        next_change = asyncio.ensure_future(changes.__anext__())
        await asyncio.sleep(0)

        await media_store.mark_processing("media-1", "job-1")
        await media_store.mark_failed("media-1", "unsupported format")

        change = await asyncio.wait_for(next_change, 1)
        await changes.aclose()

        assert change.media_id == "media-1"
        assert change.status is MediaStatus.FAILED
        assert change.success is False
        assert change.error == "unsupported format"


@pytest.fixture
async def sql_store(postgres_url) -> AsyncGenerator[SqlMediaStore, None]:
    """SQL store on a real PostgreSQL database."""
    database = Database(Settings(database_url=postgres_url))
    await database.create_all()
    yield SqlMediaStore(database, poll_interval_s=0.05)
    async with database.session() as session:
        await session.execute(delete(MediaAsset))
        await session.commit()
    await database.close()


async def add_asset(store: SqlMediaStore, project_id: str = "project-1") -> str:
    media_id = f"media-{uuid.uuid4()}"
    async with store.database.session() as session:
        session.add(
            MediaAsset(
                id=media_id,
                project_id=project_id,
                size=1024,
                storage_url=f"https://blobs.example.com/{media_id}.jpg",
            )
        )
        await session.commit()
    return media_id


class TestSqlMediaStore:
    async def test_load_and_transitions(self, sql_store):
        media_id = await add_asset(sql_store)

        record = await sql_store.load(media_id)
        assert isinstance(record, MediaRecord)
        assert record.status is MediaStatus.UPLOADED

        await sql_store.mark_queued(media_id, "job-1")
        outstanding = await sql_store.list_outstanding("project-1")
        assert [item.id for item in outstanding] == [media_id]

        await sql_store.mark_completed(media_id, {"itemsProcessed": 4})
        record = await sql_store.load(media_id)
        assert record.status is MediaStatus.COMPLETED
        assert record.result == {"itemsProcessed": 4}

    async def test_missing_record(self, sql_store):
        assert await sql_store.load("does-not-exist") is None
        assert await sql_store.exists("does-not-exist") is False

    async def test_change_feed_reports_completion(self, sql_store):
        media_id = await add_asset(sql_store)
        changes = sql_store.watch_changes()
        next_change = asyncio.ensure_future(changes.__anext__())
        await asyncio.sleep(0.1)

        await sql_store.mark_failed(media_id, "Analysis failed")

        change = await asyncio.wait_for(next_change, 5)
        await changes.aclose()

        assert change.media_id == media_id
        assert change.status is MediaStatus.FAILED

    async def test_change_feed_reports_rows_sharing_a_timestamp(self, sql_store):
        first = await add_asset(sql_store)
        second = await add_asset(sql_store)
        tick = datetime.now(UTC) + timedelta(seconds=1)

        async def finish(media_id: str) -> None:
            async with sql_store.database.session() as session:
                await session.execute(
                    update(MediaAsset)
                    .where(MediaAsset.id == media_id)
                    .values(status=MediaStatus.COMPLETED.value, updated_at=tick)
                )
                await session.commit()

        changes = sql_store.watch_changes()
        await finish(first)
        assert (await asyncio.wait_for(changes.__anext__(), 5)).media_id == first

        # Committed after the feed already advanced to the same timestamp
        await finish(second)
        change = await asyncio.wait_for(changes.__anext__(), 5)
        await changes.aclose()

        assert change.media_id == second
