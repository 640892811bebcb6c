import asyncio
import os
from collections.abc import AsyncGenerator, Generator
from datetime import UTC, datetime, timedelta
from typing import Any

import pytest
from fastapi.testclient import TestClient

from mediaqueue.config.settings import Settings
from mediaqueue.main import create_app
from mediaqueue.v1.core.exceptions import DownstreamError
from mediaqueue.v1.jobs.service import JobPipeline
from mediaqueue.v1.media.models import MediaRecord
from mediaqueue.v1.media.store import InMemoryMediaStore


class FakeClock:
    """Manually advanced wall clock."""

    def __init__(self, start: datetime | None = None):
        self.now = start or datetime(2024, 1, 1, 12, 0, tzinfo=UTC)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> datetime:
        self.now += timedelta(seconds=seconds)
        return self.now


class FakeMonotonic:
    """Manually advanced monotonic clock for the circuit breaker."""

    def __init__(self, start: float = 1000.0):
        self.value = start

    def __call__(self) -> float:
        return self.value

    def advance(self, seconds: float) -> None:
        self.value += seconds


class FakeGateway:
    """Analysis service double recording every submission."""

    def __init__(self):
        self.calls: list[dict[str, Any]] = []
        self.timeouts: list[float] = []
        self.delay = 0.0
        self.error: Exception | None = None
        self.ack: dict[str, Any] = {"status": "accepted", "itemsProcessed": 2}
        self.in_flight = 0
        self.max_in_flight = 0

    async def submit(self, payload: dict[str, Any], timeout: float) -> dict[str, Any]:
        self.calls.append(payload)
        self.timeouts.append(timeout)
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            if self.delay:
                await asyncio.sleep(self.delay)
            if self.error is not None:
                raise self.error
            return dict(self.ack)
        finally:
            self.in_flight -= 1

    def fail_with(self, message: str = "Analysis service failed: 500") -> None:
        self.error = DownstreamError(message)


async def wait_until(predicate, timeout: float = 2.0, interval: float = 0.01) -> None:
    """Poll ``predicate`` until it is true or fail the test."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            pytest.fail("Condition not met within timeout")
        await asyncio.sleep(interval)


@pytest.fixture
def test_settings() -> Settings:
    """Settings tuned so background loops react within milliseconds."""
    return Settings(
        environment="test",
        debug=False,
        log_level="WARNING",
        queue_max_size=50,
        local_worker_ceiling=3,
        downstream_ceiling=2,
        idle_poll_interval_s=0.01,
        downstream_slot_poll_s=0.005,
        retry_base_delay_s=0.01,
        retry_max_delay_s=0.05,
        breaker_threshold=10,
        feed_retry_delay_s=0.01,
        sse_keepalive_s=0.1,
    )


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def monotonic() -> FakeMonotonic:
    return FakeMonotonic()


@pytest.fixture
def gateway() -> FakeGateway:
    return FakeGateway()


@pytest.fixture
def media_store() -> InMemoryMediaStore:
    """Store seeded with a handful of uploaded images for project-1."""
    store = InMemoryMediaStore()
    for i in range(1, 6):
        store.add(
            MediaRecord(
                id=f"media-{i}",
                project_id="project-1",
                name=f"shelf-{i}.jpg",
                size=512 * 1024,
                storage_url=f"https://blobs.example.com/media-{i}.jpg",
            )
        )
    return store


@pytest.fixture
async def pipeline(
    test_settings: Settings, media_store: InMemoryMediaStore, gateway: FakeGateway
) -> AsyncGenerator[JobPipeline, None]:
    """Running pipeline without the store change feed."""
    job_pipeline = JobPipeline(test_settings, media_store, gateway)
    await job_pipeline.start(watch_changes=False)
    yield job_pipeline
    await job_pipeline.stop()


@pytest.fixture
def app(test_settings: Settings, media_store: InMemoryMediaStore, gateway: FakeGateway):
    """Create test FastAPI application."""
    return create_app(test_settings, media_store=media_store, gateway=gateway)


@pytest.fixture
def client(app) -> Generator[TestClient, None, None]:
    """Create test client; entering it runs the lifespan."""
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def postgres_url() -> str:
    """PostgreSQL URL for store tests, skipped when none is configured."""
    database_url = os.getenv("DATABASE_URL")
    if not database_url or "postgresql" not in database_url:
        pytest.skip("Requires a PostgreSQL DATABASE_URL")
    return database_url
