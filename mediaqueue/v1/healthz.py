from datetime import UTC, datetime

from fastapi import APIRouter, Request
from pydantic import BaseModel
from sqlalchemy import text

from mediaqueue.config.settings import Settings, SettingsDep
from mediaqueue.v1.core.exceptions import create_success_response
from mediaqueue.v1.jobs.service import JobPipeline, PipelineDep

router = APIRouter()


class DatabaseHealth(BaseModel):
    """Database health status."""

    connected: bool
    response_time_ms: float | None = None
    error: str | None = None


class PipelineHealth(BaseModel):
    """Worker pool and downstream health."""

    running: bool
    queue_length: int
    active_workers: int
    downstream_in_flight: int
    breaker_state: str
    recent_errors: int


class HealthResponse(BaseModel):
    """Health response with pipeline and (optional) database status."""

    ok: bool
    version: str
    environment: str
    timestamp: str
    pipeline: PipelineHealth
    database: DatabaseHealth | None = None


@router.get("/healthz", response_model=dict)
async def health_check(
    request: Request,
    settings: Settings = SettingsDep,
    pipeline: JobPipeline = PipelineDep,
):
    """Health check with worker pool, breaker and database status."""

    snapshot = pipeline.get_queue_snapshot()
    pipeline_health = PipelineHealth(
        running=snapshot.running,
        queue_length=snapshot.queue_length,
        active_workers=snapshot.active_workers,
        downstream_in_flight=snapshot.downstream_in_flight,
        breaker_state=snapshot.breaker.state,
        recent_errors=snapshot.recent_errors,
    )

    db_health = None
    database = getattr(request.app.state, "database", None)
    if database is not None:
        db_health = await _check_database_health(database)

    # An open breaker degrades processing but the service still accepts work
    overall_ok = snapshot.running and (db_health is None or db_health.connected)

    health = HealthResponse(
        ok=overall_ok,
        version=settings.version,
        environment=settings.environment,
        timestamp=datetime.now(UTC).isoformat(),
        pipeline=pipeline_health,
        database=db_health,
    )

    return create_success_response(data=health.model_dump())


async def _check_database_health(database) -> DatabaseHealth:
    """Check database connectivity and response time."""
    start_time = datetime.now(UTC)

    try:
        async with database.session() as session:
            await session.execute(text("SELECT 1"))

        end_time = datetime.now(UTC)
        response_time_ms = (end_time - start_time).total_seconds() * 1000

        return DatabaseHealth(
            connected=True, response_time_ms=round(response_time_ms, 2)
        )

    except Exception as e:
        return DatabaseHealth(connected=False, error=str(e))
