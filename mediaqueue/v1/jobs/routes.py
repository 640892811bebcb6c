"""
Job pipeline API endpoints.

Enqueueing is fire-and-forget: once a job is accepted every later failure is
reported through transfer status and completion events, never through the
original request.
"""

import logging
from typing import Any

from fastapi import APIRouter, Header, HTTPException, Query

from mediaqueue.config.settings import Settings, SettingsDep
from mediaqueue.v1.core.exceptions import UnauthorizedError, create_success_response
from mediaqueue.v1.jobs.messages import build_transfer_response
from mediaqueue.v1.jobs.models import JobPayload
from mediaqueue.v1.jobs.schemas import (
    JobEnqueueRequest,
    JobEnqueueResponse,
    ProcessingCompleteRequest,
    TransferStatusRequest,
)
from mediaqueue.v1.jobs.service import JobPipeline, PipelineDep

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/jobs", tags=["jobs"])
webhook_router = APIRouter(tags=["webhooks"])


@router.post("", response_model=dict, status_code=202)
async def enqueue_job(
    job_request: JobEnqueueRequest,
    pipeline: JobPipeline = PipelineDep,
) -> dict[str, Any]:
    """Enqueue an analysis job; QueueFull surfaces as 429."""

    payload = JobPayload(
        media_id=job_request.media_id,
        project_id=job_request.project_id,
        user_id=job_request.user_id,
        organization_id=job_request.organization_id,
        frame_timestamp=job_request.frame_timestamp,
        source=job_request.source,
        estimated_size=job_request.estimated_size,
    )
    job_id = pipeline.enqueue(job_request.type, payload, job_request.estimated_size)

    logger.info(
        "Job enqueued via API",
        extra={"job_id": job_id, "type": job_request.type.value},
    )

    return create_success_response(
        data=JobEnqueueResponse(job_id=job_id).model_dump(mode="json")
    )


@router.post("/transfer-status", response_model=dict)
async def transfer_status(
    status_request: TransferStatusRequest,
    pipeline: JobPipeline = PipelineDep,
) -> dict[str, Any]:
    """Transfer status for a batch of job ids."""

    summary = pipeline.get_transfer_status(status_request.job_ids)
    response = build_transfer_response(summary)
    return create_success_response(data=response.model_dump(mode="json"))


@router.get("/transfer-status", response_model=dict)
async def transfer_status_get(
    job_ids: str = Query(..., description="Comma separated job ids"),
    pipeline: JobPipeline = PipelineDep,
) -> dict[str, Any]:
    """Transfer status for job ids passed as a query parameter."""

    ids = [job_id.strip() for job_id in job_ids.split(",") if job_id.strip()]
    if not ids:
        raise HTTPException(status_code=400, detail="No valid job IDs provided")

    summary = pipeline.get_transfer_status(ids)
    response = build_transfer_response(summary)
    return create_success_response(data=response.model_dump(mode="json"))


@router.get("/queue", response_model=dict)
async def queue_snapshot(
    include_items: bool = Query(default=False, description="List pending jobs"),
    pipeline: JobPipeline = PipelineDep,
) -> dict[str, Any]:
    """Operational view of the queue, worker pool and breaker."""

    snapshot = pipeline.get_queue_snapshot(include_items=include_items)
    return create_success_response(data=snapshot.model_dump(mode="json"))


@webhook_router.post("/processing-complete", response_model=dict)
async def processing_complete(
    completion: ProcessingCompleteRequest,
    x_webhook_source: str | None = Header(default=None),
    pipeline: JobPipeline = PipelineDep,
    settings: Settings = SettingsDep,
) -> dict[str, Any]:
    """Completion callback from the analysis service."""

    if x_webhook_source not in settings.webhook_sources:
        raise UnauthorizedError(
            "Invalid webhook source", details={"source": x_webhook_source}
        )

    delivered = pipeline.record_external_completion(
        project_id=completion.project_id,
        media_id=completion.media_id,
        success=completion.success,
        items_processed=completion.items_processed,
        error=completion.error,
    )

    logger.info(
        "Processing completion received",
        extra={
            "project_id": completion.project_id,
            "media_id": completion.media_id,
            "success": completion.success,
            "duplicate": not delivered,
        },
    )

    return create_success_response(
        data={"delivered": delivered, "duplicate": not delivered}
    )
