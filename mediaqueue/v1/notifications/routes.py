"""
Project-scoped processing notifications: snapshot, polling fallback and SSE.
"""

import json
from collections.abc import AsyncIterator
from typing import Any

from fastapi import APIRouter, Query, Request
from fastapi.responses import StreamingResponse

from mediaqueue.config.settings import Settings, SettingsDep
from mediaqueue.v1.core.exceptions import create_success_response
from mediaqueue.v1.jobs.service import JobPipeline, PipelineDep
from mediaqueue.v1.notifications.policy import ClientState

router = APIRouter(prefix="/projects", tags=["notifications"])


def _sse(event: str, data: dict[str, Any]) -> str:
    return f"event: {event}\ndata: {json.dumps(data)}\n\n"


@router.get("/{project_id}/processing", response_model=dict)
async def processing_items(
    project_id: str,
    pipeline: JobPipeline = PipelineDep,
) -> dict[str, Any]:
    """Everything still in flight for the project."""

    items = await pipeline.outstanding(project_id)
    return create_success_response(
        data={
            "project_id": project_id,
            "items": [item.to_dict() for item in items],
            "count": len(items),
        }
    )


@router.get("/{project_id}/poll", response_model=dict)
async def poll_processing(
    project_id: str,
    visible: bool = Query(default=True, description="Client tab is visible"),
    heavy_media_active: bool = Query(
        default=False, description="Client is playing a video for this project"
    ),
    pipeline: JobPipeline = PipelineDep,
) -> dict[str, Any]:
    """Keep-alive polling fallback, throttled by the polling policy."""

    client_state = ClientState(visible=visible, heavy_media_active=heavy_media_active)
    result = await pipeline.poll(project_id, client_state)
    if result is None:
        return create_success_response(
            data={
                "project_id": project_id,
                "skipped": True,
                "reason": pipeline.notifier.policy.skip_reason(client_state),
            }
        )

    return create_success_response(data={**result.to_dict(), "skipped": False})


@router.get("/{project_id}/events")
async def project_events(
    project_id: str,
    request: Request,
    pipeline: JobPipeline = PipelineDep,
    settings: Settings = SettingsDep,
) -> StreamingResponse:
    """Server-Sent Events stream of completion events for a project."""

    async def stream() -> AsyncIterator[str]:
        subscription = pipeline.subscribe(project_id)
        try:
            yield f"retry: {settings.sse_retry_ms}\n\n"

            # Reconnecting clients start from the current snapshot
            items = await pipeline.outstanding(project_id)
            yield _sse(
                "snapshot",
                {
                    "project_id": project_id,
                    "items": [item.to_dict() for item in items],
                    "count": len(items),
                },
            )

            while not await request.is_disconnected():
                event = await subscription.get(timeout=settings.sse_keepalive_s)
                if event is None:
                    if subscription.closed:
                        break
                    yield ": keep-alive\n\n"
                    continue
                yield _sse("processing-complete", event.to_dict())
        finally:
            pipeline.unsubscribe(subscription)

    return StreamingResponse(
        stream(),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
    )
