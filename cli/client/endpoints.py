"""API Endpoint Wrappers - Typed calls against the Media Queue API"""

from typing import Any

from ..utils.config_manager import config
from .base import APIClient


class MediaQueueClient:
    """High-level client with typed endpoint methods"""

    def __init__(
        self,
        base_url: str | None = None,
        headers: dict[str, str] | None = None,
    ):
        api_config = config.load_config().get("api", {})
        final_base_url = base_url or api_config.get(
            "base_url", "http://localhost:8000"
        )
        final_headers = headers or api_config.get("headers", {})

        self.api = APIClient(
            base_url=final_base_url,
            timeout=int(api_config.get("timeout", 30)),
            headers=final_headers,
        )

    def __enter__(self):
        self.api.__enter__()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.api.__exit__(exc_type, exc_val, exc_tb)

    # Health Check
    def health_check(self) -> dict[str, Any]:
        """Check API health status"""
        return self.api.get("/healthz")

    # Jobs Endpoints
    def enqueue_job(
        self,
        kind: str,
        media_id: str,
        project_id: str,
        estimated_size: int | None = None,
        frame_timestamp: float | None = None,
        source: str | None = None,
    ) -> dict[str, Any]:
        """Enqueue an analysis job for a media record"""
        body: dict[str, Any] = {
            "type": kind,
            "media_id": media_id,
            "project_id": project_id,
        }
        if estimated_size is not None:
            body["estimated_size"] = estimated_size
        if frame_timestamp is not None:
            body["frame_timestamp"] = frame_timestamp
        if source:
            body["source"] = source
        return self.api.post("/jobs", json=body)

    def get_queue(self, include_items: bool = False) -> dict[str, Any]:
        """Queue, worker pool and breaker snapshot"""
        return self.api.get("/jobs/queue", {"include_items": include_items})

    def get_transfer_status(self, job_ids: list[str]) -> dict[str, Any]:
        """Transfer status for a batch of job ids"""
        return self.api.post("/jobs/transfer-status", json={"job_ids": job_ids})

    # Projects Endpoints
    def get_processing(self, project_id: str) -> dict[str, Any]:
        """Media still in flight for a project"""
        return self.api.get(f"/projects/{project_id}/processing")
