"""
Client for the remote analysis service.
"""

from typing import Any, Protocol

import httpx

from mediaqueue.config.logging import get_logger
from mediaqueue.config.settings import Settings
from mediaqueue.v1.core.exceptions import DownstreamError, DownstreamTimeout

logger = get_logger(__name__)


class AnalysisGateway(Protocol):
    """Submits one analysis payload to the downstream service."""

    async def submit(self, payload: dict[str, Any], timeout: float) -> dict[str, Any]:
        """Return the service acknowledgement or raise ``DownstreamError``."""
        ...


class HttpAnalysisGateway:
    """``AnalysisGateway`` over HTTP.

    The service acknowledges with JSON and later writes the analysis result to
    the media store itself (or posts to the processing-complete webhook).
    """

    def __init__(
        self,
        base_url: str,
        client: httpx.AsyncClient | None = None,
        headers: dict[str, str] | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self._client = client or httpx.AsyncClient(
            base_url=self.base_url,
            headers={"User-Agent": "mediaqueue/1.0", **(headers or {})},
        )

    @classmethod
    def from_settings(cls, settings: Settings) -> "HttpAnalysisGateway":
        return cls(settings.analysis_service_url)

    async def submit(self, payload: dict[str, Any], timeout: float) -> dict[str, Any]:
        try:
            response = await self._client.post(
                "/api/background", json=payload, timeout=timeout
            )
        except httpx.TimeoutException as e:
            raise DownstreamTimeout(
                f"Analysis service timed out after {timeout:.0f}s"
            ) from e
        except httpx.HTTPError as e:
            raise DownstreamError(f"Analysis service unreachable: {e}") from e

        if response.status_code >= 400:
            raise DownstreamError(
                f"Analysis service failed: {response.status_code} {response.reason_phrase}"
            )

        try:
            return response.json()
        except ValueError:
            logger.debug("Analysis service returned a non-JSON acknowledgement")
            return {"status": "accepted"}

    async def close(self) -> None:
        await self._client.aclose()
