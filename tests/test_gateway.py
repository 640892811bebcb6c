"""Tests for the HTTP analysis gateway using an in-process transport."""

import json

import httpx
import pytest

from mediaqueue.v1.core.exceptions import DownstreamError, DownstreamTimeout
from mediaqueue.v1.media.gateway import HttpAnalysisGateway


def make_gateway(handler) -> HttpAnalysisGateway:
    client = httpx.AsyncClient(
        base_url="http://analysis.test", transport=httpx.MockTransport(handler)
    )
    return HttpAnalysisGateway("http://analysis.test", client=client)


async def test_submit_posts_payload_and_returns_ack():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["path"] = request.url.path
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json={"status": "accepted", "itemsProcessed": 3})

    gateway = make_gateway(handler)
    ack = await gateway.submit({"mediaId": "media-1", "jobId": "job-1"}, timeout=5)
    await gateway.close()

    assert seen["path"] == "/api/background"
    assert seen["body"]["mediaId"] == "media-1"
    assert ack["itemsProcessed"] == 3


async def test_server_error_raises_downstream_error():
    gateway = make_gateway(lambda request: httpx.Response(503))

    with pytest.raises(DownstreamError, match="503"):
        await gateway.submit({"mediaId": "media-1"}, timeout=5)
    await gateway.close()


async def test_timeout_raises_downstream_timeout():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ReadTimeout("timed out", request=request)

    gateway = make_gateway(handler)

    with pytest.raises(DownstreamTimeout):
        await gateway.submit({"mediaId": "media-1"}, timeout=5)
    await gateway.close()


async def test_connection_error_raises_downstream_error():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    gateway = make_gateway(handler)

    with pytest.raises(DownstreamError, match="unreachable"):
        await gateway.submit({"mediaId": "media-1"}, timeout=5)
    await gateway.close()


async def test_non_json_ack_is_accepted():
    gateway = make_gateway(lambda request: httpx.Response(202, text="OK"))

    ack = await gateway.submit({"mediaId": "media-1"}, timeout=5)
    await gateway.close()

    assert ack == {"status": "accepted"}
