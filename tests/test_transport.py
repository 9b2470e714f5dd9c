"""Tests for HttpxTransport using httpx.MockTransport."""

import json

import httpx
import pytest

from conduit.llm.errors import ProviderError, StreamAbortedError
from conduit.providers.base import WireRequest
from conduit.transport.http import HttpxTransport

WIRE = WireRequest(
    url="https://provider.test/v1/messages",
    headers={"x-api-key": "k", "Accept": "text/event-stream"},
    body={"model": "m", "stream": True},
)


def _transport(handler) -> HttpxTransport:
    return HttpxTransport(client=httpx.AsyncClient(transport=httpx.MockTransport(handler)))


async def _collect(transport: HttpxTransport) -> bytes:
    return b"".join([chunk async for chunk in transport.stream(WIRE)])


@pytest.mark.asyncio
async def test_streams_response_body():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["method"] = request.method
        seen["body"] = json.loads(request.content)
        seen["api_key"] = request.headers["x-api-key"]
        return httpx.Response(200, content=b"event: ping\ndata: {}\n\n")

    body = await _collect(_transport(handler))

    assert body == b"event: ping\ndata: {}\n\n"
    assert seen == {"method": "POST", "body": {"model": "m", "stream": True}, "api_key": "k"}


@pytest.mark.asyncio
async def test_error_status_raises_provider_error():
    def handler(request):
        return httpx.Response(429, text='{"error": "slow down"}')

    with pytest.raises(ProviderError) as exc_info:
        await _collect(_transport(handler))

    assert exc_info.value.status_code == 429
    assert exc_info.value.transient
    assert "slow down" in str(exc_info.value)


@pytest.mark.asyncio
async def test_timeout_aborts_stream():
    def handler(request):
        raise httpx.ReadTimeout("read timed out", request=request)

    with pytest.raises(StreamAbortedError, match="timed out"):
        await _collect(_transport(handler))


@pytest.mark.asyncio
async def test_connection_failure_aborts_stream():
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    with pytest.raises(StreamAbortedError):
        await _collect(_transport(handler))


@pytest.mark.asyncio
async def test_start_and_stop_manage_own_client():
    transport = HttpxTransport()
    await transport.start()
    assert isinstance(transport.client, httpx.AsyncClient)
    await transport.stop()
    assert transport.client is None


@pytest.mark.asyncio
async def test_injected_client_is_not_closed():
    client = httpx.AsyncClient(transport=httpx.MockTransport(lambda request: httpx.Response(200)))
    transport = HttpxTransport(client=client)
    await transport.stop()
    assert not client.is_closed
    await client.aclose()


@pytest.mark.asyncio
async def test_trickling_stream_hits_whole_stream_deadline():
    async def trickle():
        for part in (b"data: {}\n\n", b": keepalive\n\n", b": keepalive\n\n"):
            yield part

    def handler(request):
        return httpx.Response(200, content=trickle())

    ticks = iter([0.0, 4.0, 8.0, 12.0])
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    transport = HttpxTransport(client=client, deadline=10.0, clock=lambda: next(ticks))

    received = []
    with pytest.raises(StreamAbortedError, match="10s deadline"):
        async for chunk in transport.stream(WIRE):
            received.append(chunk)

    assert received == [b"data: {}\n\n", b": keepalive\n\n"]
    await client.aclose()
