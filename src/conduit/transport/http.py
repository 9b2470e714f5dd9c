"""
HttpxTransport — streams provider responses over httpx.

One AsyncClient per transport, created in start(). Timeouts come from
StreamConfig: connect_timeout for the connection, and timeout both as
the per-read stall limit and as the deadline for the whole stream, so
a provider that keeps trickling bytes is cut off too.
"""

from __future__ import annotations

import logging
import time
from typing import AsyncIterator, Callable

import httpx

import conduit.core.config as config_module
from conduit.core.metrics import metrics
from conduit.llm.errors import ProviderError, StreamAbortedError
from conduit.providers.base import WireRequest
from conduit.transport.base import Transport

logger = logging.getLogger(__name__)

MAX_ERROR_BODY = 2000


class HttpxTransport(Transport):
    name = "httpx"

    def __init__(
        self,
        client: httpx.AsyncClient | None = None,
        deadline: float | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.client = client
        self.deadline = deadline
        self._owns_client = client is None
        self._clock = clock

    async def start(self) -> None:
        if self.client:
            return  # Already started
        stream_config = config_module.config.stream
        self.client = httpx.AsyncClient(
            timeout=httpx.Timeout(stream_config.timeout, connect=stream_config.connect_timeout),
        )
        logger.info(
            "HTTP transport ready (timeout=%ss, connect=%ss)",
            stream_config.timeout,
            stream_config.connect_timeout,
        )

    async def stop(self) -> None:
        if self.client and self._owns_client:
            await self.client.aclose()
        self.client = None

    async def stream(self, request: WireRequest) -> AsyncIterator[bytes]:
        if not self.client:
            await self.start()

        started = time.time()
        limit = config_module.config.stream.timeout if self.deadline is None else self.deadline
        expires = self._clock() + limit
        try:
            async with self.client.stream(
                "POST", request.url, headers=request.headers, json=request.body
            ) as response:
                if response.status_code >= 400:
                    body = (await response.aread()).decode("utf-8", errors="replace")
                    metrics.inc("transport.http_errors", labels={"status": response.status_code})
                    raise ProviderError(
                        f"HTTP {response.status_code} from {request.url}: {body[:MAX_ERROR_BODY]}",
                        status_code=response.status_code,
                    )
                async for chunk in response.aiter_bytes():
                    if self._clock() > expires:
                        metrics.inc("transport.deadlines_exceeded")
                        raise StreamAbortedError(f"Provider stream exceeded its {limit:g}s deadline")
                    yield chunk
        except httpx.TimeoutException as e:
            raise StreamAbortedError(f"Provider stream timed out: {e}") from e
        except httpx.HTTPError as e:
            raise StreamAbortedError(f"Provider stream failed: {e}") from e
        finally:
            metrics.observe("transport.stream_ms", (time.time() - started) * 1000)
