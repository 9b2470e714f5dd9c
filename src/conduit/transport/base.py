"""
Transport interface — performs the provider HTTP request and yields the
response body incrementally.

Cancellation contract: the orchestrator stops iterating and calls
aclose() on the iterator; the implementation must release the
connection when that happens.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import AsyncIterator

from conduit.providers.base import WireRequest


class Transport(ABC):
    name: str = "base"

    async def start(self) -> None:
        pass

    async def stop(self) -> None:
        pass

    @abstractmethod
    def stream(self, request: WireRequest) -> AsyncIterator[bytes]:
        """
        Send the request and yield raw response bytes as they arrive.

        Raises ProviderError for an HTTP error status and
        StreamAbortedError for timeouts or broken connections.
        """
        ...
