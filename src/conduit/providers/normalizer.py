"""
Protocol Normalizer — provider-addressed facade over the adapters.

    normalizer = Normalizer()
    body = normalizer.to_wire(request, "anthropic")
    response = normalizer.from_wire(payload, "anthropic")
"""

from __future__ import annotations

from typing import Any, Callable

from conduit.llm.contracts import CanonicalRequest, CanonicalResponse, ToolCall
from conduit.providers.base import ProtocolAdapter
from conduit.providers.registry import get_adapter


class Normalizer:
    def __init__(self, lookup: Callable[[str], ProtocolAdapter] = get_adapter):
        self._lookup = lookup

    def adapter(self, provider: str) -> ProtocolAdapter:
        return self._lookup(provider)

    def to_wire(
        self, request: CanonicalRequest, provider: str, stream: bool = False
    ) -> dict[str, Any]:
        return self._lookup(provider).to_wire(request, stream=stream)

    def from_wire(self, payload: Any, provider: str) -> CanonicalResponse:
        return self._lookup(provider).from_wire(payload)

    def extract(self, payload: Any, provider: str, salt: str = "") -> list[ToolCall]:
        return self._lookup(provider).extract(payload, salt=salt)
