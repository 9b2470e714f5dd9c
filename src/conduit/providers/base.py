"""
ProtocolAdapter — the one boundary every LLM provider implements.

An adapter is stateless and owns everything provider specific:

- to_wire / from_wire: canonical request/response <-> provider JSON
- extract: completed tool calls from a terminal (non-incremental) payload
- event_map / iter_signals: how the provider's SSE stream maps onto
  canonical events (consumed by StreamEventParser)
- endpoint / headers: where and how to send the request
- continuation_mode: opaque server-side handle vs. full history replay

Adding a provider means subclassing this and registering it. The
orchestrator never branches on provider names.
"""

from __future__ import annotations

import hashlib
import json
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, replace
from typing import Any, Iterator

from conduit.core.config import ProviderConfig
from conduit.llm.contracts import (
    CanonicalRequest,
    CanonicalResponse,
    ContinuationKind,
    ToolCall,
)
from conduit.llm.errors import ProtocolError, ProviderError
from conduit.llm.sse import SSEFrame
from conduit.llm.stream_parser import EventRule

logger = logging.getLogger(__name__)

DONE_SENTINEL = "[DONE]"


@dataclass(frozen=True)
class WireRequest:
    """A fully rendered HTTP request, ready for a Transport."""

    url: str
    headers: dict[str, str]
    body: dict[str, Any]


class ProtocolAdapter(ABC):
    """Base class for provider adapters."""

    name: str = ""
    continuation_mode: ContinuationKind = ContinuationKind.HISTORY
    response_id_path: str | None = None
    event_map: dict[str, tuple[EventRule, ...]] = {}
    temperature_range: tuple[float, float] = (0.0, 2.0)

    # ── Contract ───────────────────────────────────────────────────

    @abstractmethod
    def to_wire(self, request: CanonicalRequest, stream: bool = False) -> dict[str, Any]:
        """Render a canonical request as this provider's JSON body."""

    @abstractmethod
    def from_wire(self, payload: Any) -> CanonicalResponse:
        """Parse a complete provider response. Raises ProviderError/ProtocolError."""

    @abstractmethod
    def extract(self, payload: Any, salt: str = "") -> list[ToolCall]:
        """
        Completed tool calls in a terminal payload.

        Idempotent: the same payload and salt always yield the same ids,
        in the same order, with the same arguments. Empty arguments become {}.
        salt only affects ids this side has to synthesize.
        """

    @abstractmethod
    def endpoint(self, provider_config: ProviderConfig, model: str, stream: bool) -> str:
        ...

    def headers(self, provider_config: ProviderConfig) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {provider_config.api_key}",
            "Content-Type": "application/json",
        }

    # ── Streaming ──────────────────────────────────────────────────

    def iter_signals(self, frame: SSEFrame) -> Iterator[tuple[str, Any]]:
        """
        Turn one SSE frame into (tag, data) signals for the event map.

        Default: the tag is the SSE event name, else the payload's "type".
        """
        data = frame.data.strip()
        if data == DONE_SENTINEL:
            yield DONE_SENTINEL, None
            return
        payload = self.decode_frame(frame)
        if payload is None:
            return
        tag = frame.event or (payload.get("type") if isinstance(payload, dict) else None)
        if tag:
            yield tag, payload

    def decode_frame(self, frame: SSEFrame) -> Any:
        if not frame.data.strip():
            return None
        try:
            return json.loads(frame.data)
        except json.JSONDecodeError:
            logger.warning(
                "Skipping non-JSON %s stream frame: %s", self.name, frame.data[:100]
            )
            return None

    # ── HTTP rendering ─────────────────────────────────────────────

    def build_http_request(
        self,
        request: CanonicalRequest,
        provider_config: ProviderConfig,
        stream: bool = True,
    ) -> WireRequest:
        """Fill provider defaults (model, max_tokens) and render the request."""
        if not request.model:
            request = replace(request, model=provider_config.model)
        if request.max_tokens is None:
            request = replace(request, max_tokens=provider_config.max_tokens)

        headers = self.headers(provider_config)
        if stream:
            headers["Accept"] = "text/event-stream"
        return WireRequest(
            url=self.endpoint(provider_config, request.model, stream),
            headers=headers,
            body=self.to_wire(request, stream=stream),
        )

    # ── Helpers shared by adapters ─────────────────────────────────

    def clamp_temperature(self, temperature: float | None) -> float | None:
        if temperature is None:
            return None
        low, high = self.temperature_range
        return min(max(float(temperature), low), high)

    @staticmethod
    def clamp_max_tokens(max_tokens: int | None, default: int = 1024) -> int:
        return max(1, int(max_tokens if max_tokens is not None else default))

    @staticmethod
    def synthesize_call_id(
        name: str, arguments: dict | None, ordinal: int, salt: str = ""
    ) -> str:
        """
        Deterministic id for providers that do not issue call ids.

        The ordinal restarts with every stream, so callers pass a salt that
        differs per round; otherwise the same call repeated in a later round
        would collide with the earlier one.
        """
        canonical = json.dumps(arguments or {}, sort_keys=True, separators=(",", ":"))
        digest = hashlib.sha1(f"{salt}|{name}|{canonical}|{ordinal}".encode()).hexdigest()
        return f"call_{digest[:16]}"

    def parse_arguments(self, raw: Any, tool_name: str = "") -> dict[str, Any]:
        """Tool arguments as a dict. Absent/empty arguments default to {}."""
        if raw is None or raw == "":
            return {}
        if isinstance(raw, dict):
            return dict(raw)
        if isinstance(raw, str):
            try:
                parsed = json.loads(raw)
            except json.JSONDecodeError as e:
                raise ProtocolError(
                    f"Tool call '{tool_name}' has invalid JSON arguments: {e}",
                    provider=self.name,
                ) from e
            if parsed is None:
                return {}
            if isinstance(parsed, dict):
                return parsed
        raise ProtocolError(
            f"Tool call '{tool_name}' arguments must be a JSON object", provider=self.name
        )

    def check_error(self, payload: Any) -> None:
        """Raise ProviderError when the payload is a provider error object."""
        if isinstance(payload, dict) and payload.get("error"):
            error = payload["error"]
            message = error.get("message") if isinstance(error, dict) else str(error)
            code = error.get("code") if isinstance(error, dict) else None
            raise ProviderError(
                f"{self.name} error: {message or error}",
                provider=self.name,
                status_code=code if isinstance(code, int) else None,
            )

    def ensure_meaningful(self, response: CanonicalResponse) -> CanonicalResponse:
        """A response carries text or tool calls; anything else is malformed."""
        if not response.content and not response.tool_calls:
            raise ProtocolError(
                f"{self.name} response has neither content nor tool calls",
                provider=self.name,
            )
        return response
