"""
Chat Completions adapters (xAI Grok, OpenRouter).

System instruction is the first message. Assistant tool calls ride on
the assistant message as a tool_calls array, each followed by a
separate role=tool message. Streamed tool calls are keyed by index and
only the first fragment carries the id.
"""

from __future__ import annotations

import json
import logging
from typing import Any, Iterator

from conduit.core.config import ProviderConfig
from conduit.llm.contracts import (
    CanonicalMessage,
    CanonicalRequest,
    CanonicalResponse,
    ContinuationKind,
    Role,
    ToolCall,
)
from conduit.llm.sse import SSEFrame
from conduit.llm.stream_parser import EventRule, RuleKind, dig
from conduit.providers.base import DONE_SENTINEL, ProtocolAdapter

logger = logging.getLogger(__name__)


CHAT_EVENT_MAP: dict[str, tuple[EventRule, ...]] = {
    # Whole chunk, so the parser sees the top-level completion id
    "chunk": (EventRule(RuleKind.IGNORE),),
    "content": (EventRule(RuleKind.TEXT, path="content"),),
    "tool_call.start": (
        EventRule(RuleKind.TOOL_START, call_id="id", name="function.name", key="index"),
    ),
    "tool_call.delta": (
        EventRule(RuleKind.TOOL_ARGS, key="index", path="function.arguments"),
    ),
    "finish": (EventRule(RuleKind.FLUSH_TOOLS),),
    "usage": (EventRule(RuleKind.IGNORE),),
    DONE_SENTINEL: (EventRule(RuleKind.END),),
    "error": (EventRule(RuleKind.ERROR, path="error.message"),),
}


class ChatCompletionsAdapter(ProtocolAdapter):
    """Shared behavior for OpenAI-compatible chat completion providers."""

    continuation_mode = ContinuationKind.HISTORY
    response_id_path = "id"
    event_map = CHAT_EVENT_MAP
    temperature_range = (0.0, 2.0)

    def endpoint(self, provider_config: ProviderConfig, model: str, stream: bool) -> str:
        return f"{provider_config.base_url}/chat/completions"

    def iter_signals(self, frame: SSEFrame) -> Iterator[tuple[str, Any]]:
        if frame.data.strip() == DONE_SENTINEL:
            yield DONE_SENTINEL, None
            return
        payload = self.decode_frame(frame)
        if not isinstance(payload, dict):
            return
        if payload.get("error"):
            yield "error", payload
            return

        yield "chunk", payload
        choice = dig(payload, "choices.0")
        if choice is None:
            if payload.get("usage"):
                yield "usage", payload
            return

        delta = choice.get("delta") or {}
        if delta.get("content"):
            yield "content", delta
        for tc in delta.get("tool_calls") or []:
            if tc.get("id"):
                yield "tool_call.start", tc
            if dig(tc, "function.arguments"):
                yield "tool_call.delta", tc
        if choice.get("finish_reason"):
            yield "finish", choice

    def to_wire(self, request: CanonicalRequest, stream: bool = False) -> dict[str, Any]:
        messages: list[dict] = []
        if request.system_instruction:
            messages.append({"role": "system", "content": request.system_instruction})
        messages.extend(self._message(m) for m in request.messages)

        body: dict[str, Any] = {
            "model": request.model,
            "messages": messages,
            "stream": stream,
        }
        if request.tools:
            body["tools"] = [
                {
                    "type": "function",
                    "function": {
                        "name": schema.name,
                        "description": schema.description,
                        "parameters": schema.json_schema(),
                        "strict": schema.strict,
                    },
                }
                for schema in request.tools
            ]
            body["tool_choice"] = "auto"
        if request.max_tokens is not None:
            body["max_tokens"] = self.clamp_max_tokens(request.max_tokens)
        temperature = self.clamp_temperature(request.temperature)
        if temperature is not None:
            body["temperature"] = temperature
        return body

    @staticmethod
    def _message(message: CanonicalMessage) -> dict:
        if message.role is Role.TOOL:
            return {
                "role": "tool",
                "tool_call_id": message.tool_call_id,
                "content": message.content or "",
            }
        if message.role is Role.ASSISTANT and message.tool_calls:
            return {
                "role": "assistant",
                "content": message.content,
                "tool_calls": [
                    {
                        "id": tc.id,
                        "type": "function",
                        "function": {"name": tc.name, "arguments": json.dumps(tc.arguments)},
                    }
                    for tc in message.tool_calls
                ],
            }
        return {"role": message.role.value, "content": message.content or ""}

    def from_wire(self, payload: Any) -> CanonicalResponse:
        self.check_error(payload)
        body = payload if isinstance(payload, dict) else {}
        usage = body.get("usage") or {}
        return self.ensure_meaningful(
            CanonicalResponse(
                content=dig(body, "choices.0.message.content") or None,
                tool_calls=self.extract(body),
                response_id=body.get("id"),
                model=body.get("model", ""),
                finish_reason=dig(body, "choices.0.finish_reason"),
                usage={
                    "input_tokens": usage.get("prompt_tokens", 0),
                    "output_tokens": usage.get("completion_tokens", 0),
                },
            )
        )

    def extract(self, payload: Any, salt: str = "") -> list[ToolCall]:
        calls: list[ToolCall] = []
        for ordinal, tc in enumerate(dig(payload, "choices.0.message.tool_calls", [])):
            name = dig(tc, "function.name", "")
            arguments = self.parse_arguments(dig(tc, "function.arguments"), name)
            call_id = tc.get("id") or self.synthesize_call_id(name, arguments, ordinal, salt)
            calls.append(ToolCall(id=call_id, name=name, arguments=arguments))
        return calls


class GrokAdapter(ChatCompletionsAdapter):
    name = "grok"


class OpenRouterAdapter(ChatCompletionsAdapter):
    name = "openrouter"

    def headers(self, provider_config: ProviderConfig) -> dict[str, str]:
        headers = super().headers(provider_config)
        headers["X-Title"] = "conduit"
        return headers
