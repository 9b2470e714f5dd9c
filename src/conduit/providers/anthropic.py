"""
Anthropic Messages API adapter.

System prompt is a top-level field. Tool calls are "tool_use" content
blocks on the assistant message; results go back as "tool_result"
blocks inside a user message, with consecutive results merged into one
user turn. Continuation replays the full history.
"""

from __future__ import annotations

import logging
from typing import Any

from conduit.core.config import ProviderConfig
from conduit.llm.contracts import (
    CanonicalMessage,
    CanonicalRequest,
    CanonicalResponse,
    ContinuationKind,
    Role,
    ToolCall,
)
from conduit.llm.stream_parser import EventRule, RuleKind, dig
from conduit.providers.base import ProtocolAdapter

logger = logging.getLogger(__name__)

ANTHROPIC_VERSION = "2023-06-01"


def _block_type(expected: str):
    return lambda data: dig(data, "content_block.type") == expected


def _delta_type(expected: str):
    return lambda data: dig(data, "delta.type") == expected


ANTHROPIC_EVENT_MAP: dict[str, tuple[EventRule, ...]] = {
    "message_start": (EventRule(RuleKind.IGNORE),),
    "content_block_start": (
        EventRule(
            RuleKind.TOOL_START,
            call_id="content_block.id",
            name="content_block.name",
            key="index",
            when=_block_type("tool_use"),
        ),
        EventRule(RuleKind.TEXT, path="content_block.text", when=_block_type("text")),
    ),
    "content_block_delta": (
        EventRule(RuleKind.TEXT, path="delta.text", when=_delta_type("text_delta")),
        EventRule(
            RuleKind.TOOL_ARGS,
            key="index",
            path="delta.partial_json",
            when=_delta_type("input_json_delta"),
        ),
    ),
    "content_block_stop": (EventRule(RuleKind.TOOL_COMPLETE, key="index"),),
    "message_delta": (EventRule(RuleKind.IGNORE),),
    "message_stop": (EventRule(RuleKind.END),),
    "ping": (EventRule(RuleKind.IGNORE),),
    "error": (EventRule(RuleKind.ERROR, path="error.message"),),
}


class AnthropicMessagesAdapter(ProtocolAdapter):
    name = "anthropic"
    continuation_mode = ContinuationKind.HISTORY
    response_id_path = "message.id"
    event_map = ANTHROPIC_EVENT_MAP
    temperature_range = (0.0, 1.0)

    def endpoint(self, provider_config: ProviderConfig, model: str, stream: bool) -> str:
        return f"{provider_config.base_url}/messages"

    def headers(self, provider_config: ProviderConfig) -> dict[str, str]:
        return {
            "x-api-key": provider_config.api_key,
            "anthropic-version": ANTHROPIC_VERSION,
            "Content-Type": "application/json",
        }

    def to_wire(self, request: CanonicalRequest, stream: bool = False) -> dict[str, Any]:
        system_parts = [request.system_instruction] if request.system_instruction else []
        system_parts += [
            m.content for m in request.messages if m.role is Role.SYSTEM and m.content
        ]

        body: dict[str, Any] = {
            "model": request.model,
            "max_tokens": self.clamp_max_tokens(request.max_tokens),
            "messages": self._messages(request.messages),
            "stream": stream,
        }
        if system_parts:
            body["system"] = "\n\n".join(system_parts)
        if request.tools:
            body["tools"] = [
                {
                    "name": schema.name,
                    "description": schema.description,
                    "input_schema": schema.json_schema(),
                }
                for schema in request.tools
            ]
        temperature = self.clamp_temperature(request.temperature)
        if temperature is not None:
            body["temperature"] = temperature
        return body

    def _messages(self, messages: tuple[CanonicalMessage, ...]) -> list[dict]:
        out: list[dict] = []
        for message in messages:
            if message.role is Role.SYSTEM:
                continue

            if message.role is Role.TOOL:
                block = {
                    "type": "tool_result",
                    "tool_use_id": message.tool_call_id,
                    "content": message.content or "",
                }
                previous = out[-1] if out else None
                if (
                    previous
                    and previous["role"] == "user"
                    and isinstance(previous["content"], list)
                    and all(b.get("type") == "tool_result" for b in previous["content"])
                ):
                    previous["content"].append(block)
                else:
                    out.append({"role": "user", "content": [block]})
                continue

            if message.role is Role.ASSISTANT and message.tool_calls:
                blocks: list[dict] = []
                if message.content:
                    blocks.append({"type": "text", "text": message.content})
                for tc in message.tool_calls:
                    blocks.append(
                        {"type": "tool_use", "id": tc.id, "name": tc.name, "input": tc.arguments}
                    )
                out.append({"role": "assistant", "content": blocks})
                continue

            out.append({"role": message.role.value, "content": message.content or ""})
        return out

    def from_wire(self, payload: Any) -> CanonicalResponse:
        self.check_error(payload)
        body = payload if isinstance(payload, dict) else {}
        text = "".join(
            block.get("text", "")
            for block in body.get("content") or []
            if block.get("type") == "text"
        )
        usage = body.get("usage") or {}
        return self.ensure_meaningful(
            CanonicalResponse(
                content=text or None,
                tool_calls=self.extract(body),
                response_id=body.get("id"),
                model=body.get("model", ""),
                finish_reason=body.get("stop_reason"),
                usage={
                    "input_tokens": usage.get("input_tokens", 0),
                    "output_tokens": usage.get("output_tokens", 0),
                },
            )
        )

    def extract(self, payload: Any, salt: str = "") -> list[ToolCall]:
        if not isinstance(payload, dict):
            return []
        blocks = [b for b in payload.get("content") or [] if b.get("type") == "tool_use"]
        calls: list[ToolCall] = []
        for ordinal, block in enumerate(blocks):
            name = block.get("name", "")
            arguments = self.parse_arguments(block.get("input"), name)
            call_id = block.get("id") or self.synthesize_call_id(name, arguments, ordinal, salt)
            calls.append(ToolCall(id=call_id, name=name, arguments=arguments))
        return calls
