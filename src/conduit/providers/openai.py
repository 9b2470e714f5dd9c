"""
OpenAI Responses API adapter.

- Continuation by handle: the server keeps the conversation, the next
  request carries previous_response_id plus only the new tool outputs.
- History items have no role for tool traffic: assistant tool calls are
  "function_call" items, results are "function_call_output" items.
- Tools are flat: {"type": "function", "name", "parameters", "strict"}.
"""

from __future__ import annotations

import json
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
from conduit.llm.errors import ProviderError
from conduit.llm.stream_parser import EventRule, RuleKind, dig
from conduit.providers.base import ProtocolAdapter

logger = logging.getLogger(__name__)


def _is_function_call(data: Any) -> bool:
    return dig(data, "item.type") == "function_call"


OPENAI_EVENT_MAP: dict[str, tuple[EventRule, ...]] = {
    "response.output_text.delta": (EventRule(RuleKind.TEXT, path="delta"),),
    # Older beta streams used this name for text deltas
    "response.content.delta": (EventRule(RuleKind.TEXT, path="delta.content"),),
    "response.output_item.added": (
        EventRule(
            RuleKind.TOOL_START,
            call_id="item.call_id",
            name="item.name",
            key="output_index",
            path="item.arguments",
            when=_is_function_call,
        ),
    ),
    "response.function_call_arguments.delta": (
        EventRule(RuleKind.TOOL_ARGS, key="output_index", path="delta"),
    ),
    "response.function_call_arguments.done": (
        EventRule(RuleKind.TOOL_ARGS_DONE, key="output_index", path="arguments"),
    ),
    "response.output_item.done": (
        EventRule(RuleKind.TOOL_COMPLETE, key="output_index", when=_is_function_call),
    ),
    "response.completed": (EventRule(RuleKind.END, path="response"),),
    "response.incomplete": (EventRule(RuleKind.END, path="response"),),
    "response.failed": (EventRule(RuleKind.ERROR, path="response.error.message"),),
    "error": (EventRule(RuleKind.ERROR, path="message"),),
    "response.created": (EventRule(RuleKind.IGNORE),),
    "response.in_progress": (EventRule(RuleKind.IGNORE),),
    "response.content_part.added": (EventRule(RuleKind.IGNORE),),
    "response.content_part.done": (EventRule(RuleKind.IGNORE),),
    "response.output_text.done": (EventRule(RuleKind.IGNORE),),
}


class OpenAIResponsesAdapter(ProtocolAdapter):
    name = "openai"
    continuation_mode = ContinuationKind.HANDLE
    response_id_path = "response.id"
    event_map = OPENAI_EVENT_MAP
    temperature_range = (0.0, 2.0)

    def endpoint(self, provider_config: ProviderConfig, model: str, stream: bool) -> str:
        return f"{provider_config.base_url}/responses"

    def to_wire(self, request: CanonicalRequest, stream: bool = False) -> dict[str, Any]:
        body: dict[str, Any] = {
            "model": request.model,
            "input": self._input_items(request.messages),
            "stream": stream,
        }
        if request.system_instruction:
            body["instructions"] = request.system_instruction
        if request.previous_response_id:
            body["previous_response_id"] = request.previous_response_id
        if request.tools:
            body["tools"] = [
                {
                    "type": "function",
                    "name": schema.name,
                    "description": schema.description,
                    "parameters": schema.json_schema(),
                    "strict": schema.strict,
                }
                for schema in request.tools
            ]
        if request.max_tokens is not None:
            body["max_output_tokens"] = self.clamp_max_tokens(request.max_tokens)
        temperature = self.clamp_temperature(request.temperature)
        if temperature is not None:
            body["temperature"] = temperature
        return body

    def _input_items(self, messages: tuple[CanonicalMessage, ...]) -> list[dict]:
        items: list[dict] = []
        for message in messages:
            if message.role is Role.TOOL:
                items.append(
                    {
                        "type": "function_call_output",
                        "call_id": message.tool_call_id,
                        "output": message.content or "",
                    }
                )
            elif message.role is Role.ASSISTANT:
                if message.content:
                    items.append({"role": "assistant", "content": message.content})
                for tc in message.tool_calls:
                    items.append(
                        {
                            "type": "function_call",
                            "call_id": tc.id,
                            "name": tc.name,
                            "arguments": json.dumps(tc.arguments),
                        }
                    )
            else:
                items.append({"role": message.role.value, "content": message.content or ""})
        return items

    def from_wire(self, payload: Any) -> CanonicalResponse:
        self.check_error(payload)
        body = self._unwrap(payload)
        if body.get("status") == "failed":
            message = dig(body, "error.message", "response failed")
            raise ProviderError(f"openai error: {message}", provider=self.name)

        texts: list[str] = []
        for item in body.get("output") or []:
            if item.get("type") != "message":
                continue
            for part in item.get("content") or []:
                if part.get("type") == "output_text" and part.get("text"):
                    texts.append(part["text"])

        tool_calls = self.extract(body)
        usage = body.get("usage") or {}
        return self.ensure_meaningful(
            CanonicalResponse(
                content="".join(texts) or None,
                tool_calls=tool_calls,
                response_id=body.get("id"),
                model=body.get("model", ""),
                finish_reason="tool_calls" if tool_calls else body.get("status"),
                usage={
                    "input_tokens": usage.get("input_tokens", 0),
                    "output_tokens": usage.get("output_tokens", 0),
                },
            )
        )

    def extract(self, payload: Any, salt: str = "") -> list[ToolCall]:
        body = self._unwrap(payload)
        calls: list[ToolCall] = []
        for ordinal, item in enumerate(
            i for i in body.get("output") or [] if i.get("type") == "function_call"
        ):
            name = item.get("name", "")
            arguments = self.parse_arguments(item.get("arguments"), name)
            call_id = (
                item.get("call_id")
                or item.get("id")
                or self.synthesize_call_id(name, arguments, ordinal, salt)
            )
            calls.append(ToolCall(id=call_id, name=name, arguments=arguments))
        return calls

    @staticmethod
    def _unwrap(payload: Any) -> dict:
        """Accept either a response object or a stream event wrapping one."""
        if not isinstance(payload, dict):
            return {}
        if "output" not in payload and isinstance(payload.get("response"), dict):
            return payload["response"]
        return payload
