"""
Google Gemini (generateContent) adapter.

Gemini streams whole parts rather than argument fragments: a
functionCall part arrives complete in one chunk, and the API issues no
call ids, so ids are synthesized deterministically from the call's
name, arguments and position. The incremental and fallback paths
therefore agree on every id.
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
from conduit.providers.base import ProtocolAdapter

logger = logging.getLogger(__name__)


GEMINI_EVENT_MAP: dict[str, tuple[EventRule, ...]] = {
    "chunk": (EventRule(RuleKind.IGNORE),),
    "text": (EventRule(RuleKind.TEXT, path="text"),),
    "functionCall": (
        EventRule(
            RuleKind.TOOL_CALL,
            call_id="functionCall.id",
            name="functionCall.name",
            path="functionCall.args",
        ),
    ),
    "finish": (EventRule(RuleKind.END, path=""),),
    "usage": (EventRule(RuleKind.IGNORE),),
    "error": (EventRule(RuleKind.ERROR, path="error.message"),),
}


class GeminiAdapter(ProtocolAdapter):
    name = "gemini"
    continuation_mode = ContinuationKind.HISTORY
    response_id_path = "responseId"
    event_map = GEMINI_EVENT_MAP
    temperature_range = (0.0, 2.0)

    def endpoint(self, provider_config: ProviderConfig, model: str, stream: bool) -> str:
        if stream:
            return f"{provider_config.base_url}/models/{model}:streamGenerateContent?alt=sse"
        return f"{provider_config.base_url}/models/{model}:generateContent"

    def headers(self, provider_config: ProviderConfig) -> dict[str, str]:
        return {
            "x-goog-api-key": provider_config.api_key,
            "Content-Type": "application/json",
        }

    def iter_signals(self, frame: SSEFrame) -> Iterator[tuple[str, Any]]:
        """Gemini frames carry no event name; split each chunk into its parts."""
        payload = self.decode_frame(frame)
        if not isinstance(payload, dict):
            return
        if payload.get("error"):
            yield "error", payload
            return
        yield "chunk", payload
        for part in dig(payload, "candidates.0.content.parts", []):
            if "functionCall" in part:
                yield "functionCall", part
            elif part.get("text") and not part.get("thought"):
                yield "text", part
        if dig(payload, "candidates.0.finishReason"):
            yield "finish", payload
        elif "usageMetadata" in payload and not payload.get("candidates"):
            yield "usage", payload

    def to_wire(self, request: CanonicalRequest, stream: bool = False) -> dict[str, Any]:
        system_parts = [request.system_instruction] if request.system_instruction else []
        system_parts += [
            m.content for m in request.messages if m.role is Role.SYSTEM and m.content
        ]

        body: dict[str, Any] = {"contents": self._contents(request.messages)}
        if system_parts:
            body["systemInstruction"] = {"parts": [{"text": "\n\n".join(system_parts)}]}
        if request.tools:
            declarations = []
            for schema in request.tools:
                declaration: dict[str, Any] = {
                    "name": schema.name,
                    "description": schema.description,
                }
                # Gemini rejects additionalProperties and empty property maps
                if schema.properties:
                    declaration["parameters"] = schema.json_schema(strict=False)
                declarations.append(declaration)
            body["tools"] = [{"functionDeclarations": declarations}]

        generation: dict[str, Any] = {}
        if request.max_tokens is not None:
            generation["maxOutputTokens"] = self.clamp_max_tokens(request.max_tokens)
        temperature = self.clamp_temperature(request.temperature)
        if temperature is not None:
            generation["temperature"] = temperature
        if generation:
            body["generationConfig"] = generation
        return body

    def _contents(self, messages: tuple[CanonicalMessage, ...]) -> list[dict]:
        contents: list[dict] = []
        for message in messages:
            if message.role is Role.SYSTEM:
                continue

            if message.role is Role.TOOL:
                part = {
                    "functionResponse": {
                        "name": message.name or "",
                        "response": self._response_object(message.content),
                    }
                }
                previous = contents[-1] if contents else None
                if previous and previous["role"] == "user" and all(
                    "functionResponse" in p for p in previous["parts"]
                ):
                    previous["parts"].append(part)
                else:
                    contents.append({"role": "user", "parts": [part]})
                continue

            if message.role is Role.ASSISTANT:
                parts: list[dict] = []
                if message.content:
                    parts.append({"text": message.content})
                for tc in message.tool_calls:
                    parts.append({"functionCall": {"name": tc.name, "args": tc.arguments}})
                contents.append({"role": "model", "parts": parts or [{"text": ""}]})
                continue

            contents.append({"role": "user", "parts": [{"text": message.content or ""}]})
        return contents

    @staticmethod
    def _response_object(content: str | None) -> dict:
        """functionResponse.response must be an object."""
        try:
            parsed = json.loads(content) if content else {}
        except json.JSONDecodeError:
            return {"result": content}
        return parsed if isinstance(parsed, dict) else {"result": parsed}

    def from_wire(self, payload: Any) -> CanonicalResponse:
        chunks = payload if isinstance(payload, list) else [payload]
        for chunk in chunks:
            self.check_error(chunk)

        texts: list[str] = []
        finish_reason = None
        response_id = None
        model = ""
        usage: dict = {}
        for chunk in chunks:
            for part in dig(chunk, "candidates.0.content.parts", []):
                if part.get("text") and not part.get("thought"):
                    texts.append(part["text"])
            finish_reason = dig(chunk, "candidates.0.finishReason", finish_reason)
            response_id = chunk.get("responseId", response_id)
            model = chunk.get("modelVersion", model)
            usage = chunk.get("usageMetadata", usage)

        tool_calls = self.extract(payload)
        return self.ensure_meaningful(
            CanonicalResponse(
                content="".join(texts) or None,
                tool_calls=tool_calls,
                response_id=response_id,
                model=model,
                finish_reason="tool_calls" if tool_calls else finish_reason,
                usage={
                    "input_tokens": usage.get("promptTokenCount", 0),
                    "output_tokens": usage.get("candidatesTokenCount", 0),
                },
            )
        )

    def extract(self, payload: Any, salt: str = "") -> list[ToolCall]:
        chunks = payload if isinstance(payload, list) else [payload]
        calls: list[ToolCall] = []
        ordinal = 0
        for chunk in chunks:
            if not isinstance(chunk, dict):
                continue
            for part in dig(chunk, "candidates.0.content.parts", []):
                if "functionCall" not in part:
                    continue
                fc = part["functionCall"] or {}
                name = fc.get("name", "")
                arguments = self.parse_arguments(fc.get("args"), name)
                call_id = fc.get("id") or self.synthesize_call_id(name, arguments, ordinal, salt)
                ordinal += 1
                calls.append(ToolCall(id=call_id, name=name, arguments=arguments))
        return calls
