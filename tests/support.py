"""Recorded-style provider streams and a scripted transport for tests."""

from __future__ import annotations

import asyncio
import json
from typing import Any

from conduit.providers.base import WireRequest
from conduit.transport.base import Transport

# Placed in a script, makes the stream block until cancelled
HANG = object()


def frame(data: Any, event: str | None = None) -> bytes:
    """One SSE frame. Dict payloads with a "type" get a matching event line."""
    if event is None and isinstance(data, dict):
        event = data.get("type")
    body = data if isinstance(data, str) else json.dumps(data)
    head = f"event: {event}\n" if event else ""
    return f"{head}data: {body}\n\n".encode()


def split_bytes(chunks: list[bytes], size: int = 7) -> list[bytes]:
    """Re-chunk a stream into fixed-size pieces that cut through frames."""
    blob = b"".join(chunks)
    return [blob[i : i + size] for i in range(0, len(blob), size)]


def _args(arguments: Any) -> str:
    return arguments if isinstance(arguments, str) else json.dumps(arguments)


# ─── OpenAI Responses ─────────────────────────────────────────


def openai_text(text: str, response_id: str = "resp_1") -> list[bytes]:
    return [
        frame({"type": "response.created", "response": {"id": response_id, "status": "in_progress"}}),
        frame({"type": "response.output_text.delta", "output_index": 0, "delta": text}),
        openai_completed(
            response_id,
            [{"type": "message", "role": "assistant", "content": [{"type": "output_text", "text": text}]}],
        ),
    ]


def openai_tool_call(
    name: str,
    arguments: Any,
    call_id: str = "call_1",
    response_id: str = "resp_1",
) -> list[bytes]:
    args = _args(arguments)
    half = len(args) // 2
    item = {"type": "function_call", "id": f"fc_{call_id}", "call_id": call_id, "name": name}
    return [
        frame({"type": "response.created", "response": {"id": response_id, "status": "in_progress"}}),
        frame({"type": "response.output_item.added", "output_index": 0, "item": {**item, "arguments": ""}}),
        frame({"type": "response.function_call_arguments.delta", "output_index": 0, "delta": args[:half]}),
        frame({"type": "response.function_call_arguments.delta", "output_index": 0, "delta": args[half:]}),
        frame({"type": "response.function_call_arguments.done", "output_index": 0, "arguments": args}),
        frame({"type": "response.output_item.done", "output_index": 0, "item": {**item, "arguments": args}}),
        openai_completed(response_id, [{**item, "arguments": args}]),
    ]


def openai_completed(response_id: str, output: list[dict]) -> bytes:
    return frame(
        {
            "type": "response.completed",
            "response": {"id": response_id, "status": "completed", "output": output},
        }
    )


# ─── Anthropic Messages ───────────────────────────────────────


def anthropic_text(text: str, message_id: str = "msg_1") -> list[bytes]:
    return [
        frame({"type": "message_start", "message": {"id": message_id, "role": "assistant", "content": []}}),
        frame({"type": "content_block_start", "index": 0, "content_block": {"type": "text", "text": ""}}),
        frame({"type": "ping"}),
        frame({"type": "content_block_delta", "index": 0, "delta": {"type": "text_delta", "text": text}}),
        frame({"type": "content_block_stop", "index": 0}),
        frame({"type": "message_delta", "delta": {"stop_reason": "end_turn"}}),
        frame({"type": "message_stop"}),
    ]


def anthropic_tool_call(
    name: str,
    arguments: Any,
    call_id: str = "toolu_1",
    text: str = "Let me check.",
    message_id: str = "msg_1",
) -> list[bytes]:
    args = _args(arguments)
    half = len(args) // 2
    return [
        frame({"type": "message_start", "message": {"id": message_id, "role": "assistant", "content": []}}),
        frame({"type": "content_block_start", "index": 0, "content_block": {"type": "text", "text": ""}}),
        frame({"type": "content_block_delta", "index": 0, "delta": {"type": "text_delta", "text": text}}),
        frame({"type": "content_block_stop", "index": 0}),
        frame(
            {
                "type": "content_block_start",
                "index": 1,
                "content_block": {"type": "tool_use", "id": call_id, "name": name, "input": {}},
            }
        ),
        frame({"type": "content_block_delta", "index": 1, "delta": {"type": "input_json_delta", "partial_json": args[:half]}}),
        frame({"type": "content_block_delta", "index": 1, "delta": {"type": "input_json_delta", "partial_json": args[half:]}}),
        frame({"type": "content_block_stop", "index": 1}),
        frame({"type": "message_delta", "delta": {"stop_reason": "tool_use"}}),
        frame({"type": "message_stop"}),
    ]


# ─── Chat Completions (grok / openrouter) ─────────────────────


def _chunk(delta: dict, finish_reason: str | None = None, completion_id: str = "chatcmpl-1") -> bytes:
    return frame(
        {
            "id": completion_id,
            "object": "chat.completion.chunk",
            "choices": [{"index": 0, "delta": delta, "finish_reason": finish_reason}],
        }
    )


def chat_text(text: str, completion_id: str = "chatcmpl-1") -> list[bytes]:
    return [
        _chunk({"role": "assistant", "content": text}, completion_id=completion_id),
        _chunk({}, "stop", completion_id=completion_id),
        frame("[DONE]"),
    ]


def chat_tool_calls(calls: list[tuple[str, str, Any]], completion_id: str = "chatcmpl-1") -> list[bytes]:
    """calls: (call_id, name, arguments) in order."""
    chunks = []
    for index, (call_id, name, arguments) in enumerate(calls):
        args = _args(arguments)
        half = len(args) // 2
        chunks.append(
            _chunk(
                {
                    "role": "assistant",
                    "tool_calls": [
                        {"index": index, "id": call_id, "type": "function", "function": {"name": name, "arguments": ""}}
                    ],
                },
                completion_id=completion_id,
            )
        )
        for piece in (args[:half], args[half:]):
            chunks.append(
                _chunk(
                    {"tool_calls": [{"index": index, "function": {"arguments": piece}}]},
                    completion_id=completion_id,
                )
            )
    chunks.append(_chunk({}, "tool_calls", completion_id=completion_id))
    chunks.append(frame("[DONE]"))
    return chunks


# ─── Gemini ───────────────────────────────────────────────────


def gemini_text(text: str, response_id: str = "gem_1") -> list[bytes]:
    return [
        frame(
            {
                "candidates": [{"content": {"role": "model", "parts": [{"text": text}]}, "finishReason": "STOP"}],
                "responseId": response_id,
            }
        )
    ]


def gemini_tool_call(name: str, arguments: dict, response_id: str = "gem_1") -> list[bytes]:
    return [
        frame(
            {
                "candidates": [
                    {
                        "content": {"role": "model", "parts": [{"functionCall": {"name": name, "args": arguments}}]},
                        "finishReason": "STOP",
                    }
                ],
                "responseId": response_id,
            }
        )
    ]


# ─── Transport ────────────────────────────────────────────────


class ScriptedTransport(Transport):
    """
    Replays one script per stream() call. A script item may be bytes,
    an exception (raised at that point), or HANG.
    """

    name = "scripted"

    def __init__(self, *scripts: list[Any]):
        self._scripts = list(scripts)
        self.requests: list[WireRequest] = []
        self.closed = 0

    def add(self, script: list[Any]) -> None:
        self._scripts.append(script)

    async def stream(self, request: WireRequest):
        self.requests.append(request)
        if not self._scripts:
            raise AssertionError(f"Unexpected provider request #{len(self.requests)}")
        script = self._scripts.pop(0)
        try:
            for item in script:
                if item is HANG:
                    await asyncio.Event().wait()
                if isinstance(item, Exception):
                    raise item
                yield item
                await asyncio.sleep(0)
        finally:
            self.closed += 1


class RoutingTransport(ScriptedTransport):
    """
    Picks the script queue whose key appears in the request body, so
    concurrent sessions each get their own scripted conversation.
    """

    name = "routing"

    def __init__(self, routes: dict[str, list[list[Any]]]):
        super().__init__()
        self._routes = {key: list(scripts) for key, scripts in routes.items()}

    async def stream(self, request: WireRequest):
        body = json.dumps(request.body)
        for key, scripts in self._routes.items():
            if key in body and scripts:
                self._scripts.insert(0, scripts.pop(0))
                break
        async for chunk in super().stream(request):
            yield chunk
