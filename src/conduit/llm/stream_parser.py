"""
Streaming Event Parser — provider SSE bytes in, canonical events out.

Dispatch is table driven. Each ProtocolAdapter turns an SSE frame into
one or more (tag, data) signals and owns an event map:

    tag -> (EventRule, ...)

where an EventRule names the canonical kind and the dotted paths used
to pull values out of the signal's JSON. For example the OpenAI
Responses map contains:

    "response.output_text.delta": (EventRule(RuleKind.TEXT, path="delta"),)

Unknown tags are a no-op (logged at DEBUG, counted) so new provider
event types never break a stream.

Tool-call assembly: TOOL_START opens an accumulator keyed by call id,
TOOL_ARGS appends raw fragments, completion parses the buffer as JSON.
An unparseable buffer surfaces as a StreamError; the call is never
silently dropped.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any, Callable

from conduit.core.metrics import metrics
from conduit.llm.events import (
    CanonicalEvent,
    StreamEnd,
    StreamError,
    TextDelta,
    ToolCallArgDelta,
    ToolCallComplete,
    ToolCallStart,
)
from conduit.llm.sse import SSEDecoder

if TYPE_CHECKING:
    from conduit.providers.base import ProtocolAdapter

logger = logging.getLogger(__name__)

_MISSING = object()


def dig(data: Any, path: str | None, default: Any = None) -> Any:
    """Follow a dotted path ("choices.0.delta.content") through dicts and lists."""
    if path is None:
        return default
    if path == "":
        return data
    current = data
    for part in path.split("."):
        if isinstance(current, dict):
            current = current.get(part, _MISSING)
        elif isinstance(current, list) and part.lstrip("-").isdigit():
            index = int(part)
            current = current[index] if -len(current) <= index < len(current) else _MISSING
        else:
            return default
        if current is _MISSING or current is None:
            return default
    return current


class RuleKind(str, Enum):
    TEXT = "text"
    TOOL_START = "tool_start"
    TOOL_ARGS = "tool_args"
    TOOL_ARGS_DONE = "tool_args_done"  # full arguments delivered, completes the call
    TOOL_COMPLETE = "tool_complete"
    TOOL_CALL = "tool_call"  # whole call in one frame: start + complete
    FLUSH_TOOLS = "flush_tools"  # complete every open call
    END = "end"
    ERROR = "error"
    IGNORE = "ignore"


@dataclass(frozen=True)
class EventRule:
    """
    How one provider signal maps to canonical events.

    path:    value of interest (text, fragment, arguments, final payload, error message)
    call_id: where the call id lives
    name:    where the tool name lives
    key:     stream-local handle (output/content index) used by later
             frames that do not repeat the call id
    when:    optional predicate on the signal data
    """

    kind: RuleKind
    path: str | None = None
    call_id: str | None = None
    name: str | None = None
    key: str | None = None
    when: Callable[[Any], bool] | None = None


@dataclass
class _PendingCall:
    id: str
    name: str
    buffer: list[str] = field(default_factory=list)
    completed: bool = False


class StreamEventParser:
    """
    Incremental parser for one provider stream.

    Usage:
        parser = StreamEventParser(get_adapter("anthropic"))
        async for chunk in transport.stream(wire):
            for event in parser.feed(chunk):
                ...
        for event in parser.finish():
            ...
    """

    def __init__(self, adapter: ProtocolAdapter, salt: str = ""):
        self.adapter = adapter
        self.salt = salt
        self._decoder = SSEDecoder()
        self._calls: dict[str, _PendingCall] = {}
        self._aliases: dict[str, str] = {}
        self._synthesized = 0
        self._ended = False
        self._saw_tool_events = False
        self._final_payload: Any = None
        self._response_id: str | None = None

    # ── Public API ─────────────────────────────────────────────────

    def feed(self, chunk: bytes) -> list[CanonicalEvent]:
        events: list[CanonicalEvent] = []
        for frame in self._decoder.feed(chunk):
            for tag, data in self.adapter.iter_signals(frame):
                events.extend(self._dispatch(tag, data))
        return events

    def finish(self) -> list[CanonicalEvent]:
        """
        End of transport stream. Parses any trailing frame, completes
        calls the provider never closed and guarantees a StreamEnd.
        """
        events: list[CanonicalEvent] = []
        for frame in self._decoder.flush():
            for tag, data in self.adapter.iter_signals(frame):
                events.extend(self._dispatch(tag, data))
        if not self._ended:
            events.extend(self._complete_open())
            events.append(StreamEnd())
            self._ended = True
        return events

    def reset(self) -> None:
        """Clear every buffer so the parser can be reused for a new stream."""
        self._decoder.reset()
        self._calls.clear()
        self._aliases.clear()
        self._synthesized = 0
        self._ended = False
        self._saw_tool_events = False
        self._final_payload = None
        self._response_id = None

    @property
    def ended(self) -> bool:
        return self._ended

    @property
    def saw_tool_events(self) -> bool:
        """True once any incremental tool-call signal arrived."""
        return self._saw_tool_events

    @property
    def final_payload(self) -> Any:
        """The terminal payload, if the provider sends one (used for fallback extraction)."""
        return self._final_payload

    @property
    def response_id(self) -> str | None:
        return self._response_id

    # ── Dispatch ───────────────────────────────────────────────────

    def _dispatch(self, tag: str, data: Any) -> list[CanonicalEvent]:
        if self._ended:
            return []

        if self._response_id is None:
            found = dig(data, self.adapter.response_id_path)
            if isinstance(found, str) and found:
                self._response_id = found

        rules = self.adapter.event_map.get(tag)
        if rules is None:
            logger.debug(
                "Ignoring unknown %s stream event: %s", self.adapter.name, tag
            )
            metrics.inc("stream.unknown_events", labels={"provider": self.adapter.name})
            return []

        events: list[CanonicalEvent] = []
        for rule in rules:
            if rule.when is not None and not rule.when(data):
                continue
            events.extend(self._apply(rule, data))
        return events

    def _apply(self, rule: EventRule, data: Any) -> list[CanonicalEvent]:
        kind = rule.kind

        if kind is RuleKind.TEXT:
            text = dig(data, rule.path)
            return [TextDelta(text=text)] if isinstance(text, str) and text else []

        if kind is RuleKind.TOOL_START:
            self._saw_tool_events = True
            return self._start(rule, data)

        if kind is RuleKind.TOOL_ARGS:
            self._saw_tool_events = True
            call = self._resolve(rule, data)
            fragment = dig(data, rule.path, "")
            if call is None or call.completed or not fragment:
                return []
            call.buffer.append(fragment)
            return [ToolCallArgDelta(id=call.id, fragment=fragment)]

        if kind is RuleKind.TOOL_ARGS_DONE:
            self._saw_tool_events = True
            call = self._resolve(rule, data)
            if call is None or call.completed:
                return []
            full = dig(data, rule.path)
            if isinstance(full, str):
                call.buffer = [full]
            return [self._complete(call)]

        if kind is RuleKind.TOOL_COMPLETE:
            call = self._resolve(rule, data)
            if call is None or call.completed:
                return []
            return [self._complete(call)]

        if kind is RuleKind.TOOL_CALL:
            self._saw_tool_events = True
            return self._one_shot(rule, data)

        if kind is RuleKind.FLUSH_TOOLS:
            return self._complete_open()

        if kind is RuleKind.END:
            self._final_payload = dig(data, rule.path)
            self._ended = True
            return [*self._complete_open(), StreamEnd()]

        if kind is RuleKind.ERROR:
            message = dig(data, rule.path) or f"{self.adapter.name} stream error"
            logger.warning("Provider stream error (%s): %s", self.adapter.name, message)
            return [StreamError(message=str(message))]

        return []

    # ── Tool-call accumulation ─────────────────────────────────────

    def _start(self, rule: EventRule, data: Any) -> list[CanonicalEvent]:
        name = dig(data, rule.name, "")
        call_id = dig(data, rule.call_id)
        if not call_id:
            call_id = self.adapter.synthesize_call_id(
                name, None, self._synthesized, self.salt
            )
            self._synthesized += 1

        key = dig(data, rule.key)
        if key is not None:
            self._aliases[str(key)] = call_id

        if call_id in self._calls:
            return []
        call = _PendingCall(id=call_id, name=name)
        self._calls[call_id] = call
        events: list[CanonicalEvent] = [ToolCallStart(id=call_id, name=name)]

        initial = dig(data, rule.path)
        if isinstance(initial, str) and initial:
            call.buffer.append(initial)
            events.append(ToolCallArgDelta(id=call_id, fragment=initial))
        return events

    def _one_shot(self, rule: EventRule, data: Any) -> list[CanonicalEvent]:
        name = dig(data, rule.name, "")
        raw_args = dig(data, rule.path)
        arguments = raw_args if isinstance(raw_args, (dict, str)) else {}
        ordinal = self._synthesized
        self._synthesized += 1
        call_id = dig(data, rule.call_id) or self.adapter.synthesize_call_id(
            name, arguments if isinstance(arguments, dict) else None, ordinal, self.salt
        )
        if call_id in self._calls:
            return []

        text = arguments if isinstance(arguments, str) else json.dumps(arguments)
        call = _PendingCall(id=call_id, name=name, buffer=[text])
        self._calls[call_id] = call
        return [ToolCallStart(id=call_id, name=name), self._complete(call)]

    def _resolve(self, rule: EventRule, data: Any) -> _PendingCall | None:
        call_id = dig(data, rule.call_id)
        if not call_id:
            key = dig(data, rule.key)
            call_id = self._aliases.get(str(key)) if key is not None else None
        return self._calls.get(call_id) if call_id else None

    def _complete(self, call: _PendingCall) -> CanonicalEvent:
        call.completed = True
        raw = "".join(call.buffer).strip() or "{}"
        try:
            parsed = json.loads(raw)
        except json.JSONDecodeError as e:
            logger.error(
                "Tool call %s (%s) arguments are not valid JSON: %s",
                call.id,
                call.name,
                raw[:100],
            )
            return StreamError(
                message=f"Invalid JSON arguments for tool call {call.id} ({call.name}): {e}"
            )
        if not isinstance(parsed, dict):
            return StreamError(
                message=f"Arguments for tool call {call.id} ({call.name}) must be a JSON object"
            )
        return ToolCallComplete(id=call.id, name=call.name, arguments=raw)

    def _complete_open(self) -> list[CanonicalEvent]:
        return [self._complete(call) for call in self._calls.values() if not call.completed]
