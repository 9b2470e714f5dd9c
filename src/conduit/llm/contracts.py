"""
Canonical contracts — the provider-independent shapes every adapter
translates to and from.

- CanonicalMessage / CanonicalRequest: what the orchestrator sends
- CanonicalResponse: what a completed provider response means
- ToolSchema: declarative tool description (also drives validation)
- ToolCall / ToolResult: one requested tool invocation and its outcome
- ContinuationContext: how to resume a provider conversation
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class Role(str, Enum):
    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"
    TOOL = "tool"


class ToolCallStatus(str, Enum):
    PENDING = "pending"
    EXECUTING = "executing"
    COMPLETED = "completed"
    FAILED = "failed"


class ContinuationKind(str, Enum):
    HANDLE = "handle"  # provider keeps server-side state, we keep an opaque id
    HISTORY = "history"  # client replays the whole transcript


class Decision(str, Enum):
    ACCEPTED = "accepted"
    REJECTED = "rejected"


# ═══════════════════════════════════════════════════════════════════════════════
# MESSAGES & REQUESTS
# ═══════════════════════════════════════════════════════════════════════════════


@dataclass(frozen=True)
class ToolCallRef:
    """A tool call as recorded on an assistant message."""

    id: str
    name: str
    arguments: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class CanonicalMessage:
    """
    One entry of the conversation transcript.

    Order matters: history-based providers get the transcript replayed
    verbatim. Tool messages carry tool_call_id (and the tool name, which
    some providers need to pair a result with its call).
    """

    role: Role
    content: str | None = None
    tool_calls: tuple[ToolCallRef, ...] = ()
    tool_call_id: str | None = None
    name: str | None = None

    @classmethod
    def system(cls, text: str) -> CanonicalMessage:
        return cls(role=Role.SYSTEM, content=text)

    @classmethod
    def user(cls, text: str) -> CanonicalMessage:
        return cls(role=Role.USER, content=text)

    @classmethod
    def assistant(
        cls, text: str | None, tool_calls: list[ToolCallRef] | tuple = ()
    ) -> CanonicalMessage:
        return cls(role=Role.ASSISTANT, content=text, tool_calls=tuple(tool_calls))

    @classmethod
    def tool(cls, tool_call_id: str, name: str, content: str) -> CanonicalMessage:
        return cls(role=Role.TOOL, content=content, tool_call_id=tool_call_id, name=name)

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"role": self.role.value, "content": self.content}
        if self.tool_calls:
            data["tool_calls"] = [
                {"id": tc.id, "name": tc.name, "arguments": tc.arguments}
                for tc in self.tool_calls
            ]
        if self.tool_call_id is not None:
            data["tool_call_id"] = self.tool_call_id
        if self.name is not None:
            data["name"] = self.name
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> CanonicalMessage:
        return cls(
            role=Role(data["role"]),
            content=data.get("content"),
            tool_calls=tuple(
                ToolCallRef(
                    id=tc["id"], name=tc["name"], arguments=tc.get("arguments") or {}
                )
                for tc in data.get("tool_calls") or []
            ),
            tool_call_id=data.get("tool_call_id"),
            name=data.get("name"),
        )


@dataclass(frozen=True)
class ToolSchema:
    """
    Declarative tool description.

    parameters is a JSON-schema-like object:
        {"type": "object", "properties": {...}, "required": [...]}
    """

    name: str
    description: str
    parameters: dict[str, Any] = field(
        default_factory=lambda: {"type": "object", "properties": {}, "required": []}
    )

    @property
    def properties(self) -> dict[str, Any]:
        return self.parameters.get("properties") or {}

    @property
    def required(self) -> list[str]:
        return list(self.parameters.get("required") or [])

    @property
    def strict(self) -> bool:
        """Strict mode only when every declared parameter is required."""
        return set(self.properties) <= set(self.required)

    def json_schema(self, strict: bool | None = None) -> dict[str, Any]:
        """Parameters with the shape providers expect; strict adds additionalProperties."""
        schema: dict[str, Any] = {
            "type": "object",
            "properties": dict(self.properties),
            "required": self.required,
        }
        if self.strict if strict is None else strict:
            schema["additionalProperties"] = False
        return schema

    def missing_arguments(self, arguments: dict[str, Any]) -> list[str]:
        return [name for name in self.required if name not in arguments]


@dataclass(frozen=True)
class CanonicalRequest:
    """
    Fixed input for one provider round-trip. Built fresh per round,
    never mutated once sent.

    previous_response_id is only set on handle-based continuations, in
    which case messages holds just the new tool results.
    """

    messages: tuple[CanonicalMessage, ...]
    tools: tuple[ToolSchema, ...] = ()
    model: str = ""
    system_instruction: str | None = None
    previous_response_id: str | None = None
    max_tokens: int | None = None
    temperature: float | None = None


# ═══════════════════════════════════════════════════════════════════════════════
# TOOL CALLS & RESULTS
# ═══════════════════════════════════════════════════════════════════════════════


@dataclass
class ToolCall:
    """
    One tool invocation requested by the model.

    Status moves pending -> executing -> completed|failed exactly once.
    """

    id: str
    name: str
    arguments: dict[str, Any] = field(default_factory=dict)
    status: ToolCallStatus = ToolCallStatus.PENDING

    def ref(self) -> ToolCallRef:
        return ToolCallRef(id=self.id, name=self.name, arguments=dict(self.arguments))

    def mark_executing(self) -> None:
        if self.status is not ToolCallStatus.PENDING:
            raise ValueError(
                f"Tool call {self.id} cannot start executing from status {self.status.value}"
            )
        self.status = ToolCallStatus.EXECUTING

    def mark_finished(self, success: bool) -> None:
        if self.status is not ToolCallStatus.EXECUTING:
            raise ValueError(
                f"Tool call {self.id} cannot finish from status {self.status.value}"
            )
        self.status = ToolCallStatus.COMPLETED if success else ToolCallStatus.FAILED


@dataclass(frozen=True)
class ToolResult:
    """
    The outcome of one tool call.

    requires_confirmation parks the turn until an accept/reject decision
    arrives for tool_call_id. attempts/duration_ms are for observability.
    """

    tool_call_id: str
    success: bool
    payload: Any = None
    requires_confirmation: bool = False
    tool_name: str = ""
    error: str | None = None
    error_kind: str | None = None
    attempts: int = 0
    duration_ms: float = 0.0

    @classmethod
    def failed(
        cls,
        call: ToolCall,
        error: str,
        error_kind: str,
        attempts: int = 0,
        duration_ms: float = 0.0,
    ) -> ToolResult:
        return cls(
            tool_call_id=call.id,
            tool_name=call.name,
            success=False,
            error=error,
            error_kind=error_kind,
            attempts=attempts,
            duration_ms=duration_ms,
        )

    @classmethod
    def decided(cls, call_id: str, tool_name: str, decision: Decision) -> ToolResult:
        """The synthesized result for a human accept/reject decision."""
        return cls(
            tool_call_id=call_id,
            tool_name=tool_name,
            success=True,
            payload={"decision": decision.value},
        )

    def render(self) -> str:
        """The text fed back to the model as the tool's output."""
        if not self.success:
            return json.dumps({"success": False, "error": self.error or "Tool failed"})
        if isinstance(self.payload, str):
            return self.payload
        return json.dumps(self.payload if self.payload is not None else {"success": True}, default=str)


# ═══════════════════════════════════════════════════════════════════════════════
# RESPONSES & CONTINUATION
# ═══════════════════════════════════════════════════════════════════════════════


@dataclass
class CanonicalResponse:
    """A completed provider response, in canonical form."""

    content: str | None = None
    tool_calls: list[ToolCall] = field(default_factory=list)
    response_id: str | None = None
    model: str = ""
    finish_reason: str | None = None
    usage: dict[str, int] = field(default_factory=dict)

    def assistant_message(self) -> CanonicalMessage:
        return CanonicalMessage.assistant(
            self.content or None, [tc.ref() for tc in self.tool_calls]
        )


@dataclass(frozen=True)
class ContinuationContext:
    """
    Provider-tagged resume token.

    kind=HANDLE: value is the provider's opaque response id.
    kind=HISTORY: value is the outgoing message list to replay; the
    assistant's text and tool calls are kept alongside and appended on
    resume.
    The remaining fields let the manager rebuild a full request.
    """

    kind: ContinuationKind
    value: str | tuple[CanonicalMessage, ...]
    provider: str
    model: str = ""
    tools: tuple[ToolSchema, ...] = ()
    system_instruction: str | None = None
    tool_calls: tuple[ToolCallRef, ...] = ()
    assistant_text: str | None = None
