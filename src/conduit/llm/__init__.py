"""
LLM Package — canonical contracts and the streaming parser.

This package provides:
- CanonicalRequest / CanonicalMessage / CanonicalResponse: provider-independent shapes
- ToolSchema / ToolCall / ToolResult: tool traffic
- CanonicalEvent union: what a provider stream means, in arrival order
- StreamEventParser: provider SSE bytes -> canonical events
- The ConduitError hierarchy
"""

from conduit.llm.contracts import (
    CanonicalMessage,
    CanonicalRequest,
    CanonicalResponse,
    ContinuationContext,
    ContinuationKind,
    Decision,
    Role,
    ToolCall,
    ToolCallRef,
    ToolCallStatus,
    ToolResult,
    ToolSchema,
)
from conduit.llm.events import (
    CanonicalEvent,
    StreamEnd,
    StreamError,
    TextDelta,
    ToolCallArgDelta,
    ToolCallComplete,
    ToolCallStart,
)

__all__ = [
    # Contracts
    "CanonicalMessage",
    "CanonicalRequest",
    "CanonicalResponse",
    "ContinuationContext",
    "ContinuationKind",
    "Decision",
    "Role",
    "ToolCall",
    "ToolCallRef",
    "ToolCallStatus",
    "ToolResult",
    "ToolSchema",
    # Events
    "CanonicalEvent",
    "StreamEnd",
    "StreamError",
    "TextDelta",
    "ToolCallArgDelta",
    "ToolCallComplete",
    "ToolCallStart",
]
