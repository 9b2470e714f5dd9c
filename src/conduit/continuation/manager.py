"""
Continuation Manager — folds tool results back into a resumable request.

Two strategies, chosen by the provider adapter's continuation_mode:

- HANDLE: the provider kept the conversation server-side. Remember its
  response id; resume with previous_response_id plus only the new tool
  outputs.
- HISTORY: the provider is stateless. Snapshot the outgoing messages;
  resume by replaying them, then the assistant tool-call message, then
  one tool message per result in the order the calls were issued.
"""

from __future__ import annotations

import logging
from typing import Callable

from conduit.continuation.store import ContinuationStore
from conduit.core.metrics import metrics
from conduit.llm.contracts import (
    CanonicalMessage,
    CanonicalRequest,
    CanonicalResponse,
    ContinuationContext,
    ContinuationKind,
    ToolResult,
)
from conduit.llm.errors import ContinuationMissingError
from conduit.providers.base import ProtocolAdapter
from conduit.providers.registry import get_adapter

logger = logging.getLogger(__name__)


class ContinuationManager:
    def __init__(
        self,
        store: ContinuationStore,
        lookup: Callable[[str], ProtocolAdapter] = get_adapter,
    ):
        self.store = store
        self._lookup = lookup

    def remember(
        self,
        session_id: str,
        provider: str,
        response: CanonicalResponse,
        request: CanonicalRequest,
    ) -> ContinuationContext:
        """Derive a context from a just-completed request/response pair and store it."""
        adapter = self._lookup(provider)
        refs = tuple(tc.ref() for tc in response.tool_calls)
        common = dict(
            provider=provider,
            model=request.model,
            tools=request.tools,
            system_instruction=request.system_instruction,
            tool_calls=refs,
            assistant_text=response.content or None,
        )

        if adapter.continuation_mode is ContinuationKind.HANDLE and response.response_id:
            context = ContinuationContext(
                kind=ContinuationKind.HANDLE, value=response.response_id, **common
            )
        else:
            if adapter.continuation_mode is ContinuationKind.HANDLE:
                logger.warning(
                    "No response id from %s, falling back to history continuation",
                    provider,
                    extra={"session_id": session_id, "provider": provider},
                )
            context = ContinuationContext(
                kind=ContinuationKind.HISTORY, value=tuple(request.messages), **common
            )

        self.store.put(session_id, provider, context)
        logger.debug(
            "Stored %s continuation (%d tool calls)",
            context.kind.value,
            len(refs),
            extra={"session_id": session_id, "provider": provider},
        )
        return context

    def resume(
        self, session_id: str, provider: str, tool_results: list[ToolResult]
    ) -> CanonicalRequest:
        """Build the next request. Raises ContinuationMissingError if nothing is stored."""
        context = self.store.get(session_id, provider)
        if context is None:
            raise ContinuationMissingError(session_id, provider)

        tool_messages = self._tool_messages(context, tool_results)
        metrics.inc("continuation.resumed", labels={"mode": context.kind.value})

        if context.kind is ContinuationKind.HANDLE:
            return CanonicalRequest(
                messages=tuple(tool_messages),
                tools=context.tools,
                model=context.model,
                system_instruction=context.system_instruction,
                previous_response_id=context.value,
            )

        messages = [
            *context.value,
            CanonicalMessage.assistant(context.assistant_text, context.tool_calls),
            *tool_messages,
        ]
        return CanonicalRequest(
            messages=tuple(messages),
            tools=context.tools,
            model=context.model,
            system_instruction=context.system_instruction,
        )

    def clear(self, session_id: str, provider: str) -> None:
        self.store.clear(session_id, provider)

    def clear_session(self, session_id: str) -> int:
        return self.store.clear_session(session_id)

    def can_resume(self, session_id: str, provider: str) -> bool:
        return self.store.get(session_id, provider) is not None

    @staticmethod
    def _tool_messages(
        context: ContinuationContext, tool_results: list[ToolResult]
    ) -> list[CanonicalMessage]:
        """One tool message per result, in the order the calls were issued."""
        order = {ref.id: index for index, ref in enumerate(context.tool_calls)}
        names = {ref.id: ref.name for ref in context.tool_calls}
        ranked = sorted(
            enumerate(tool_results),
            key=lambda pair: (order.get(pair[1].tool_call_id, len(order)), pair[0]),
        )
        return [
            CanonicalMessage.tool(
                result.tool_call_id,
                result.tool_name or names.get(result.tool_call_id, ""),
                result.render(),
            )
            for _, result in ranked
        ]
