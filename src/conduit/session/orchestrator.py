"""
TurnOrchestrator — drives one Turn per user message.

Each turn is an asyncio task. Within it:

1. BUILDING     load the session transcript, build the CanonicalRequest
2. STREAMING    send it, feed transport bytes through the StreamEventParser,
                forward text deltas, collect completed tool calls
3. EXTRACTING   fallback extraction from the terminal payload, but only
                when the stream carried no incremental tool events
4. DONE         no new calls: save the transcript, clear continuation
   EXECUTING    run the new calls through the ToolExecutor as one batch
5. AWAITING_DECISION  some result needs a human accept/reject; the task
                sleeps on an event until submit_decision() resolves them all
   CONTINUING   ContinuationManager.resume() builds the next request -> 2

Stream errors fail the turn; they are never retried because a partly
consumed stream may already have produced tool calls.

Sessions are independent: each has at most one active turn, and turns
never share state.
"""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, Callable

import conduit.core.config as config_module
from conduit.continuation.manager import ContinuationManager
from conduit.core.config import ConduitConfig
from conduit.core.metrics import metrics
from conduit.llm.contracts import (
    CanonicalMessage,
    CanonicalRequest,
    CanonicalResponse,
    Decision,
    ToolCall,
    ToolResult,
)
from conduit.llm.errors import (
    ConduitError,
    StreamAbortedError,
    TurnLimitExceededError,
    TurnStateError,
)
from conduit.llm.events import StreamError, TextDelta, ToolCallComplete
from conduit.llm.stream_parser import StreamEventParser
from conduit.providers.base import ProtocolAdapter
from conduit.providers.registry import get_adapter
from conduit.session.event_bus import EventBus, session_topic
from conduit.session.store import TranscriptStore
from conduit.session.turn import Turn, TurnHandle, TurnState
from conduit.tools.executor import ToolExecutor
from conduit.tools.registry import ToolRegistry
from conduit.transport.base import Transport

logger = logging.getLogger(__name__)

TextDeltaCallback = Callable[[str, str], Any]


class TurnOrchestrator:
    def __init__(
        self,
        transport: Transport,
        executor: ToolExecutor,
        continuation: ContinuationManager,
        transcripts: TranscriptStore,
        registry: ToolRegistry | None = None,
        event_bus: EventBus | None = None,
        lookup: Callable[[str], ProtocolAdapter] = get_adapter,
        settings: ConduitConfig | None = None,
    ):
        self.transport = transport
        self.executor = executor
        self.continuation = continuation
        self.transcripts = transcripts
        self.registry = registry or executor.registry or ToolRegistry()
        self.event_bus = event_bus or EventBus()
        self.settings = settings or config_module.config
        self._lookup = lookup
        self._turns: dict[str, Turn] = {}
        self._handles: dict[str, TurnHandle] = {}
        self._text_callbacks: list[TextDeltaCallback] = []
        self._background: set[asyncio.Task] = set()

    # ── Public API ─────────────────────────────────────────────────

    async def start_turn(
        self, session_id: str, user_message: str, provider: str | None = None
    ) -> TurnHandle:
        """Start processing a user message. Returns immediately with a handle."""
        current = self._turns.get(session_id)
        if current is not None and not current.terminal:
            raise TurnStateError(
                f"Session {session_id} already has an active turn ({current.state.value})"
            )

        provider = (provider or self.settings.turn.default_provider).lower()
        self._lookup(provider)  # unknown providers fail here, before any work

        turn = Turn(session_id=session_id, provider=provider, user_message=user_message)
        task = asyncio.create_task(self._run(turn), name=f"turn-{turn.turn_id}")
        task.add_done_callback(lambda _: self._finalize_abandoned(turn))
        handle = TurnHandle(turn, task)
        self._turns[session_id] = turn
        self._handles[session_id] = handle

        metrics.inc("turn.started")
        logger.info(
            "Turn started",
            extra={"session_id": session_id, "turn_id": turn.turn_id, "provider": provider},
        )
        return handle

    async def submit_decision(
        self, session_id: str, tool_call_id: str, decision: Decision | str
    ) -> TurnState:
        """
        Resolve a confirmation-gated tool call. The tool is not re-invoked;
        a ToolResult carrying {"decision": ...} stands in for it. Once every
        pending call is decided the turn moves to CONTINUING.
        """
        decision = Decision(decision)
        turn = self._turns.get(session_id)
        if turn is None or turn.state is not TurnState.AWAITING_DECISION:
            raise TurnStateError(f"Session {session_id} has no turn awaiting a decision")
        if tool_call_id not in turn.awaiting:
            raise TurnStateError(
                f"Tool call {tool_call_id} is not awaiting a decision in session {session_id}"
            )

        call = turn.calls[tool_call_id]
        turn.results[tool_call_id] = ToolResult.decided(tool_call_id, call.name, decision)
        turn.awaiting.remove(tool_call_id)
        self._publish(
            turn, {"type": "decision", "tool_call_id": tool_call_id, "decision": decision.value}
        )
        logger.info(
            "Decision %s recorded",
            decision.value,
            extra={"session_id": session_id, "turn_id": turn.turn_id, "tool_call_id": tool_call_id},
        )

        if not turn.awaiting:
            self._set_state(turn, TurnState.CONTINUING)
            turn.decided.set()
        return turn.state

    def on_text_delta(self, callback: TextDeltaCallback) -> Callable[[], None]:
        """Register callback(session_id, text) for live text. Returns an unsubscribe function."""
        self._text_callbacks.append(callback)

        def unsubscribe() -> None:
            if callback in self._text_callbacks:
                self._text_callbacks.remove(callback)

        return unsubscribe

    def get_turn(self, session_id: str) -> Turn | None:
        """The session's active turn, or its most recent one."""
        return self._turns.get(session_id)

    def get_handle(self, session_id: str) -> TurnHandle | None:
        return self._handles.get(session_id)

    def cancel(self, session_id: str) -> bool:
        handle = self._handles.get(session_id)
        return handle.cancel() if handle is not None else False

    async def shutdown(self) -> None:
        """Cancel every active turn and wait for in-flight tool batches."""
        for handle in list(self._handles.values()):
            handle.cancel()
        for handle in list(self._handles.values()):
            await handle.wait()
        if self._background:
            await asyncio.gather(*self._background, return_exceptions=True)

    # ── Turn loop ──────────────────────────────────────────────────

    async def _run(self, turn: Turn) -> None:
        log_extra = {"session_id": turn.session_id, "turn_id": turn.turn_id, "provider": turn.provider}
        try:
            adapter = self._lookup(turn.provider)
            history = await self.transcripts.load(turn.session_id)
            user_message = CanonicalMessage.user(turn.user_message)
            turn.transcript_delta.append(user_message)
            request = CanonicalRequest(
                messages=(*history, user_message),
                tools=tuple(self.registry.schemas()),
                model=self.settings.provider(turn.provider).model,
                system_instruction=self.settings.turn.system_instruction or None,
            )

            while True:
                if turn.rounds >= self.settings.turn.max_rounds:
                    raise TurnLimitExceededError(
                        f"Turn {turn.turn_id} exceeded {self.settings.turn.max_rounds} rounds"
                    )
                turn.rounds += 1
                self._set_state(turn, TurnState.STREAMING)
                response = await self._stream_round(turn, adapter, request)

                self._set_state(turn, TurnState.EXTRACTING)
                new_calls = [call for call in response.tool_calls if turn.register_call(call)]
                skipped = len(response.tool_calls) - len(new_calls)
                if skipped:
                    logger.warning("Ignoring %d already-seen tool call(s)", skipped, extra=log_extra)
                turn.transcript_delta.append(
                    CanonicalMessage.assistant(response.content, [c.ref() for c in new_calls])
                )

                if not new_calls:
                    await self._complete(turn, history)
                    return

                self.continuation.remember(
                    turn.session_id,
                    turn.provider,
                    CanonicalResponse(
                        content=response.content,
                        tool_calls=new_calls,
                        response_id=response.response_id,
                        model=response.model,
                    ),
                    request,
                )

                self._set_state(turn, TurnState.EXECUTING)
                results = await self._execute(turn, new_calls)

                if turn.awaiting:
                    turn.decided.clear()
                    self._set_state(turn, TurnState.AWAITING_DECISION)
                    await turn.decided.wait()
                    results = [turn.results[call.id] for call in new_calls]
                else:
                    self._set_state(turn, TurnState.CONTINUING)

                for call, result in zip(new_calls, results):
                    turn.transcript_delta.append(
                        CanonicalMessage.tool(call.id, call.name, result.render())
                    )
                request = self.continuation.resume(turn.session_id, turn.provider, results)

        except asyncio.CancelledError:
            logger.info("Turn cancelled", extra=log_extra)
            self._abort(turn, TurnState.CANCELLED, "cancelled")
        except ConduitError as e:
            logger.error("Turn failed: %s", e, extra=log_extra)
            self._abort(turn, TurnState.FAILED, str(e))
        except Exception as e:
            logger.error("Turn crashed: %s", e, exc_info=True, extra=log_extra)
            self._abort(turn, TurnState.FAILED, f"Internal error: {e}")

    async def _stream_round(
        self, turn: Turn, adapter: ProtocolAdapter, request: CanonicalRequest
    ) -> CanonicalResponse:
        """One provider round-trip, consumed strictly in arrival order."""
        wire = adapter.build_http_request(request, self.settings.provider(turn.provider))
        # Synthesized ids restart their ordinal every stream; the round keeps them unique per turn
        salt = f"{turn.turn_id}:{turn.rounds}"
        parser = StreamEventParser(adapter, salt=salt)
        text_parts: list[str] = []
        completed: dict[str, ToolCall] = {}

        stream = self.transport.stream(wire)
        try:
            async for chunk in stream:
                for event in parser.feed(chunk):
                    self._handle_event(turn, event, text_parts, completed)
                if parser.ended:
                    break
            for event in parser.finish():
                self._handle_event(turn, event, text_parts, completed)
        finally:
            # Releases the provider connection, including on cancellation
            await stream.aclose()

        if not parser.saw_tool_events and parser.final_payload is not None:
            for call in adapter.extract(parser.final_payload, salt=salt):
                completed.setdefault(call.id, call)

        return CanonicalResponse(
            content="".join(text_parts) or None,
            tool_calls=list(completed.values()),
            response_id=parser.response_id,
            model=request.model,
        )

    def _handle_event(
        self,
        turn: Turn,
        event: Any,
        text_parts: list[str],
        completed: dict[str, ToolCall],
    ) -> None:
        if isinstance(event, TextDelta):
            text_parts.append(event.text)
            self._emit_text(turn, event.text)
        elif isinstance(event, ToolCallComplete):
            completed.setdefault(
                event.id,
                ToolCall(id=event.id, name=event.name, arguments=json.loads(event.arguments)),
            )
            self._publish(turn, {"type": "tool_call", "id": event.id, "name": event.name})
        elif isinstance(event, StreamError):
            raise StreamAbortedError(event.message)

    async def _execute(self, turn: Turn, calls: list[ToolCall]) -> list[ToolResult]:
        """
        Run the batch. The batch is shielded: if the turn is cancelled
        mid-batch the tools still run to completion, but their results
        are dropped along with the turn.
        """
        batch = asyncio.create_task(self.executor.execute_many(calls, registry=self.registry))
        self._background.add(batch)
        batch.add_done_callback(self._background.discard)
        results = await asyncio.shield(batch)

        for result in results:
            turn.results[result.tool_call_id] = result
            if result.requires_confirmation:
                turn.awaiting.append(result.tool_call_id)
            self._publish(
                turn,
                {
                    "type": "tool_result",
                    "tool_call_id": result.tool_call_id,
                    "success": result.success,
                    "requires_confirmation": result.requires_confirmation,
                    "payload": result.payload,
                    "error": result.error,
                },
            )
        return results

    async def _complete(self, turn: Turn, history: list[CanonicalMessage]) -> None:
        await self.transcripts.save(turn.session_id, [*history, *turn.transcript_delta])
        self.continuation.clear(turn.session_id, turn.provider)
        self._set_state(turn, TurnState.DONE)
        self._finished(turn)

    def _abort(self, turn: Turn, state: TurnState, error: str) -> None:
        if turn.terminal:
            return
        turn.error = error
        # A fresh turn must not resume from this one's half-finished exchange
        self.continuation.clear(turn.session_id, turn.provider)
        self._set_state(turn, state)
        self._finished(turn)

    def _finalize_abandoned(self, turn: Turn) -> None:
        """A task cancelled before it ever ran still ends CANCELLED."""
        if not turn.terminal:
            self._abort(turn, TurnState.CANCELLED, "cancelled")

    def _finished(self, turn: Turn) -> None:
        metrics.inc("turn.finished", labels={"state": turn.state.value})
        metrics.observe("turn.duration_ms", turn.timer.total() * 1000)
        logger.info(
            "Turn finished (%s)",
            turn.timer.summary(),
            extra={
                "session_id": turn.session_id,
                "turn_id": turn.turn_id,
                "state": turn.state.value,
                "duration_ms": round(turn.timer.total() * 1000),
            },
        )
        self.event_bus.publish_end(session_topic(turn.session_id))

    # ── Events ─────────────────────────────────────────────────────

    def _set_state(self, turn: Turn, state: TurnState) -> None:
        turn.transition(state)
        self._publish(turn, {"type": "state", "state": state.value, "error": turn.error})

    def _emit_text(self, turn: Turn, text: str) -> None:
        self._publish(turn, {"type": "text_delta", "text": text})
        for callback in list(self._text_callbacks):
            try:
                callback(turn.session_id, text)
            except Exception as e:
                logger.warning("Text delta callback failed: %s", e)

    def _publish(self, turn: Turn, event: dict) -> None:
        self.event_bus.publish_nowait(
            session_topic(turn.session_id), {"turn_id": turn.turn_id, **event}
        )
