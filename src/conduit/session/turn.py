"""
Turn — the unit of work for one user message, and its state machine.

    BUILDING -> STREAMING -> EXTRACTING -> DONE                 (no tool calls)
                                        -> EXECUTING -> CONTINUING -> STREAMING
                                                     -> AWAITING_DECISION -> CONTINUING

Any non-terminal state may also move to FAILED or CANCELLED. A turn is
"settled" when it is terminal or parked in AWAITING_DECISION; listeners
wait on that instead of polling.
"""

from __future__ import annotations

import asyncio
import time
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from conduit.core.logging import StageTimer
from conduit.llm.contracts import CanonicalMessage, Role, ToolCall, ToolResult
from conduit.llm.errors import TurnStateError


class TurnState(str, Enum):
    BUILDING = "building"
    STREAMING = "streaming"
    EXTRACTING = "extracting"
    EXECUTING = "executing"
    AWAITING_DECISION = "awaiting_decision"
    CONTINUING = "continuing"
    DONE = "done"
    FAILED = "failed"
    CANCELLED = "cancelled"


TERMINAL_STATES = frozenset({TurnState.DONE, TurnState.FAILED, TurnState.CANCELLED})

_ABORT = {TurnState.FAILED, TurnState.CANCELLED}

TRANSITIONS: dict[TurnState, frozenset[TurnState]] = {
    TurnState.BUILDING: frozenset({TurnState.STREAMING, *_ABORT}),
    TurnState.STREAMING: frozenset({TurnState.EXTRACTING, *_ABORT}),
    TurnState.EXTRACTING: frozenset({TurnState.DONE, TurnState.EXECUTING, *_ABORT}),
    TurnState.EXECUTING: frozenset(
        {TurnState.AWAITING_DECISION, TurnState.CONTINUING, *_ABORT}
    ),
    TurnState.AWAITING_DECISION: frozenset({TurnState.CONTINUING, *_ABORT}),
    TurnState.CONTINUING: frozenset({TurnState.STREAMING, *_ABORT}),
    TurnState.DONE: frozenset(),
    TurnState.FAILED: frozenset(),
    TurnState.CANCELLED: frozenset(),
}


@dataclass
class Turn:
    """
    One user message's trip through request -> stream -> tools -> resume.

    calls is keyed by tool call id, so an id seen twice (incremental and
    fallback extraction, or a repeat in a later round) is only ever
    registered, and executed, once.
    """

    session_id: str
    provider: str
    user_message: str
    turn_id: str = field(default_factory=lambda: uuid.uuid4().hex[:12])
    state: TurnState = TurnState.BUILDING
    calls: dict[str, ToolCall] = field(default_factory=dict)
    results: dict[str, ToolResult] = field(default_factory=dict)
    awaiting: list[str] = field(default_factory=list)
    transcript_delta: list[CanonicalMessage] = field(default_factory=list)
    rounds: int = 0
    error: str | None = None
    created_at: float = field(default_factory=time.time)
    finished_at: float | None = None
    settled: asyncio.Event = field(default_factory=asyncio.Event, repr=False, compare=False)
    decided: asyncio.Event = field(default_factory=asyncio.Event, repr=False, compare=False)
    timer: StageTimer = field(default_factory=StageTimer, repr=False, compare=False)

    def __post_init__(self) -> None:
        self.timer.enter(self.state.value)

    @property
    def terminal(self) -> bool:
        return self.state in TERMINAL_STATES

    def transition(self, new_state: TurnState) -> None:
        if new_state not in TRANSITIONS[self.state]:
            raise TurnStateError(
                f"Turn {self.turn_id} cannot move from {self.state.value} to {new_state.value}"
            )
        self.state = new_state
        if new_state in TERMINAL_STATES:
            self.finished_at = time.time()
            self.timer.stop()
        else:
            self.timer.enter(new_state.value)
        if new_state in TERMINAL_STATES or new_state is TurnState.AWAITING_DECISION:
            self.settled.set()
        else:
            self.settled.clear()

    def register_call(self, call: ToolCall) -> bool:
        """Add a call to the turn. False if its id was already seen."""
        if call.id in self.calls:
            return False
        self.calls[call.id] = call
        return True

    @property
    def text(self) -> str:
        """All assistant text produced during this turn."""
        return "".join(
            m.content or "" for m in self.transcript_delta if m.role is Role.ASSISTANT
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "turn_id": self.turn_id,
            "session_id": self.session_id,
            "provider": self.provider,
            "state": self.state.value,
            "rounds": self.rounds,
            "text": self.text,
            "error": self.error,
            "tool_calls": [
                {
                    "id": call.id,
                    "name": call.name,
                    "arguments": call.arguments,
                    "status": call.status.value,
                }
                for call in self.calls.values()
            ],
            "results": [
                {
                    "tool_call_id": result.tool_call_id,
                    "success": result.success,
                    "payload": result.payload,
                    "requires_confirmation": result.requires_confirmation,
                    "error": result.error,
                    "attempts": result.attempts,
                }
                for result in self.results.values()
            ],
            "awaiting_decision": list(self.awaiting),
            "created_at": self.created_at,
            "finished_at": self.finished_at,
        }


class TurnHandle:
    """Caller-side view of a running turn."""

    def __init__(self, turn: Turn, task: asyncio.Task):
        self.turn = turn
        self._task = task

    @property
    def turn_id(self) -> str:
        return self.turn.turn_id

    @property
    def session_id(self) -> str:
        return self.turn.session_id

    @property
    def state(self) -> TurnState:
        return self.turn.state

    @property
    def error(self) -> str | None:
        return self.turn.error

    @property
    def text(self) -> str:
        return self.turn.text

    @property
    def done(self) -> bool:
        return self._task.done()

    async def wait(self, timeout: float | None = None) -> Turn:
        """Wait until the turn is terminal."""
        try:
            await asyncio.wait_for(asyncio.shield(self._task), timeout)
        except asyncio.CancelledError:
            if not self._task.cancelled():
                raise
        return self.turn

    async def wait_settled(self, timeout: float | None = None) -> TurnState:
        """Wait until the turn is terminal or parked awaiting a decision."""
        await asyncio.wait_for(self.turn.settled.wait(), timeout)
        return self.turn.state

    def cancel(self) -> bool:
        """Abort the turn. Tools already dispatched finish, their results are discarded."""
        if self._task.done():
            return False
        return self._task.cancel()
