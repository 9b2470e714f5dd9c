"""
Session layer — turns, their orchestration, and per-session storage.

Key components:
- Turn / TurnState: one user message's state machine
- TurnOrchestrator: start_turn, submit_decision, text-delta subscription
- TranscriptStore: prior messages in, finalized messages out
- EventBus: live events per session
"""

from conduit.session.event_bus import EventBus, session_topic
from conduit.session.orchestrator import TurnOrchestrator
from conduit.session.store import (
    InMemoryTranscriptStore,
    SQLiteTranscriptStore,
    TranscriptStore,
)
from conduit.session.turn import TERMINAL_STATES, Turn, TurnHandle, TurnState

__all__ = [
    "EventBus",
    "InMemoryTranscriptStore",
    "SQLiteTranscriptStore",
    "TERMINAL_STATES",
    "TranscriptStore",
    "Turn",
    "TurnHandle",
    "TurnOrchestrator",
    "TurnState",
    "session_topic",
]
