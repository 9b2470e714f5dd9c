"""
Turn API — start turns, submit decisions, watch events over SSE.

Endpoints:
    POST /v1/sessions/{id}/turns       → Start a turn for a user message (202 Accepted)
    POST /v1/sessions/{id}/decisions   → Accept/reject a confirmation-gated tool call
    GET  /v1/sessions/{id}/turn        → Current (or last) turn state
    GET  /v1/sessions/{id}/events      → SSE stream of text deltas, tool results, states
                                         (closing it mid-turn cancels the turn)
    POST /v1/sessions/{id}/cancel      → Cancel the running turn
"""

from __future__ import annotations

import json
import logging
from typing import TYPE_CHECKING, AsyncGenerator

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse, StreamingResponse

from conduit.llm.errors import TurnStateError, UnknownProviderError
from conduit.session.event_bus import session_topic
from conduit.session.turn import TurnState

if TYPE_CHECKING:
    from conduit.session.event_bus import EventBus
    from conduit.session.orchestrator import TurnOrchestrator

logger = logging.getLogger(__name__)


def create_turn_router(orchestrator: "TurnOrchestrator", event_bus: "EventBus") -> APIRouter:
    """Create the turn management router."""

    router = APIRouter(prefix="/v1", tags=["turns"])

    @router.post("/sessions/{session_id}/turns")
    async def start_turn(session_id: str, request: Request) -> JSONResponse:
        body = await request.json()
        message = body.get("message", "")
        if not message:
            return JSONResponse({"error": "Missing 'message' field"}, status_code=400)

        try:
            handle = await orchestrator.start_turn(
                session_id, message, provider=body.get("provider")
            )
        except UnknownProviderError as e:
            return JSONResponse({"error": str(e)}, status_code=400)
        except TurnStateError as e:
            return JSONResponse({"error": str(e)}, status_code=409)

        return JSONResponse(
            {
                "session_id": session_id,
                "turn_id": handle.turn_id,
                "state": handle.state.value,
                "events_url": f"/v1/sessions/{session_id}/events",
            },
            status_code=202,
        )

    @router.post("/sessions/{session_id}/decisions")
    async def submit_decision(session_id: str, request: Request) -> JSONResponse:
        body = await request.json()
        tool_call_id = body.get("tool_call_id")
        decision = body.get("decision")
        if not tool_call_id or not decision:
            return JSONResponse(
                {"error": "Both 'tool_call_id' and 'decision' are required"}, status_code=400
            )

        try:
            state = await orchestrator.submit_decision(session_id, tool_call_id, decision)
        except ValueError:
            return JSONResponse(
                {"error": f"Invalid decision '{decision}' (use accepted or rejected)"},
                status_code=400,
            )
        except TurnStateError as e:
            return JSONResponse({"error": str(e)}, status_code=409)

        return JSONResponse(
            {"session_id": session_id, "tool_call_id": tool_call_id, "state": state.value}
        )

    @router.get("/sessions/{session_id}/turn")
    async def get_turn(session_id: str) -> JSONResponse:
        turn = orchestrator.get_turn(session_id)
        if turn is None:
            return JSONResponse({"error": f"No turn for session {session_id}"}, status_code=404)
        return JSONResponse(turn.to_dict())

    @router.post("/sessions/{session_id}/cancel")
    async def cancel_turn(session_id: str) -> JSONResponse:
        if orchestrator.cancel(session_id):
            return JSONResponse({"session_id": session_id, "status": "cancelling"})
        return JSONResponse(
            {"session_id": session_id, "status": "not_running"}, status_code=404
        )

    @router.get("/sessions/{session_id}/events")
    async def session_events(session_id: str) -> StreamingResponse:
        """SSE stream of the session's turn events until the turn finishes."""
        return StreamingResponse(
            _sse_generator(session_id, event_bus, orchestrator),
            media_type="text/event-stream",
            headers={
                "Cache-Control": "no-cache",
                "Connection": "keep-alive",
                "X-Accel-Buffering": "no",
            },
        )

    return router


async def _sse_generator(
    session_id: str,
    event_bus: "EventBus",
    orchestrator: "TurnOrchestrator | None" = None,
) -> AsyncGenerator[str, None]:
    """
    Relay session events until the turn finishes. If the client goes away
    first and it was the session's last listener, the running turn is
    cancelled so the provider connection is released. A turn parked on a
    decision is left alone; the client can reconnect to decide it.
    """
    topic = session_topic(session_id)
    queue = event_bus.subscribe(topic)
    finished = False
    try:
        async for event in event_bus.listen(queue):
            yield f"event: {event.get('type', 'message')}\ndata: {json.dumps(event, default=str)}\n\n"
        finished = True
        yield "event: end\ndata: {}\n\n"
    finally:
        event_bus.unsubscribe(topic, queue)
        if not finished and orchestrator is not None and event_bus.subscriber_count(topic) == 0:
            _cancel_abandoned_turn(session_id, orchestrator)


def _cancel_abandoned_turn(session_id: str, orchestrator: "TurnOrchestrator") -> None:
    turn = orchestrator.get_turn(session_id)
    if turn is None or turn.terminal or turn.state is TurnState.AWAITING_DECISION:
        return
    if orchestrator.cancel(session_id):
        logger.info(
            "Event stream closed mid-turn, cancelling",
            extra={"session_id": session_id, "turn_id": turn.turn_id},
        )
