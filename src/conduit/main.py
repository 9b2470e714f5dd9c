"""
Conduit server — one canonical agent-turn API over five LLM providers.

Run: uvicorn conduit.main:app --host 0.0.0.0 --port 8000
 or: conduit   (console script, uses CONDUIT_HOST / CONDUIT_PORT)

Applications register their tool handlers on a ToolRegistry and pass it
to create_app().
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from pathlib import Path

from fastapi import FastAPI
from fastapi.responses import JSONResponse

import conduit.core.config as config_module
from conduit.continuation.manager import ContinuationManager
from conduit.continuation.store import ContinuationStore
from conduit.core.logging import setup_logging
from conduit.core.metrics import metrics
from conduit.http.turns import create_turn_router
from conduit.providers.registry import available_providers
from conduit.session.event_bus import EventBus
from conduit.session.orchestrator import TurnOrchestrator
from conduit.session.store import SQLiteTranscriptStore, TranscriptStore
from conduit.tools.executor import ToolExecutor
from conduit.tools.registry import ToolRegistry
from conduit.transport.base import Transport
from conduit.transport.http import HttpxTransport

logger = logging.getLogger("conduit")

__version__ = "0.1.0"


def create_app(
    registry: ToolRegistry | None = None,
    transport: Transport | None = None,
    transcripts: TranscriptStore | None = None,
) -> FastAPI:
    """Wire the orchestrator and its collaborators into a FastAPI app."""
    settings = config_module.config
    registry = registry or ToolRegistry()
    transport = transport or HttpxTransport()
    transcripts = transcripts or SQLiteTranscriptStore(Path(settings.server.transcript_db))
    event_bus = EventBus()
    continuation_store = ContinuationStore(ttl=settings.continuation.ttl)

    orchestrator = TurnOrchestrator(
        transport=transport,
        executor=ToolExecutor(registry),
        continuation=ContinuationManager(continuation_store),
        transcripts=transcripts,
        registry=registry,
        event_bus=event_bus,
        settings=settings,
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        await transcripts.start()
        await transport.start()
        logger.info(
            "Conduit ready (provider=%s, tools=%d)",
            settings.turn.default_provider,
            len(registry),
        )
        yield
        await orchestrator.shutdown()
        await transport.stop()
        await transcripts.stop()
        logger.info("Conduit stopped")

    app = FastAPI(title="Conduit", version=__version__, lifespan=lifespan)
    app.state.orchestrator = orchestrator
    app.state.continuation_store = continuation_store
    app.include_router(create_turn_router(orchestrator, event_bus))

    @app.get("/health")
    async def health() -> JSONResponse:
        continuation_store.purge_expired()
        return JSONResponse(
            {
                "status": "ok",
                "version": __version__,
                "providers": available_providers(),
                "tools": registry.names(),
                "continuations": len(continuation_store),
            }
        )

    @app.get("/v1/metrics")
    async def get_metrics() -> JSONResponse:
        return JSONResponse(metrics.snapshot())

    return app


def main() -> None:
    import uvicorn

    setup_logging()
    settings = config_module.config
    uvicorn.run(create_app(), host=settings.server.host, port=settings.server.port)


app = create_app()

if __name__ == "__main__":
    main()
