"""
Transcript stores — prior messages in, finalized messages out.

The orchestrator loads a session's transcript before a turn and saves
the full sequence when the turn reaches DONE. Failed or cancelled turns
save nothing, so the next turn starts from the last good transcript.

- InMemoryTranscriptStore: dict-backed, for tests and ephemeral servers
- SQLiteTranscriptStore: aiosqlite-backed, one row per message

Usage:
    store = SQLiteTranscriptStore(Path("transcripts.db"))
    await store.start()
    messages = await store.load("session-1")
    await store.save("session-1", [*messages, reply])
"""

from __future__ import annotations

import json
import logging
import time
from abc import ABC, abstractmethod
from pathlib import Path

import aiosqlite

import conduit.core.config as config_module
from conduit.llm.contracts import CanonicalMessage, Role, ToolCallRef

logger = logging.getLogger(__name__)


class TranscriptStore(ABC):
    async def start(self) -> None:
        pass

    async def stop(self) -> None:
        pass

    @abstractmethod
    async def load(self, session_id: str) -> list[CanonicalMessage]:
        ...

    @abstractmethod
    async def save(self, session_id: str, messages: list[CanonicalMessage]) -> None:
        """Replace the session's transcript with messages."""
        ...


class InMemoryTranscriptStore(TranscriptStore):
    def __init__(self) -> None:
        self._transcripts: dict[str, list[CanonicalMessage]] = {}

    async def load(self, session_id: str) -> list[CanonicalMessage]:
        return list(self._transcripts.get(session_id, []))

    async def save(self, session_id: str, messages: list[CanonicalMessage]) -> None:
        self._transcripts[session_id] = list(messages)


class SQLiteTranscriptStore(TranscriptStore):
    """Thread-safe via aiosqlite. Single writer, multiple readers."""

    def __init__(self, db_path: Path | None = None):
        if db_path is None:
            db_path = Path(config_module.config.server.transcript_db)
        self.db_path = db_path
        self._db: aiosqlite.Connection | None = None

    async def start(self) -> None:
        self._db = await aiosqlite.connect(str(self.db_path))
        await self._db.execute("PRAGMA journal_mode=WAL")
        await self._db.execute("""
            CREATE TABLE IF NOT EXISTS transcript_messages (
                session_id TEXT NOT NULL,
                sequence INTEGER NOT NULL,
                role TEXT NOT NULL,
                content TEXT,
                tool_calls TEXT,
                tool_call_id TEXT,
                name TEXT,
                created_at REAL NOT NULL,
                PRIMARY KEY (session_id, sequence)
            )
        """)
        await self._db.commit()
        logger.info("SQLiteTranscriptStore started (db=%s)", self.db_path)

    async def stop(self) -> None:
        if self._db:
            await self._db.close()
            self._db = None

    def _conn(self) -> aiosqlite.Connection:
        if self._db is None:
            raise RuntimeError("SQLiteTranscriptStore not started")
        return self._db

    async def load(self, session_id: str) -> list[CanonicalMessage]:
        async with self._conn().execute(
            """
            SELECT role, content, tool_calls, tool_call_id, name
            FROM transcript_messages
            WHERE session_id = ?
            ORDER BY sequence
            """,
            (session_id,),
        ) as cursor:
            rows = await cursor.fetchall()

        return [
            CanonicalMessage(
                role=Role(role),
                content=content,
                tool_calls=tuple(
                    ToolCallRef(id=tc["id"], name=tc["name"], arguments=tc.get("arguments") or {})
                    for tc in json.loads(tool_calls or "[]")
                ),
                tool_call_id=tool_call_id,
                name=name,
            )
            for role, content, tool_calls, tool_call_id, name in rows
        ]

    async def save(self, session_id: str, messages: list[CanonicalMessage]) -> None:
        db = self._conn()
        now = time.time()
        await db.execute(
            "DELETE FROM transcript_messages WHERE session_id = ?", (session_id,)
        )
        await db.executemany(
            """
            INSERT INTO transcript_messages
                (session_id, sequence, role, content, tool_calls, tool_call_id, name, created_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            """,
            [
                (
                    session_id,
                    sequence,
                    message.role.value,
                    message.content,
                    json.dumps(
                        [
                            {"id": tc.id, "name": tc.name, "arguments": tc.arguments}
                            for tc in message.tool_calls
                        ]
                    )
                    if message.tool_calls
                    else None,
                    message.tool_call_id,
                    message.name,
                    now,
                )
                for sequence, message in enumerate(messages)
            ],
        )
        await db.commit()
        logger.debug(
            "Saved %d transcript message(s)", len(messages), extra={"session_id": session_id}
        )
