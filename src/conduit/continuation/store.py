"""
Continuation Store — TTL-bounded resume contexts keyed by (session_id, provider).

One instance is created by the application and injected; there is no
module-level store. Expiry uses an injected clock so tests can move
time forward.
"""

from __future__ import annotations

import logging
import time
from typing import Callable

import conduit.core.config as config_module
from conduit.llm.contracts import ContinuationContext

logger = logging.getLogger(__name__)

_Key = tuple[str, str]


class ContinuationStore:
    def __init__(
        self,
        ttl: float | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.ttl = config_module.config.continuation.ttl if ttl is None else ttl
        self._clock = clock
        self._entries: dict[_Key, tuple[ContinuationContext, float]] = {}

    def put(self, session_id: str, provider: str, context: ContinuationContext) -> None:
        self._entries[(session_id, provider)] = (context, self._clock())

    def get(self, session_id: str, provider: str) -> ContinuationContext | None:
        """The stored context, or None if absent or expired (expired entries are dropped)."""
        key = (session_id, provider)
        entry = self._entries.get(key)
        if entry is None:
            return None
        context, stored_at = entry
        if self._expired(stored_at):
            del self._entries[key]
            logger.debug(
                "Continuation expired",
                extra={"session_id": session_id, "provider": provider},
            )
            return None
        return context

    def clear(self, session_id: str, provider: str) -> bool:
        return self._entries.pop((session_id, provider), None) is not None

    def clear_session(self, session_id: str) -> int:
        """Drop every provider's context for a session. Returns how many were removed."""
        keys = [key for key in self._entries if key[0] == session_id]
        for key in keys:
            del self._entries[key]
        return len(keys)

    def purge_expired(self) -> int:
        """Drop every expired entry. Returns how many were removed."""
        expired = [key for key, (_, stored_at) in self._entries.items() if self._expired(stored_at)]
        for key in expired:
            del self._entries[key]
        if expired:
            logger.info("Purged %d expired continuation(s)", len(expired))
        return len(expired)

    def _expired(self, stored_at: float) -> bool:
        return self._clock() - stored_at >= self.ttl

    def __len__(self) -> int:
        return len(self._entries)
