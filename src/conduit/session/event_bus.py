"""
Event Bus — async pub/sub between the orchestrator and live listeners.

The TurnOrchestrator publishes every canonical text delta, tool result
and state change for a session; the SSE endpoint subscribes to the
session topic and relays them to the client.

Topics:
- session.{session_id}.events — everything that happens in a session's turns

Each subscriber gets its own asyncio.Queue, so a slow listener never
blocks the turn. Publishing never waits; a full queue drops the event.

Usage:
    bus = EventBus()
    queue = bus.subscribe(session_topic("abc"))
    async for event in bus.listen(queue):
        ...
    bus.unsubscribe(session_topic("abc"), queue)
"""

from __future__ import annotations

import asyncio
import logging
from collections import defaultdict
from typing import Any, AsyncGenerator

logger = logging.getLogger(__name__)

# Sentinel to signal end of stream
_STREAM_END = object()


def session_topic(session_id: str) -> str:
    return f"session.{session_id}.events"


class EventBus:
    def __init__(self) -> None:
        self._subscribers: dict[str, list[asyncio.Queue]] = defaultdict(list)

    def publish_nowait(self, topic: str, event: Any) -> int:
        """Deliver to every subscriber of topic. Returns how many received it."""
        delivered = 0
        for queue in self._subscribers.get(topic, []):
            try:
                queue.put_nowait(event)
                delivered += 1
            except asyncio.QueueFull:
                logger.warning("Subscriber queue full for topic %s, dropping event", topic)
        return delivered

    def subscribe(self, topic: str, maxsize: int = 1000) -> asyncio.Queue:
        queue: asyncio.Queue = asyncio.Queue(maxsize=maxsize)
        self._subscribers[topic].append(queue)
        logger.debug(
            "Subscribed to topic: %s (total: %d)", topic, len(self._subscribers[topic])
        )
        return queue

    def unsubscribe(self, topic: str, queue: asyncio.Queue) -> None:
        """Remove a subscriber's queue. Safe to call twice."""
        queues = self._subscribers.get(topic, [])
        if queue in queues:
            queues.remove(queue)
        if not queues:
            self._subscribers.pop(topic, None)

    def publish_end(self, topic: str) -> None:
        """Tell every listener of topic to stop iterating."""
        for queue in self._subscribers.get(topic, []):
            try:
                queue.put_nowait(_STREAM_END)
            except asyncio.QueueFull:
                logger.warning("Subscriber queue full for topic %s, end marker dropped", topic)

    async def listen(self, queue: asyncio.Queue) -> AsyncGenerator[Any, None]:
        """Yield events from a subscriber queue until publish_end()."""
        while True:
            item = await queue.get()
            if item is _STREAM_END:
                break
            yield item

    def subscriber_count(self, topic: str) -> int:
        return len(self._subscribers.get(topic, []))
