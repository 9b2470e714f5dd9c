"""Tests for EventBus — async pub/sub between turns and listeners."""

import asyncio

import pytest

from conduit.session.event_bus import EventBus, session_topic


def test_session_topic():
    assert session_topic("abc") == "session.abc.events"


@pytest.mark.asyncio
async def test_publish_and_listen():
    bus = EventBus()
    queue = bus.subscribe("test.topic")

    bus.publish_nowait("test.topic", {"type": "hello"})
    bus.publish_end("test.topic")

    events = [e async for e in bus.listen(queue)]
    assert events == [{"type": "hello"}]


@pytest.mark.asyncio
async def test_multiple_subscribers():
    bus = EventBus()
    q1 = bus.subscribe("test.topic")
    q2 = bus.subscribe("test.topic")

    delivered = bus.publish_nowait("test.topic", "event-1")
    assert delivered == 2

    bus.publish_end("test.topic")
    assert [e async for e in bus.listen(q1)] == ["event-1"]
    assert [e async for e in bus.listen(q2)] == ["event-1"]


@pytest.mark.asyncio
async def test_topic_isolation():
    bus = EventBus()
    q_a = bus.subscribe(session_topic("a"))
    q_b = bus.subscribe(session_topic("b"))

    bus.publish_nowait(session_topic("a"), "event-a")
    bus.publish_nowait(session_topic("b"), "event-b")
    bus.publish_end(session_topic("a"))
    bus.publish_end(session_topic("b"))

    assert [e async for e in bus.listen(q_a)] == ["event-a"]
    assert [e async for e in bus.listen(q_b)] == ["event-b"]


def test_publish_without_subscribers():
    bus = EventBus()
    assert bus.publish_nowait("nobody.listens", "x") == 0


@pytest.mark.asyncio
async def test_full_queue_drops_event():
    bus = EventBus()
    queue = bus.subscribe("t", maxsize=1)

    assert bus.publish_nowait("t", 1) == 1
    assert bus.publish_nowait("t", 2) == 0
    assert queue.qsize() == 1


def test_unsubscribe():
    bus = EventBus()
    queue = bus.subscribe("test.topic")
    assert bus.subscriber_count("test.topic") == 1

    bus.unsubscribe("test.topic", queue)
    bus.unsubscribe("test.topic", queue)
    assert bus.subscriber_count("test.topic") == 0


@pytest.mark.asyncio
async def test_listener_waits_for_events():
    bus = EventBus()
    queue = bus.subscribe("t")

    async def produce():
        await asyncio.sleep(0.01)
        bus.publish_nowait("t", "late")
        bus.publish_end("t")

    producer = asyncio.create_task(produce())
    events = [e async for e in bus.listen(queue)]
    await producer
    assert events == ["late"]
