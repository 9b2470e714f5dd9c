"""Tests for ContinuationStore (TTL) and ContinuationManager (handle vs. history)."""

import pytest

from conduit.continuation.manager import ContinuationManager
from conduit.continuation.store import ContinuationStore
from conduit.llm.contracts import (
    CanonicalMessage,
    CanonicalRequest,
    CanonicalResponse,
    ContinuationContext,
    ContinuationKind,
    Role,
    ToolCall,
    ToolResult,
    ToolSchema,
)
from conduit.llm.errors import ContinuationMissingError


class FakeClock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now


LOOKUP = ToolSchema(name="lookup", description="Look something up")


def _context(provider="openai", value="resp_1"):
    return ContinuationContext(kind=ContinuationKind.HANDLE, value=value, provider=provider)


def _request():
    return CanonicalRequest(
        messages=(CanonicalMessage.user("Look up a and b"),),
        tools=(LOOKUP,),
        model="m-1",
        system_instruction="Be brief.",
    )


def _response(response_id="resp_1"):
    return CanonicalResponse(
        content="Looking",
        tool_calls=[
            ToolCall(id="call_a", name="lookup", arguments={"q": "a"}),
            ToolCall(id="call_b", name="lookup", arguments={"q": "b"}),
        ],
        response_id=response_id,
    )


def _results():
    # Deliberately out of issue order
    return [
        ToolResult(tool_call_id="call_b", tool_name="lookup", success=True, payload={"v": 2}),
        ToolResult(tool_call_id="call_a", tool_name="lookup", success=False, error="not found"),
    ]


# ─── Fixtures ─────────────────────────────────────────────────


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store(clock):
    return ContinuationStore(ttl=60, clock=clock)


@pytest.fixture
def manager(store):
    return ContinuationManager(store)


# ─── Store ────────────────────────────────────────────────────


class TestContinuationStore:
    def test_put_and_get(self, store):
        store.put("s1", "openai", _context())
        assert store.get("s1", "openai").value == "resp_1"
        assert len(store) == 1

    def test_expires_at_ttl(self, store, clock):
        store.put("s1", "openai", _context())
        clock.now += 59
        assert store.get("s1", "openai") is not None
        clock.now += 1
        assert store.get("s1", "openai") is None
        assert len(store) == 0

    def test_keys_are_isolated(self, store):
        store.put("s1", "openai", _context(value="one"))
        store.put("s2", "openai", _context(value="two"))
        store.put("s1", "anthropic", _context(provider="anthropic", value="three"))

        assert store.get("s1", "openai").value == "one"
        assert store.get("s2", "openai").value == "two"
        assert store.get("s1", "anthropic").value == "three"
        assert store.get("s2", "anthropic") is None

    def test_put_overwrites(self, store):
        store.put("s1", "openai", _context(value="old"))
        store.put("s1", "openai", _context(value="new"))
        assert store.get("s1", "openai").value == "new"

    def test_clear_and_clear_session(self, store):
        store.put("s1", "openai", _context())
        store.put("s1", "gemini", _context(provider="gemini"))
        store.put("s2", "openai", _context())

        assert store.clear("s2", "openai") is True
        assert store.clear("s2", "openai") is False
        assert store.clear_session("s1") == 2
        assert len(store) == 0

    def test_purge_expired(self, store, clock):
        store.put("old", "openai", _context())
        clock.now += 30
        store.put("new", "openai", _context())
        clock.now += 45

        assert store.purge_expired() == 1
        assert store.get("new", "openai") is not None


# ─── Manager ──────────────────────────────────────────────────


class TestContinuationManager:
    def test_handle_mode_for_openai(self, manager):
        context = manager.remember("s1", "openai", _response(), _request())
        assert context.kind is ContinuationKind.HANDLE
        assert context.value == "resp_1"

        request = manager.resume("s1", "openai", _results())
        assert request.previous_response_id == "resp_1"
        assert request.model == "m-1"
        assert request.tools == (LOOKUP,)
        assert [m.role for m in request.messages] == [Role.TOOL, Role.TOOL]
        assert [m.tool_call_id for m in request.messages] == ["call_a", "call_b"]

    def test_history_mode_replays_transcript(self, manager):
        context = manager.remember("s1", "anthropic", _response(), _request())
        assert context.kind is ContinuationKind.HISTORY

        request = manager.resume("s1", "anthropic", _results())
        user, assistant, first, second = request.messages

        assert request.previous_response_id is None
        assert user.content == "Look up a and b"
        assert assistant.role is Role.ASSISTANT
        assert assistant.content == "Looking"
        assert [tc.id for tc in assistant.tool_calls] == ["call_a", "call_b"]
        assert first.tool_call_id == "call_a"
        assert first.content == '{"success": false, "error": "not found"}'
        assert second.content == '{"v": 2}'
        assert request.system_instruction == "Be brief."

    def test_handle_provider_without_id_falls_back_to_history(self, manager):
        context = manager.remember("s1", "openai", _response(response_id=None), _request())
        assert context.kind is ContinuationKind.HISTORY
        request = manager.resume("s1", "openai", _results())
        assert request.previous_response_id is None
        assert len(request.messages) == 4

    def test_missing_continuation(self, manager):
        with pytest.raises(ContinuationMissingError) as exc_info:
            manager.resume("nobody", "openai", [])
        assert exc_info.value.session_id == "nobody"
        assert exc_info.value.provider == "openai"

    def test_expired_continuation_is_missing(self, manager, clock):
        manager.remember("s1", "gemini", _response(), _request())
        assert manager.can_resume("s1", "gemini")
        clock.now += 61
        assert not manager.can_resume("s1", "gemini")
        with pytest.raises(ContinuationMissingError):
            manager.resume("s1", "gemini", _results())

    def test_clear(self, manager):
        manager.remember("s1", "grok", _response(), _request())
        manager.clear("s1", "grok")
        assert not manager.can_resume("s1", "grok")
