"""Tests for ToolRegistry, outcome classification and ToolExecutor retries."""

import asyncio
import threading
import time

import pytest

from conduit.core.metrics import metrics
from conduit.llm.contracts import ToolCall, ToolCallStatus, ToolSchema
from conduit.llm.errors import ProviderError, ToolExecutionError, ToolNotFoundError
from conduit.tools.base import BaseTool, HandlerResult, ToolParam
from conduit.tools.executor import ToolExecutor
from conduit.tools.outcome import ErrorKind, Ok, classify, from_result, is_retryable
from conduit.tools.registry import ToolRegistry

WEATHER = ToolSchema(
    name="get_weather",
    description="Current weather",
    parameters={
        "type": "object",
        "properties": {"city": {"type": "string"}},
        "required": ["city"],
    },
)


class WeatherTool(BaseTool):
    name = "get_weather"
    description = "Current weather"
    parameters = [
        ToolParam(name="city", type="string", description="City"),
        ToolParam(name="units", type="string", description="Units", required=False, default="metric"),
    ]

    async def execute(self, city: str, units: str) -> HandlerResult:
        return HandlerResult.ok({"city": city, "units": units, "temp": 20})


class Flaky:
    """Raises the given errors in order, then returns value."""

    def __init__(self, errors, value=None):
        self.errors = list(errors)
        self.value = value if value is not None else {"ok": True}
        self.calls = 0

    async def __call__(self, arguments):
        self.calls += 1
        if self.errors:
            raise self.errors.pop(0)
        return self.value


# ─── Fixtures ─────────────────────────────────────────────────


@pytest.fixture
def delays():
    return []


@pytest.fixture
def registry():
    return ToolRegistry()


@pytest.fixture
def executor(registry, delays):
    async def fake_sleep(seconds):
        delays.append(seconds)

    return ToolExecutor(registry, timeout=5.0, max_retries=2, backoff_base=1.0, sleep=fake_sleep)


def _call(name="get_weather", **arguments):
    return ToolCall(id=f"call_{name}", name=name, arguments=arguments)


# ─── Registry ─────────────────────────────────────────────────


def test_registry_register_and_lookup(registry):
    registry.register("get_weather", lambda args: {}, schema=WEATHER)
    assert "get_weather" in registry
    assert len(registry) == 1
    assert registry.schemas() == [WEATHER]
    assert registry.lookup("missing") is None

    registry.unregister("get_weather")
    assert registry.names() == []


def test_registry_rejects_mismatched_schema(registry):
    with pytest.raises(ValueError):
        registry.register("other", lambda args: {}, schema=WEATHER)


def test_register_base_tool_exports_schema(registry):
    tool = registry.register_tool(WeatherTool())
    assert tool.schema.required == ["city"]
    assert set(tool.schema.properties) == {"city", "units"}
    assert tool.schema.strict is False


# ─── Classification ───────────────────────────────────────────


def test_classify():
    assert classify(ToolNotFoundError("x")).kind is ErrorKind.NOT_FOUND
    assert classify(asyncio.TimeoutError()).kind is ErrorKind.TIMEOUT
    assert classify(ToolExecutionError("boom", retryable=True)).kind is ErrorKind.RETRYABLE
    assert classify(ToolExecutionError("connection reset", retryable=False)).kind is ErrorKind.TERMINAL
    assert classify(ProviderError("upstream", status_code=503)).retryable
    assert classify(ProviderError("bad request", status_code=400)).kind is ErrorKind.TERMINAL
    assert classify(ConnectionError("reset")).retryable
    assert classify(RuntimeError("service temporarily unavailable")).retryable
    assert classify(KeyError("city")).kind is ErrorKind.TERMINAL


def test_from_result():
    assert isinstance(from_result(HandlerResult.ok(1)), Ok)
    assert is_retryable(from_result(HandlerResult.fail("rate limit hit")))
    assert not is_retryable(from_result(HandlerResult.fail("rate limit hit", retryable=False)))
    assert not is_retryable(from_result(HandlerResult.fail("invalid city")))


def test_coerce_handler_values():
    assert HandlerResult.coerce({"temp": 20}).payload == {"temp": 20}
    coerced = HandlerResult.coerce({"success": False, "error": "nope"})
    assert coerced.success is False
    assert coerced.error == "nope"
    assert HandlerResult.coerce("plain").payload == "plain"


# ─── Execution ────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_successful_call(executor, registry):
    metrics.reset()

    async def handler(arguments):
        return {"temp": 20, "city": arguments["city"]}

    registry.register("get_weather", handler, schema=WEATHER)
    call = _call(city="Paris")
    result = await executor.execute(call)

    assert result.success
    assert result.payload == {"temp": 20, "city": "Paris"}
    assert result.attempts == 1
    assert result.tool_call_id == call.id
    assert call.status is ToolCallStatus.COMPLETED
    assert metrics.counter("tool.attempts", labels={"tool": "get_weather"}) == 1


@pytest.mark.asyncio
async def test_base_tool_fills_defaults(executor, registry):
    registry.register_tool(WeatherTool())
    result = await executor.execute(_call(city="Oslo"))
    assert result.payload == {"city": "Oslo", "units": "metric", "temp": 20}


@pytest.mark.asyncio
async def test_sync_handler_runs_in_thread(executor, registry):
    registry.register("get_weather", lambda args: HandlerResult.ok(f"sunny in {args['city']}"), schema=WEATHER)
    result = await executor.execute(_call(city="Rome"))
    assert result.success
    assert result.render() == "sunny in Rome"


@pytest.mark.asyncio
async def test_unknown_tool_is_terminal(executor):
    call = _call(name="teleport")
    result = await executor.execute(call)

    assert not result.success
    assert result.error_kind == ErrorKind.NOT_FOUND.value
    assert result.attempts == 0
    assert call.status is ToolCallStatus.FAILED


@pytest.mark.asyncio
async def test_missing_required_argument_never_invokes_handler(executor, registry):
    handler = Flaky([])
    registry.register("get_weather", handler, schema=WEATHER)
    result = await executor.execute(_call())

    assert not result.success
    assert result.error_kind == ErrorKind.VALIDATION.value
    assert "city" in result.error
    assert handler.calls == 0


@pytest.mark.asyncio
async def test_transient_failure_retries_with_backoff(executor, registry, delays):
    handler = Flaky([ConnectionError("reset by peer"), ToolExecutionError("upstream unavailable")])
    registry.register("get_weather", handler, schema=WEATHER)
    result = await executor.execute(_call(city="Paris"))

    assert result.success
    assert result.attempts == 3
    assert handler.calls == 3
    assert delays == [1.0, 2.0]


@pytest.mark.asyncio
async def test_retries_exhausted(executor, registry, delays):
    handler = Flaky([ConnectionError("reset")] * 5)
    registry.register("get_weather", handler, schema=WEATHER)
    result = await executor.execute(_call(city="Paris"))

    assert not result.success
    assert result.attempts == 3
    assert result.error_kind == ErrorKind.RETRYABLE.value
    assert "gave up after 3 attempts" in result.error
    assert delays == [1.0, 2.0]


@pytest.mark.asyncio
async def test_terminal_failure_is_not_retried(executor, registry, delays):
    handler = Flaky([ValueError("city must be a string")])
    registry.register("get_weather", handler, schema=WEATHER)
    result = await executor.execute(_call(city="Paris"))

    assert not result.success
    assert result.attempts == 1
    assert result.error_kind == ErrorKind.TERMINAL.value
    assert delays == []


@pytest.mark.asyncio
async def test_handler_reported_failure(executor, registry, delays):
    registry.register(
        "get_weather",
        lambda args: {"success": False, "error": "quota exceeded", "retryable": False},
        schema=WEATHER,
    )
    result = await executor.execute(_call(city="Paris"))

    assert not result.success
    assert result.error == "quota exceeded"
    assert result.render() == '{"success": false, "error": "quota exceeded"}'
    assert delays == []


@pytest.mark.asyncio
async def test_timeout(registry, delays):
    async def slow(arguments):
        await asyncio.sleep(5)

    async def fake_sleep(seconds):
        delays.append(seconds)

    registry.register("get_weather", slow, schema=WEATHER)
    executor = ToolExecutor(registry, timeout=0.01, max_retries=0, sleep=fake_sleep)
    result = await executor.execute(_call(city="Paris"))

    assert not result.success
    assert result.error_kind == ErrorKind.TIMEOUT.value
    assert "timed out" in result.error
    assert result.attempts == 1


@pytest.mark.asyncio
async def test_timed_out_sync_handler_never_overlaps_a_retry(registry, delays):
    state = {"running": 0, "max_running": 0, "invocations": 0}
    lock = threading.Lock()

    def edit_document(arguments):
        with lock:
            state["invocations"] += 1
            state["running"] += 1
            state["max_running"] = max(state["max_running"], state["running"])
        time.sleep(0.2)
        with lock:
            state["running"] -= 1
        return {"edited": True}

    async def fake_sleep(seconds):
        delays.append(seconds)

    registry.register("get_weather", edit_document, schema=WEATHER)
    executor = ToolExecutor(registry, timeout=0.02, max_retries=2, sleep=fake_sleep)
    result = await executor.execute(_call(city="Paris"))

    assert not result.success
    assert result.error_kind == ErrorKind.TERMINAL.value
    assert "timed out" in result.error
    assert result.attempts == 1
    assert delays == []
    assert state == {"running": 0, "max_running": 1, "invocations": 1}


@pytest.mark.asyncio
async def test_confirmation_from_registration(executor, registry):
    registry.register("send_email", lambda args: {"draft": "Hi"}, requires_confirmation=True)
    result = await executor.execute(_call(name="send_email"))
    assert result.success
    assert result.requires_confirmation


@pytest.mark.asyncio
async def test_confirmation_from_handler(executor, registry):
    registry.register("delete_file", lambda args: HandlerResult.pending_confirmation({"path": "/tmp/x"}))
    result = await executor.execute(_call(name="delete_file"))
    assert result.requires_confirmation
    assert result.payload == {"path": "/tmp/x"}


@pytest.mark.asyncio
async def test_call_executes_at_most_once(executor, registry):
    registry.register("get_weather", lambda args: {}, schema=WEATHER)
    call = _call(city="Paris")
    await executor.execute(call)
    with pytest.raises(ValueError):
        await executor.execute(call)


@pytest.mark.asyncio
async def test_execute_many_preserves_order(executor, registry):
    order = []

    async def handler(arguments):
        order.append(arguments["city"])
        return arguments["city"]

    registry.register("get_weather", handler, schema=WEATHER)
    calls = [
        ToolCall(id="a", name="get_weather", arguments={"city": "Paris"}),
        ToolCall(id="b", name="missing_tool"),
        ToolCall(id="c", name="get_weather", arguments={"city": "Rome"}),
    ]
    results = await executor.execute_many(calls)

    assert [r.tool_call_id for r in results] == ["a", "b", "c"]
    assert [r.success for r in results] == [True, False, True]
    assert order == ["Paris", "Rome"]
