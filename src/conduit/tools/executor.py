"""
Tool Executor — lookup, validate, run under a deadline, retry transient failures.

    executor = ToolExecutor(registry)
    result = await executor.execute(call)          # never raises tool errors
    results = await executor.execute_many(calls)   # sequential, one result per call

Retry policy: up to max_retries extra attempts with exponential backoff
(backoff_base * 2**n: 1s, 2s by default), only for timeouts and
failures classified as transient. Not-found and validation failures are
terminal and never invoke the handler. Coroutine handlers are cancelled at
the deadline; sync handlers run in a worker thread that cannot be, so a
timed-out thread is waited out and the timeout is not retried.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
import time
from typing import Any, Awaitable, Callable

import conduit.core.config as config_module
from conduit.core.metrics import metrics
from conduit.llm.contracts import ToolCall, ToolResult
from conduit.tools.base import HandlerResult
from conduit.tools.outcome import Err, ErrorKind, Ok, Outcome, classify, from_result
from conduit.tools.registry import RegisteredTool, ToolRegistry

logger = logging.getLogger(__name__)


class ToolExecutor:
    def __init__(
        self,
        registry: ToolRegistry | None = None,
        timeout: float | None = None,
        max_retries: int | None = None,
        backoff_base: float | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
    ):
        tool_config = config_module.config.tools
        self.registry = registry
        self.timeout = tool_config.timeout if timeout is None else timeout
        self.max_retries = max(
            0, tool_config.max_retries if max_retries is None else max_retries
        )
        self.backoff_base = tool_config.backoff_base if backoff_base is None else backoff_base
        self._sleep = sleep
        self._clock = clock

    async def execute(
        self,
        call: ToolCall,
        registry: ToolRegistry | None = None,
        timeout: float | None = None,
    ) -> ToolResult:
        """
        Run one tool call and return its ToolResult.

        The call moves pending -> executing -> completed|failed. Tool
        failures of every kind come back as a failed ToolResult.
        """
        registry = registry or self.registry
        deadline = self.timeout if timeout is None else timeout
        call.mark_executing()
        started = self._clock()

        tool = registry.lookup(call.name) if registry is not None else None
        if tool is None:
            return self._finish(call, Err(ErrorKind.NOT_FOUND, f"Unknown tool: {call.name}"), 0, started, None)

        missing = tool.schema.missing_arguments(call.arguments)
        if missing:
            outcome = Err(
                ErrorKind.VALIDATION,
                f"Missing required parameter(s) for {call.name}: {', '.join(missing)}",
            )
            return self._finish(call, outcome, 0, started, tool)

        attempts = 0
        while True:
            attempts += 1
            outcome = await self._attempt(tool, call, deadline)
            if isinstance(outcome, Ok) or not outcome.retryable:
                break
            if attempts > self.max_retries:
                outcome = Err(outcome.kind, f"{outcome.message} (gave up after {attempts} attempts)")
                break
            delay = self.backoff_base * (2 ** (attempts - 1))
            logger.warning(
                "Tool %s failed (%s), retrying in %.1fs: %s",
                call.name,
                outcome.kind.value,
                delay,
                outcome.message,
                extra={"tool_call_id": call.id, "attempts": attempts},
            )
            await self._sleep(delay)

        return self._finish(call, outcome, attempts, started, tool)

    async def execute_many(
        self,
        calls: list[ToolCall],
        registry: ToolRegistry | None = None,
        timeout: float | None = None,
    ) -> list[ToolResult]:
        """Execute calls one after another, in order. Always one result per call."""
        results = []
        for call in calls:
            results.append(await self.execute(call, registry=registry, timeout=timeout))
        return results

    async def _attempt(self, tool: RegisteredTool, call: ToolCall, deadline: float) -> Outcome:
        handler = tool.handler
        arguments = dict(call.arguments)
        if _is_coroutine_handler(handler):
            try:
                value = await asyncio.wait_for(handler(arguments), deadline)
            except Exception as e:
                return classify(e)
            return from_result(HandlerResult.coerce(value))

        worker = asyncio.ensure_future(asyncio.to_thread(handler, arguments))
        try:
            value = await asyncio.wait_for(asyncio.shield(worker), deadline)
            if inspect.isawaitable(value):
                value = await value
        except asyncio.TimeoutError as e:
            if worker.done():
                return classify(e)
            return await self._outlast(call, worker, deadline)
        except Exception as e:
            return classify(e)
        return from_result(HandlerResult.coerce(value))

    @staticmethod
    async def _outlast(call: ToolCall, worker: asyncio.Future, deadline: float) -> Err:
        """
        A worker thread cannot be interrupted. Wait for it so no second
        invocation ever overlaps it. Its effect may have been applied by
        then, so the timeout is terminal rather than retried.
        """
        logger.warning(
            "Tool %s exceeded %.1fs in a worker thread, waiting for it to finish",
            call.name,
            deadline,
            extra={"tool_call_id": call.id},
        )
        await asyncio.gather(worker, return_exceptions=True)
        return Err(
            ErrorKind.TERMINAL,
            f"Tool {call.name} timed out after {deadline:g}s; it ran to completion late and was not retried",
        )

    def _finish(
        self,
        call: ToolCall,
        outcome: Outcome,
        attempts: int,
        started: float,
        tool: RegisteredTool | None,
    ) -> ToolResult:
        duration_ms = round((self._clock() - started) * 1000, 2)
        labels = {"tool": call.name}
        metrics.inc("tool.attempts", attempts, labels=labels)
        metrics.observe("tool.duration_ms", duration_ms, labels=labels)

        if isinstance(outcome, Ok):
            call.mark_finished(True)
            gated = outcome.value.requires_confirmation or (tool is not None and tool.requires_confirmation)
            logger.info(
                "Tool %s succeeded%s",
                call.name,
                " (awaiting confirmation)" if gated else "",
                extra={"tool_call_id": call.id, "attempts": attempts, "duration_ms": duration_ms},
            )
            return ToolResult(
                tool_call_id=call.id,
                tool_name=call.name,
                success=True,
                payload=outcome.value.payload,
                requires_confirmation=gated,
                attempts=attempts,
                duration_ms=duration_ms,
            )

        call.mark_finished(False)
        metrics.inc("tool.failures", labels={"kind": outcome.kind.value})
        logger.error(
            "Tool %s failed (%s): %s",
            call.name,
            outcome.kind.value,
            outcome.message,
            extra={"tool_call_id": call.id, "attempts": attempts, "duration_ms": duration_ms},
        )
        return ToolResult.failed(
            call,
            error=outcome.message,
            error_kind=outcome.kind.value,
            attempts=attempts,
            duration_ms=duration_ms,
        )


def _is_coroutine_handler(handler: Any) -> bool:
    return inspect.iscoroutinefunction(handler) or inspect.iscoroutinefunction(
        getattr(handler, "__call__", None)
    )
