"""
Tagged tool outcomes.

Every handler attempt becomes Ok(HandlerResult) or Err(kind, message).
Whether to retry is a pure function of that value.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from enum import Enum
from typing import Union

from conduit.llm.errors import (
    ProviderError,
    ToolExecutionError,
    ToolNotFoundError,
    ToolValidationError,
)
from conduit.tools.base import HandlerResult


class ErrorKind(str, Enum):
    NOT_FOUND = "not_found"
    VALIDATION = "validation"
    TIMEOUT = "timeout"
    RETRYABLE = "retryable"
    TERMINAL = "terminal"


RETRYABLE_KINDS = frozenset({ErrorKind.TIMEOUT, ErrorKind.RETRYABLE})

# Lower-cased message fragments that mark a failure as transient
RETRYABLE_PATTERNS = (
    "timeout",
    "timed out",
    "connection",
    "unavailable",
    "temporarily",
    "temporary",
    "try again",
    "rate limit",
    "too many requests",
)


@dataclass(frozen=True)
class Ok:
    value: HandlerResult


@dataclass(frozen=True)
class Err:
    kind: ErrorKind
    message: str

    @property
    def retryable(self) -> bool:
        return self.kind in RETRYABLE_KINDS


Outcome = Union[Ok, Err]


def is_retryable(outcome: Outcome) -> bool:
    return isinstance(outcome, Err) and outcome.retryable


def _matches_transient(message: str) -> bool:
    lowered = message.lower()
    return any(pattern in lowered for pattern in RETRYABLE_PATTERNS)


def classify(exc: BaseException) -> Err:
    """Map an exception raised by a handler attempt to an Err."""
    message = str(exc) or exc.__class__.__name__
    if isinstance(exc, ToolNotFoundError):
        return Err(ErrorKind.NOT_FOUND, message)
    if isinstance(exc, ToolValidationError):
        return Err(ErrorKind.VALIDATION, message)
    if isinstance(exc, (asyncio.TimeoutError, TimeoutError)):
        return Err(ErrorKind.TIMEOUT, message if str(exc) else "Tool execution timed out")
    if isinstance(exc, ToolExecutionError) and exc.retryable is not None:
        return Err(ErrorKind.RETRYABLE if exc.retryable else ErrorKind.TERMINAL, message)
    if isinstance(exc, ProviderError) and exc.status_code is not None:
        return Err(ErrorKind.RETRYABLE if exc.transient else ErrorKind.TERMINAL, message)
    if isinstance(exc, ConnectionError) or _matches_transient(message):
        return Err(ErrorKind.RETRYABLE, message)
    return Err(ErrorKind.TERMINAL, message)


def from_result(result: HandlerResult) -> Outcome:
    """A handler-reported failure is an Err; the explicit retryable flag wins over patterns."""
    if result.success:
        return Ok(result)
    message = result.error or "Tool reported failure"
    if result.retryable is not None:
        retryable = result.retryable
    else:
        retryable = _matches_transient(message)
    return Err(ErrorKind.RETRYABLE if retryable else ErrorKind.TERMINAL, message)
