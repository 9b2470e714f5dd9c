"""
Canonical stream events.

The StreamEventParser emits these in strict arrival order. A
ToolCallComplete is only emitted after its ToolCallStart (and any
ToolCallArgDelta), except when a provider delivers whole calls at once,
in which case start and complete are synthesized back-to-back.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Union


@dataclass(frozen=True)
class TextDelta:
    text: str


@dataclass(frozen=True)
class ToolCallStart:
    id: str
    name: str


@dataclass(frozen=True)
class ToolCallArgDelta:
    id: str
    fragment: str


@dataclass(frozen=True)
class ToolCallComplete:
    id: str
    name: str
    arguments: str  # raw JSON text, already verified to parse


@dataclass(frozen=True)
class StreamEnd:
    pass


@dataclass(frozen=True)
class StreamError:
    message: str


CanonicalEvent = Union[
    TextDelta, ToolCallStart, ToolCallArgDelta, ToolCallComplete, StreamEnd, StreamError
]
