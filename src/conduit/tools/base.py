"""
BaseTool — declarative helper for writing tool handlers.

Subclass, set name/description/parameters, implement execute(). An
instance is itself a handler: calling it with an arguments dict fills
defaults and awaits execute(). Register it with
ToolRegistry.register_tool().
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any

from conduit.llm.contracts import ToolSchema

logger = logging.getLogger(__name__)


@dataclass
class HandlerResult:
    """What a handler returns: {success, payload} plus optional confirmation gate."""

    success: bool = True
    payload: Any = None
    requires_confirmation: bool = False
    error: str | None = None
    retryable: bool | None = None

    @classmethod
    def ok(cls, payload: Any = None) -> HandlerResult:
        return cls(success=True, payload=payload)

    @classmethod
    def fail(cls, error: str, retryable: bool | None = None) -> HandlerResult:
        return cls(success=False, error=error, retryable=retryable)

    @classmethod
    def pending_confirmation(cls, payload: Any) -> HandlerResult:
        """A proposed effect that must be accepted or rejected by a human."""
        return cls(success=True, payload=payload, requires_confirmation=True)

    @classmethod
    def coerce(cls, value: Any) -> HandlerResult:
        """Accept a HandlerResult, a {success, payload, ...} dict, or a bare payload."""
        if isinstance(value, HandlerResult):
            return value
        if isinstance(value, dict) and "success" in value:
            return cls(
                success=bool(value["success"]),
                payload=value.get("payload"),
                requires_confirmation=bool(value.get("requires_confirmation", False)),
                error=value.get("error"),
                retryable=value.get("retryable"),
            )
        return cls(success=True, payload=value)


@dataclass
class ToolParam:
    """A single parameter for a tool."""

    name: str
    type: str  # "string", "integer", "number", "boolean", "array", "object"
    description: str
    required: bool = True
    default: Any = None
    enum: list[str] | None = None
    items: dict | None = None  # For array types

    def json_schema(self) -> dict[str, Any]:
        prop: dict[str, Any] = {"type": self.type, "description": self.description}
        if self.enum:
            prop["enum"] = self.enum
        if self.items:
            prop["items"] = self.items
        return prop


class BaseTool(ABC):
    """
    Base class for tools.

    requires_confirmation marks every successful result as needing a
    human decision before the turn may continue.
    """

    name: str = ""
    description: str = ""
    parameters: list[ToolParam] = []
    requires_confirmation: bool = False

    @abstractmethod
    async def execute(self, **kwargs) -> HandlerResult | dict | Any:
        """Run the tool with validated arguments."""
        ...

    def schema(self) -> ToolSchema:
        return ToolSchema(
            name=self.name,
            description=self.description,
            parameters={
                "type": "object",
                "properties": {p.name: p.json_schema() for p in self.parameters},
                "required": [p.name for p in self.parameters if p.required],
            },
        )

    def with_defaults(self, args: dict[str, Any]) -> dict[str, Any]:
        """Known arguments plus defaults for absent optional ones."""
        cleaned: dict[str, Any] = {}
        for param in self.parameters:
            if param.name in args:
                cleaned[param.name] = args[param.name]
            elif param.default is not None:
                cleaned[param.name] = param.default
        return cleaned

    async def __call__(self, arguments: dict[str, Any]) -> Any:
        return await self.execute(**self.with_defaults(arguments))

    def __repr__(self) -> str:
        return f"<Tool:{self.name}>"
