"""
Tool Registry — register handlers, look them up by name, export schemas.

Handlers are registered explicitly by application code and injected
into the ToolExecutor. A handler is any callable taking the arguments
dict and returning a result (sync or async).
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Callable

from conduit.llm.contracts import ToolSchema
from conduit.tools.base import BaseTool

logger = logging.getLogger(__name__)

Handler = Callable[[dict[str, Any]], Any]


@dataclass(frozen=True)
class RegisteredTool:
    """A handler together with its schema and confirmation policy."""

    name: str
    handler: Handler
    schema: ToolSchema
    requires_confirmation: bool = False

    def __call__(self, arguments: dict[str, Any]) -> Any:
        return self.handler(arguments)


class ToolRegistry:
    """Name -> RegisteredTool. Registration order is preserved for schema export."""

    def __init__(self) -> None:
        self._tools: dict[str, RegisteredTool] = {}

    def register(
        self,
        name: str,
        handler: Handler,
        schema: ToolSchema | None = None,
        requires_confirmation: bool = False,
    ) -> RegisteredTool:
        """Register a handler. Overwrites if the name already exists."""
        if not name:
            raise ValueError("Tool must have a name")
        if schema is not None and schema.name != name:
            raise ValueError(f"Schema name '{schema.name}' does not match tool '{name}'")
        tool = RegisteredTool(
            name=name,
            handler=handler,
            schema=schema or ToolSchema(name=name, description=""),
            requires_confirmation=requires_confirmation,
        )
        self._tools[name] = tool
        logger.info(
            "Registered tool: %s%s", name, " (confirmation required)" if requires_confirmation else ""
        )
        return tool

    def register_tool(self, tool: BaseTool) -> RegisteredTool:
        return self.register(
            tool.name,
            tool,
            schema=tool.schema(),
            requires_confirmation=tool.requires_confirmation,
        )

    def lookup(self, name: str) -> RegisteredTool | None:
        return self._tools.get(name)

    def unregister(self, name: str) -> None:
        self._tools.pop(name, None)

    def schemas(self) -> list[ToolSchema]:
        return [tool.schema for tool in self._tools.values()]

    def names(self) -> list[str]:
        return list(self._tools)

    def __contains__(self, name: str) -> bool:
        return name in self._tools

    def __len__(self) -> int:
        return len(self._tools)
