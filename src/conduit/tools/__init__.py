"""Conduit Tools — registry, handler helpers and the retrying executor."""

from conduit.tools.base import BaseTool, HandlerResult, ToolParam
from conduit.tools.executor import ToolExecutor
from conduit.tools.outcome import Err, ErrorKind, Ok
from conduit.tools.registry import RegisteredTool, ToolRegistry

__all__ = [
    "BaseTool",
    "Err",
    "ErrorKind",
    "HandlerResult",
    "Ok",
    "RegisteredTool",
    "ToolExecutor",
    "ToolParam",
    "ToolRegistry",
]
