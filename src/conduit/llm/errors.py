"""
Error taxonomy.

Only genuinely transient conditions are retried, and only inside the
ToolExecutor's retry loop. Everything else surfaces immediately.
"""

from __future__ import annotations


class ConduitError(Exception):
    """Base class for every error raised by conduit."""


class ProviderError(ConduitError):
    """The provider rejected a request or reported an error object."""

    def __init__(self, message: str, provider: str = "", status_code: int | None = None):
        super().__init__(message)
        self.provider = provider
        self.status_code = status_code

    @property
    def transient(self) -> bool:
        return self.status_code is not None and (
            self.status_code >= 500 or self.status_code == 429
        )


class ProtocolError(ProviderError):
    """A provider payload did not have the shape its adapter expects."""


class UnknownProviderError(ConduitError):
    """No ProtocolAdapter is registered under the requested name."""


class StreamAbortedError(ConduitError):
    """Transport or parse failure mid-stream. The turn is aborted, never retried."""


class ToolError(ConduitError):
    """Base for tool lookup/validation/execution failures."""

    def __init__(self, message: str, tool_name: str = ""):
        super().__init__(message)
        self.tool_name = tool_name


class ToolNotFoundError(ToolError):
    """No handler registered for the tool name. Terminal."""


class ToolValidationError(ToolError):
    """Arguments are missing a required field. Terminal."""


class ToolExecutionError(ToolError):
    """
    The handler failed.

    retryable=True/False is an explicit signal; None leaves the decision
    to message-pattern classification.
    """

    def __init__(self, message: str, tool_name: str = "", retryable: bool | None = None):
        super().__init__(message, tool_name)
        self.retryable = retryable


class ContinuationMissingError(ConduitError):
    """No stored continuation for (session_id, provider). Terminal for the turn."""

    def __init__(self, session_id: str, provider: str):
        super().__init__(
            f"No continuation state for session '{session_id}' and provider "
            f"'{provider}'. Start a new turn."
        )
        self.session_id = session_id
        self.provider = provider


class TurnStateError(ConduitError):
    """An operation is not valid in the turn's current state."""


class TurnLimitExceededError(ConduitError):
    """The model kept requesting tools past the round limit."""
