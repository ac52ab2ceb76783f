"""
Error taxonomy for the agent loop.

Tool-level failures (``ToolError`` and its subclasses) are recovered inside
the loop and handed back to the model as error-flagged tool results. All
other ``AgentError`` subclasses end the run.
"""

from __future__ import annotations


class AgentError(Exception):
    """Base class for every error raised by the engine."""


class MissingCredential(AgentError):
    """The environment variable holding the API key is not set."""

    def __init__(self, env_var: str) -> None:
        self.env_var = env_var
        super().__init__(f"Missing API key: environment variable '{env_var}' not set")


class TransportError(AgentError):
    """Network or HTTP-layer failure talking to the model vendor."""

    def __init__(self, message: str) -> None:
        super().__init__(f"HTTP error: {message}")


class VendorRejected(AgentError):
    """The vendor answered with a non-2xx status."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        self.status_code = status_code
        super().__init__(f"API error: {message}")


class UnknownTool(AgentError):
    """The model asked for a tool outside the known enumeration."""

    def __init__(self, name: str) -> None:
        self.name = name
        super().__init__(f"Unknown tool: {name}")


class ToolError(AgentError):
    """A recoverable tool failure, reported back to the model."""


class InvalidToolInput(ToolError):
    def __init__(self, message: str) -> None:
        super().__init__(f"Invalid tool input: {message}")


class ToolExecutionFailed(ToolError):
    def __init__(self, message: str) -> None:
        super().__init__(f"Tool execution error: {message}")


class ToolTimedOut(ToolError):
    def __init__(self, timeout_secs: float | None = None) -> None:
        self.timeout_secs = timeout_secs
        if timeout_secs is None:
            super().__init__("Tool execution timed out")
        else:
            super().__init__(f"Tool execution timed out after {timeout_secs:g}s")


class IterationLimitExceeded(AgentError):
    def __init__(self, limit: int) -> None:
        self.limit = limit
        super().__init__(f"Exceeded maximum tool iterations ({limit})")


class Cancelled(AgentError):
    def __init__(self, reason: str = "Cancelled by user") -> None:
        self.reason = reason
        super().__init__(reason)


class UnsupportedProvider(AgentError):
    def __init__(self, provider: str) -> None:
        self.provider = provider
        super().__init__(
            f"Unsupported provider: '{provider}'. Supported providers: anthropic, gemini"
        )


class ConfigurationInvalid(AgentError):
    def __init__(self, message: str) -> None:
        super().__init__(f"Config error: {message}")


class RunInProgress(AgentError):
    """A second run was started while one is still active."""

    def __init__(self) -> None:
        super().__init__("Agent is already running")


def is_recoverable(error: BaseException) -> bool:
    """Return True if the error should become an error-flagged tool result."""
    return isinstance(error, ToolError)
