from __future__ import annotations

from ..core.exceptions import OrchestrationError


class ToolDispatchError(OrchestrationError):
    """Base class for failures while dispatching a plan step to a tool."""


class UnknownToolError(ToolDispatchError):
    """Raised when a plan step names a tool outside the known tool set."""

    def __init__(self, tool_name: str) -> None:
        self.tool_name = tool_name
        super().__init__(f"Unknown tool: {tool_name}")


class ToolInputError(ToolDispatchError):
    """Raised when step input does not satisfy the adapter's input model."""


class ToolTransportError(ToolDispatchError):
    """Raised when a provider request fails at the HTTP level."""

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        self.status_code = status_code
        super().__init__(message)


class ToolProviderError(ToolDispatchError):
    """Raised when a provider reports a failed, aborted or timed-out job, or an unusable payload."""

    def __init__(self, message: str, *, provider_status: str | None = None) -> None:
        self.provider_status = provider_status
        super().__init__(message)


class ToolPollTimeoutError(ToolDispatchError):
    """Raised when the local poll budget runs out while the provider still reports the job as running."""

    def __init__(self, message: str, *, attempts: int) -> None:
        self.attempts = attempts
        super().__init__(message)


class ToolTimeoutError(ToolDispatchError):
    """Raised when a tool dispatch exceeds the executor's step timeout."""


__all__ = [
    "ToolDispatchError",
    "UnknownToolError",
    "ToolInputError",
    "ToolTransportError",
    "ToolProviderError",
    "ToolPollTimeoutError",
    "ToolTimeoutError",
]
