from __future__ import annotations

from typing import Iterable

__all__ = [
    "OrchestrationError",
    "ConfigurationError",
    "ReasoningServiceError",
    "ReasoningTransportError",
    "ReasoningResponseError",
    "ReasoningEmptyContentError",
    "PlanningError",
    "PlannerTransportError",
    "PlannerResponseError",
    "PlanParseError",
    "PlanStructureError",
    "SummarizationError",
    "StepExecutionError",
    "InvalidTransitionError",
    "PersistenceError",
    "TaskNotFoundError",
    "TaskFinalizedError",
    "DispatcherUnavailableError",
]


class OrchestrationError(RuntimeError):
    """Base class for every failure raised by the orchestration core."""


class ConfigurationError(OrchestrationError):
    """Raised at start-up when required credentials are absent."""

    def __init__(self, missing: Iterable[str]) -> None:
        self.missing = list(missing)
        super().__init__(f"Missing required API keys: {', '.join(self.missing)}")


class ReasoningServiceError(OrchestrationError):
    """Raised by the reasoning client; callers translate it into their own error kind."""


class ReasoningTransportError(ReasoningServiceError):
    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        self.status_code = status_code
        super().__init__(message)


class ReasoningResponseError(ReasoningServiceError):
    """The response envelope is not JSON or lacks the expected fields."""


class ReasoningEmptyContentError(ReasoningResponseError):
    """The envelope is well formed but the message content is empty."""


class PlanningError(OrchestrationError):
    """Base class for plan generation failures."""


class PlannerTransportError(PlanningError):
    pass


class PlannerResponseError(PlanningError):
    pass


class PlanParseError(PlanningError):
    pass


class PlanStructureError(PlanningError):
    pass


class SummarizationError(OrchestrationError):
    pass


class StepExecutionError(OrchestrationError):
    """Raised by the step executor once a failed step has been persisted."""

    def __init__(self, step_number: int, tool_name: str, message: str) -> None:
        self.step_number = step_number
        self.tool_name = tool_name
        self.reason = message
        super().__init__(f"Step {step_number} ({tool_name}) failed: {message}")


class InvalidTransitionError(OrchestrationError):
    pass


class PersistenceError(OrchestrationError):
    pass


class TaskNotFoundError(PersistenceError):
    pass


class TaskFinalizedError(PersistenceError):
    """Raised when a write targets a task that already reached a terminal status."""


class DispatcherUnavailableError(OrchestrationError):
    """Raised when work is submitted while the task dispatcher is not accepting jobs."""
