from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any
from uuid import UUID, uuid4

from pydantic import BaseModel, Field

from .enums import StepStatus, TaskStatus


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class TaskResult(BaseModel):
    summary: str
    steps: list[dict[str, Any]] = Field(default_factory=list)


class Task(BaseModel):
    id: str = Field(default_factory=lambda: str(uuid4()), min_length=1)
    description: str = Field(min_length=1)
    status: TaskStatus = Field(default=TaskStatus.PENDING)
    result: TaskResult | None = None
    error: str | None = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
    completed_at: datetime | None = None


class ExecutionStep(BaseModel):
    id: UUID = Field(default_factory=uuid4)
    task_id: str = Field(min_length=1)
    step_number: int = Field(ge=1)
    tool_name: str
    tool_input: dict[str, Any] = Field(default_factory=dict)
    tool_output: dict[str, Any] | None = None
    status: StepStatus = Field(default=StepStatus.EXECUTING)
    error: str | None = None
    created_at: datetime = Field(default_factory=utcnow)
    completed_at: datetime | None = None


class ScrapedData(BaseModel):
    id: UUID = Field(default_factory=uuid4)
    task_id: str = Field(min_length=1)
    url: str | None = None
    data: Any = None
    metadata: dict[str, Any] | None = None
    created_at: datetime = Field(default_factory=utcnow)


@dataclass(slots=True)
class PlanStep:
    tool: str
    input: dict[str, Any] = field(default_factory=dict)
    description: str = ""


@dataclass(slots=True)
class Plan:
    steps: list[PlanStep]
    raw_response: str = ""

    def __len__(self) -> int:
        return len(self.steps)


def new_task(description: str) -> Task:
    return Task(description=description, status=TaskStatus.PENDING)


__all__ = [
    "ExecutionStep",
    "Plan",
    "PlanStep",
    "ScrapedData",
    "Task",
    "TaskResult",
    "new_task",
    "utcnow",
]
