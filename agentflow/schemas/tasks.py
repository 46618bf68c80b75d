from __future__ import annotations

from datetime import datetime, timezone
from typing import Any
from uuid import UUID

from pydantic import BaseModel, Field

from ..orchestration.state import ExecutionStep, ScrapedData, Task


class TaskRequest(BaseModel):
    input: str = Field(..., min_length=1)


class TaskResponse(BaseModel):
    task_id: str
    status: str


class ExecutionStepModel(BaseModel):
    id: UUID
    step_number: int
    tool_name: str
    tool_input: dict[str, Any] = Field(default_factory=dict)
    tool_output: dict[str, Any] | None = None
    status: str
    error: str | None = None
    created_at: datetime
    completed_at: datetime | None = None

    @classmethod
    def from_step(cls, step: ExecutionStep) -> "ExecutionStepModel":
        return cls(
            id=step.id,
            step_number=step.step_number,
            tool_name=step.tool_name,
            tool_input=step.tool_input,
            tool_output=step.tool_output,
            status=step.status.value,
            error=step.error,
            created_at=step.created_at,
            completed_at=step.completed_at,
        )


class ScrapedDataModel(BaseModel):
    id: UUID
    url: str | None = None
    data: Any = None
    metadata: dict[str, Any] | None = None
    created_at: datetime

    @classmethod
    def from_record(cls, record: ScrapedData) -> "ScrapedDataModel":
        return cls(
            id=record.id,
            url=record.url,
            data=record.data,
            metadata=record.metadata,
            created_at=record.created_at,
        )


class TaskStatusResponse(BaseModel):
    task_id: str
    description: str
    status: str
    result: dict[str, Any] | None = None
    error: str | None = None
    created_at: datetime
    updated_at: datetime
    completed_at: datetime | None = None
    steps: list[ExecutionStepModel] = Field(default_factory=list)

    @classmethod
    def from_task(cls, task: Task, steps: list[ExecutionStep]) -> "TaskStatusResponse":
        return cls(
            task_id=task.id,
            description=task.description,
            status=task.status.value,
            result=task.result.model_dump(mode="json") if task.result is not None else None,
            error=task.error,
            created_at=task.created_at,
            updated_at=task.updated_at,
            completed_at=task.completed_at,
            steps=[ExecutionStepModel.from_step(step) for step in steps],
        )


class ErrorResponse(BaseModel):
    detail: str
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
