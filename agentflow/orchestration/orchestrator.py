from __future__ import annotations

import time
from typing import Any, Mapping

from ..core import metrics
from ..core.exceptions import (
    InvalidTransitionError,
    PlanningError,
    StepExecutionError,
    SummarizationError,
    TaskNotFoundError,
)
from ..core.logging import get_logger
from ..services.notifications import TaskEvent, TaskEventBroker
from .enums import TaskStatus
from .executor import StepExecutor
from .lifecycle import LifecycleEvent, LifecycleSink, StructlogLifecycleSink
from .planner import PlanGenerator
from .state import Task, TaskResult, utcnow
from .store import TaskStore
from .summarizer import SummaryGenerator

logger = get_logger(name=__name__)

ALLOWED_TRANSITIONS: Mapping[TaskStatus, frozenset[TaskStatus]] = {
    TaskStatus.PENDING: frozenset({TaskStatus.PLANNING}),
    TaskStatus.PLANNING: frozenset({TaskStatus.EXECUTING, TaskStatus.FAILED}),
    TaskStatus.EXECUTING: frozenset({TaskStatus.COMPLETED, TaskStatus.FAILED}),
    TaskStatus.COMPLETED: frozenset(),
    TaskStatus.FAILED: frozenset(),
}


def ensure_transition(current: TaskStatus, target: TaskStatus) -> None:
    if target not in ALLOWED_TRANSITIONS[current]:
        raise InvalidTransitionError(f"Cannot move task from {current.value} to {target.value}")


class TaskOrchestrator:
    """Drives one task from ``pending`` to a terminal status.

    Planning, each step and summarization run in sequence; the first failure
    finalizes the task as ``failed`` with the failing component's message. Errors
    inside a run are recorded on the task instead of raised. A task that is missing
    or no longer ``pending`` is rejected before anything is written.
    """

    def __init__(
        self,
        *,
        store: TaskStore,
        planner: PlanGenerator,
        executor: StepExecutor,
        summarizer: SummaryGenerator,
        broker: TaskEventBroker,
        lifecycle: LifecycleSink | None = None,
    ) -> None:
        self._store = store
        self._planner = planner
        self._executor = executor
        self._summarizer = summarizer
        self._broker = broker
        self._lifecycle = lifecycle or StructlogLifecycleSink()

    async def run(self, task_id: str, user_input: str) -> Task:
        task = await self._store.get_task(task_id)
        if task is None:
            raise TaskNotFoundError(f"Task {task_id} not found")
        # Only the run that moves a task out of pending may drive or fail it.
        if task.status is not TaskStatus.PENDING:
            raise InvalidTransitionError(f"Task {task_id} is already {task.status.value}")

        started = time.perf_counter()
        metrics.mark_task_started()
        await self._emit(task, "task_started", payload={"input": user_input})
        owned = False
        try:
            task = await self._claim(task)
            owned = True
            task = await self._execute(task, user_input, started)
        except Exception as exc:
            if not owned:
                logger.warning("task_claim_failed", task_id=task_id, error=str(exc), error_type=type(exc).__name__)
                raise
            logger.exception("task_unexpected_error", task_id=task_id)
            task = await self._fail_unexpected(task_id, exc, started)
        finally:
            metrics.mark_task_finished(status=task.status.value, latency=time.perf_counter() - started)
        return task

    async def _claim(self, task: Task) -> Task:
        current = await self._store.get_task(task.id)
        if current is None:
            raise TaskNotFoundError(f"Task {task.id} not found")
        if current.status is not TaskStatus.PENDING:
            raise InvalidTransitionError(f"Task {task.id} is already {current.status.value}")
        return await self._transition(current, TaskStatus.PLANNING)

    async def _execute(self, task: Task, user_input: str, started: float) -> Task:
        plan_started = time.perf_counter()
        try:
            plan = await self._planner.generate_plan(user_input)
        except PlanningError as exc:
            logger.warning("plan_generation_failed", task_id=task.id, error=str(exc), error_type=type(exc).__name__)
            return await self._finalize(task, TaskStatus.FAILED, started, error=str(exc))
        await self._emit(
            task,
            "plan_generated",
            latency=time.perf_counter() - plan_started,
            payload={"steps": len(plan), "tools": [step.tool for step in plan.steps]},
        )

        task = await self._transition(task, TaskStatus.EXECUTING)
        results: list[dict[str, Any]] = []
        for step_number, plan_step in enumerate(plan.steps, start=1):
            try:
                step = await self._executor.run_step(task, plan_step, step_number)
            except StepExecutionError as exc:
                return await self._finalize(task, TaskStatus.FAILED, started, error=str(exc))
            results.append(step.tool_output or {})

        summary_started = time.perf_counter()
        try:
            summary = await self._summarizer.summarize(user_input, results)
        except SummarizationError as exc:
            return await self._finalize(task, TaskStatus.FAILED, started, error=str(exc))
        await self._emit(task, "summary_generated", latency=time.perf_counter() - summary_started)

        return await self._finalize(
            task,
            TaskStatus.COMPLETED,
            started,
            result=TaskResult(summary=summary, steps=results),
        )

    async def _transition(self, task: Task, target: TaskStatus) -> Task:
        ensure_transition(task.status, target)
        updated = await self._store.update_task(task.id, status=target)
        await self._emit(updated, "task_status_changed", payload={"from": task.status.value, "to": target.value})
        return updated

    async def _finalize(
        self,
        task: Task,
        status: TaskStatus,
        started: float,
        *,
        error: str | None = None,
        result: TaskResult | None = None,
    ) -> Task:
        ensure_transition(task.status, status)
        updated = await self._store.update_task(
            task.id,
            status=status,
            error=error,
            result=result,
            completed_at=utcnow(),
        )
        await self._broker.publish(TaskEvent(task=updated))
        event_type = "task_completed" if status is TaskStatus.COMPLETED else "task_failed"
        await self._emit(
            updated,
            event_type,
            latency=time.perf_counter() - started,
            payload={"error": error} if error else {},
        )
        return updated

    async def _fail_unexpected(self, task_id: str, exc: Exception, started: float) -> Task:
        current = await self._store.get_task(task_id)
        if current is None:
            raise TaskNotFoundError(f"Task {task_id} not found") from exc
        if TaskStatus.FAILED not in ALLOWED_TRANSITIONS[current.status]:
            return current
        message = str(exc) or type(exc).__name__
        return await self._finalize(current, TaskStatus.FAILED, started, error=message)

    async def _emit(
        self,
        task: Task,
        event_type: str,
        *,
        latency: float | None = None,
        payload: dict[str, Any] | None = None,
    ) -> None:
        await self._lifecycle.record(
            LifecycleEvent(
                task_id=task.id,
                event_type=event_type,
                status=task.status.value,
                payload=payload or {},
                latency_ms=latency * 1000 if latency is not None else None,
            )
        )


__all__ = ["ALLOWED_TRANSITIONS", "TaskOrchestrator", "ensure_transition"]
