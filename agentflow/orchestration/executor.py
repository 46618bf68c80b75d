from __future__ import annotations

import asyncio
import time
from typing import Any

from ..core import metrics
from ..core.exceptions import OrchestrationError, StepExecutionError
from ..core.logging import get_logger
from ..services.notifications import StepEvent, TaskEventBroker
from ..tools.base import ToolResult
from ..tools.exceptions import ToolProviderError, ToolTimeoutError, UnknownToolError
from ..tools.registry import KnownTool, ToolRegistry, UnknownTool
from .enums import StepStatus
from .lifecycle import LifecycleEvent, LifecycleSink, StructlogLifecycleSink
from .state import ExecutionStep, PlanStep, ScrapedData, Task, utcnow
from .store import TaskStore

logger = get_logger(name=__name__)

_UNKNOWN_TOOL_LABEL = "unknown"


class StepExecutor:
    """Runs a single plan step against its tool and records the outcome.

    The step row is written as ``executing`` before dispatch and finalized exactly
    once. Failures, including a failed write of the result, are persisted first and
    then raised as ``StepExecutionError``.
    """

    def __init__(
        self,
        *,
        store: TaskStore,
        tools: ToolRegistry,
        broker: TaskEventBroker,
        lifecycle: LifecycleSink | None = None,
        step_timeout_seconds: float | None = None,
    ) -> None:
        self._store = store
        self._tools = tools
        self._broker = broker
        self._lifecycle = lifecycle or StructlogLifecycleSink()
        self._step_timeout = step_timeout_seconds

    async def run_step(self, task: Task, plan_step: PlanStep, step_number: int) -> ExecutionStep:
        step = ExecutionStep(
            task_id=task.id,
            step_number=step_number,
            tool_name=plan_step.tool,
            tool_input=dict(plan_step.input),
            status=StepStatus.EXECUTING,
        )
        step = await self._store.insert_step(step)
        await self._broker.publish(StepEvent(event="step.inserted", step=step))
        await self._emit(
            step,
            "step_started",
            payload={"description": plan_step.description, "input": step.tool_input},
        )

        started = time.perf_counter()
        resolved = self._tools.resolve(plan_step.tool)
        tool_label = resolved.name.value if isinstance(resolved, KnownTool) else _UNKNOWN_TOOL_LABEL
        try:
            result = await self._dispatch(resolved, step.tool_input)
        except OrchestrationError as exc:
            latency = time.perf_counter() - started
            metrics.record_step_outcome(tool=tool_label, outcome="failed", latency=latency)
            await self._fail(step, str(exc), latency=latency, error_type=type(exc).__name__)
            raise StepExecutionError(step_number, plan_step.tool, str(exc)) from exc
        except Exception as exc:  # pragma: no cover - adapters raise ToolDispatchError subclasses
            latency = time.perf_counter() - started
            metrics.record_step_outcome(tool=tool_label, outcome="failed", latency=latency)
            logger.exception("step_unexpected_error", task_id=task.id, step_number=step_number)
            message = str(exc) or type(exc).__name__
            await self._fail(step, message, latency=latency, error_type=type(exc).__name__)
            raise StepExecutionError(step_number, plan_step.tool, message) from exc

        latency = time.perf_counter() - started
        output = result.to_payload()
        completed = step.model_copy(
            update={
                "status": StepStatus.COMPLETED,
                "tool_output": output,
                "completed_at": utcnow(),
            }
        )
        try:
            completed = await self._store.finalize_step(completed)
        except Exception as exc:
            metrics.record_step_outcome(tool=tool_label, outcome="failed", latency=latency)
            logger.warning(
                "step_result_write_failed",
                task_id=task.id,
                step_number=step_number,
                tool=plan_step.tool,
                error=str(exc),
            )
            message = f"Failed to record step result: {exc}"
            await self._fail(step, message, latency=latency, error_type=type(exc).__name__)
            raise StepExecutionError(step_number, plan_step.tool, message) from exc
        metrics.record_step_outcome(tool=tool_label, outcome="completed", latency=latency)
        await self._broker.publish(StepEvent(event="step.updated", step=completed))
        await self._emit(completed, "step_completed", latency=latency)

        if isinstance(resolved, KnownTool) and resolved.is_scraper and result.data is not None:
            await self._record_scraped_data(completed, result)
        return completed

    async def _dispatch(self, resolved: KnownTool | UnknownTool, tool_input: dict[str, Any]) -> ToolResult:
        if isinstance(resolved, UnknownTool):
            raise UnknownToolError(resolved.requested)
        try:
            if self._step_timeout is None:
                result = await resolved.adapter.execute(tool_input)
            else:
                result = await asyncio.wait_for(resolved.adapter.execute(tool_input), timeout=self._step_timeout)
        except asyncio.TimeoutError as exc:
            raise ToolTimeoutError(
                f"{resolved.name.value} did not finish within {self._step_timeout:g}s"
            ) from exc
        if result.error:
            raise ToolProviderError(result.error)
        return result

    async def _fail(self, step: ExecutionStep, message: str, *, latency: float, error_type: str) -> None:
        failed = step.model_copy(
            update={
                "status": StepStatus.FAILED,
                "error": message,
                "completed_at": utcnow(),
            }
        )
        try:
            failed = await self._store.finalize_step(failed)
        except Exception as exc:
            # The task-level failure still records the message.
            logger.error(
                "step_finalize_failed",
                task_id=step.task_id,
                step_number=step.step_number,
                tool=step.tool_name,
                error=str(exc),
            )
        await self._broker.publish(StepEvent(event="step.updated", step=failed))
        await self._emit(failed, "step_failed", latency=latency, payload={"error": message, "error_type": error_type})

    async def _record_scraped_data(self, step: ExecutionStep, result: ToolResult) -> None:
        url = step.tool_input.get("url")
        record = ScrapedData(
            task_id=step.task_id,
            url=str(url) if url is not None else None,
            data=result.data,
            metadata=result.metadata,
        )
        try:
            await self._store.insert_scraped_data(record)
        except Exception as exc:  # scraped data is an auxiliary artifact
            metrics.record_scraped_data_write(outcome="error")
            logger.warning(
                "scraped_data_write_failed",
                task_id=step.task_id,
                step_number=step.step_number,
                tool=step.tool_name,
                error=str(exc),
            )
            return
        metrics.record_scraped_data_write(outcome="success")

    async def _emit(
        self,
        step: ExecutionStep,
        event_type: str,
        *,
        latency: float | None = None,
        payload: dict[str, Any] | None = None,
    ) -> None:
        await self._lifecycle.record(
            LifecycleEvent(
                task_id=step.task_id,
                event_type=event_type,
                status=step.status.value,
                payload=payload or {},
                step_number=step.step_number,
                tool=step.tool_name,
                latency_ms=latency * 1000 if latency is not None else None,
            )
        )


__all__ = ["StepExecutor"]
