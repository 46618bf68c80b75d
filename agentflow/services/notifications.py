from __future__ import annotations

import asyncio
from collections import defaultdict
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Any, AsyncIterator, Literal, Union

from ..core.logging import get_logger
from ..orchestration.state import ExecutionStep, Task

logger = get_logger(name=__name__)

StepEventType = Literal["step.inserted", "step.updated"]


@dataclass(slots=True)
class StepEvent:
    event: StepEventType
    step: ExecutionStep

    @property
    def task_id(self) -> str:
        return self.step.task_id

    def to_payload(self) -> dict[str, Any]:
        return {"event": self.event, "step": self.step.model_dump(mode="json")}


@dataclass(slots=True)
class TaskEvent:
    task: Task

    event: Literal["task.finalized"] = "task.finalized"

    @property
    def task_id(self) -> str:
        return self.task.id

    def to_payload(self) -> dict[str, Any]:
        return {"event": self.event, "task": self.task.model_dump(mode="json")}


ProgressEvent = Union[StepEvent, TaskEvent]


class TaskEventBroker:
    """Fan-out of step and task events to subscribers keyed by task identifier."""

    def __init__(self, *, max_queue_size: int = 0) -> None:
        self._subscribers: dict[str, set[asyncio.Queue[ProgressEvent]]] = defaultdict(set)
        self._max_queue_size = max_queue_size

    def subscriber_count(self, task_id: str) -> int:
        return len(self._subscribers.get(task_id, ()))

    async def publish(self, event: ProgressEvent) -> None:
        queues = list(self._subscribers.get(event.task_id, ()))
        for queue in queues:
            try:
                queue.put_nowait(event)
            except asyncio.QueueFull:
                logger.warning("progress_subscriber_lagging", task_id=event.task_id, event_type=event.event)

    @asynccontextmanager
    async def subscribe(self, task_id: str) -> AsyncIterator["Subscription"]:
        queue: asyncio.Queue[ProgressEvent] = asyncio.Queue(maxsize=self._max_queue_size)
        self._subscribers[task_id].add(queue)
        try:
            yield Subscription(queue)
        finally:
            listeners = self._subscribers.get(task_id)
            if listeners is not None:
                listeners.discard(queue)
                if not listeners:
                    self._subscribers.pop(task_id, None)


class Subscription:
    """Async iterator over one task's events; stops after the terminal task event."""

    def __init__(self, queue: asyncio.Queue[ProgressEvent]) -> None:
        self._queue = queue
        self._closed = False

    def __aiter__(self) -> "Subscription":
        return self

    async def __anext__(self) -> ProgressEvent:
        if self._closed:
            raise StopAsyncIteration
        event = await self._queue.get()
        if isinstance(event, TaskEvent):
            self._closed = True
        return event

    async def next_event(self, timeout: float | None = None) -> ProgressEvent:
        return await asyncio.wait_for(self.__anext__(), timeout=timeout)
