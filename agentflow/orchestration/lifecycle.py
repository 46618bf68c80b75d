from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Iterable

from ..core.logging import get_logger
from .state import utcnow

logger = get_logger(name=__name__)


@dataclass(slots=True)
class LifecycleEvent:
    task_id: str
    event_type: str
    status: str
    payload: Dict[str, Any] = field(default_factory=dict)
    step_number: int | None = None
    tool: str | None = None
    latency_ms: float | None = None
    created_at: datetime = field(default_factory=utcnow)


class LifecycleSink:
    """Receives task and step lifecycle events emitted by the orchestrator."""

    async def record(self, event: LifecycleEvent) -> None:  # pragma: no cover - implemented by subclasses
        raise NotImplementedError


class StructlogLifecycleSink(LifecycleSink):
    async def record(self, event: LifecycleEvent) -> None:
        logger.info(
            event.event_type,
            task_id=event.task_id,
            status=event.status,
            step_number=event.step_number,
            tool=event.tool,
            latency_ms=event.latency_ms,
            details=event.payload,
        )


class InMemoryLifecycleSink(LifecycleSink):
    def __init__(self) -> None:
        self._events: list[LifecycleEvent] = []

    async def record(self, event: LifecycleEvent) -> None:
        self._events.append(event)

    @property
    def events(self) -> Iterable[LifecycleEvent]:
        return list(self._events)

    def for_task(self, task_id: str) -> list[LifecycleEvent]:
        return [event for event in self._events if event.task_id == task_id]

    def event_types(self, task_id: str | None = None) -> list[str]:
        events = self._events if task_id is None else self.for_task(task_id)
        return [event.event_type for event in events]

