from __future__ import annotations

from ..core.exceptions import DispatcherUnavailableError, PlanningError, TaskNotFoundError
from ..core.logging import get_logger
from ..orchestration.orchestrator import TaskOrchestrator
from ..orchestration.state import ExecutionStep, ScrapedData, Task, new_task
from ..orchestration.store import TaskStore
from ..queue.manager import TaskDispatcher

logger = get_logger(name=__name__)


class TaskService:
    """Entry point for submitting tasks and reading their state."""

    def __init__(self, *, store: TaskStore, orchestrator: TaskOrchestrator, dispatcher: TaskDispatcher) -> None:
        self._store = store
        self._orchestrator = orchestrator
        self._dispatcher = dispatcher

    async def start_task(self, user_input: str) -> str:
        """Create a pending task and hand its orchestration to the dispatcher.

        The task row exists before this returns; the run itself is detached. No row
        is written while the dispatcher is not accepting work.
        """
        if not user_input or not user_input.strip():
            raise PlanningError("User input must not be empty")
        if not self._dispatcher.running:
            raise DispatcherUnavailableError("Task dispatcher is not accepting work")
        task = await self._store.create_task(new_task(user_input))
        self._dispatcher.dispatch(lambda: self._orchestrator.run(task.id, user_input), name=f"task:{task.id}")
        logger.info("task_submitted", task_id=task.id)
        return task.id

    async def get_task(self, task_id: str) -> Task:
        task = await self._store.get_task(task_id)
        if task is None:
            raise TaskNotFoundError(f"Task {task_id} not found")
        return task

    async def list_steps(self, task_id: str) -> list[ExecutionStep]:
        await self.get_task(task_id)
        return await self._store.list_steps(task_id)

    async def list_scraped_data(self, task_id: str) -> list[ScrapedData]:
        await self.get_task(task_id)
        return await self._store.list_scraped_data(task_id)
