from __future__ import annotations

import inspect
import json
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any, AsyncIterator, Callable

try:
    import asyncpg
except ModuleNotFoundError:  # pragma: no cover - optional dependency
    asyncpg = None  # type: ignore[assignment]

from ..core.config import Settings
from ..core.exceptions import PersistenceError, TaskFinalizedError, TaskNotFoundError
from ..core.logging import get_logger
from .enums import StepStatus, TaskStatus
from .state import ExecutionStep, ScrapedData, Task, TaskResult, utcnow

logger = get_logger(name=__name__)

TimestampFactory = Callable[[], datetime]


class TaskStore:
    """Persistence for tasks, their execution steps, and scraped data.

    Writes against a task in a terminal status raise ``TaskFinalizedError``; a step
    can be finalized exactly once.
    """

    async def create_task(self, task: Task) -> Task:  # pragma: no cover - interface
        raise NotImplementedError

    async def get_task(self, task_id: str) -> Task | None:  # pragma: no cover - interface
        raise NotImplementedError

    async def update_task(
        self,
        task_id: str,
        *,
        status: TaskStatus,
        error: str | None = None,
        result: TaskResult | None = None,
        completed_at: datetime | None = None,
    ) -> Task:  # pragma: no cover - interface
        raise NotImplementedError

    async def insert_step(self, step: ExecutionStep) -> ExecutionStep:  # pragma: no cover - interface
        raise NotImplementedError

    async def finalize_step(self, step: ExecutionStep) -> ExecutionStep:  # pragma: no cover - interface
        raise NotImplementedError

    async def list_steps(self, task_id: str) -> list[ExecutionStep]:  # pragma: no cover - interface
        raise NotImplementedError

    async def insert_scraped_data(self, record: ScrapedData) -> ScrapedData:  # pragma: no cover - interface
        raise NotImplementedError

    async def list_scraped_data(self, task_id: str) -> list[ScrapedData]:  # pragma: no cover - interface
        raise NotImplementedError

    async def close(self) -> None:
        return

    @asynccontextmanager
    async def lifecycle(self) -> AsyncIterator["TaskStore"]:
        try:
            yield self
        finally:
            await self.close()


class InMemoryTaskStore(TaskStore):
    def __init__(self, *, now: TimestampFactory | None = None) -> None:
        self._tasks: dict[str, Task] = {}
        self._steps: dict[str, list[ExecutionStep]] = {}
        self._scraped: dict[str, list[ScrapedData]] = {}
        self._now: TimestampFactory = now or utcnow

    async def create_task(self, task: Task) -> Task:
        if task.id in self._tasks:
            raise PersistenceError(f"Task {task.id} already exists")
        stored = task.model_copy(deep=True)
        self._tasks[task.id] = stored
        self._steps.setdefault(task.id, [])
        return stored.model_copy(deep=True)

    async def get_task(self, task_id: str) -> Task | None:
        task = self._tasks.get(task_id)
        return task.model_copy(deep=True) if task is not None else None

    async def update_task(
        self,
        task_id: str,
        *,
        status: TaskStatus,
        error: str | None = None,
        result: TaskResult | None = None,
        completed_at: datetime | None = None,
    ) -> Task:
        current = self._tasks.get(task_id)
        if current is None:
            raise TaskNotFoundError(f"Task {task_id} not found")
        if current.status.is_terminal:
            raise TaskFinalizedError(f"Task {task_id} is already {current.status.value}")
        updated = current.model_copy(
            update={
                "status": status,
                "error": error,
                "result": result.model_copy(deep=True) if result is not None else None,
                "completed_at": completed_at,
                "updated_at": self._now(),
            }
        )
        self._tasks[task_id] = updated
        return updated.model_copy(deep=True)

    async def insert_step(self, step: ExecutionStep) -> ExecutionStep:
        task = self._tasks.get(step.task_id)
        if task is None:
            raise TaskNotFoundError(f"Task {step.task_id} not found")
        if task.status.is_terminal:
            raise TaskFinalizedError(f"Task {step.task_id} is already {task.status.value}")
        steps = self._steps.setdefault(step.task_id, [])
        if any(existing.step_number == step.step_number for existing in steps):
            raise PersistenceError(f"Step {step.step_number} already exists for task {step.task_id}")
        stored = step.model_copy(deep=True)
        steps.append(stored)
        return stored.model_copy(deep=True)

    async def finalize_step(self, step: ExecutionStep) -> ExecutionStep:
        steps = self._steps.get(step.task_id, [])
        for index, existing in enumerate(steps):
            if existing.id != step.id:
                continue
            if existing.status.is_terminal:
                raise PersistenceError(f"Step {existing.step_number} of task {step.task_id} is already final")
            stored = existing.model_copy(
                update={
                    "status": step.status,
                    "tool_output": step.tool_output,
                    "error": step.error,
                    "completed_at": step.completed_at,
                },
                deep=True,
            )
            steps[index] = stored
            return stored.model_copy(deep=True)
        raise PersistenceError(f"Step {step.id} not found for task {step.task_id}")

    async def list_steps(self, task_id: str) -> list[ExecutionStep]:
        steps = sorted(self._steps.get(task_id, []), key=lambda item: item.step_number)
        return [step.model_copy(deep=True) for step in steps]

    async def insert_scraped_data(self, record: ScrapedData) -> ScrapedData:
        if record.task_id not in self._tasks:
            raise TaskNotFoundError(f"Task {record.task_id} not found")
        stored = record.model_copy(deep=True)
        self._scraped.setdefault(record.task_id, []).append(stored)
        return stored.model_copy(deep=True)

    async def list_scraped_data(self, task_id: str) -> list[ScrapedData]:
        return [record.model_copy(deep=True) for record in self._scraped.get(task_id, [])]


class PostgresTaskStore(TaskStore):
    _FETCH_TASK = """
        SELECT id, description, status, result, error, created_at, updated_at, completed_at
        FROM tasks
        WHERE id = $1
    """

    _UPDATE_TASK = """
        UPDATE tasks
        SET status = $2,
            error = $3,
            result = $4::jsonb,
            completed_at = $5,
            updated_at = $6
        WHERE id = $1
          AND status NOT IN ('completed', 'failed')
        RETURNING id, description, status, result, error, created_at, updated_at, completed_at
    """

    _FETCH_STEPS = """
        SELECT id, task_id, step_number, tool_name, tool_input, tool_output, status, error, created_at, completed_at
        FROM execution_steps
        WHERE task_id = $1
        ORDER BY step_number ASC
    """

    _FINALIZE_STEP = """
        UPDATE execution_steps
        SET status = $2,
            tool_output = $3::jsonb,
            error = $4,
            completed_at = $5
        WHERE id = $1
          AND status = 'executing'
        RETURNING id, task_id, step_number, tool_name, tool_input, tool_output, status, error, created_at, completed_at
    """

    _FETCH_SCRAPED = """
        SELECT id, task_id, url, data, metadata, created_at
        FROM scraped_data
        WHERE task_id = $1
        ORDER BY created_at ASC
    """

    def __init__(self, pool: Any, *, now: TimestampFactory | None = None) -> None:
        if asyncpg is None:
            raise RuntimeError("asyncpg is required for PostgresTaskStore")
        self._pool_or_coroutine = pool
        self._pool: Any | None = None
        self._now: TimestampFactory = now or utcnow

    @classmethod
    def from_settings(cls, settings: Settings) -> "PostgresTaskStore":
        if asyncpg is None:
            raise RuntimeError("asyncpg is not available")
        if settings.postgres.dsn is None:
            raise RuntimeError("POSTGRES__DSN is not configured")
        pool = asyncpg.create_pool(
            dsn=str(settings.postgres.dsn),
            min_size=settings.postgres.pool_min_size,
            max_size=settings.postgres.pool_max_size,
        )
        return cls(pool)

    async def create_task(self, task: Task) -> Task:
        pool = await self._ensure_pool()
        async with pool.acquire() as connection:
            try:
                await connection.execute(
                    """
                    INSERT INTO tasks (id, description, status, result, error, created_at, updated_at, completed_at)
                    VALUES ($1, $2, $3, $4::jsonb, $5, $6, $7, $8)
                    """,
                    task.id,
                    task.description,
                    task.status.value,
                    _dump_json(task.result.model_dump(mode="json") if task.result else None),
                    task.error,
                    task.created_at,
                    task.updated_at,
                    task.completed_at,
                )
            except asyncpg.UniqueViolationError as exc:
                raise PersistenceError(f"Task {task.id} already exists") from exc
        return task

    async def get_task(self, task_id: str) -> Task | None:
        pool = await self._ensure_pool()
        async with pool.acquire() as connection:
            row = await connection.fetchrow(self._FETCH_TASK, task_id)
        return _row_to_task(row) if row is not None else None

    async def update_task(
        self,
        task_id: str,
        *,
        status: TaskStatus,
        error: str | None = None,
        result: TaskResult | None = None,
        completed_at: datetime | None = None,
    ) -> Task:
        pool = await self._ensure_pool()
        async with pool.acquire() as connection:
            row = await connection.fetchrow(
                self._UPDATE_TASK,
                task_id,
                status.value,
                error,
                _dump_json(result.model_dump(mode="json") if result is not None else None),
                completed_at,
                self._now(),
            )
            if row is None:
                existing = await connection.fetchrow(self._FETCH_TASK, task_id)
        if row is not None:
            return _row_to_task(row)
        if existing is None:
            raise TaskNotFoundError(f"Task {task_id} not found")
        raise TaskFinalizedError(f"Task {task_id} is already {existing['status']}")

    async def insert_step(self, step: ExecutionStep) -> ExecutionStep:
        pool = await self._ensure_pool()
        async with pool.acquire() as connection:
            try:
                await connection.execute(
                    """
                    INSERT INTO execution_steps (
                        id, task_id, step_number, tool_name, tool_input, tool_output, status, error, created_at, completed_at
                    )
                    VALUES ($1, $2, $3, $4, $5::jsonb, $6::jsonb, $7, $8, $9, $10)
                    """,
                    step.id,
                    step.task_id,
                    step.step_number,
                    step.tool_name,
                    _dump_json(step.tool_input),
                    _dump_json(step.tool_output),
                    step.status.value,
                    step.error,
                    step.created_at,
                    step.completed_at,
                )
            except asyncpg.UniqueViolationError as exc:
                raise PersistenceError(f"Step {step.step_number} already exists for task {step.task_id}") from exc
            except asyncpg.ForeignKeyViolationError as exc:
                raise TaskNotFoundError(f"Task {step.task_id} not found") from exc
        return step

    async def finalize_step(self, step: ExecutionStep) -> ExecutionStep:
        pool = await self._ensure_pool()
        async with pool.acquire() as connection:
            row = await connection.fetchrow(
                self._FINALIZE_STEP,
                step.id,
                step.status.value,
                _dump_json(step.tool_output),
                step.error,
                step.completed_at,
            )
        if row is None:
            raise PersistenceError(f"Step {step.step_number} of task {step.task_id} is missing or already final")
        return _row_to_step(row)

    async def list_steps(self, task_id: str) -> list[ExecutionStep]:
        pool = await self._ensure_pool()
        async with pool.acquire() as connection:
            rows = await connection.fetch(self._FETCH_STEPS, task_id)
        return [_row_to_step(row) for row in rows]

    async def insert_scraped_data(self, record: ScrapedData) -> ScrapedData:
        pool = await self._ensure_pool()
        async with pool.acquire() as connection:
            await connection.execute(
                """
                INSERT INTO scraped_data (id, task_id, url, data, metadata, created_at)
                VALUES ($1, $2, $3, $4::jsonb, $5::jsonb, $6)
                """,
                record.id,
                record.task_id,
                record.url,
                _dump_json(record.data),
                _dump_json(record.metadata),
                record.created_at,
            )
        return record

    async def list_scraped_data(self, task_id: str) -> list[ScrapedData]:
        pool = await self._ensure_pool()
        async with pool.acquire() as connection:
            rows = await connection.fetch(self._FETCH_SCRAPED, task_id)
        return [
            ScrapedData(
                id=row["id"],
                task_id=row["task_id"],
                url=row["url"],
                data=_load_json(row["data"]),
                metadata=_load_json(row["metadata"]),
                created_at=row["created_at"],
            )
            for row in rows
        ]

    async def close(self) -> None:
        if self._pool is not None:
            await self._pool.close()
            self._pool = None

    @asynccontextmanager
    async def lifecycle(self) -> AsyncIterator["PostgresTaskStore"]:
        try:
            await self._ensure_pool()
            yield self
        finally:
            await self.close()

    async def _ensure_pool(self) -> Any:
        if self._pool is not None:
            return self._pool
        candidate = self._pool_or_coroutine
        if inspect.isawaitable(candidate):
            candidate = await candidate
        if not isinstance(candidate, asyncpg.Pool):
            raise RuntimeError("Invalid asyncpg pool supplied to PostgresTaskStore")
        self._pool = candidate
        return self._pool


def build_task_store(settings: Settings) -> TaskStore:
    if settings.persistence.backend == "memory":
        logger.info("task_store_in_memory", environment=settings.environment)
        return InMemoryTaskStore()
    store = PostgresTaskStore.from_settings(settings)
    logger.info("task_store_postgres_enabled", environment=settings.environment)
    return store


def _dump_json(value: Any) -> str | None:
    if value is None:
        return None
    return json.dumps(value, default=str)


def _load_json(value: Any) -> Any:
    if isinstance(value, str):
        try:
            return json.loads(value)
        except json.JSONDecodeError:  # pragma: no cover - column always holds JSON
            return value
    return value


def _row_to_task(row: Any) -> Task:
    result_payload = _load_json(row["result"])
    return Task(
        id=row["id"],
        description=row["description"],
        status=TaskStatus(row["status"]),
        result=TaskResult.model_validate(result_payload) if result_payload else None,
        error=row["error"],
        created_at=row["created_at"],
        updated_at=row["updated_at"],
        completed_at=row["completed_at"],
    )


def _row_to_step(row: Any) -> ExecutionStep:
    return ExecutionStep(
        id=row["id"],
        task_id=row["task_id"],
        step_number=row["step_number"],
        tool_name=row["tool_name"],
        tool_input=_load_json(row["tool_input"]) or {},
        tool_output=_load_json(row["tool_output"]),
        status=StepStatus(row["status"]),
        error=row["error"],
        created_at=row["created_at"],
        completed_at=row["completed_at"],
    )
