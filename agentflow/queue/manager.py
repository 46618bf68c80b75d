from __future__ import annotations

import asyncio
import contextlib
from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import asynccontextmanager
from typing import Any

from ..core.config import Settings
from ..core.exceptions import DispatcherUnavailableError
from ..core.logging import get_logger

logger = get_logger(name=__name__)

Job = Callable[[], Awaitable[Any]]


class TaskDispatcher:
    """Runs each submitted job as its own asyncio task.

    Jobs are independent: a slow or failing job never delays another one. An
    optional semaphore caps how many run at once; waiting jobs stay pending.
    """

    def __init__(self, *, max_concurrent: int | None = None) -> None:
        self._max_concurrent = max_concurrent
        self._semaphore = asyncio.Semaphore(max_concurrent) if max_concurrent else None
        self._jobs: set[asyncio.Task[None]] = set()
        self._accepting = False

    @property
    def active_jobs(self) -> int:
        return len(self._jobs)

    @property
    def running(self) -> bool:
        return self._accepting

    async def start(self) -> None:
        self._accepting = True
        logger.info("task_dispatcher_started", max_concurrent=self._max_concurrent)

    def dispatch(self, job: Job, *, name: str | None = None) -> asyncio.Task[None]:
        if not self._accepting:
            raise DispatcherUnavailableError("Task dispatcher is not accepting work")
        handle = asyncio.create_task(self._run(job, name), name=name)
        self._jobs.add(handle)
        handle.add_done_callback(self._jobs.discard)
        logger.info("task_dispatched", job=name, active_jobs=len(self._jobs))
        return handle

    async def _run(self, job: Job, name: str | None) -> None:
        try:
            if self._semaphore is None:
                await job()
            else:
                async with self._semaphore:
                    await job()
        except asyncio.CancelledError:
            logger.warning("task_job_cancelled", job=name)
            raise
        except Exception as exc:  # pragma: no cover - orchestrator records its own failures
            logger.exception("task_job_failed", job=name, error=str(exc))

    async def drain(self) -> None:
        while self._jobs:
            await asyncio.gather(*list(self._jobs), return_exceptions=True)

    async def stop(self) -> None:
        self._accepting = False
        jobs = list(self._jobs)
        for handle in jobs:
            handle.cancel()
        for handle in jobs:
            with contextlib.suppress(asyncio.CancelledError):
                await handle
        self._jobs.clear()
        logger.info("task_dispatcher_stopped", cancelled=len(jobs))

    @asynccontextmanager
    async def lifecycle(self) -> AsyncIterator["TaskDispatcher"]:
        await self.start()
        try:
            yield self
        finally:
            await self.stop()

    @classmethod
    def from_settings(cls, settings: Settings) -> "TaskDispatcher":
        return cls(max_concurrent=settings.execution.max_concurrent_tasks)
