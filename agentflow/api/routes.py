from __future__ import annotations

import json
from typing import Any, AsyncIterator

from fastapi import APIRouter, Depends, HTTPException, status
from fastapi.responses import StreamingResponse

from ..core.exceptions import DispatcherUnavailableError, PlanningError, TaskNotFoundError
from ..core.logging import get_logger
from ..dependencies import get_event_broker, get_task_service
from ..schemas.tasks import (
    ExecutionStepModel,
    ScrapedDataModel,
    TaskRequest,
    TaskResponse,
    TaskStatusResponse,
)
from ..services.notifications import TaskEvent, TaskEventBroker
from ..services.tasks import TaskService

router = APIRouter()
logger = get_logger(name=__name__)

_SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}


def _format_sse(event: str, data: dict[str, Any]) -> str:
    return f"event: {event}\ndata: {json.dumps(data, default=str)}\n\n"


@router.get("/health", tags=["health"])
async def healthcheck() -> dict[str, str]:
    return {"status": "ok"}


@router.post(
    "/tasks",
    response_model=TaskResponse,
    status_code=status.HTTP_202_ACCEPTED,
    tags=["tasks"],
)
async def submit_task(
    payload: TaskRequest,
    service: TaskService = Depends(get_task_service),
) -> TaskResponse:
    try:
        task_id = await service.start_task(payload.input)
    except PlanningError as exc:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(exc)) from exc
    except DispatcherUnavailableError as exc:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc
    return TaskResponse(task_id=task_id, status="pending")


@router.get("/tasks/{task_id}", response_model=TaskStatusResponse, tags=["tasks"])
async def get_task_status(
    task_id: str,
    service: TaskService = Depends(get_task_service),
) -> TaskStatusResponse:
    try:
        task = await service.get_task(task_id)
        steps = await service.list_steps(task_id)
    except TaskNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Task not found") from exc
    return TaskStatusResponse.from_task(task, steps)


@router.get("/tasks/{task_id}/steps", response_model=list[ExecutionStepModel], tags=["tasks"])
async def list_task_steps(
    task_id: str,
    service: TaskService = Depends(get_task_service),
) -> list[ExecutionStepModel]:
    try:
        steps = await service.list_steps(task_id)
    except TaskNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Task not found") from exc
    return [ExecutionStepModel.from_step(step) for step in steps]


@router.get("/tasks/{task_id}/scraped-data", response_model=list[ScrapedDataModel], tags=["tasks"])
async def list_task_scraped_data(
    task_id: str,
    service: TaskService = Depends(get_task_service),
) -> list[ScrapedDataModel]:
    try:
        records = await service.list_scraped_data(task_id)
    except TaskNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Task not found") from exc
    return [ScrapedDataModel.from_record(record) for record in records]


@router.get("/tasks/{task_id}/events", tags=["tasks"])
async def stream_task_events(
    task_id: str,
    service: TaskService = Depends(get_task_service),
    broker: TaskEventBroker = Depends(get_event_broker),
) -> StreamingResponse:
    try:
        await service.get_task(task_id)
    except TaskNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Task not found") from exc

    async def event_stream() -> AsyncIterator[str]:
        async with broker.subscribe(task_id) as subscription:
            # Snapshot is read after subscribing so no event falls between the two.
            task = await service.get_task(task_id)
            steps = await service.list_steps(task_id)
            yield _format_sse("task.snapshot", TaskStatusResponse.from_task(task, steps).model_dump(mode="json"))
            if task.status.is_terminal:
                yield _format_sse("task.finalized", TaskEvent(task=task).to_payload())
                return
            async for event in subscription:
                yield _format_sse(event.event, event.to_payload())
        logger.info("task_event_stream_closed", task_id=task_id)

    return StreamingResponse(event_stream(), media_type="text/event-stream", headers=_SSE_HEADERS)
