from __future__ import annotations

import asyncio

import pytest

from agentflow.orchestration.enums import TaskStatus
from agentflow.orchestration.state import ExecutionStep, new_task
from agentflow.services.notifications import StepEvent, TaskEvent, TaskEventBroker


def _step(task_id: str, number: int = 1) -> ExecutionStep:
    return ExecutionStep(task_id=task_id, step_number=number, tool_name="tavily_search")


@pytest.mark.asyncio
async def test_subscription_ends_after_task_event() -> None:
    broker = TaskEventBroker()
    task = new_task("x")

    async with broker.subscribe(task.id) as subscription:
        await broker.publish(StepEvent(event="step.inserted", step=_step(task.id)))
        await broker.publish(TaskEvent(task=task.model_copy(update={"status": TaskStatus.COMPLETED})))
        received = [event async for event in subscription]

    assert [event.event for event in received] == ["step.inserted", "task.finalized"]
    assert broker.subscriber_count(task.id) == 0


@pytest.mark.asyncio
async def test_events_are_routed_by_task() -> None:
    broker = TaskEventBroker()
    first, second = new_task("a"), new_task("b")

    async with broker.subscribe(first.id) as subscription:
        await broker.publish(StepEvent(event="step.inserted", step=_step(second.id)))
        await broker.publish(StepEvent(event="step.inserted", step=_step(first.id)))

        event = await subscription.next_event(timeout=1)
        assert event.task_id == first.id
        with pytest.raises(asyncio.TimeoutError):
            await subscription.next_event(timeout=0.01)


@pytest.mark.asyncio
async def test_publish_without_subscribers_is_a_no_op() -> None:
    broker = TaskEventBroker()

    await broker.publish(StepEvent(event="step.updated", step=_step("nobody")))

    assert broker.subscriber_count("nobody") == 0


@pytest.mark.asyncio
async def test_full_subscriber_queue_drops_events() -> None:
    broker = TaskEventBroker(max_queue_size=1)
    task = new_task("x")

    async with broker.subscribe(task.id) as subscription:
        await broker.publish(StepEvent(event="step.inserted", step=_step(task.id, 1)))
        await broker.publish(StepEvent(event="step.inserted", step=_step(task.id, 2)))

        event = await subscription.next_event(timeout=1)
        assert isinstance(event, StepEvent) and event.step.step_number == 1


def test_event_payloads_are_json_ready() -> None:
    task = new_task("x")
    payload = StepEvent(event="step.updated", step=_step(task.id)).to_payload()

    assert payload["event"] == "step.updated"
    assert payload["step"]["status"] == "executing"
    assert isinstance(payload["step"]["id"], str)
    assert TaskEvent(task=task).to_payload()["task"]["status"] == "pending"
