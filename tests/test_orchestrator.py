from __future__ import annotations

import asyncio
import json

import pytest

from agentflow.core.exceptions import InvalidTransitionError, ReasoningTransportError, TaskFinalizedError
from agentflow.orchestration.enums import StepStatus, TaskStatus
from agentflow.orchestration.executor import StepExecutor
from agentflow.orchestration.lifecycle import InMemoryLifecycleSink
from agentflow.orchestration.orchestrator import TaskOrchestrator, ensure_transition
from agentflow.orchestration.planner import PlanGenerator
from agentflow.orchestration.state import new_task
from agentflow.orchestration.store import InMemoryTaskStore
from agentflow.orchestration.summarizer import SummaryGenerator
from agentflow.services.notifications import StepEvent, TaskEvent, TaskEventBroker
from agentflow.tools.base import ToolName, ToolResult
from agentflow.tools.exceptions import ToolProviderError

from tests.helpers.stubs import (
    FailingFinalizeStore,
    ScriptedReasoning,
    StubTool,
    blocking,
    plan_json,
    raising,
    returning,
    stub_registry,
)

SEARCH_STEP = {"tool": "tavily_search", "input": {"query": "gaming laptops"}, "description": "search"}
SCRAPE_STEP = {
    "tool": "apify_scrape",
    "input": {"actor_id": "apify/web-scraper", "url": "https://shop.example"},
    "description": "scrape prices",
}


class Harness:
    def __init__(self, reasoning: ScriptedReasoning, *tools: StubTool, store: InMemoryTaskStore | None = None) -> None:
        self.reasoning = reasoning
        self.store = store or InMemoryTaskStore()
        self.broker = TaskEventBroker()
        self.sink = InMemoryLifecycleSink()
        registry = stub_registry(*tools)
        self.orchestrator = TaskOrchestrator(
            store=self.store,
            planner=PlanGenerator(reasoning, registry),
            executor=StepExecutor(store=self.store, tools=registry, broker=self.broker, lifecycle=self.sink),
            summarizer=SummaryGenerator(reasoning),
            broker=self.broker,
            lifecycle=self.sink,
        )

    async def run(self, user_input: str):
        task = await self.store.create_task(new_task(user_input))
        async with self.broker.subscribe(task.id) as subscription:
            finished = await self.orchestrator.run(task.id, user_input)
            events = [event async for event in subscription]
        return finished, events


def _search_tool() -> StubTool:
    return StubTool(
        ToolName.TAVILY_SEARCH,
        returning(ToolResult(data={"results": [{"url": "https://shop.example"}], "answer": "shop"})),
    )


def _scrape_tool(result: ToolResult | None = None) -> StubTool:
    return StubTool(ToolName.APIFY_SCRAPE, returning(result or ToolResult(data=[{"price": 999}], metadata={"run_id": "r"})))


@pytest.mark.asyncio
async def test_successful_run_completes_every_step_and_summarizes() -> None:
    reasoning = ScriptedReasoning([plan_json(SEARCH_STEP, SCRAPE_STEP), "Found one laptop at $999."])
    harness = Harness(reasoning, _search_tool(), _scrape_tool())

    task, events = await harness.run("Find gaming laptops and their prices")

    assert task.status is TaskStatus.COMPLETED
    assert task.error is None
    assert task.completed_at is not None
    assert task.result is not None
    assert task.result.summary == "Found one laptop at $999."
    assert len(task.result.steps) == 2

    steps = await harness.store.list_steps(task.id)
    assert [step.step_number for step in steps] == [1, 2]
    assert all(step.status is StepStatus.COMPLETED for step in steps)

    scraped = await harness.store.list_scraped_data(task.id)
    assert len(scraped) == 1
    assert scraped[0].url == "https://shop.example"

    assert [event.event for event in events] == [
        "step.inserted",
        "step.updated",
        "step.inserted",
        "step.updated",
        "task.finalized",
    ]
    assert isinstance(events[-1], TaskEvent)
    assert events[-1].task.status is TaskStatus.COMPLETED


@pytest.mark.asyncio
async def test_summary_prompt_carries_intent_and_ordered_results() -> None:
    reasoning = ScriptedReasoning([plan_json(SEARCH_STEP, SCRAPE_STEP), "summary"])
    harness = Harness(reasoning, _search_tool(), _scrape_tool())

    await harness.run("Find gaming laptops")

    prompt = reasoning.calls[1]["user_content"]
    assert prompt.startswith("User requested: Find gaming laptops\n\nResults from execution:\n")
    assert prompt.endswith("\n\nProvide a clear summary of what was accomplished.")
    rendered = prompt.split("Results from execution:\n", 1)[1].rsplit("\n\nProvide", 1)[0]
    results = json.loads(rendered)
    assert results[0]["data"]["answer"] == "shop"
    assert results[1]["data"] == [{"price": 999}]


@pytest.mark.asyncio
async def test_unparseable_plan_fails_task_without_steps() -> None:
    reasoning = ScriptedReasoning(["I think you should search the web."])
    harness = Harness(reasoning, _search_tool())

    task, events = await harness.run("Find gaming laptops")

    assert task.status is TaskStatus.FAILED
    assert task.error is not None and task.error.startswith("Invalid plan format from AI")
    assert task.result is None
    assert task.completed_at is not None
    assert await harness.store.list_steps(task.id) == []
    assert [event.event for event in events] == ["task.finalized"]


@pytest.mark.asyncio
async def test_planner_transport_failure_fails_task() -> None:
    reasoning = ScriptedReasoning([ReasoningTransportError("OpenRouter API failed (502): bad gateway", status_code=502)])
    harness = Harness(reasoning, _search_tool())

    task, _ = await harness.run("anything")

    assert task.status is TaskStatus.FAILED
    assert task.error == "OpenRouter API failed (502): bad gateway"


@pytest.mark.asyncio
async def test_first_step_failure_aborts_remaining_steps() -> None:
    third = _search_tool()
    reasoning = ScriptedReasoning([plan_json(SEARCH_STEP, SCRAPE_STEP, SEARCH_STEP)])
    failing_scrape = StubTool(ToolName.APIFY_SCRAPE, raising(ToolProviderError("Apify run ended with status FAILED")))
    harness = Harness(reasoning, third, failing_scrape)

    task, events = await harness.run("Find gaming laptops")

    assert task.status is TaskStatus.FAILED
    assert task.error == "Step 2 (apify_scrape) failed: Apify run ended with status FAILED"
    assert task.result is None

    steps = await harness.store.list_steps(task.id)
    assert [(step.step_number, step.status) for step in steps] == [
        (1, StepStatus.COMPLETED),
        (2, StepStatus.FAILED),
    ]
    assert len(third.calls) == 1
    assert len(reasoning.calls) == 1
    assert [event.event for event in events][-1] == "task.finalized"
    assert sum(isinstance(event, TaskEvent) for event in events) == 1


@pytest.mark.asyncio
async def test_unknown_tool_in_plan_fails_at_dispatch() -> None:
    reasoning = ScriptedReasoning([plan_json({"tool": "web_search", "input": {"query": "q"}})])
    harness = Harness(reasoning, _search_tool())

    task, _ = await harness.run("search please")

    assert task.status is TaskStatus.FAILED
    assert task.error == "Step 1 (web_search) failed: Unknown tool: web_search"
    steps = await harness.store.list_steps(task.id)
    assert len(steps) == 1 and steps[0].status is StepStatus.FAILED


@pytest.mark.asyncio
async def test_summarization_failure_fails_completed_execution() -> None:
    reasoning = ScriptedReasoning(
        [plan_json(SEARCH_STEP), ReasoningTransportError("OpenRouter API failed (500): oops", status_code=500)]
    )
    harness = Harness(reasoning, _search_tool())

    task, _ = await harness.run("Find gaming laptops")

    assert task.status is TaskStatus.FAILED
    assert task.error is not None and "OpenRouter API failed (500)" in task.error
    steps = await harness.store.list_steps(task.id)
    assert [step.status for step in steps] == [StepStatus.COMPLETED]


@pytest.mark.asyncio
async def test_lifecycle_events_follow_state_machine() -> None:
    reasoning = ScriptedReasoning([plan_json(SEARCH_STEP), "done"])
    harness = Harness(reasoning, _search_tool())

    task, _ = await harness.run("Find gaming laptops")

    types = harness.sink.event_types(task.id)
    assert types[0] == "task_started"
    assert types[-1] == "task_completed"
    transitions = [
        (event.payload["from"], event.payload["to"])
        for event in harness.sink.for_task(task.id)
        if event.event_type == "task_status_changed"
    ]
    assert transitions == [("pending", "planning"), ("planning", "executing")]


@pytest.mark.asyncio
async def test_terminal_task_cannot_be_mutated() -> None:
    reasoning = ScriptedReasoning([plan_json(SEARCH_STEP), "done"])
    harness = Harness(reasoning, _search_tool())
    task, _ = await harness.run("Find gaming laptops")

    with pytest.raises(TaskFinalizedError):
        await harness.store.update_task(task.id, status=TaskStatus.FAILED, error="late")
    stored = await harness.store.get_task(task.id)
    assert stored is not None and stored.status is TaskStatus.COMPLETED


@pytest.mark.asyncio
async def test_second_run_of_live_task_is_rejected_without_touching_it() -> None:
    entered, release = asyncio.Event(), asyncio.Event()
    slow_search = StubTool(
        ToolName.TAVILY_SEARCH,
        blocking(ToolResult(data={"results": []}), entered=entered, release=release),
    )
    reasoning = ScriptedReasoning([plan_json(SEARCH_STEP), "done"])
    harness = Harness(reasoning, slow_search)
    task = await harness.store.create_task(new_task("Find gaming laptops"))

    first = asyncio.create_task(harness.orchestrator.run(task.id, "Find gaming laptops"))
    await asyncio.wait_for(entered.wait(), timeout=1)

    with pytest.raises(InvalidTransitionError):
        await harness.orchestrator.run(task.id, "Find gaming laptops")
    live = await harness.store.get_task(task.id)
    assert live is not None
    assert live.status is TaskStatus.EXECUTING
    assert live.error is None

    release.set()
    finished = await asyncio.wait_for(first, timeout=1)

    assert finished.status is TaskStatus.COMPLETED
    steps = await harness.store.list_steps(task.id)
    assert [step.status for step in steps] == [StepStatus.COMPLETED]
    assert len(reasoning.calls) == 2


@pytest.mark.asyncio
async def test_rerunning_a_finished_task_raises_and_keeps_its_result() -> None:
    reasoning = ScriptedReasoning([plan_json(SEARCH_STEP), "done"])
    harness = Harness(reasoning, _search_tool())
    task, _ = await harness.run("Find gaming laptops")

    with pytest.raises(InvalidTransitionError):
        await harness.orchestrator.run(task.id, "Find gaming laptops")

    stored = await harness.store.get_task(task.id)
    assert stored is not None
    assert stored.status is TaskStatus.COMPLETED
    assert stored.result is not None and stored.result.summary == "done"
    assert len(await harness.store.list_steps(task.id)) == 1


@pytest.mark.asyncio
async def test_step_result_write_failure_fails_task_with_step_message() -> None:
    reasoning = ScriptedReasoning([plan_json(SEARCH_STEP), "unused"])
    harness = Harness(reasoning, _search_tool(), store=FailingFinalizeStore(fail_statuses={StepStatus.COMPLETED}))

    task, _ = await harness.run("Find gaming laptops")

    assert task.status is TaskStatus.FAILED
    assert task.error is not None and task.error.startswith("Step 1 (tavily_search) failed:")
    steps = await harness.store.list_steps(task.id)
    assert [step.status for step in steps] == [StepStatus.FAILED]
    assert len(reasoning.calls) == 1


@pytest.mark.parametrize(
    ("current", "target"),
    [
        (TaskStatus.PENDING, TaskStatus.EXECUTING),
        (TaskStatus.PENDING, TaskStatus.COMPLETED),
        (TaskStatus.PLANNING, TaskStatus.COMPLETED),
        (TaskStatus.COMPLETED, TaskStatus.FAILED),
        (TaskStatus.FAILED, TaskStatus.PLANNING),
    ],
)
def test_invalid_transitions_are_rejected(current: TaskStatus, target: TaskStatus) -> None:
    with pytest.raises(InvalidTransitionError):
        ensure_transition(current, target)


def test_valid_transitions_are_accepted() -> None:
    ensure_transition(TaskStatus.PENDING, TaskStatus.PLANNING)
    ensure_transition(TaskStatus.PLANNING, TaskStatus.FAILED)
    ensure_transition(TaskStatus.EXECUTING, TaskStatus.COMPLETED)


@pytest.mark.asyncio
async def test_step_events_carry_full_step_records() -> None:
    reasoning = ScriptedReasoning([plan_json(SCRAPE_STEP), "done"])
    harness = Harness(reasoning, _scrape_tool())

    _, events = await harness.run("scrape")

    step_events = [event for event in events if isinstance(event, StepEvent)]
    assert step_events[0].step.tool_input == SCRAPE_STEP["input"]
    assert step_events[1].step.tool_output == {"data": [{"price": 999}], "metadata": {"run_id": "r"}}
