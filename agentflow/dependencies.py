from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import AsyncExitStack, asynccontextmanager
from dataclasses import dataclass

from fastapi import HTTPException, Request, status

from .core.config import Settings
from .core.logging import get_logger
from .orchestration.executor import StepExecutor
from .orchestration.lifecycle import LifecycleSink, StructlogLifecycleSink
from .orchestration.orchestrator import TaskOrchestrator
from .orchestration.planner import PlanGenerator, ReasoningBackend
from .orchestration.store import TaskStore, build_task_store
from .orchestration.summarizer import SummaryGenerator
from .queue.manager import TaskDispatcher
from .services.notifications import TaskEventBroker
from .services.reasoning import ReasoningClient
from .services.tasks import TaskService
from .tools.registry import ToolRegistry, build_tool_registry

logger = get_logger(name=__name__)


@dataclass(slots=True)
class AppServices:
    store: TaskStore
    tools: ToolRegistry
    broker: TaskEventBroker
    dispatcher: TaskDispatcher
    orchestrator: TaskOrchestrator
    tasks: TaskService


def build_services(
    settings: Settings,
    *,
    store: TaskStore,
    tools: ToolRegistry,
    reasoning: ReasoningBackend,
    broker: TaskEventBroker | None = None,
    dispatcher: TaskDispatcher | None = None,
    lifecycle: LifecycleSink | None = None,
) -> AppServices:
    broker = broker or TaskEventBroker()
    dispatcher = dispatcher or TaskDispatcher.from_settings(settings)
    lifecycle = lifecycle or StructlogLifecycleSink()
    executor = StepExecutor(
        store=store,
        tools=tools,
        broker=broker,
        lifecycle=lifecycle,
        step_timeout_seconds=settings.execution.step_timeout_seconds,
    )
    orchestrator = TaskOrchestrator(
        store=store,
        planner=PlanGenerator(reasoning, tools),
        executor=executor,
        summarizer=SummaryGenerator(reasoning),
        broker=broker,
        lifecycle=lifecycle,
    )
    return AppServices(
        store=store,
        tools=tools,
        broker=broker,
        dispatcher=dispatcher,
        orchestrator=orchestrator,
        tasks=TaskService(store=store, orchestrator=orchestrator, dispatcher=dispatcher),
    )


@asynccontextmanager
async def open_services(settings: Settings) -> AsyncIterator[AppServices]:
    """Build the production object graph and release every resource on exit."""
    async with AsyncExitStack() as stack:
        store = await stack.enter_async_context(build_task_store(settings).lifecycle())
        tools = build_tool_registry(settings)
        stack.push_async_callback(tools.aclose)
        reasoning = ReasoningClient.from_settings(settings)
        stack.push_async_callback(reasoning.aclose)
        services = build_services(settings, store=store, tools=tools, reasoning=reasoning)
        await stack.enter_async_context(services.dispatcher.lifecycle())
        logger.info("services_started", tools=[name.value for name in tools.list()])
        yield services


def _services(request: Request) -> AppServices:
    services = getattr(request.app.state, "services", None)
    if services is None:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Task service unavailable")
    return services


async def get_task_service(request: Request) -> TaskService:
    return _services(request).tasks


async def get_event_broker(request: Request) -> TaskEventBroker:
    return _services(request).broker
