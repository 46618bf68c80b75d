from __future__ import annotations

from prometheus_client import Counter, Gauge, Histogram

TASK_RUNS_TOTAL = Counter(
    "agentflow_task_runs_total",
    "Orchestrated tasks grouped by terminal status",
    labelnames=("status",),
)

TASK_RUN_LATENCY_SECONDS = Histogram(
    "agentflow_task_run_latency_seconds",
    "End-to-end orchestration latency per task",
    buckets=(0.5, 1, 2, 5, 10, 30, 60, 120, 300, 600, 900, float("inf")),
)

TASKS_ACTIVE = Gauge(
    "agentflow_tasks_active",
    "Tasks currently being orchestrated",
)

PLAN_STEPS = Histogram(
    "agentflow_plan_steps",
    "Number of steps produced per generated plan",
    buckets=(0, 1, 2, 3, 4, 5, 8, 13, 21),
)

PLAN_OUTCOMES_TOTAL = Counter(
    "agentflow_plan_outcomes_total",
    "Plan generation outcomes grouped by error kind",
    labelnames=("outcome",),
)

STEP_OUTCOMES_TOTAL = Counter(
    "agentflow_step_outcomes_total",
    "Execution step outcomes per tool",
    labelnames=("tool", "outcome"),
)

STEP_LATENCY_SECONDS = Histogram(
    "agentflow_step_latency_seconds",
    "Latency of a single tool dispatch",
    labelnames=("tool",),
    buckets=(0.1, 0.5, 1, 2, 5, 10, 30, 60, 120, 180, 300, float("inf")),
)

PROVIDER_POLL_CHECKS_TOTAL = Counter(
    "agentflow_provider_poll_checks_total",
    "Status checks issued against job-oriented providers",
    labelnames=("provider",),
)

REASONING_CALLS_TOTAL = Counter(
    "agentflow_reasoning_calls_total",
    "Reasoning service calls grouped by purpose and outcome",
    labelnames=("purpose", "outcome"),
)

SCRAPED_DATA_WRITES_TOTAL = Counter(
    "agentflow_scraped_data_writes_total",
    "Secondary scraped data writes grouped by outcome",
    labelnames=("outcome",),
)


def mark_task_started() -> None:
    TASKS_ACTIVE.inc()


def mark_task_finished(*, status: str, latency: float) -> None:
    TASKS_ACTIVE.dec()
    TASK_RUNS_TOTAL.labels(status=status).inc()
    TASK_RUN_LATENCY_SECONDS.observe(max(0.0, latency))


def record_plan_outcome(*, outcome: str, steps: int | None = None) -> None:
    PLAN_OUTCOMES_TOTAL.labels(outcome=outcome).inc()
    if steps is not None:
        PLAN_STEPS.observe(max(0, steps))


def record_step_outcome(*, tool: str, outcome: str, latency: float) -> None:
    STEP_OUTCOMES_TOTAL.labels(tool=tool, outcome=outcome).inc()
    STEP_LATENCY_SECONDS.labels(tool=tool).observe(max(0.0, latency))


def increment_poll_check(*, provider: str) -> None:
    PROVIDER_POLL_CHECKS_TOTAL.labels(provider=provider).inc()


def record_reasoning_call(*, purpose: str, outcome: str) -> None:
    REASONING_CALLS_TOTAL.labels(purpose=purpose, outcome=outcome).inc()


def record_scraped_data_write(*, outcome: str) -> None:
    SCRAPED_DATA_WRITES_TOTAL.labels(outcome=outcome).inc()
