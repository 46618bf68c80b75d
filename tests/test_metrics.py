from __future__ import annotations

import pytest
from prometheus_client import REGISTRY

from agentflow.core.metrics import (
    increment_poll_check,
    mark_task_finished,
    mark_task_started,
    record_step_outcome,
)


def test_step_outcome_counts_and_latency_by_tool():
    labels = {"tool": "metrics-test-tool", "outcome": "failed"}
    before = REGISTRY.get_sample_value("agentflow_step_outcomes_total", labels) or 0.0
    latency_before = REGISTRY.get_sample_value("agentflow_step_latency_seconds_sum", {"tool": "metrics-test-tool"}) or 0.0

    record_step_outcome(tool="metrics-test-tool", outcome="failed", latency=1.25)

    assert REGISTRY.get_sample_value("agentflow_step_outcomes_total", labels) == pytest.approx(before + 1.0)
    latency_after = REGISTRY.get_sample_value("agentflow_step_latency_seconds_sum", {"tool": "metrics-test-tool"})
    assert latency_after == pytest.approx(latency_before + 1.25)


def test_task_run_metrics_track_active_and_terminal_status():
    active_before = REGISTRY.get_sample_value("agentflow_tasks_active") or 0.0
    failed_before = REGISTRY.get_sample_value("agentflow_task_runs_total", {"status": "failed"}) or 0.0

    mark_task_started()
    assert REGISTRY.get_sample_value("agentflow_tasks_active") == pytest.approx(active_before + 1.0)
    mark_task_finished(status="failed", latency=0.5)

    assert REGISTRY.get_sample_value("agentflow_tasks_active") == pytest.approx(active_before)
    assert REGISTRY.get_sample_value("agentflow_task_runs_total", {"status": "failed"}) == pytest.approx(failed_before + 1.0)


def test_poll_checks_are_counted_per_provider():
    before = REGISTRY.get_sample_value("agentflow_provider_poll_checks_total", {"provider": "metrics-test"}) or 0.0

    increment_poll_check(provider="metrics-test")
    increment_poll_check(provider="metrics-test")

    after = REGISTRY.get_sample_value("agentflow_provider_poll_checks_total", {"provider": "metrics-test"})
    assert after == pytest.approx(before + 2.0)
