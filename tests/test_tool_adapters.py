from __future__ import annotations

import json

import httpx
import pytest

from agentflow.tools import apify as apify_module
from agentflow.tools.apify import ApifyScrapeAdapter
from agentflow.tools.browseai import BrowseAIScrapeAdapter
from agentflow.tools.exceptions import (
    ToolInputError,
    ToolPollTimeoutError,
    ToolProviderError,
    ToolTransportError,
)
from agentflow.tools.polling import PollOutcome, PollPhase
from agentflow.tools.search import TavilySearchAdapter

from tests.helpers.stubs import SleepRecorder, make_settings


def _http(handler) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


@pytest.mark.asyncio
async def test_tavily_search_builds_request_and_normalizes_result() -> None:
    seen: list[dict] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(json.loads(request.content))
        assert request.url.path == "/search"
        return httpx.Response(
            200,
            json={
                "results": [{"title": "A", "url": "https://a.example"}],
                "answer": "A is best",
                "response_time": 0.8,
            },
        )

    adapter = TavilySearchAdapter.from_settings(make_settings(), client=_http(handler))
    result = await adapter.execute({"query": "best laptops"})

    assert seen == [
        {
            "api_key": "tv-test",
            "query": "best laptops",
            "search_depth": "advanced",
            "include_answer": True,
            "max_results": 5,
        }
    ]
    assert result.data == {"results": [{"title": "A", "url": "https://a.example"}], "answer": "A is best"}
    assert result.metadata == {"query": "best laptops", "result_count": 1, "response_time": 0.8}
    assert result.error is None


@pytest.mark.asyncio
async def test_tavily_error_status_raises_transport_error() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(500, text="internal error")

    adapter = TavilySearchAdapter.from_settings(make_settings(), client=_http(handler))

    with pytest.raises(ToolTransportError) as excinfo:
        await adapter.execute({"query": "q", "max_results": 3})

    assert str(excinfo.value) == "Tavily API failed (500): internal error"
    assert excinfo.value.status_code == 500


@pytest.mark.asyncio
async def test_invalid_input_is_rejected_before_any_request() -> None:
    requests: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        return httpx.Response(200, json={})

    adapter = TavilySearchAdapter.from_settings(make_settings(), client=_http(handler))

    with pytest.raises(ToolInputError):
        await adapter.execute({"max_results": 3})
    assert requests == []


@pytest.mark.asyncio
async def test_browseai_waits_once_then_fetches_once() -> None:
    requests: list[tuple[str, str]] = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append((request.method, request.url.path))
        assert request.headers["Authorization"] == "Bearer ba-test"
        if request.method == "POST":
            assert json.loads(request.content) == {"inputParameters": {"originUrl": "https://shop.example"}}
            return httpx.Response(200, json={"result": {"id": "task-9"}})
        return httpx.Response(
            200,
            json={"result": {"status": "successful", "capturedTexts": {"price": "$10"}, "capturedLists": {}}},
        )

    sleep = SleepRecorder()
    adapter = BrowseAIScrapeAdapter.from_settings(make_settings(), client=_http(handler), sleep=sleep)
    result = await adapter.execute(
        {"robot_id": "robot-1", "parameters": {"originUrl": "https://shop.example"}, "url": "https://shop.example"}
    )

    assert requests == [
        ("POST", "/v2/robots/robot-1/tasks"),
        ("GET", "/v2/robots/robot-1/tasks/task-9"),
    ]
    assert sleep.delays == [5.0]
    assert result.data == {"capturedTexts": {"price": "$10"}}
    assert result.metadata == {"robot_id": "robot-1", "task_id": "task-9", "status": "successful"}


@pytest.mark.asyncio
async def test_browseai_missing_task_id_is_provider_error() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"result": {}})

    sleep = SleepRecorder()
    adapter = BrowseAIScrapeAdapter.from_settings(make_settings(), client=_http(handler), sleep=sleep)

    with pytest.raises(ToolProviderError) as excinfo:
        await adapter.execute({"robot_id": "robot-1"})

    assert str(excinfo.value) == "BrowseAI did not return a valid task ID"
    assert sleep.delays == []


class _ApifyScript:
    """Fake Apify API: fixed run id, scripted status sequence, optional dataset."""

    def __init__(self, statuses: list[str], *, dataset_id: str | None = "ds-1", items: list | None = None) -> None:
        self.statuses = statuses
        self.dataset_id = dataset_id
        self.items = items if items is not None else [{"title": "Item"}]
        self.status_checks = 0
        self.paths: list[str] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.paths.append(request.url.path)
        assert request.url.params["token"] == "ap-test"
        if request.method == "POST":
            return httpx.Response(201, json={"data": {"id": "run-1", "status": "READY"}})
        if request.url.path.endswith("/runs/run-1"):
            status = self.statuses[min(self.status_checks, len(self.statuses) - 1)]
            self.status_checks += 1
            data: dict = {"id": "run-1", "status": status}
            if self.dataset_id:
                data["defaultDatasetId"] = self.dataset_id
            return httpx.Response(200, json={"data": data})
        if request.url.path == f"/v2/datasets/{self.dataset_id}/items":
            assert request.url.params["format"] == "json"
            return httpx.Response(200, json=self.items)
        return httpx.Response(404, text="not found")


def _apify(script: _ApifyScript, *, max_poll_attempts: int = 60) -> tuple[ApifyScrapeAdapter, SleepRecorder]:
    sleep = SleepRecorder()
    settings = make_settings(apify={"poll_interval_seconds": 3.0, "max_poll_attempts": max_poll_attempts})
    adapter = ApifyScrapeAdapter.from_settings(settings, client=_http(script), sleep=sleep)
    return adapter, sleep


@pytest.mark.asyncio
async def test_apify_polls_until_success_then_reads_dataset() -> None:
    script = _ApifyScript(["RUNNING", "RUNNING", "SUCCEEDED"])
    adapter, sleep = _apify(script)

    result = await adapter.execute({"actor_id": "apify/web-scraper", "input": {"startUrls": []}})

    assert script.paths[0] == "/v2/acts/apify~web-scraper/runs"
    assert script.status_checks == 3
    assert sleep.delays == [3.0, 3.0, 3.0]
    assert result.data == [{"title": "Item"}]
    assert result.metadata is not None
    assert result.metadata["item_count"] == 1
    assert result.metadata["dataset_id"] == "ds-1"


@pytest.mark.asyncio
async def test_apify_without_dataset_returns_empty_list() -> None:
    script = _ApifyScript(["SUCCEEDED"], dataset_id=None)
    adapter, _ = _apify(script)

    result = await adapter.execute({"actor_id": "apify/web-scraper"})

    assert result.data == []
    assert not any(path.startswith("/v2/datasets") for path in script.paths)


@pytest.mark.asyncio
@pytest.mark.parametrize("status", ["FAILED", "ABORTED", "TIMED-OUT"])
async def test_apify_unsuccessful_run_is_provider_error(status: str) -> None:
    script = _ApifyScript(["RUNNING", status])
    adapter, _ = _apify(script)

    with pytest.raises(ToolProviderError) as excinfo:
        await adapter.execute({"actor_id": "apify/web-scraper"})

    assert not isinstance(excinfo.value, ToolPollTimeoutError)
    assert str(excinfo.value) == f"Apify run ended with status {status}"
    assert script.status_checks == 2


@pytest.mark.asyncio
async def test_apify_poll_budget_exhaustion_is_distinct_timeout() -> None:
    script = _ApifyScript(["RUNNING"])
    adapter, sleep = _apify(script, max_poll_attempts=4)

    with pytest.raises(ToolPollTimeoutError) as excinfo:
        await adapter.execute({"actor_id": "apify/web-scraper"})

    assert excinfo.value.attempts == 4
    assert script.status_checks == 4
    assert len(sleep.delays) == 4


@pytest.mark.asyncio
async def test_apify_missing_run_id_is_provider_error() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(201, json={"data": {}})

    adapter = ApifyScrapeAdapter.from_settings(make_settings(), client=_http(handler), sleep=SleepRecorder())

    with pytest.raises(ToolProviderError):
        await adapter.execute({"actor_id": "apify/web-scraper"})


@pytest.mark.asyncio
async def test_apify_unknown_status_is_provider_error() -> None:
    script = _ApifyScript(["EXPLODED"])
    adapter, _ = _apify(script)

    with pytest.raises(ToolProviderError) as excinfo:
        await adapter.execute({"actor_id": "apify/web-scraper"})

    assert excinfo.value.provider_status == "EXPLODED"


@pytest.mark.asyncio
async def test_apify_poll_outcome_without_status_report_is_provider_error(monkeypatch: pytest.MonkeyPatch) -> None:
    class _SilentPoller:
        def __init__(self, policy, *, sleep=None, clock=None) -> None:  # noqa: ARG002
            self.policy = policy

        async def run(self, check) -> PollOutcome:  # noqa: ARG002
            return PollOutcome(phase=PollPhase.SUCCEEDED, attempts=0, elapsed_seconds=0.0)

    monkeypatch.setattr(apify_module, "JobPoller", _SilentPoller)
    script = _ApifyScript(["SUCCEEDED"])
    adapter, _ = _apify(script)

    with pytest.raises(ToolProviderError) as excinfo:
        await adapter.execute({"actor_id": "apify/web-scraper"})

    assert str(excinfo.value) == "Apify run run-1 finished polling without a status report"
