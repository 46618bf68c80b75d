from __future__ import annotations

from typing import Any, Mapping

import httpx
from pydantic import AliasChoices, BaseModel, ConfigDict, Field

from ..core import metrics
from ..core.config import ApifySettings, Settings
from ..core.logging import get_logger
from .base import ToolAdapter, ToolName, ToolResult
from .exceptions import ToolPollTimeoutError, ToolProviderError
from .polling import ClockFunc, JobPoller, JobSnapshot, JobStatus, PollPolicy, SleepFunc

logger = get_logger(name=__name__)

# Transitional provider states are still in flight from the poller's point of view.
_STATUS_MAP: dict[str, JobStatus] = {
    "READY": JobStatus.RUNNING,
    "RUNNING": JobStatus.RUNNING,
    "TIMING-OUT": JobStatus.RUNNING,
    "ABORTING": JobStatus.RUNNING,
    "SUCCEEDED": JobStatus.SUCCEEDED,
    "FAILED": JobStatus.FAILED,
    "ABORTED": JobStatus.ABORTED,
    "TIMED-OUT": JobStatus.TIMED_OUT,
    "TIMED_OUT": JobStatus.TIMED_OUT,
}


class ApifyScrapeInput(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    actor_id: str = Field(..., min_length=1)
    run_input: dict[str, Any] = Field(
        default_factory=dict,
        validation_alias=AliasChoices("input", "run_input"),
    )
    url: str | None = None


class ApifyScrapeAdapter(ToolAdapter):
    """Submit an actor run, poll its status on a fixed interval, then read the dataset."""

    name = ToolName.APIFY_SCRAPE
    provider = "apify"
    description = "For complex scraping with navigation and login"
    input_hint = '{"actor_id": "apify/web-scraper", "input": {"startUrls": [{"url": "https://..."}]}, "url": "https://..."}'
    InputModel = ApifyScrapeInput

    def __init__(
        self,
        *,
        api_key: str,
        settings: ApifySettings,
        client: httpx.AsyncClient | None = None,
        sleep: SleepFunc | None = None,
        clock: ClockFunc | None = None,
    ) -> None:
        super().__init__(client=client, timeout_seconds=settings.timeout_seconds)
        self._api_key = api_key
        self._settings = settings
        self._sleep = sleep
        self._clock = clock

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        *,
        client: httpx.AsyncClient | None = None,
        sleep: SleepFunc | None = None,
        clock: ClockFunc | None = None,
    ) -> "ApifyScrapeAdapter":
        return cls(
            api_key=settings.apify_api_key or "",
            settings=settings.apify,
            client=client,
            sleep=sleep,
            clock=clock,
        )

    @property
    def poll_policy(self) -> PollPolicy:
        return PollPolicy(
            interval_seconds=self._settings.poll_interval_seconds,
            max_attempts=self._settings.max_poll_attempts,
        )

    def _url(self, path: str) -> str:
        return f"{self._settings.base_url.rstrip('/')}{path}"

    def _auth(self, **extra: str) -> dict[str, str]:
        return {"token": self._api_key, **extra}

    async def _execute(self, payload_model: ApifyScrapeInput) -> ToolResult:
        # Apify addresses "user/actor" ids as "user~actor" in URLs.
        actor = payload_model.actor_id.replace("/", "~")
        logger.info("apify_run_submitting", actor_id=payload_model.actor_id)
        started = await self._send(
            "POST",
            self._url(f"/v2/acts/{actor}/runs"),
            action="Apify API",
            json_body=payload_model.run_input,
            params=self._auth(),
        )
        run_id = started.get("data", {}).get("id") if isinstance(started, Mapping) else None
        if not run_id:
            logger.warning("apify_run_id_missing", response=started)
            raise ToolProviderError("Apify did not return a valid run ID")
        logger.info("apify_run_started", run_id=run_id)

        async def _check() -> JobSnapshot:
            metrics.increment_poll_check(provider=self.provider)
            body = await self._send(
                "GET",
                self._url(f"/v2/acts/{actor}/runs/{run_id}"),
                action="Apify run status check",
                params=self._auth(),
            )
            run = body.get("data") if isinstance(body, Mapping) else None
            if not isinstance(run, Mapping):
                raise ToolProviderError("Apify status response did not include run data")
            raw_status = str(run.get("status") or "")
            status = _STATUS_MAP.get(raw_status.upper())
            if status is None:
                raise ToolProviderError(
                    f"Apify run reported unexpected status '{raw_status}'",
                    provider_status=raw_status,
                )
            return JobSnapshot(status=status, raw_status=raw_status, payload=dict(run))

        policy = self.poll_policy
        poller = JobPoller(policy, sleep=self._sleep, clock=self._clock)
        outcome = await poller.run(_check)

        if outcome.exhausted:
            logger.warning("apify_poll_budget_exhausted", run_id=run_id, attempts=outcome.attempts)
            raise ToolPollTimeoutError(
                f"Apify run {run_id} still running after {outcome.attempts} status checks "
                f"({policy.ceiling_seconds:g}s poll budget)",
                attempts=outcome.attempts,
            )

        snapshot = outcome.snapshot
        if snapshot is None:
            raise ToolProviderError(f"Apify run {run_id} finished polling without a status report")
        if not outcome.succeeded:
            logger.warning("apify_run_unsuccessful", run_id=run_id, status=snapshot.raw_status)
            raise ToolProviderError(
                f"Apify run ended with status {snapshot.raw_status}",
                provider_status=snapshot.raw_status,
            )

        metadata: dict[str, Any] = {
            "actor_id": payload_model.actor_id,
            "run_id": run_id,
            "status": snapshot.raw_status,
            "status_checks": outcome.attempts,
        }
        dataset_id = snapshot.payload.get("defaultDatasetId")
        if not dataset_id:
            logger.warning("apify_dataset_missing", run_id=run_id)
            return ToolResult(data=[], metadata=metadata)

        items = await self._send(
            "GET",
            self._url(f"/v2/datasets/{dataset_id}/items"),
            action="Apify dataset fetch",
            params=self._auth(format="json", clean="true"),
        )
        if not isinstance(items, list):
            items = []
        logger.info("apify_dataset_fetched", run_id=run_id, item_count=len(items))
        metadata.update(dataset_id=dataset_id, item_count=len(items))
        return ToolResult(data=items, metadata=metadata)
