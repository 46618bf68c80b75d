from __future__ import annotations

import asyncio
from typing import Any, Awaitable, Callable, Mapping

import httpx
from pydantic import AliasChoices, BaseModel, ConfigDict, Field

from ..core.config import BrowseAISettings, Settings
from ..core.logging import get_logger
from .base import ToolAdapter, ToolName, ToolResult
from .exceptions import ToolProviderError

logger = get_logger(name=__name__)

_CAPTURE_FIELDS = ("capturedTexts", "capturedLists", "capturedScreenshots")


class BrowseAIScrapeInput(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    robot_id: str = Field(..., min_length=1)
    parameters: dict[str, Any] = Field(
        default_factory=dict,
        validation_alias=AliasChoices("parameters", "input_parameters", "inputParameters"),
    )
    url: str | None = None


class BrowseAIScrapeAdapter(ToolAdapter):
    """Fire, wait, collect: submit a robot task, wait one fixed interval, fetch once."""

    name = ToolName.BROWSEAI_SCRAPE
    provider = "browseai"
    description = "For simple data extraction (tables, prices, emails)"
    input_hint = '{"robot_id": "...", "parameters": {"originUrl": "https://..."}, "url": "https://..."}'
    InputModel = BrowseAIScrapeInput

    def __init__(
        self,
        *,
        api_key: str,
        settings: BrowseAISettings,
        client: httpx.AsyncClient | None = None,
        sleep: Callable[[float], Awaitable[Any]] | None = None,
    ) -> None:
        super().__init__(client=client, timeout_seconds=settings.timeout_seconds)
        self._api_key = api_key
        self._settings = settings
        self._sleep = sleep or asyncio.sleep

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        *,
        client: httpx.AsyncClient | None = None,
        sleep: Callable[[float], Awaitable[Any]] | None = None,
    ) -> "BrowseAIScrapeAdapter":
        return cls(api_key=settings.browseai_api_key or "", settings=settings.browseai, client=client, sleep=sleep)

    def _headers(self) -> dict[str, str]:
        return {"Authorization": f"Bearer {self._api_key}"}

    async def _execute(self, payload_model: BrowseAIScrapeInput) -> ToolResult:
        base = f"{self._settings.base_url.rstrip('/')}/v2/robots/{payload_model.robot_id}/tasks"
        logger.info("browseai_task_submitting", robot_id=payload_model.robot_id)
        submitted = await self._send(
            "POST",
            base,
            action="BrowseAI API",
            json_body={"inputParameters": payload_model.parameters},
            headers=self._headers(),
        )
        task_id = _nested(submitted, "result", "id")
        if not task_id:
            logger.warning("browseai_task_id_missing", response=submitted)
            raise ToolProviderError("BrowseAI did not return a valid task ID")

        logger.info(
            "browseai_task_created",
            task_id=task_id,
            wait_seconds=self._settings.result_delay_seconds,
        )
        await self._sleep(self._settings.result_delay_seconds)

        fetched = await self._send(
            "GET",
            f"{base}/{task_id}",
            action="BrowseAI result fetch",
            headers=self._headers(),
        )
        record = fetched.get("result") if isinstance(fetched, Mapping) else None
        record = record if isinstance(record, Mapping) else {}
        captured = {key: record[key] for key in _CAPTURE_FIELDS if record.get(key)}
        status = record.get("status")
        logger.info("browseai_task_fetched", task_id=task_id, status=status, captured=sorted(captured))
        return ToolResult(
            data=captured or None,
            metadata={
                "robot_id": payload_model.robot_id,
                "task_id": task_id,
                "status": status,
            },
        )


def _nested(payload: Any, *keys: str) -> Any:
    current = payload
    for key in keys:
        if not isinstance(current, Mapping):
            return None
        current = current.get(key)
    return current
