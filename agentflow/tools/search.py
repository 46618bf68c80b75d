from __future__ import annotations

from typing import Any

import httpx
from pydantic import BaseModel, ConfigDict, Field

from ..core.config import Settings, TavilySettings
from ..core.logging import get_logger
from .base import ToolAdapter, ToolName, ToolResult

logger = get_logger(name=__name__)


class TavilySearchInput(BaseModel):
    model_config = ConfigDict(extra="ignore", str_strip_whitespace=True)

    query: str = Field(..., min_length=1)
    max_results: int | None = Field(default=None, ge=1, le=20)


class TavilySearchAdapter(ToolAdapter):
    """Synchronous search: one request, one response."""

    name = ToolName.TAVILY_SEARCH
    provider = "tavily"
    description = "For finding information online"
    input_hint = '{"query": "search terms", "max_results": 5}'
    InputModel = TavilySearchInput

    def __init__(
        self,
        *,
        api_key: str,
        settings: TavilySettings,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        super().__init__(client=client, timeout_seconds=settings.timeout_seconds)
        self._api_key = api_key
        self._settings = settings

    @classmethod
    def from_settings(cls, settings: Settings, *, client: httpx.AsyncClient | None = None) -> "TavilySearchAdapter":
        return cls(api_key=settings.tavily_api_key or "", settings=settings.tavily, client=client)

    async def _execute(self, payload_model: TavilySearchInput) -> ToolResult:
        max_results = payload_model.max_results or self._settings.default_max_results
        logger.info("tavily_search_started", query=payload_model.query, max_results=max_results)
        body: dict[str, Any] = await self._send(
            "POST",
            f"{self._settings.base_url.rstrip('/')}/search",
            action="Tavily API",
            json_body={
                "api_key": self._api_key,
                "query": payload_model.query,
                "search_depth": self._settings.search_depth,
                "include_answer": True,
                "max_results": max_results,
            },
        )
        results = body.get("results") if isinstance(body, dict) else None
        if not isinstance(results, list):
            results = []
        logger.info("tavily_search_completed", result_count=len(results))
        return ToolResult(
            data={"results": results, "answer": body.get("answer") if isinstance(body, dict) else None},
            metadata={
                "query": payload_model.query,
                "result_count": len(results),
                "response_time": body.get("response_time") if isinstance(body, dict) else None,
            },
        )
