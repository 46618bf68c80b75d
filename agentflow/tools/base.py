from __future__ import annotations

import json
from abc import ABC, abstractmethod
from enum import Enum
from typing import Any, ClassVar, Dict, Mapping

import httpx
from pydantic import BaseModel, ConfigDict, ValidationError

from ..core.logging import get_logger
from .exceptions import ToolInputError, ToolTransportError

__all__ = ["ToolName", "ToolResult", "ToolAdapter"]

logger = get_logger(name=__name__)

_ERROR_BODY_LIMIT = 500


class ToolName(str, Enum):
    TAVILY_SEARCH = "tavily_search"
    BROWSEAI_SCRAPE = "browseai_scrape"
    APIFY_SCRAPE = "apify_scrape"

    @property
    def is_scraper(self) -> bool:
        return self in (ToolName.BROWSEAI_SCRAPE, ToolName.APIFY_SCRAPE)


class ToolResult(BaseModel):
    """Uniform tool output; provider-specific extras are kept alongside the common fields."""

    model_config = ConfigDict(extra="allow")

    data: Any = None
    metadata: dict[str, Any] | None = None
    error: str | None = None

    def to_payload(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", exclude_none=True)


class ToolAdapter(ABC):
    """Base adapter: validates input, delegates to the provider call, and normalizes the result."""

    name: ClassVar[ToolName]
    provider: ClassVar[str]
    description: ClassVar[str]
    input_hint: ClassVar[str]
    InputModel: ClassVar[type[BaseModel]]

    def __init__(self, *, client: httpx.AsyncClient | None = None, timeout_seconds: float = 30.0) -> None:
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=httpx.Timeout(timeout_seconds))

    async def execute(self, payload: Mapping[str, Any]) -> ToolResult:
        try:
            model = self.InputModel.model_validate(dict(payload))
        except ValidationError as exc:
            raise ToolInputError(f"Invalid input for {self.name.value}: {_summarize_validation(exc)}") from exc
        result = await self._execute(model)
        return self._normalize_result(result)

    @abstractmethod
    async def _execute(self, payload_model: Any) -> ToolResult:
        ...

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def _send(
        self,
        method: str,
        url: str,
        *,
        action: str,
        json_body: Any | None = None,
        params: Mapping[str, Any] | None = None,
        headers: Mapping[str, str] | None = None,
    ) -> Any:
        """Issue one provider request and return the decoded JSON body.

        Non-2xx responses and network failures become ``ToolTransportError`` with the
        provider status code embedded in the message.
        """
        try:
            response = await self._client.request(
                method,
                url,
                json=json_body,
                params=dict(params) if params else None,
                headers=dict(headers) if headers else None,
            )
        except httpx.HTTPError as exc:
            logger.warning("tool_request_failed", tool=self.name.value, action=action, error=str(exc))
            raise ToolTransportError(f"{action} request failed: {exc}") from exc

        if response.is_error:
            body = response.text[:_ERROR_BODY_LIMIT]
            logger.warning(
                "tool_provider_http_error",
                tool=self.name.value,
                action=action,
                status_code=response.status_code,
                body=body,
            )
            raise ToolTransportError(
                f"{action} failed ({response.status_code}): {body}",
                status_code=response.status_code,
            )
        try:
            return response.json()
        except ValueError as exc:
            raise ToolTransportError(f"{action} returned a non-JSON body") from exc

    def _normalize_result(self, result: ToolResult) -> ToolResult:
        payload = self._json_safe_dict(result.model_dump())
        return ToolResult.model_validate(payload)

    def _json_safe(self, value: Any) -> Any:
        if isinstance(value, BaseModel):
            return self._json_safe(value.model_dump())
        if isinstance(value, dict):
            return self._json_safe_dict(value)
        if isinstance(value, (list, tuple)):
            return [self._json_safe(item) for item in value]
        if isinstance(value, (set, frozenset)):
            return [self._json_safe(item) for item in sorted(value, key=lambda item: repr(item))]
        if isinstance(value, (str, int, float, bool)) or value is None:
            return value
        try:
            json.dumps(value)
            return value
        except (TypeError, ValueError):
            return str(value)

    def _json_safe_dict(self, payload: Mapping[str, Any]) -> Dict[str, Any]:
        safe: Dict[str, Any] = {}
        for key, value in payload.items():
            safe[str(key)] = self._json_safe(value)
        return safe


def _summarize_validation(error: ValidationError) -> str:
    parts: list[str] = []
    for detail in error.errors():
        location = ".".join(str(part) for part in detail.get("loc", ()))
        message = detail.get("msg", "invalid value")
        parts.append(f"{location}: {message}" if location else message)
    return "; ".join(parts) or "validation failed"
