from __future__ import annotations

from dataclasses import dataclass
from typing import Any

import httpx

from ..core.config import Settings
from ..core.exceptions import (
    ReasoningEmptyContentError,
    ReasoningResponseError,
    ReasoningTransportError,
)
from ..core.logging import get_logger

logger = get_logger(name=__name__)

_ERROR_BODY_LIMIT = 500


@dataclass
class ReasoningClient:
    """Thin client for an OpenAI-compatible chat completions endpoint (OpenRouter by default).

    One call maps ``(system_instruction, user_content)`` to the first choice's message
    content. No retries happen here; callers decide what a failure means.
    """

    settings: Settings
    _client: httpx.AsyncClient
    model: str
    _owns_client: bool = False

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        *,
        model: str | None = None,
        client: httpx.AsyncClient | None = None,
    ) -> "ReasoningClient":
        owns = client is None
        if client is None:
            client = httpx.AsyncClient(timeout=httpx.Timeout(settings.reasoning.timeout_seconds))
        return cls(
            settings=settings,
            _client=client,
            model=model or settings.reasoning.model,
            _owns_client=owns,
        )

    async def complete(self, *, system_instruction: str, user_content: str) -> str:
        body: dict[str, Any] = {
            "model": self.model,
            "messages": [
                {"role": "system", "content": system_instruction},
                {"role": "user", "content": user_content},
            ],
        }
        if self.settings.reasoning.temperature is not None:
            body["temperature"] = self.settings.reasoning.temperature

        url = f"{self.settings.reasoning.base_url.rstrip('/')}/chat/completions"
        try:
            response = await self._client.post(
                url,
                json=body,
                headers={"Authorization": f"Bearer {self.settings.openrouter_api_key or ''}"},
            )
        except httpx.HTTPError as exc:
            logger.warning("reasoning_request_failed", model=self.model, error=str(exc))
            raise ReasoningTransportError(f"Reasoning service request failed: {exc}") from exc

        if response.is_error:
            error_text = response.text[:_ERROR_BODY_LIMIT]
            logger.warning(
                "reasoning_http_error",
                model=self.model,
                status_code=response.status_code,
                body=error_text,
            )
            raise ReasoningTransportError(
                f"OpenRouter API failed ({response.status_code}): {error_text}",
                status_code=response.status_code,
            )

        try:
            data = response.json()
        except ValueError as exc:
            raise ReasoningResponseError("Invalid JSON response from OpenRouter API") from exc

        choices = data.get("choices") if isinstance(data, dict) else None
        if not isinstance(choices, list) or not choices:
            logger.warning("reasoning_envelope_invalid", model=self.model, response=data)
            raise ReasoningResponseError("OpenRouter API returned invalid response structure")

        first = choices[0] if isinstance(choices[0], dict) else {}
        message = first.get("message") if isinstance(first.get("message"), dict) else {}
        content = message.get("content")
        if not isinstance(content, str) or not content.strip():
            raise ReasoningEmptyContentError("OpenRouter API returned empty message content")
        return content

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()
