from __future__ import annotations

import json
from typing import Any, Sequence

from ..core import metrics
from ..core.exceptions import ReasoningServiceError, SummarizationError
from ..core.logging import get_logger
from .planner import ReasoningBackend

logger = get_logger(name=__name__)

SUMMARY_INSTRUCTION = (
    "You are a helpful AI assistant. Summarize the results of the executed tasks "
    "in a clear, concise way for the user."
)


def build_summary_prompt(user_input: str, results: Sequence[Any]) -> str:
    rendered = json.dumps(list(results), indent=2, default=str)
    return (
        f"User requested: {user_input}\n\n"
        f"Results from execution:\n{rendered}\n\n"
        "Provide a clear summary of what was accomplished."
    )


class SummaryGenerator:
    def __init__(self, reasoning: ReasoningBackend) -> None:
        self._reasoning = reasoning

    async def summarize(self, user_input: str, results: Sequence[Any]) -> str:
        try:
            summary = await self._reasoning.complete(
                system_instruction=SUMMARY_INSTRUCTION,
                user_content=build_summary_prompt(user_input, results),
            )
        except ReasoningServiceError as exc:
            metrics.record_reasoning_call(purpose="summary", outcome="error")
            logger.warning("summary_generation_failed", error=str(exc))
            raise SummarizationError(f"Failed to generate summary: {exc}") from exc

        if not summary.strip():
            metrics.record_reasoning_call(purpose="summary", outcome="error")
            raise SummarizationError("Reasoning service returned an empty summary")
        metrics.record_reasoning_call(purpose="summary", outcome="success")
        return summary.strip()
