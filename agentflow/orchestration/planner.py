from __future__ import annotations

import json
import re
from typing import Any, Mapping, Protocol

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from ..core import metrics
from ..core.exceptions import (
    PlannerResponseError,
    PlannerTransportError,
    PlanningError,
    PlanParseError,
    PlanStructureError,
    ReasoningResponseError,
    ReasoningTransportError,
)
from ..core.logging import get_logger
from ..tools.registry import ToolRegistry
from .state import Plan, PlanStep

__all__ = ["PlanGenerator", "ReasoningBackend", "build_planner_instruction", "parse_plan"]

logger = get_logger(name=__name__)

_FENCE_PATTERN = re.compile(r"^```[a-zA-Z0-9_-]*\s*\n?(.*?)\n?```$", re.DOTALL)
_THINK_PATTERN = re.compile(r"<think>.*?</think>", re.DOTALL | re.IGNORECASE)


class ReasoningBackend(Protocol):
    async def complete(self, *, system_instruction: str, user_content: str) -> str:
        ...


class PlanStepPayload(BaseModel):
    model_config = ConfigDict(extra="ignore", str_strip_whitespace=True)

    tool: str = Field(..., min_length=1)
    input: dict[str, Any] = Field(default_factory=dict)
    description: str = Field(default="")

    @field_validator("input", mode="before")
    @classmethod
    def _coerce_input(cls, value: Any) -> dict[str, Any]:
        if value is None:
            return {}
        if not isinstance(value, Mapping):
            raise ValueError("step input must be an object")
        return dict(value)

    @field_validator("description", mode="before")
    @classmethod
    def _coerce_description(cls, value: Any) -> str:
        return "" if value is None else str(value)


class PlanPayload(BaseModel):
    model_config = ConfigDict(extra="ignore")

    steps: list[PlanStepPayload] = Field(..., min_length=1)


def build_planner_instruction(tools: ToolRegistry) -> str:
    lines = [
        "You are an AI task planner. Break down user requests into executable steps using these tools:",
    ]
    for name, adapter in tools.items():
        lines.append(f"- {name.value}: {adapter.description}. Input: {adapter.input_hint}")
    lines.append("")
    lines.append(
        'Respond with a JSON object only: { "steps": [{ "tool": "tool_name", "input": {...}, '
        '"description": "what this step does" }] }'
    )
    return "\n".join(lines)


def _strip_wrappers(content: str) -> str:
    text = _THINK_PATTERN.sub("", content).strip()
    match = _FENCE_PATTERN.match(text)
    if match:
        return match.group(1).strip()
    return text


def parse_plan(content: str) -> Plan:
    """Turn the planner's textual response into a validated ``Plan``.

    Tool names are not checked against the known tool set here; an unsupported
    tool fails later, when its step is dispatched.
    """
    try:
        payload = json.loads(_strip_wrappers(content))
    except json.JSONDecodeError as exc:
        raise PlanParseError(f"Invalid plan format from AI: {exc.msg}") from exc

    if not isinstance(payload, Mapping):
        raise PlanStructureError("Plan must be a JSON object with a steps array")
    steps = payload.get("steps")
    if not isinstance(steps, list) or not steps:
        raise PlanStructureError("Plan does not contain a non-empty steps array")

    try:
        model = PlanPayload.model_validate(payload)
    except ValidationError as exc:
        first = exc.errors()[0] if exc.errors() else {}
        location = ".".join(str(part) for part in first.get("loc", ()))
        raise PlanStructureError(
            f"Invalid plan step at {location or 'steps'}: {first.get('msg', 'validation failed')}"
        ) from exc

    return Plan(
        steps=[PlanStep(tool=step.tool, input=dict(step.input), description=step.description) for step in model.steps],
        raw_response=content,
    )


class PlanGenerator:
    def __init__(self, reasoning: ReasoningBackend, tools: ToolRegistry) -> None:
        self._reasoning = reasoning
        self._instruction = build_planner_instruction(tools)

    @property
    def system_instruction(self) -> str:
        return self._instruction

    async def generate_plan(self, user_input: str) -> Plan:
        if not user_input or not user_input.strip():
            raise PlanningError("User input must not be empty")

        try:
            content = await self._reasoning.complete(
                system_instruction=self._instruction,
                user_content=user_input,
            )
        except ReasoningTransportError as exc:
            metrics.record_reasoning_call(purpose="plan", outcome="transport_error")
            metrics.record_plan_outcome(outcome="transport_error")
            raise PlannerTransportError(str(exc)) from exc
        except ReasoningResponseError as exc:
            metrics.record_reasoning_call(purpose="plan", outcome="response_error")
            metrics.record_plan_outcome(outcome="response_error")
            raise PlannerResponseError(str(exc)) from exc
        metrics.record_reasoning_call(purpose="plan", outcome="success")

        try:
            plan = parse_plan(content)
        except PlanParseError:
            logger.warning("plan_parse_failed", content=content[:500])
            metrics.record_plan_outcome(outcome="parse_error")
            raise
        except PlanStructureError as exc:
            logger.warning("plan_structure_invalid", error=str(exc))
            metrics.record_plan_outcome(outcome="structure_error")
            raise

        metrics.record_plan_outcome(outcome="success", steps=len(plan.steps))
        return plan
