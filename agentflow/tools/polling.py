"""Finite-state poller for job-oriented providers.

A job moves ``RUNNING -> {SUCCEEDED, FAILED, ABORTED, TIMED_OUT}``. The poller
waits ``interval`` before every status check and performs at most
``max_attempts`` checks, so a single job is bounded by
``max_attempts * interval`` plus request latency.
"""
from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable

from ..core.logging import get_logger

__all__ = [
    "JobStatus",
    "JobSnapshot",
    "PollPhase",
    "PollPolicy",
    "PollOutcome",
    "JobPoller",
]

logger = get_logger(name=__name__)

SleepFunc = Callable[[float], Awaitable[Any]]
ClockFunc = Callable[[], float]


class JobStatus(str, Enum):
    RUNNING = "RUNNING"
    SUCCEEDED = "SUCCEEDED"
    FAILED = "FAILED"
    ABORTED = "ABORTED"
    TIMED_OUT = "TIMED_OUT"

    @property
    def is_terminal(self) -> bool:
        return self is not JobStatus.RUNNING


class PollPhase(str, Enum):
    IDLE = "idle"
    WAITING = "waiting"
    CHECKING = "checking"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    EXHAUSTED = "exhausted"


@dataclass(slots=True, frozen=True)
class JobSnapshot:
    status: JobStatus
    raw_status: str
    payload: dict[str, Any] = field(default_factory=dict)


@dataclass(slots=True, frozen=True)
class PollPolicy:
    interval_seconds: float
    max_attempts: int

    def __post_init__(self) -> None:
        if self.interval_seconds < 0:
            raise ValueError("interval_seconds must be non-negative")
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")

    @property
    def ceiling_seconds(self) -> float:
        return self.interval_seconds * self.max_attempts


@dataclass(slots=True)
class PollOutcome:
    phase: PollPhase
    attempts: int
    elapsed_seconds: float
    snapshot: JobSnapshot | None = None

    @property
    def succeeded(self) -> bool:
        return self.phase is PollPhase.SUCCEEDED

    @property
    def exhausted(self) -> bool:
        return self.phase is PollPhase.EXHAUSTED


class JobPoller:
    def __init__(
        self,
        policy: PollPolicy,
        *,
        sleep: SleepFunc | None = None,
        clock: ClockFunc | None = None,
    ) -> None:
        self._policy = policy
        self._sleep: SleepFunc = sleep or asyncio.sleep
        self._clock: ClockFunc = clock or time.monotonic
        self._phase = PollPhase.IDLE
        self._attempts = 0

    @property
    def phase(self) -> PollPhase:
        return self._phase

    @property
    def attempts(self) -> int:
        return self._attempts

    async def run(self, check: Callable[[], Awaitable[JobSnapshot]]) -> PollOutcome:
        """Drive ``check`` until the job leaves RUNNING or the attempt budget is spent.

        Exceptions raised by ``check`` propagate unchanged; the poller never retries a
        failed status request.
        """
        if self._phase is not PollPhase.IDLE:
            raise RuntimeError("JobPoller instances are single-use")

        started = self._clock()
        snapshot: JobSnapshot | None = None
        while True:
            if self._attempts >= self._policy.max_attempts:
                self._phase = PollPhase.EXHAUSTED
                break

            self._phase = PollPhase.WAITING
            await self._sleep(self._policy.interval_seconds)

            self._phase = PollPhase.CHECKING
            self._attempts += 1
            snapshot = await check()
            logger.debug(
                "job_poll_check",
                attempt=self._attempts,
                max_attempts=self._policy.max_attempts,
                status=snapshot.raw_status,
            )

            if snapshot.status is JobStatus.SUCCEEDED:
                self._phase = PollPhase.SUCCEEDED
                break
            if snapshot.status.is_terminal:
                self._phase = PollPhase.FAILED
                break

        return PollOutcome(
            phase=self._phase,
            attempts=self._attempts,
            elapsed_seconds=max(0.0, self._clock() - started),
            snapshot=snapshot,
        )
