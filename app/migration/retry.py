"""
Bounded retry of one unit's step sequence.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass

from app.domain.migration import MigrationUnit, StepOutcome, UnitStatus
from app.migration.cancellation import CancellationToken
from app.migration.failures import FailureReason
from app.migration.logging_utils import log_event

logger = logging.getLogger(__name__)

StepFunction = Callable[[MigrationUnit], Awaitable[StepOutcome]]
AttemptCallback = Callable[[MigrationUnit], Awaitable[None]]


class DelayScaling:
    FIXED = "fixed"
    LINEAR = "linear"


@dataclass(frozen=True)
class RetryPolicy:
    """
    `max_attempts` counts the first try. With linear scaling the delay after
    attempt N is `delay_seconds * N`.
    """

    max_attempts: int = 3
    delay_seconds: float = 5.0
    scaling: str = DelayScaling.FIXED

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1.")
        if self.delay_seconds < 0:
            raise ValueError("delay_seconds must be non-negative.")
        if self.scaling not in {DelayScaling.FIXED, DelayScaling.LINEAR}:
            raise ValueError(f"Unsupported delay scaling '{self.scaling}'.")

    def delay_for(self, attempt: int) -> float:
        if self.scaling == DelayScaling.LINEAR:
            return self.delay_seconds * attempt
        return self.delay_seconds


class RetryCoordinator:
    """
    Runs a step function until it succeeds, fails terminally, or exhausts
    the policy. Only transient outcomes are retried.

    A unit may be in flight in at most one coordinator call at a time.
    """

    def __init__(self, *, sleep: Callable[[float], Awaitable[None]] | None = None) -> None:
        self._in_flight: set[str] = set()
        self._sleep = sleep

    async def run_with_retry(
        self,
        unit: MigrationUnit,
        step_fn: StepFunction,
        policy: RetryPolicy,
        *,
        token: CancellationToken | None = None,
        on_attempt: AttemptCallback | None = None,
    ) -> StepOutcome:
        if unit.unit_id in self._in_flight:
            raise RuntimeError(f"Unit '{unit.unit_id}' is already being attempted.")
        if unit.is_terminal:
            raise RuntimeError(f"Unit '{unit.unit_id}' is already {unit.status}.")

        self._in_flight.add(unit.unit_id)
        try:
            return await self._attempt_loop(unit, step_fn, policy, token, on_attempt)
        finally:
            self._in_flight.discard(unit.unit_id)

    async def _attempt_loop(
        self,
        unit: MigrationUnit,
        step_fn: StepFunction,
        policy: RetryPolicy,
        token: CancellationToken | None,
        on_attempt: AttemptCallback | None,
    ) -> StepOutcome:
        outcome: StepOutcome | None = None
        while unit.attempt < policy.max_attempts:
            if token is not None and token.cancelled:
                outcome = StepOutcome.terminal(
                    "retry",
                    token.reason or FailureReason.CANCELLED,
                    detail="cancelled before attempt",
                    submitted=unit.submission_unverified,
                )
                break

            unit.attempt += 1
            unit.status = UnitStatus.RUNNING
            if on_attempt is not None:
                await on_attempt(unit)

            outcome = await step_fn(unit)
            if outcome.is_ok:
                unit.submission_unverified = False
                break
            if outcome.is_terminal:
                break

            unit.submission_unverified = unit.submission_unverified or outcome.submitted
            log_event(
                logger,
                logging.WARNING,
                "attempt_transient_failure",
                unit_id=unit.unit_id,
                attempt=unit.attempt,
                max_attempts=policy.max_attempts,
                step=outcome.step_name,
                reason=outcome.reason,
                submission_unverified=unit.submission_unverified,
            )
            if unit.attempt >= policy.max_attempts:
                break

            await self._wait(policy.delay_for(unit.attempt), token)

        if outcome is None:
            outcome = StepOutcome.terminal("retry", FailureReason.UNEXPECTED_ERROR, detail="no attempt made")

        unit.status = UnitStatus.SUCCEEDED if outcome.is_ok else UnitStatus.FAILED
        log_event(
            logger,
            logging.INFO if outcome.is_ok else logging.WARNING,
            "unit_settled",
            unit_id=unit.unit_id,
            status=unit.status,
            attempts=unit.attempt,
            reason=outcome.reason,
        )
        return outcome

    async def _wait(self, seconds: float, token: CancellationToken | None) -> None:
        if self._sleep is not None:
            await self._sleep(seconds)
        elif token is not None:
            await token.sleep(seconds)
        else:
            await asyncio.sleep(seconds)
