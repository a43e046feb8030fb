"""
Batch-level migration orchestration.

Products run in fixed-width batches; each unit goes through the retry
coordinator with its own cancellation scope, and every unit reports
`queued`, one `running` per attempt, then exactly one terminal event.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
import time
from collections.abc import Awaitable, Callable, Sequence
from typing import Protocol

from app.domain.migration import (
    DestinationCredentials,
    MigrationSummary,
    MigrationUnit,
    Product,
    ProgressEvent,
    StepOutcome,
    UnitResult,
    UnitStatus,
)
from app.migration.cancellation import CancellationToken
from app.migration.failures import FailureReason, MigrationSetupError, describe_failure
from app.migration.logging_utils import log_event
from app.migration.retry import RetryCoordinator, RetryPolicy
from app.migration.sinks import ProgressSink

logger = logging.getLogger(__name__)


class DeliveryStep(Protocol):
    async def run(
        self,
        unit: MigrationUnit,
        credentials: DestinationCredentials,
        token: CancellationToken | None = None,
    ) -> StepOutcome:
        ...


class MigrationOrchestrator:
    def __init__(
        self,
        *,
        step: DeliveryStep,
        policy: RetryPolicy | None = None,
        coordinator: RetryCoordinator | None = None,
        batch_width: int = 3,
        inter_batch_delay_seconds: float = 1.0,
        unit_deadline_seconds: float | None = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        if batch_width < 1:
            raise ValueError("batch_width must be at least 1.")
        self._step = step
        self._policy = policy or RetryPolicy()
        self._coordinator = coordinator or RetryCoordinator()
        self._batch_width = batch_width
        self._inter_batch_delay_seconds = inter_batch_delay_seconds
        self._unit_deadline_seconds = unit_deadline_seconds
        self._clock = clock
        self._sleep = sleep

    async def migrate_batch(
        self,
        products: Sequence[Product],
        credentials: DestinationCredentials,
        sink: ProgressSink | None = None,
        *,
        token: CancellationToken | None = None,
    ) -> MigrationSummary:
        """
        Migrate every product and return per-unit results in input order.

        Raises `MigrationSetupError` before any unit starts when the batch
        itself is unusable. Individual unit failures never raise.
        """

        self._validate(products, credentials)
        root = token or CancellationToken(clock=self._clock)
        units = [MigrationUnit(unit_id=product.source_id, product=product) for product in products]

        log_event(
            logger,
            logging.INFO,
            "batch_started",
            units=len(units),
            batch_width=self._batch_width,
            account=credentials.account_key,
        )
        for unit in units:
            await self._emit(sink, unit, UnitStatus.QUEUED, "queued")

        results: list[UnitResult] = []
        for offset in range(0, len(units), self._batch_width):
            if offset and self._inter_batch_delay_seconds > 0 and not root.cancelled:
                await self._sleep(self._inter_batch_delay_seconds)
            batch = units[offset : offset + self._batch_width]
            results.extend(
                await asyncio.gather(*(self._run_unit(unit, credentials, sink, root) for unit in batch))
            )

        succeeded = sum(1 for result in results if result.status == UnitStatus.SUCCEEDED)
        summary = MigrationSummary(succeeded=succeeded, failed=len(results) - succeeded, results=results)
        log_event(
            logger,
            logging.INFO,
            "batch_finished",
            succeeded=summary.succeeded,
            failed=summary.failed,
        )
        return summary

    def _validate(self, products: Sequence[Product], credentials: DestinationCredentials) -> None:
        if not products:
            raise MigrationSetupError("No products to migrate.")
        if not credentials.account_key.strip():
            raise MigrationSetupError("Destination account key must not be empty.")

        seen: set[str] = set()
        duplicates: list[str] = []
        for product in products:
            if product.source_id in seen and product.source_id not in duplicates:
                duplicates.append(product.source_id)
            seen.add(product.source_id)
        if duplicates:
            raise MigrationSetupError(f"Duplicate product source ids: {', '.join(duplicates)}.")

    async def _run_unit(
        self,
        unit: MigrationUnit,
        credentials: DestinationCredentials,
        sink: ProgressSink | None,
        root: CancellationToken,
    ) -> UnitResult:
        unit_token = root.child(timeout_seconds=self._unit_deadline_seconds)

        async def attempt(current: MigrationUnit) -> StepOutcome:
            return await self._step.run(current, credentials, unit_token)

        async def on_attempt(current: MigrationUnit) -> None:
            await self._emit(sink, current, UnitStatus.RUNNING, f"attempt {current.attempt}")

        try:
            outcome = await self._coordinator.run_with_retry(
                unit,
                attempt,
                self._policy,
                token=unit_token,
                on_attempt=on_attempt,
            )
        except Exception as exc:
            logger.exception("Unit %s crashed", unit.unit_id)
            unit.status = UnitStatus.FAILED
            outcome = StepOutcome.terminal("unit", FailureReason.UNEXPECTED_ERROR, detail=type(exc).__name__)

        reason = None if outcome.is_ok else outcome.reason or FailureReason.UNEXPECTED_ERROR
        message = "migrated" if outcome.is_ok else describe_failure(reason)
        result = UnitResult(
            unit_id=unit.unit_id,
            title=unit.product.title,
            status=unit.status,
            attempts=unit.attempt,
            reason=reason,
            message=message,
            destination_url=outcome.destination_url,
        )
        await self._emit(sink, unit, unit.status, message)
        return result

    async def _emit(self, sink: ProgressSink | None, unit: MigrationUnit, status: str, message: str) -> None:
        if sink is None:
            return
        event = ProgressEvent(
            unit_id=unit.unit_id,
            status=status,
            attempt=unit.attempt,
            message=message,
            timestamp_monotonic=self._clock(),
        )
        try:
            result = sink(event)
            if inspect.isawaitable(result):
                await result
        except Exception as exc:
            log_event(
                logger,
                logging.WARNING,
                "progress_sink_failed",
                unit_id=unit.unit_id,
                status=status,
                error=str(exc),
            )
