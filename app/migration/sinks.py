"""
Progress sinks receiving per-unit lifecycle events.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable

from app.domain.migration import ProgressEvent
from app.migration.logging_utils import log_event

logger = logging.getLogger(__name__)

# A sink may be sync or async; the orchestrator awaits awaitable results.
ProgressSink = Callable[[ProgressEvent], "Awaitable[None] | None"]


class CollectingProgressSink:
    """
    Keeps every event in arrival order.
    """

    def __init__(self) -> None:
        self.events: list[ProgressEvent] = []

    def __call__(self, event: ProgressEvent) -> None:
        self.events.append(event)

    def for_unit(self, unit_id: str) -> list[ProgressEvent]:
        return [event for event in self.events if event.unit_id == unit_id]


class LoggingProgressSink:
    def __init__(self, *, level: int = logging.INFO) -> None:
        self._level = level

    def __call__(self, event: ProgressEvent) -> None:
        log_event(
            logger,
            self._level,
            "unit_progress",
            unit_id=event.unit_id,
            status=event.status,
            attempt=event.attempt,
            message=event.message,
        )
