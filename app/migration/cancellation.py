"""
Cooperative cancellation checked at step boundaries.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Callable

from app.migration.failures import FailureReason


class CancellationToken:
    """
    Cancellation flag with an optional parent and monotonic deadline.

    A child token is cancelled when its parent is, or once its own deadline
    passes; the deadline case reports `FailureReason.TIMEOUT`.
    """

    def __init__(
        self,
        *,
        parent: CancellationToken | None = None,
        deadline: float | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._parent = parent
        self._deadline = deadline
        self._clock = clock
        self._reason: str | None = None
        self._event = asyncio.Event()

    def child(self, *, timeout_seconds: float | None = None) -> CancellationToken:
        deadline = None if timeout_seconds is None else self._clock() + timeout_seconds
        return CancellationToken(parent=self, deadline=deadline, clock=self._clock)

    def cancel(self, reason: str = FailureReason.CANCELLED) -> None:
        if self._reason is None:
            self._reason = reason
            self._event.set()

    @property
    def reason(self) -> str | None:
        if self._reason is not None:
            return self._reason
        if self._deadline is not None and self._clock() >= self._deadline:
            return FailureReason.TIMEOUT
        if self._parent is not None:
            return self._parent.reason
        return None

    @property
    def cancelled(self) -> bool:
        return self.reason is not None

    async def sleep(self, seconds: float) -> None:
        """
        Sleep up to `seconds`, returning early if this token is cancelled.
        """

        if seconds <= 0 or self.cancelled:
            return
        if self._deadline is not None:
            seconds = min(seconds, max(0.0, self._deadline - self._clock()))
        waiters = [asyncio.ensure_future(event.wait()) for event in self._event_chain()]
        try:
            await asyncio.wait(waiters, timeout=seconds, return_when=asyncio.FIRST_COMPLETED)
        finally:
            for waiter in waiters:
                waiter.cancel()

    def _event_chain(self) -> list[asyncio.Event]:
        events: list[asyncio.Event] = []
        token: CancellationToken | None = self
        while token is not None:
            events.append(token._event)
            token = token._parent
        return events
