"""
app/domain/migration.py

Domain models for catalog migration orchestration.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any


class UnitStatus:
    QUEUED = "queued"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"

    TERMINAL = frozenset({SUCCEEDED, FAILED})


class OutcomeKind:
    OK = "ok"
    TRANSIENT = "transient"
    TERMINAL = "terminal"


@dataclass(frozen=True)
class Product:
    """
    One catalog item handed to the orchestrator.

    `asset_ref` and `image_ref` are either remote URLs or local file paths.
    """

    source_id: str
    title: str
    description: str
    price: Decimal
    asset_ref: str | None = None
    image_ref: str | None = None
    product_type: str = "digital_product"
    permalink: str | None = None
    user_email: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    def __post_init__(self) -> None:
        if not isinstance(self.price, Decimal):
            object.__setattr__(self, "price", Decimal(str(self.price)))
        if self.price < 0:
            raise ValueError(f"Product price must be non-negative, got {self.price}.")
        if not self.source_id.strip():
            raise ValueError("Product source_id must not be empty.")


@dataclass
class MigrationUnit:
    """
    Mutable lifecycle state for one product migration.
    """

    unit_id: str
    product: Product
    status: str = UnitStatus.QUEUED
    attempt: int = 0
    submission_unverified: bool = False

    @property
    def is_terminal(self) -> bool:
        return self.status in UnitStatus.TERMINAL


@dataclass(frozen=True)
class SessionToken:
    """
    Opaque destination authentication material (cookie set).
    """

    cookies: list[dict[str, Any]]
    captured_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> dict[str, Any]:
        return {
            "cookies": [dict(cookie) for cookie in self.cookies],
            "captured_at": self.captured_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> "SessionToken":
        cookies = payload["cookies"]
        if not isinstance(cookies, list) or not all(isinstance(item, dict) for item in cookies):
            raise ValueError("Session token cookies must be a list of objects.")
        captured_at = datetime.fromisoformat(str(payload["captured_at"]))
        return cls(cookies=[dict(cookie) for cookie in cookies], captured_at=captured_at)


@dataclass(frozen=True)
class DestinationCredentials:
    """
    Destination account descriptor. `account_key` identifies the stored session.
    """

    account_key: str
    email: str | None = None
    password: str | None = field(default=None, repr=False)


@dataclass(frozen=True)
class ProgressEvent:
    unit_id: str
    status: str
    attempt: int
    message: str
    timestamp_monotonic: float


@dataclass(frozen=True)
class StepOutcome:
    """
    Result of one automation step or of a whole attempt.

    `submitted` is True once the destination create form has been submitted
    during the attempt, whatever the verification result.
    """

    step_name: str
    outcome: str
    detail: str = ""
    reason: str | None = None
    submitted: bool = False
    destination_url: str | None = None

    @property
    def is_ok(self) -> bool:
        return self.outcome == OutcomeKind.OK

    @property
    def is_transient(self) -> bool:
        return self.outcome == OutcomeKind.TRANSIENT

    @property
    def is_terminal(self) -> bool:
        return self.outcome == OutcomeKind.TERMINAL

    @classmethod
    def ok(cls, step_name: str, detail: str = "", **kwargs: Any) -> "StepOutcome":
        return cls(step_name=step_name, outcome=OutcomeKind.OK, detail=detail, **kwargs)

    @classmethod
    def transient(cls, step_name: str, reason: str, detail: str = "", **kwargs: Any) -> "StepOutcome":
        return cls(
            step_name=step_name,
            outcome=OutcomeKind.TRANSIENT,
            detail=detail,
            reason=reason,
            **kwargs,
        )

    @classmethod
    def terminal(cls, step_name: str, reason: str, detail: str = "", **kwargs: Any) -> "StepOutcome":
        return cls(
            step_name=step_name,
            outcome=OutcomeKind.TERMINAL,
            detail=detail,
            reason=reason,
            **kwargs,
        )


@dataclass(frozen=True)
class UnitResult:
    """
    Final status for one unit as reported in the migration summary.
    """

    unit_id: str
    title: str
    status: str
    attempts: int
    reason: str | None = None
    message: str = ""
    destination_url: str | None = None


@dataclass(frozen=True)
class MigrationSummary:
    succeeded: int
    failed: int
    results: list[UnitResult] = field(default_factory=list)
