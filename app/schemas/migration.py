"""
Schemas for migration trigger and status endpoints.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, Field


class MigrationRequest(BaseModel):
    products: list[dict[str, Any]] = Field(min_length=1, description="Raw source product records")
    mode: Literal["browser", "webhook"] | None = None
    account_key: str | None = Field(default=None, description="Destination account override")


class MigrationJobAcceptedResponse(BaseModel):
    job_id: str
    mode: str
    status: str
    total: int
    created_at: datetime


class ProgressEventResponse(BaseModel):
    unit_id: str
    status: str
    attempt: int
    message: str


class UnitResultResponse(BaseModel):
    unit_id: str
    title: str
    status: str
    attempts: int
    reason: str | None = None
    message: str = ""
    destination_url: str | None = None


class MigrationJobStatusResponse(BaseModel):
    job_id: str
    mode: str
    status: str
    total: int
    created_at: datetime
    finished_at: datetime | None = None
    succeeded: int | None = None
    failed: int | None = None
    results: list[UnitResultResponse] = Field(default_factory=list)
    events: list[ProgressEventResponse] = Field(default_factory=list)
    error_message: str | None = None


class HealthResponse(BaseModel):
    status: str
    delivery_mode: str
    session_store: str
