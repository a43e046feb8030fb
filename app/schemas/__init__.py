"""
app/schemas package marker.
"""

from app.schemas.migration import (
    HealthResponse,
    MigrationJobAcceptedResponse,
    MigrationJobStatusResponse,
    MigrationRequest,
    ProgressEventResponse,
    UnitResultResponse,
)

__all__ = [
    "HealthResponse",
    "MigrationJobAcceptedResponse",
    "MigrationJobStatusResponse",
    "MigrationRequest",
    "ProgressEventResponse",
    "UnitResultResponse",
]
