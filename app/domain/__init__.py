"""
app/domain package marker.
"""

from app.domain.migration import (
    DestinationCredentials,
    MigrationSummary,
    MigrationUnit,
    OutcomeKind,
    Product,
    ProgressEvent,
    SessionToken,
    StepOutcome,
    UnitResult,
    UnitStatus,
)

__all__ = [
    "DestinationCredentials",
    "MigrationSummary",
    "MigrationUnit",
    "OutcomeKind",
    "Product",
    "ProgressEvent",
    "SessionToken",
    "StepOutcome",
    "UnitResult",
    "UnitStatus",
]
