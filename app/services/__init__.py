"""
app/services package marker.
"""

from app.services.migration_service import (
    MigrationJob,
    MigrationJobStatus,
    MigrationJobTracker,
    MigrationService,
    get_migration_service,
)

__all__ = [
    "MigrationJob",
    "MigrationJobStatus",
    "MigrationJobTracker",
    "MigrationService",
    "get_migration_service",
]
