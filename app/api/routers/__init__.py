"""
app/api/routers package marker.
"""

from app.api.routers.migration import router as migration_router

__all__ = [
    "migration_router",
]
