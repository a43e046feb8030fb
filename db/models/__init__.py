"""
Model package exports.

Import all SQLAlchemy models here so metadata registration and Alembic
autogeneration work without extra imports.
"""

from db.models.destination_session import DestinationSession

__all__ = [
    "DestinationSession",
]
