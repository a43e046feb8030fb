"""
Session store exports.
"""

from app.migration.session.base import SessionStore
from app.migration.session.file_store import FileSessionStore
from app.migration.session.sqlalchemy_store import SQLAlchemySessionStore

__all__ = ["FileSessionStore", "SQLAlchemySessionStore", "SessionStore"]
