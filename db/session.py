"""
db/session.py

Lazily created SQLAlchemy engine and session factory for the session store.
"""

from __future__ import annotations

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from db.config import env_flag, env_int, resolve_database_url

_engine: Engine | None = None
_session_factory: sessionmaker[Session] | None = None


def create_db_engine() -> Engine:
    database_url = resolve_database_url()
    if not database_url.startswith("postgresql"):
        raise RuntimeError("The database session store supports PostgreSQL URLs only.")

    return create_engine(
        database_url,
        echo=env_flag("SQL_ECHO"),
        pool_pre_ping=True,
        pool_recycle=env_int("DB_POOL_RECYCLE", 1800),
        pool_size=env_int("DB_POOL_SIZE", 2),
    )


def get_engine() -> Engine:
    """Return the shared engine, creating it on first call."""
    global _engine
    if _engine is None:
        _engine = create_db_engine()
    return _engine


def get_session_factory() -> sessionmaker[Session]:
    global _session_factory
    if _session_factory is None:
        _session_factory = sessionmaker(
            bind=get_engine(),
            class_=Session,
            autoflush=False,
            expire_on_commit=False,
        )
    return _session_factory


def dispose_engine() -> None:
    global _engine, _session_factory
    if _engine is not None:
        _engine.dispose()
    _engine = None
    _session_factory = None
