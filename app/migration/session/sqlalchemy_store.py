"""
SQLAlchemy-backed session store.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import timezone

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.domain.migration import SessionToken
from app.migration.logging_utils import log_event
from app.migration.session.base import SessionStore
from db.models.destination_session import DestinationSession

logger = logging.getLogger(__name__)


class SQLAlchemySessionStore(SessionStore):
    """
    Persist session tokens in the `destination_sessions` table.

    Each call opens its own session from `session_factory` and commits
    before returning, so a saved token is visible atomically.
    """

    def __init__(self, *, session_factory: Callable[[], Session]) -> None:
        self._session_factory = session_factory

    def load(self, account_key: str) -> SessionToken | None:
        try:
            with self._session_factory() as db:
                row = db.get(DestinationSession, account_key)
                if row is None:
                    return None
                cookies = row.cookies
                captured_at = row.captured_at
        except SQLAlchemyError as exc:
            log_event(logger, logging.WARNING, "session_read_failed", account=account_key, error=str(exc))
            return None

        if not isinstance(cookies, list) or not all(isinstance(item, dict) for item in cookies):
            log_event(logger, logging.WARNING, "session_record_corrupt", account=account_key)
            return None
        if captured_at.tzinfo is None:
            captured_at = captured_at.replace(tzinfo=timezone.utc)
        return SessionToken(cookies=[dict(cookie) for cookie in cookies], captured_at=captured_at)

    def save(self, account_key: str, token: SessionToken) -> None:
        captured_at = token.captured_at
        if captured_at.tzinfo is not None:
            captured_at = captured_at.astimezone(timezone.utc)
        cookies = [dict(cookie) for cookie in token.cookies]

        with self._session_factory() as db:
            try:
                row = db.get(DestinationSession, account_key)
                if row is None:
                    db.add(
                        DestinationSession(
                            account_key=account_key,
                            cookies=cookies,
                            captured_at=captured_at,
                        )
                    )
                else:
                    row.cookies = cookies
                    row.captured_at = captured_at
                db.commit()
            except SQLAlchemyError:
                db.rollback()
                raise
        log_event(logger, logging.INFO, "session_saved", account=account_key, cookie_count=len(cookies))

    def invalidate(self, account_key: str) -> None:
        with self._session_factory() as db:
            try:
                row = db.get(DestinationSession, account_key)
                if row is not None:
                    db.delete(row)
                db.commit()
            except SQLAlchemyError:
                db.rollback()
                raise
        log_event(logger, logging.INFO, "session_invalidated", account=account_key)
