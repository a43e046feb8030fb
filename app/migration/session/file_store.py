"""
JSON-file session store with atomic replacement.
"""

from __future__ import annotations

import hashlib
import json
import logging
import os
import tempfile
from pathlib import Path

from app.domain.migration import SessionToken
from app.migration.logging_utils import log_event
from app.migration.session.base import SessionStore

logger = logging.getLogger(__name__)


class FileSessionStore(SessionStore):
    """
    One JSON document per account under `directory`.

    Writes go to a temporary file in the same directory and are moved into
    place with `os.replace`, so readers see either the old or the new token.
    """

    def __init__(self, *, directory: str | Path) -> None:
        self._directory = Path(directory)

    def path_for(self, account_key: str) -> Path:
        digest = hashlib.sha256(account_key.encode("utf-8")).hexdigest()[:32]
        return self._directory / f"session_{digest}.json"

    def load(self, account_key: str) -> SessionToken | None:
        path = self.path_for(account_key)
        try:
            raw = path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        except OSError as exc:
            log_event(logger, logging.WARNING, "session_read_failed", account=account_key, error=str(exc))
            return None

        try:
            payload = json.loads(raw)
            if payload.get("account_key") != account_key:
                raise ValueError("account key mismatch")
            return SessionToken.from_dict(payload["token"])
        except (ValueError, KeyError, TypeError, AttributeError) as exc:
            log_event(logger, logging.WARNING, "session_record_corrupt", account=account_key, error=str(exc))
            return None

    def save(self, account_key: str, token: SessionToken) -> None:
        self._directory.mkdir(parents=True, exist_ok=True)
        target = self.path_for(account_key)
        document = json.dumps({"account_key": account_key, "token": token.to_dict()})

        fd, temp_name = tempfile.mkstemp(dir=self._directory, prefix=".session_", suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                handle.write(document)
                handle.flush()
                os.fsync(handle.fileno())
            os.replace(temp_name, target)
        except BaseException:
            Path(temp_name).unlink(missing_ok=True)
            raise
        log_event(logger, logging.INFO, "session_saved", account=account_key, cookie_count=len(token.cookies))

    def invalidate(self, account_key: str) -> None:
        self.path_for(account_key).unlink(missing_ok=True)
        log_event(logger, logging.INFO, "session_invalidated", account=account_key)
