"""
tests/test_session_store.py

Pytest tests for the file and SQLAlchemy session stores.

The SQLAlchemy store runs against an in-memory SQLite database created from
Base.metadata; no PostgreSQL required.
"""

from __future__ import annotations

from datetime import datetime, timezone

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from app.domain.migration import SessionToken
from app.migration.session import FileSessionStore, SQLAlchemySessionStore
from db.base import Base
from db.models import DestinationSession

TOKEN = SessionToken(
    cookies=[{"name": "sid", "value": "abc", "domain": ".payhip.com", "httpOnly": True}],
    captured_at=datetime(2024, 5, 1, 12, 30, tzinfo=timezone.utc),
)


@pytest.fixture()
def sql_store() -> SQLAlchemySessionStore:
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    factory = sessionmaker(bind=engine, class_=Session, expire_on_commit=False)
    return SQLAlchemySessionStore(session_factory=factory)


# ---------------------------------------------------------------------------
# FileSessionStore
# ---------------------------------------------------------------------------


class TestFileSessionStore:
    def test_round_trip_returns_equal_token(self, file_store: FileSessionStore) -> None:
        file_store.save("acct", TOKEN)
        assert file_store.load("acct") == TOKEN

    def test_missing_record_loads_as_none(self, file_store: FileSessionStore) -> None:
        assert file_store.load("nobody") is None

    def test_corrupt_record_loads_as_none(self, file_store: FileSessionStore) -> None:
        file_store.save("acct", TOKEN)
        file_store.path_for("acct").write_text("{not json", encoding="utf-8")
        assert file_store.load("acct") is None

    def test_record_for_other_account_is_ignored(self, file_store: FileSessionStore) -> None:
        file_store.save("acct", TOKEN)
        other = file_store.path_for("other")
        other.write_text(file_store.path_for("acct").read_text(encoding="utf-8"), encoding="utf-8")
        assert file_store.load("other") is None

    def test_save_overwrites_and_leaves_no_temp_files(self, file_store: FileSessionStore) -> None:
        file_store.save("acct", TOKEN)
        newer = SessionToken(cookies=[{"name": "sid", "value": "def"}])
        file_store.save("acct", newer)

        assert file_store.load("acct") == newer
        directory = file_store.path_for("acct").parent
        assert [path.name for path in directory.iterdir() if path.suffix == ".tmp"] == []

    def test_invalidate_removes_record(self, file_store: FileSessionStore) -> None:
        file_store.save("acct", TOKEN)
        file_store.invalidate("acct")
        assert file_store.load("acct") is None

    def test_invalidate_missing_record_is_noop(self, file_store: FileSessionStore) -> None:
        file_store.invalidate("nobody")

    def test_file_name_does_not_expose_account(self, file_store: FileSessionStore) -> None:
        assert "seller@example.com" not in file_store.path_for("seller@example.com").name


# ---------------------------------------------------------------------------
# SQLAlchemySessionStore
# ---------------------------------------------------------------------------


class TestSQLAlchemySessionStore:
    def test_round_trip_returns_equal_token(self, sql_store: SQLAlchemySessionStore) -> None:
        sql_store.save("acct", TOKEN)
        assert sql_store.load("acct") == TOKEN

    def test_save_overwrites_existing_row(self, sql_store: SQLAlchemySessionStore) -> None:
        sql_store.save("acct", TOKEN)
        newer = SessionToken(
            cookies=[{"name": "sid", "value": "def"}],
            captured_at=datetime(2024, 6, 1, tzinfo=timezone.utc),
        )
        sql_store.save("acct", newer)
        assert sql_store.load("acct") == newer

    def test_missing_row_loads_as_none(self, sql_store: SQLAlchemySessionStore) -> None:
        assert sql_store.load("nobody") is None

    def test_invalidate_deletes_row(self, sql_store: SQLAlchemySessionStore) -> None:
        sql_store.save("acct", TOKEN)
        sql_store.invalidate("acct")
        assert sql_store.load("acct") is None

    def test_malformed_cookie_column_loads_as_none(self, sql_store: SQLAlchemySessionStore) -> None:
        sql_store.save("acct", TOKEN)
        with sql_store._session_factory() as db:
            row = db.get(DestinationSession, "acct")
            row.cookies = {"sid": "abc"}
            db.commit()
        assert sql_store.load("acct") is None
