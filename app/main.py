from __future__ import annotations

import logging
import os
from contextlib import asynccontextmanager
from collections.abc import AsyncIterator

from fastapi import FastAPI

from app.schemas.migration import HealthResponse


def _validate_env() -> None:
    """
    Validate required environment variables at startup.

    Raises RuntimeError listing every missing or invalid variable so the
    operator can fix all problems in one restart cycle.

    Rules:
    - MIGRATION_DELIVERY_MODE must be 'browser' or 'webhook'.
    - WEBHOOK_URL is required in webhook mode.
    - A destination account (DESTINATION_ACCOUNT_KEY or DESTINATION_EMAIL) is required.
    - Browser mode needs DESTINATION_EMAIL and DESTINATION_PASSWORD to log in.
    - A database URL is required when SESSION_STORE_BACKEND=database.
    """

    from db.config import load_env_files

    load_env_files()

    errors: list[str] = []

    # --- Delivery mode --------------------------------------------------
    mode = os.getenv("MIGRATION_DELIVERY_MODE", "browser").strip().lower()
    if mode not in {"browser", "webhook"}:
        errors.append(
            f"MIGRATION_DELIVERY_MODE='{mode}' is not valid. Allowed values: ['browser', 'webhook']."
        )
    elif mode == "webhook" and not os.getenv("WEBHOOK_URL", "").strip():
        errors.append("WEBHOOK_URL is not set but MIGRATION_DELIVERY_MODE is 'webhook'.")

    # --- Destination account --------------------------------------------
    account_key = os.getenv("DESTINATION_ACCOUNT_KEY", "").strip()
    email = os.getenv("DESTINATION_EMAIL", "").strip()
    if not account_key and not email:
        errors.append("No destination account configured. Set DESTINATION_ACCOUNT_KEY or DESTINATION_EMAIL.")
    if mode == "browser":
        missing = [name for name in ("DESTINATION_EMAIL", "DESTINATION_PASSWORD") if not os.getenv(name, "").strip()]
        if missing:
            errors.append(f"Browser delivery needs destination login credentials: set {', '.join(missing)}.")

    # --- Session store --------------------------------------------------
    backend = os.getenv("SESSION_STORE_BACKEND", "file").strip().lower()
    if backend not in {"file", "database"}:
        errors.append(f"SESSION_STORE_BACKEND='{backend}' is not valid. Allowed values: ['database', 'file'].")
    elif backend == "database":
        urls = [
            os.getenv(name, "").strip()
            for name in ("SESSION_STORE_DATABASE_URL", "DATABASE_URL", "CLOUD_DATABASE_URL", "LOCAL_DATABASE_URL")
        ]
        if not any(urls):
            errors.append(
                "SESSION_STORE_BACKEND is 'database' but no database URL is configured. "
                "Set SESSION_STORE_DATABASE_URL or DATABASE_URL."
            )

    if errors:
        raise RuntimeError(
            "Startup validation failed. Missing or invalid environment variables:\n"
            + "\n".join(f"  - {e}" for e in errors)
        )


def _configure_logging() -> None:
    """
    Configure root logging once for the API process.
    """

    log_level = os.getenv("LOG_LEVEL", "INFO").strip().upper()
    logging.basicConfig(
        level=getattr(logging, log_level, logging.INFO),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )


def _check_schema() -> None:
    """
    Verify the session-store table exists. Does NOT auto-migrate.
    """
    from sqlalchemy import inspect as sa_inspect
    from sqlalchemy.exc import SQLAlchemyError

    import db.models  # noqa: F401 registers ORM models on Base.metadata
    from db.base import Base
    from db.session import get_engine

    try:
        actual: set[str] = set(sa_inspect(get_engine()).get_table_names())
    except SQLAlchemyError as exc:
        raise RuntimeError("Database unavailable.") from exc

    missing = set(Base.metadata.tables.keys()) - actual
    if missing:
        logging.getLogger(__name__).critical(
            "Schema mismatch: table(s) %s absent from the database. Run 'alembic upgrade head' and restart.",
            ", ".join(sorted(missing)),
        )
        raise RuntimeError(
            f"Schema mismatch: {len(missing)} table(s) missing from the database "
            f"({', '.join(sorted(missing))}). Run migrations and restart."
        )


@asynccontextmanager
async def _lifespan(application: FastAPI) -> AsyncIterator[None]:
    """Validate the session store on boot; close the shared browser on exit."""
    from app.config import SessionStoreBackend, get_session_store_settings
    from app.services.migration_service import get_migration_service

    log = logging.getLogger(__name__)
    if get_session_store_settings().backend == SessionStoreBackend.DATABASE:
        _check_schema()
        log.info("Session store schema validated")

    service = get_migration_service()
    try:
        yield
    finally:
        await service.close()
        if get_session_store_settings().backend == SessionStoreBackend.DATABASE:
            from db.session import dispose_engine

            dispose_engine()
        log.info("Migration service closed")


def create_app() -> FastAPI:
    """
    Create and configure the FastAPI application.
    """

    _validate_env()
    _configure_logging()

    application = FastAPI(
        title="Catalog Migrator API",
        version="1.0.0",
        lifespan=_lifespan,
    )

    from app.api.routers import migration_router

    application.include_router(migration_router)

    @application.get("/health")
    def healthcheck() -> HealthResponse:
        from app.config import get_migration_settings, get_session_store_settings

        return HealthResponse(
            status="ok",
            delivery_mode=get_migration_settings().delivery_mode,
            session_store=get_session_store_settings().backend,
        )

    return application


app = create_app()
