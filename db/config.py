"""
Environment loading and database URL resolution for the session store.
"""

from __future__ import annotations

import os
from functools import lru_cache
from pathlib import Path

ENV_FILES = (".env", ".env.local")
POSTGRES_DRIVER_PREFIX = "postgresql+psycopg://"


def project_root() -> Path:
    return Path(__file__).resolve().parents[1]


def _parse_env_line(raw_line: str) -> tuple[str, str] | None:
    line = raw_line.strip()
    if not line or line.startswith("#") or "=" not in line:
        return None
    if line.startswith("export "):
        line = line[len("export "):]
    key, value = line.split("=", 1)
    key = key.strip()
    if not key:
        return None
    return key, value.strip().strip('"').strip("'")


@lru_cache(maxsize=1)
def load_env_files() -> None:
    """
    Load KEY=VALUE pairs from the project's `.env` files into os.environ.

    Variables already set in the process win over file values, and
    `.env.local` is read after `.env` so it only fills what `.env` left unset.
    """

    for filename in ENV_FILES:
        env_path = project_root() / filename
        if not env_path.is_file():
            continue
        for raw_line in env_path.read_text(encoding="utf-8").splitlines():
            parsed = _parse_env_line(raw_line)
            if parsed is None:
                continue
            key, value = parsed
            os.environ.setdefault(key, value)


def env_flag(name: str, default: bool = False) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None:
        return default
    try:
        return int(value)
    except ValueError:
        return default


def normalize_postgres_url(url: str) -> str:
    """
    Rewrite bare postgres URLs to use the psycopg (v3) driver.
    """

    for prefix in ("postgres://", "postgresql://"):
        if url.startswith(prefix):
            return POSTGRES_DRIVER_PREFIX + url[len(prefix):]
    return url


def resolve_database_url() -> str:
    """
    Resolve the session-store database URL.

    Priority:
    1) SESSION_STORE_DATABASE_URL
    2) DATABASE_URL
    3) CLOUD_DATABASE_URL when ENVIRONMENT is cloud-like, else LOCAL_DATABASE_URL
    """

    load_env_files()

    for name in ("SESSION_STORE_DATABASE_URL", "DATABASE_URL"):
        value = (os.getenv(name) or "").strip()
        if value:
            return normalize_postgres_url(value)

    environment = os.getenv("ENVIRONMENT", "local").strip().lower()
    if environment in {"prod", "production", "staging", "cloud"}:
        fallback_name = "CLOUD_DATABASE_URL"
    else:
        fallback_name = "LOCAL_DATABASE_URL"
    fallback = (os.getenv(fallback_name) or "").strip()
    if fallback:
        return normalize_postgres_url(fallback)

    raise RuntimeError(
        "No session-store database configured. Set SESSION_STORE_DATABASE_URL or DATABASE_URL "
        f"(or {fallback_name}), or use SESSION_STORE_BACKEND=file."
    )
