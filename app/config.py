"""
app/config.py

Application-level configuration helpers.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from functools import lru_cache

from db.config import load_env_files

from app.migration.config.loader import DEFAULT_CONFIG_PATH


class DeliveryMode:
    BROWSER = "browser"
    WEBHOOK = "webhook"

    ALL = frozenset({BROWSER, WEBHOOK})


class SessionStoreBackend:
    FILE = "file"
    DATABASE = "database"

    ALL = frozenset({FILE, DATABASE})


@lru_cache(maxsize=1)
def _load_env_once() -> None:
    """
    Ensure project `.env` files are loaded once before reading app settings.
    """

    load_env_files()


def _get_bool_env(name: str, default: bool) -> bool:
    """
    Read a boolean from environment variables with safe fallback.
    """

    _load_env_once()
    raw_value = os.getenv(name)
    if raw_value is None:
        return default
    return raw_value.strip().lower() in {"1", "true", "yes", "on"}


def _get_int_env(name: str, default: int) -> int:
    _load_env_once()
    raw_value = os.getenv(name)
    if raw_value is None:
        return default
    try:
        return int(raw_value)
    except ValueError:
        return default


def _get_float_env(name: str, default: float) -> float:
    _load_env_once()
    raw_value = os.getenv(name)
    if raw_value is None:
        return default
    try:
        return float(raw_value)
    except ValueError:
        return default


def _get_str_env(name: str, default: str) -> str:
    """
    Read a string from environment variables with fallback.
    """

    _load_env_once()
    value = os.getenv(name)
    if value is None:
        return default
    stripped = value.strip()
    return stripped if stripped else default


def _get_optional_str_env(name: str) -> str | None:
    """
    Read an optional string value from environment variables.
    """

    _load_env_once()
    value = os.getenv(name)
    if value is None:
        return None
    stripped = value.strip()
    return stripped if stripped else None


def _get_choice_env(name: str, default: str, allowed: frozenset[str]) -> str:
    value = _get_str_env(name, default).lower()
    if value not in allowed:
        raise RuntimeError(f"{name}='{value}' is not valid. Allowed values: {sorted(allowed)}.")
    return value


@dataclass(frozen=True)
class MigrationSettings:
    """
    Orchestration and retry settings.
    """

    delivery_mode: str = DeliveryMode.BROWSER
    batch_width: int = 3
    inter_batch_delay_seconds: float = 1.0
    max_attempts: int = 3
    retry_delay_seconds: float = 5.0
    unit_deadline_seconds: float | None = None
    job_history_limit: int = 100


@dataclass(frozen=True)
class BrowserSettings:
    """
    Browser launch options, per-step timeouts and settle delays.
    """

    headless: bool = True
    user_agent: str | None = None
    viewport_width: int = 1280
    viewport_height: int = 720
    navigation_timeout_seconds: float = 30.0
    login_probe_timeout_seconds: float = 5.0
    auth_timeout_seconds: float = 30.0
    fill_timeout_seconds: float = 10.0
    upload_timeout_seconds: float = 60.0
    submit_timeout_seconds: float = 30.0
    settle_delay_seconds: float = 1.0
    navigation_delay_seconds: float = 2.0
    upload_delay_seconds: float = 5.0
    use_readiness_checks: bool = False


@dataclass(frozen=True)
class DestinationSettings:
    config_path: str = DEFAULT_CONFIG_PATH
    name: str = "payhip"
    account_key: str | None = None
    email: str | None = None
    password: str | None = field(default=None, repr=False)


@dataclass(frozen=True)
class WebhookSettings:
    url: str | None = None
    timeout_seconds: float = 30.0


@dataclass(frozen=True)
class SessionStoreSettings:
    backend: str = SessionStoreBackend.FILE
    directory: str = ".sessions"


@lru_cache(maxsize=1)
def get_migration_settings() -> MigrationSettings:
    """
    Return cached orchestration settings from environment variables.
    """

    deadline = _get_float_env("MIGRATION_UNIT_DEADLINE_SECONDS", 0.0)
    return MigrationSettings(
        delivery_mode=_get_choice_env("MIGRATION_DELIVERY_MODE", DeliveryMode.BROWSER, DeliveryMode.ALL),
        batch_width=max(1, _get_int_env("MIGRATION_BATCH_WIDTH", 3)),
        inter_batch_delay_seconds=max(0.0, _get_float_env("MIGRATION_INTER_BATCH_DELAY_SECONDS", 1.0)),
        max_attempts=max(1, _get_int_env("MIGRATION_MAX_ATTEMPTS", 3)),
        retry_delay_seconds=max(0.0, _get_float_env("MIGRATION_RETRY_DELAY_SECONDS", 5.0)),
        unit_deadline_seconds=deadline if deadline > 0 else None,
        job_history_limit=max(1, _get_int_env("MIGRATION_JOB_HISTORY_LIMIT", 100)),
    )


@lru_cache(maxsize=1)
def get_browser_settings() -> BrowserSettings:
    """
    Return cached browser settings from environment variables.
    """

    return BrowserSettings(
        headless=_get_bool_env("BROWSER_HEADLESS", True),
        user_agent=_get_optional_str_env("BROWSER_USER_AGENT"),
        viewport_width=max(320, _get_int_env("BROWSER_VIEWPORT_WIDTH", 1280)),
        viewport_height=max(240, _get_int_env("BROWSER_VIEWPORT_HEIGHT", 720)),
        navigation_timeout_seconds=max(1.0, _get_float_env("BROWSER_NAVIGATION_TIMEOUT_SECONDS", 30.0)),
        login_probe_timeout_seconds=max(0.5, _get_float_env("BROWSER_LOGIN_PROBE_TIMEOUT_SECONDS", 5.0)),
        auth_timeout_seconds=max(1.0, _get_float_env("BROWSER_AUTH_TIMEOUT_SECONDS", 30.0)),
        fill_timeout_seconds=max(0.5, _get_float_env("BROWSER_FILL_TIMEOUT_SECONDS", 10.0)),
        upload_timeout_seconds=max(1.0, _get_float_env("BROWSER_UPLOAD_TIMEOUT_SECONDS", 60.0)),
        submit_timeout_seconds=max(1.0, _get_float_env("BROWSER_SUBMIT_TIMEOUT_SECONDS", 30.0)),
        settle_delay_seconds=max(0.0, _get_float_env("BROWSER_SETTLE_DELAY_SECONDS", 1.0)),
        navigation_delay_seconds=max(0.0, _get_float_env("BROWSER_NAVIGATION_DELAY_SECONDS", 2.0)),
        upload_delay_seconds=max(0.0, _get_float_env("BROWSER_UPLOAD_DELAY_SECONDS", 5.0)),
        use_readiness_checks=_get_bool_env("BROWSER_USE_READINESS_CHECKS", False),
    )


@lru_cache(maxsize=1)
def get_destination_settings() -> DestinationSettings:
    """
    Return destination adapter selection and account credentials.
    """

    email = _get_optional_str_env("DESTINATION_EMAIL")
    return DestinationSettings(
        config_path=_get_str_env("DESTINATION_CONFIG_PATH", DEFAULT_CONFIG_PATH),
        name=_get_str_env("DESTINATION_NAME", "payhip").lower(),
        account_key=_get_optional_str_env("DESTINATION_ACCOUNT_KEY") or email,
        email=email,
        password=_get_optional_str_env("DESTINATION_PASSWORD"),
    )


@lru_cache(maxsize=1)
def get_webhook_settings() -> WebhookSettings:
    return WebhookSettings(
        url=_get_optional_str_env("WEBHOOK_URL"),
        timeout_seconds=max(1.0, _get_float_env("WEBHOOK_TIMEOUT_SECONDS", 30.0)),
    )


@lru_cache(maxsize=1)
def get_session_store_settings() -> SessionStoreSettings:
    return SessionStoreSettings(
        backend=_get_choice_env("SESSION_STORE_BACKEND", SessionStoreBackend.FILE, SessionStoreBackend.ALL),
        directory=_get_str_env("SESSION_STORE_DIR", ".sessions"),
    )
