"""
JSON loader for destination-site adapter configuration.
"""

from __future__ import annotations

import json
from pathlib import Path
from urllib.parse import urljoin

from db.config import project_root

from app.migration.config.models import REQUIRED_PAGES, REQUIRED_SELECTORS, DestinationSiteConfig

DEFAULT_CONFIG_PATH = "app/migration/config/destinations.json"


def resolve_config_path(raw_path: str) -> Path:
    candidate = Path(raw_path)
    if candidate.is_absolute():
        return candidate
    return (project_root() / candidate).resolve()


def load_destination_configs(*, config_path: str = DEFAULT_CONFIG_PATH) -> dict[str, DestinationSiteConfig]:
    """
    Load every destination entry from a JSON file, keyed by lower-cased name.
    """

    path = resolve_config_path(config_path)
    if not path.exists():
        raise FileNotFoundError(f"Destination config file not found: {path}")

    raw_data = json.loads(path.read_text(encoding="utf-8"))
    destinations = raw_data.get("destinations", [])
    if not isinstance(destinations, list):
        raise ValueError("Invalid destination config: 'destinations' must be a list.")

    parsed: dict[str, DestinationSiteConfig] = {}
    for entry in destinations:
        if not isinstance(entry, dict):
            continue

        name = str(entry.get("name", "")).strip().lower()
        base_url = str(entry.get("base_url", "")).strip()
        if not name or not base_url:
            continue

        config = DestinationSiteConfig(
            name=name,
            base_url=base_url.rstrip("/"),
            pages=_normalize_pages(base_url=base_url, pages=entry.get("pages", {})),
            selectors=_normalize_selectors(entry.get("selectors", {})),
            price_decimals=_optional_int(entry.get("price_decimals"), 2),
        )
        _validate(config)
        parsed[name] = config

    return parsed


def load_destination_config(*, name: str, config_path: str = DEFAULT_CONFIG_PATH) -> DestinationSiteConfig:
    configs = load_destination_configs(config_path=config_path)
    key = name.strip().lower()
    if key not in configs:
        allowed = ", ".join(sorted(configs)) or "none"
        raise ValueError(f"Unknown destination '{name}'. Configured destinations: {allowed}.")
    return configs[key]


def _validate(config: DestinationSiteConfig) -> None:
    missing_pages = [key for key in REQUIRED_PAGES if not config.pages.get(key)]
    missing_selectors = [key for key in REQUIRED_SELECTORS if not config.selectors.get(key)]
    if missing_pages or missing_selectors:
        problems = []
        if missing_pages:
            problems.append(f"pages: {', '.join(missing_pages)}")
        if missing_selectors:
            problems.append(f"selectors: {', '.join(missing_selectors)}")
        raise ValueError(
            f"Destination '{config.name}' is missing required entries ({'; '.join(problems)})."
        )


def _normalize_pages(*, base_url: str, pages: object) -> dict[str, str]:
    if not isinstance(pages, dict):
        return {}

    normalized: dict[str, str] = {}
    for key, value in pages.items():
        if not isinstance(key, str) or not isinstance(value, str):
            continue
        page_kind = key.strip().lower()
        raw_url = value.strip()
        if not page_kind or not raw_url:
            continue
        if raw_url.startswith(("http://", "https://")):
            normalized[page_kind] = raw_url
        else:
            normalized[page_kind] = urljoin(f"{base_url.rstrip('/')}/", raw_url.lstrip("/"))
    return normalized


def _normalize_selectors(selectors: object) -> dict[str, list[str]]:
    if not isinstance(selectors, dict):
        return {}

    normalized: dict[str, list[str]] = {}
    for key, value in selectors.items():
        if not isinstance(key, str):
            continue
        if isinstance(value, str):
            selector_list = [value.strip()] if value.strip() else []
        elif isinstance(value, list):
            selector_list = [
                item.strip()
                for item in value
                if isinstance(item, str) and item.strip()
            ]
        else:
            selector_list = []
        normalized[key.strip().lower()] = selector_list
    return normalized


def _optional_int(value: object, default: int) -> int:
    if value is None or isinstance(value, bool):
        return default
    try:
        return max(0, int(value))
    except (TypeError, ValueError):
        return default
