"""
Destination-site adapter configuration models.
"""

from __future__ import annotations

from dataclasses import dataclass, field

REQUIRED_PAGES = ("login", "create_product")
REQUIRED_SELECTORS = (
    "login_form",
    "login_email",
    "login_password",
    "login_submit",
    "login_success_indicator",
    "product_title",
    "product_description",
    "product_price",
    "product_submit",
    "submit_success_indicator",
)


@dataclass(frozen=True)
class DestinationSiteConfig:
    """
    URLs and selector candidates for one destination marketplace UI.

    Each selector key maps to candidate CSS selectors tried as one
    comma-joined selector. Keys ending in `_indicator` hold conditions that
    may also be `url:<regex>` patterns matched against the page URL.
    """

    name: str
    base_url: str
    pages: dict[str, str]
    selectors: dict[str, list[str]] = field(default_factory=dict)
    price_decimals: int = 2

    def page(self, key: str) -> str | None:
        return self.pages.get(key)

    def selector(self, key: str) -> str | None:
        candidates = self.selectors.get(key) or []
        if not candidates:
            return None
        return ", ".join(candidates)

    def conditions(self, key: str) -> list[str]:
        return list(self.selectors.get(key) or [])
