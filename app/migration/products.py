"""
Normalization of raw source-catalog records into `Product` values.
"""

from __future__ import annotations

import json
from collections.abc import Mapping, Sequence
from datetime import datetime
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any

from app.domain.migration import Product


class ProductValidationError(ValueError):
    """
    Raised when a raw product record cannot be normalized.

    Attributes:
        errors: Every problem found in the record.
        index: Position of the record in its batch, when known.
    """

    def __init__(self, errors: list[str], *, index: int | None = None) -> None:
        self.errors = errors
        self.index = index
        prefix = f"Product #{index}: " if index is not None else ""
        super().__init__(prefix + "; ".join(errors))


def _first_str(raw: Mapping[str, Any], *keys: str) -> str | None:
    for key in keys:
        value = raw.get(key)
        if value is None:
            continue
        text = str(value).strip()
        if text:
            return text
    return None


def _parse_price(raw: Mapping[str, Any], errors: list[str]) -> Decimal:
    if raw.get("price") is None and raw.get("price_cents") is not None:
        cents = _to_decimal(raw["price_cents"])
        if cents is None:
            errors.append(f"price_cents is not a number: {raw['price_cents']!r}")
            return Decimal("0")
        price = cents / 100
    else:
        value = raw.get("price", 0)
        price = _to_decimal(value)
        if price is None:
            errors.append(f"price is not a number: {value!r}")
            return Decimal("0")
    if price < 0:
        errors.append(f"price must be non-negative, got {price}")
    return price


def _to_decimal(value: Any) -> Decimal | None:
    if isinstance(value, bool):
        return None
    try:
        parsed = Decimal(str(value).strip() or "0")
    except InvalidOperation:
        return None
    if not parsed.is_finite():
        return None
    return parsed


def _parse_timestamp(value: Any) -> datetime | None:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value
    try:
        return datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    except ValueError:
        return None


def normalize_product(raw: Mapping[str, Any], *, index: int | None = None) -> Product:
    """
    Build a `Product` from a source record, accepting the source's key aliases.

    Raises:
        ProductValidationError: If title, source id or price are unusable.
    """

    errors: list[str] = []
    title = _first_str(raw, "title", "name", "product_title")
    if title is None:
        errors.append("title is required")

    permalink = _first_str(raw, "permalink", "slug")
    source_id = _first_str(raw, "source_id", "id", "product_id") or permalink
    if source_id is None:
        errors.append("source id is required (id, source_id or permalink)")

    price = _parse_price(raw, errors)
    if errors:
        raise ProductValidationError(errors, index=index)

    return Product(
        source_id=source_id or "",
        title=title or "",
        description=str(raw.get("description") or ""),
        price=price,
        asset_ref=_first_str(raw, "file_path", "file_url", "download_url"),
        image_ref=_first_str(raw, "image_path", "image_url", "preview_url"),
        product_type=_first_str(raw, "type", "product_type") or "digital_product",
        permalink=permalink,
        user_email=_first_str(raw, "user_email", "email"),
        created_at=_parse_timestamp(raw.get("created_at")),
        updated_at=_parse_timestamp(raw.get("updated_at")),
    )


def normalize_products(records: Sequence[Mapping[str, Any]]) -> list[Product]:
    """
    Normalize a batch, failing on the first invalid record.
    """

    products: list[Product] = []
    for index, record in enumerate(records):
        if not isinstance(record, Mapping):
            raise ProductValidationError(["record must be an object"], index=index)
        products.append(normalize_product(record, index=index))
    return products


def load_products(path: str | Path) -> list[Product]:
    """
    Read a JSON array of product records from disk.
    """

    file_path = Path(path)
    if not file_path.exists():
        raise FileNotFoundError(f"Products file not found: {file_path}")

    payload = json.loads(file_path.read_text(encoding="utf-8"))
    if not isinstance(payload, list) or not payload:
        raise ValueError(f"Products file must contain a non-empty JSON array: {file_path}")
    return normalize_products(payload)
