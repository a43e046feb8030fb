"""
Plain-text and price normalization for destination form fields.
"""

from __future__ import annotations

import re
from decimal import ROUND_HALF_UP, Decimal
from urllib.parse import urlparse

from bs4 import BeautifulSoup

_BLOCK_TAGS = ["p", "div", "li", "ul", "ol", "h1", "h2", "h3", "h4", "h5", "h6", "blockquote", "tr"]
_INLINE_WHITESPACE = re.compile(r"[ \t\f\v\u00a0]+")
_EXCESS_NEWLINES = re.compile(r"\n{3,}")


def html_to_plain_text(value: str | None) -> str:
    """
    Strip markup from a rich description, keeping paragraph breaks.

    Inline tags are removed without adding separators so `<b>Bold</b> text`
    becomes `Bold text`.
    """

    if not value:
        return ""
    if "<" not in value and "&" not in value:
        return _normalize_whitespace(value)

    soup = BeautifulSoup(value, "html.parser")
    for tag in soup.find_all(["script", "style"]):
        tag.decompose()
    for br in soup.find_all("br"):
        br.replace_with("\n")
    for tag in soup.find_all(_BLOCK_TAGS):
        tag.insert_after("\n")
    return _normalize_whitespace(soup.get_text())


def _normalize_whitespace(text: str) -> str:
    lines = [_INLINE_WHITESPACE.sub(" ", line).strip() for line in text.replace("\r\n", "\n").split("\n")]
    collapsed = "\n".join(lines).strip()
    return _EXCESS_NEWLINES.sub("\n\n", collapsed)


def format_price(price: Decimal, *, decimals: int = 2) -> str:
    """
    Render a price the way the destination's price input expects it.
    """

    if decimals <= 0:
        return str(price.quantize(Decimal("1"), rounding=ROUND_HALF_UP))
    quantum = Decimal(1).scaleb(-decimals)
    return str(price.quantize(quantum, rounding=ROUND_HALF_UP))


def is_remote_reference(reference: str | None) -> bool:
    if not reference:
        return False
    return urlparse(reference.strip()).scheme.lower() in {"http", "https"}
