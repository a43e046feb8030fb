"""
tests/test_text.py

Pytest tests for description, price and asset-reference normalization.
"""

from __future__ import annotations

from decimal import Decimal

import pytest

from app.migration.text import format_price, html_to_plain_text, is_remote_reference


class TestHtmlToPlainText:
    def test_inline_markup_is_removed(self) -> None:
        assert html_to_plain_text("<b>Bold</b> text") == "Bold text"

    def test_paragraphs_and_breaks_become_newlines(self) -> None:
        assert html_to_plain_text("<p>First</p><p>Second<br>line</p>") == "First\nSecond\nline"

    def test_scripts_and_styles_are_dropped(self) -> None:
        html = "<style>p{color:red}</style><p>Visible</p><script>alert(1)</script>"
        assert html_to_plain_text(html) == "Visible"

    def test_entities_are_decoded(self) -> None:
        assert html_to_plain_text("Fish &amp; Chips") == "Fish & Chips"

    def test_plain_text_only_has_whitespace_normalized(self) -> None:
        assert html_to_plain_text("  Tom   &&  Jerry  ") == "Tom && Jerry"

    @pytest.mark.parametrize("value", [None, ""])
    def test_empty_values(self, value) -> None:
        assert html_to_plain_text(value) == ""

    def test_list_items_each_on_own_line(self) -> None:
        assert html_to_plain_text("<ul><li>One</li><li>Two</li></ul>") == "One\nTwo"


class TestFormatPrice:
    @pytest.mark.parametrize(
        ("price", "decimals", "expected"),
        [
            (Decimal("5"), 2, "5.00"),
            (Decimal("19.999"), 2, "20.00"),
            (Decimal("0.125"), 2, "0.13"),
            (Decimal("12.5"), 0, "13"),
        ],
    )
    def test_formatting(self, price, decimals, expected) -> None:
        assert format_price(price, decimals=decimals) == expected


class TestIsRemoteReference:
    @pytest.mark.parametrize(
        ("reference", "expected"),
        [
            ("https://cdn.example.com/a.zip", True),
            ("HTTP://cdn.example.com/a.zip", True),
            ("/srv/assets/a.zip", False),
            ("assets/a.zip", False),
            ("C:\\assets\\a.zip", False),
            (None, False),
        ],
    )
    def test_detection(self, reference, expected) -> None:
        assert is_remote_reference(reference) is expected
