"""
Tests for Quote Normalization and Hashing
=========================================

Tests for:
- Unicode quote normalization
- Evidence content hashing
- Meaning signatures

Version: 0.1.0
"""

from datetime import date, datetime

import pytest

from services.regulatory_truth.hashing import (
    ContentType,
    canonical_date,
    canonical_json,
    detect_content_change,
    detect_content_type,
    hash_content,
    meaning_signature,
)
from services.regulatory_truth.text import (
    find_unicode_quotes,
    has_unicode_quotes,
    normalize_for_match,
    normalize_quotes,
)


# ============================================================================
# Quote Normalizer Tests
# ============================================================================


class TestNormalizeQuotes:
    """Tests for normalize_quotes."""

    def test_english_curly_quotes(self) -> None:
        """Test that English curly quotes become ASCII."""
        assert normalize_quotes("\u201cHello\u201d") == '"Hello"'

    def test_croatian_low_high_quotes(self) -> None:
        """Test that Croatian low-high quotes become ASCII."""
        assert normalize_quotes("\u201eHello\u201c") == '"Hello"'

    def test_guillemets_and_single_quotes(self) -> None:
        """Test guillemets and typographic apostrophes."""
        assert normalize_quotes("\u00abda\u00bb") == '"da"'
        assert normalize_quotes("\u2018it\u2019s\u2019") == "'it's'"

    def test_ascii_unchanged(self) -> None:
        """Test that ASCII-only input is returned unchanged."""
        text = 'Plain "ASCII" text, it\'s fine.'
        assert normalize_quotes(text) == text

    @pytest.mark.parametrize(
        "text",
        ["\u201cA\u201d", "\u201eB\u201c", "\u2039C\u203a", "mixed \u201c'\u2019\u201d"],
    )
    def test_idempotent(self, text: str) -> None:
        """Test that normalizing twice equals normalizing once."""
        once = normalize_quotes(text)
        assert normalize_quotes(once) == once

    def test_length_preserving(self) -> None:
        """Test that normalization keeps string length."""
        text = "\u201ePDV\u201c od 25%"
        assert len(normalize_quotes(text)) == len(text)

    def test_detection_helpers(self) -> None:
        """Test has_unicode_quotes and find_unicode_quotes."""
        text = "a\u201cb\u201d"
        assert has_unicode_quotes(text)
        assert not has_unicode_quotes('a"b"')
        assert find_unicode_quotes(text) == [(1, "\u201c"), (3, "\u201d")]

    def test_normalize_for_match(self) -> None:
        """Test whitespace, NBSP and soft hyphen handling."""
        text = "  stopa\u00a0od   25%\u00ad \u201cPDV\u201d\n"
        assert normalize_for_match(text) == 'stopa od 25% "PDV"'


# ============================================================================
# Content Hash Tests
# ============================================================================


class TestContentHash:
    """Tests for evidence content hashing."""

    def test_html_whitespace_and_comments_ignored(self) -> None:
        """Test that cosmetic HTML changes keep the hash."""
        a = "<p>Stopa   je 25%</p>\n<!-- build 12 -->"
        b = "<p>Stopa je 25%</p>  <!-- build 13 -->"
        assert hash_content(a, ContentType.HTML) == hash_content(b, ContentType.HTML)

    def test_html_text_change_detected(self) -> None:
        """Test that a content change alters the hash."""
        a = "<p>Stopa je 25%</p>"
        b = "<p>Stopa je 13%</p>"
        assert hash_content(a, "html") != hash_content(b, "html")

    def test_json_hashed_exactly(self) -> None:
        """Test that JSON whitespace is significant."""
        a = b'{"rate": 25}'
        b = b'{"rate":  25}'
        assert hash_content(a, ContentType.JSON) != hash_content(b, ContentType.JSON)

    def test_json_detected(self) -> None:
        """Test content type sniffing."""
        assert detect_content_type(b'  {"a": 1}') == ContentType.JSON
        assert detect_content_type(b"[1, 2]") == ContentType.JSON
        assert detect_content_type(b"<html></html>") == ContentType.HTML

    def test_hash_format(self) -> None:
        """Test digest is 64 lowercase hex characters."""
        digest = hash_content("<p>x</p>")
        assert len(digest) == 64
        assert digest == digest.lower()

    def test_detect_content_change(self) -> None:
        """Test change detection against a stored hash."""
        original = hash_content("<p>a</p>")
        changed, new_hash = detect_content_change("<p>b</p>", original)
        assert changed is True
        assert new_hash != original

        unchanged, _ = detect_content_change("<p>a</p>", original)
        assert unchanged is False

        first_fetch, _ = detect_content_change("<p>a</p>", None)
        assert first_fetch is False


# ============================================================================
# Meaning Signature Tests
# ============================================================================


class TestMeaningSignature:
    """Tests for meaning_signature."""

    def test_deterministic(self) -> None:
        """Test identical inputs give identical signatures."""
        a = meaning_signature("pdv-standardna-stopa", "25", "percentage", date(2013, 1, 1))
        b = meaning_signature("pdv-standardna-stopa", "25", "percentage", date(2013, 1, 1))
        assert a == b

    def test_type_independent(self) -> None:
        """Test that value and date representations collapse."""
        a = meaning_signature("pdv-standardna-stopa", 25, "percentage", "2013-01-01")
        b = meaning_signature(
            "pdv-standardna-stopa", "25", "percentage", datetime(2013, 1, 1, 12, 30)
        )
        assert a == b

    def test_structured_value_key_order(self) -> None:
        """Test that dict values hash independently of key order."""
        a = meaning_signature("limits", {"a": 1, "b": 2}, "object", date(2024, 1, 1))
        b = meaning_signature("limits", {"b": 2, "a": 1}, "object", date(2024, 1, 1))
        assert a == b

    @pytest.mark.parametrize(
        "changes",
        [
            {"concept_slug": "pdv-snizena-stopa"},
            {"value": "13"},
            {"value_type": "decimal"},
            {"effective_from": date(2014, 1, 1)},
            {"effective_until": date(2030, 12, 31)},
        ],
    )
    def test_differing_rules_never_collide(self, changes: dict) -> None:
        """Test that any semantic difference changes the signature."""
        base = {
            "concept_slug": "pdv-standardna-stopa",
            "value": "25",
            "value_type": "percentage",
            "effective_from": date(2013, 1, 1),
            "effective_until": None,
        }
        assert meaning_signature(**base) != meaning_signature(**{**base, **changes})

    def test_canonical_helpers(self) -> None:
        """Test canonical date and JSON forms."""
        assert canonical_date(datetime(2025, 7, 1, 8, 0)) == "2025-07-01"
        assert canonical_date("2025-07-01T00:00:00Z") == "2025-07-01"
        assert canonical_date(None) is None
        assert canonical_json({"b": 1, "a": [1, {"d": 2, "c": 3}]}) == (
            '{"a":[1,{"c":3,"d":2}],"b":1}'
        )
