"""Text normalization helpers for provenance matching."""

from services.regulatory_truth.text.quotes import (
    find_unicode_quotes,
    has_unicode_quotes,
    normalize_for_match,
    normalize_quotes,
)


__all__ = [
    "normalize_quotes",
    "normalize_for_match",
    "has_unicode_quotes",
    "find_unicode_quotes",
]
