"""
Content Hashing
===============

Stable digests for evidence content and rule meaning.

- JSON and JSON-LD are hashed byte-for-byte. Timestamps, hex strings and
  other JSON-legal values must never be touched before hashing.
- HTML and plain text are hashed after stripping comments and collapsing
  whitespace, so cosmetic re-rendering does not look like a change.

Version: 0.1.0
"""

import hashlib
import json
import re
from datetime import date, datetime
from enum import Enum
from typing import Any


class ContentType(str, Enum):
    """Evidence content types."""

    HTML = "html"
    JSON = "json"
    JSON_LD = "json-ld"
    TEXT = "text"


_EXACT_BYTE_TYPES = {ContentType.JSON, ContentType.JSON_LD}

_HTML_COMMENT_RE = re.compile(r"<!--.*?-->", re.DOTALL)
_WHITESPACE_RE = re.compile(r"\s+")


def detect_content_type(raw: bytes | str) -> ContentType:
    """Sniff JSON by its first non-whitespace character."""
    head = raw.lstrip()[:1]
    if head in (b"{", b"[", "{", "["):
        return ContentType.JSON
    return ContentType.HTML


def normalize_html_content(text: str) -> str:
    """Strip HTML comments, collapse whitespace runs and trim."""
    without_comments = _HTML_COMMENT_RE.sub("", text)
    return _WHITESPACE_RE.sub(" ", without_comments).strip()


def hash_content(raw: bytes | str, content_type: ContentType | str | None = None) -> str:
    """
    Compute the SHA-256 hex digest of evidence content.

    Args:
        raw: Exact content as fetched
        content_type: Declared type, sniffed from the content when missing

    Returns:
        64-character lowercase hex digest
    """
    resolved = ContentType(content_type) if content_type else detect_content_type(raw)
    data = raw.encode("utf-8") if isinstance(raw, str) else raw

    if resolved in _EXACT_BYTE_TYPES:
        return hashlib.sha256(data).hexdigest()

    text = data.decode("utf-8", errors="replace")
    return hashlib.sha256(normalize_html_content(text).encode("utf-8")).hexdigest()


def detect_content_change(
    raw: bytes | str,
    previous_hash: str | None,
    content_type: ContentType | str | None = None,
) -> tuple[bool, str]:
    """Return (has_changed, new_hash) against a previously stored hash."""
    new_hash = hash_content(raw, content_type)
    return previous_hash is not None and new_hash != previous_hash, new_hash


# =============================================================================
# Canonical JSON
# =============================================================================


def canonical_date(value: date | datetime | str | None) -> str | None:
    """Render a date-like value as YYYY-MM-DD."""
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.date().isoformat()
    if isinstance(value, date):
        return value.isoformat()
    return date.fromisoformat(str(value)[:10]).isoformat()


def canonical_json(value: Any) -> str:
    """Compact JSON with recursively sorted keys."""
    return json.dumps(value, sort_keys=True, separators=(",", ":"), ensure_ascii=False)


def _canonical_scalar(value: Any) -> Any:
    if value is None:
        return None
    if isinstance(value, dict):
        return {str(k): _canonical_scalar(v) for k, v in value.items()}
    if isinstance(value, list | tuple):
        return [_canonical_scalar(v) for v in value]
    if isinstance(value, datetime | date):
        return canonical_date(value)
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, Enum):
        return str(value.value)
    return str(value)


def meaning_signature(
    concept_slug: str,
    value: Any,
    value_type: str | Enum,
    effective_from: date | datetime | str,
    effective_until: date | datetime | str | None = None,
) -> str:
    """
    Deterministic hash of a rule's semantic identity.

    Two rules with the same concept, value, value type and effective window
    always share a signature, regardless of how their fields were ordered
    or typed on input.
    """
    payload = {
        "concept_slug": concept_slug,
        "value": _canonical_scalar(value),
        "value_type": _canonical_scalar(value_type),
        "effective_from": canonical_date(effective_from),
        "effective_until": canonical_date(effective_until),
    }
    return hashlib.sha256(canonical_json(payload).encode("utf-8")).hexdigest()
