"""
Release Hash
============

Order-independent integrity digest over a rule set.

Each rule is reduced to its semantic fields, dates become YYYY-MM-DD,
object keys are sorted recursively (including inside appliesWhen) and the
sorted list is hashed as compact JSON with SHA-256.

Version: 0.1.0
"""

import hashlib
import hmac
from collections.abc import Iterable
from datetime import UTC, datetime
from typing import Any

from services.regulatory_truth.dsl.applies_when import to_tree
from services.regulatory_truth.hashing import canonical_date, canonical_json
from services.regulatory_truth.models import RegulatoryRule


def canonical_rule(rule: RegulatoryRule) -> dict[str, Any]:
    """Semantic fields of a rule in canonical form."""
    return {
        "concept_slug": rule.concept_slug,
        "value": rule.value,
        "value_type": rule.value_type,
        "applies_when": to_tree(rule.applies_when),
        "effective_from": canonical_date(rule.effective_from),
        "effective_until": canonical_date(rule.effective_until),
        "authority_level": rule.authority_level.value,
        "risk_tier": rule.risk_tier.value,
    }


def canonical_release(rules: Iterable[RegulatoryRule]) -> list[dict[str, Any]]:
    """Canonical rule list sorted by concept, then date, value and body."""
    entries = [canonical_rule(rule) for rule in rules]
    return sorted(
        entries,
        key=lambda e: (e["concept_slug"], e["effective_from"], e["value"], canonical_json(e)),
    )


def compute_release_hash(rules: Iterable[RegulatoryRule]) -> str:
    """SHA-256 hex digest of the canonical release."""
    payload = canonical_json(canonical_release(rules))
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()


def verify_release_hash(rules: Iterable[RegulatoryRule], expected: str) -> bool:
    return hmac.compare_digest(compute_release_hash(rules), expected.lower())


def build_release_manifest(rules: Iterable[RegulatoryRule]) -> dict[str, Any]:
    """Release hash plus the identifiers it covers, for audit snapshots."""
    rules = list(rules)
    return {
        "release_hash": compute_release_hash(rules),
        "rule_count": len(rules),
        "rule_ids": sorted(rule.id for rule in rules),
        "concept_slugs": sorted({rule.concept_slug for rule in rules}),
        "generated_at": datetime.now(UTC).isoformat(),
    }
