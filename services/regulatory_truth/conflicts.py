"""
Structural Conflict Detector
============================

Deterministic checks of a candidate rule against existing rules:
- VALUE_MISMATCH: same concept, overlapping windows, different values
- BOOLEAN_CONTRADICTION: boolean rules with the same applicability
  condition and opposite outcomes
- CROSS_SLUG_DUPLICATE: same value recorded under a known alias slug, or
  under any other slug when the concept has no known aliases

A rule from a strictly higher authority level never conflicts with a
lower one; that pairing is informational only. Conflicts are recorded as
OPEN and never auto-resolved here.

Version: 0.1.0
"""

from dataclasses import dataclass
from datetime import UTC, date, datetime
from enum import Enum

from services.regulatory_truth.audit import AuditAction, log_audit_event
from services.regulatory_truth.authority import outranks
from services.regulatory_truth.collaborators import AuditSink
from services.regulatory_truth.concepts import slug_family
from services.regulatory_truth.dsl.applies_when import serialize_applies_when
from services.regulatory_truth.models import (
    ConflictType,
    RegulatoryConflict,
    RegulatoryRule,
    RuleStatus,
)
from services.regulatory_truth.store.base import RuleStore
from shared.logging import get_logger


logger = get_logger(__name__)


class ConflictSubtype(str, Enum):
    """Structural conflict classification."""

    VALUE_MISMATCH = "VALUE_MISMATCH"
    BOOLEAN_CONTRADICTION = "BOOLEAN_CONTRADICTION"
    CROSS_SLUG_DUPLICATE = "CROSS_SLUG_DUPLICATE"


SUBTYPE_CONFLICT_TYPE: dict[ConflictSubtype, ConflictType] = {
    ConflictSubtype.VALUE_MISMATCH: ConflictType.SOURCE_CONFLICT,
    ConflictSubtype.BOOLEAN_CONTRADICTION: ConflictType.SOURCE_CONFLICT,
    ConflictSubtype.CROSS_SLUG_DUPLICATE: ConflictType.SCOPE_CONFLICT,
}

COMPARED_STATUSES = (RuleStatus.APPROVED, RuleStatus.PUBLISHED)
BOOLEAN_VALUE_TYPES = {"boolean", "bool"}


@dataclass
class ConflictSeed:
    """A detected conflict not yet persisted."""

    subtype: ConflictSubtype
    existing_rule_id: str
    new_rule_id: str
    reason: str


def windows_overlap(
    start_a: date | None,
    end_a: date | None,
    start_b: date | None,
    end_b: date | None,
) -> bool:
    """Inclusive overlap where a missing start or end is unbounded."""
    s1 = start_a or date.min
    e1 = end_a or date.max
    s2 = start_b or date.min
    e2 = end_b or date.max
    return s1 <= e2 and s2 <= e1


def _is_boolean(rule: RegulatoryRule) -> bool:
    return rule.value_type.lower() in BOOLEAN_VALUE_TYPES


class StructuralConflictDetector:
    """Finds and records contradictions between rules."""

    def __init__(self, store: RuleStore, audit: AuditSink) -> None:
        self.store = store
        self.audit = audit

    async def detect(self, candidate: RegulatoryRule) -> list[ConflictSeed]:
        """
        Compare a candidate rule against existing rules.

        Args:
            candidate: Newly created or proposed rule

        Returns:
            Conflict seeds; empty when the candidate is consistent
        """
        seeds: list[ConflictSeed] = []

        existing_rules = await self.store.list_rules(
            concept_slug=candidate.concept_slug, statuses=COMPARED_STATUSES
        )
        for existing in existing_rules:
            if existing.id == candidate.id:
                continue
            if not windows_overlap(
                existing.effective_from,
                existing.effective_until,
                candidate.effective_from,
                candidate.effective_until,
            ):
                continue
            if existing.value == candidate.value:
                continue

            if existing.authority_level != candidate.authority_level:
                stronger = (
                    candidate if outranks(candidate.authority_level, existing.authority_level)
                    else existing
                )
                logger.info(
                    "authority_supersession_noted",
                    concept_slug=candidate.concept_slug,
                    stronger_rule_id=stronger.id,
                    existing_rule_id=existing.id,
                    new_rule_id=candidate.id,
                    existing_authority=existing.authority_level.value,
                    new_authority=candidate.authority_level.value,
                )
                continue

            if _is_boolean(candidate) and _is_boolean(existing):
                if serialize_applies_when(existing.applies_when) != serialize_applies_when(
                    candidate.applies_when
                ):
                    continue
                seeds.append(
                    ConflictSeed(
                        subtype=ConflictSubtype.BOOLEAN_CONTRADICTION,
                        existing_rule_id=existing.id,
                        new_rule_id=candidate.id,
                        reason=(
                            f'Contradictory outcomes for "{candidate.concept_slug}" under the '
                            f'same condition: "{existing.value}" vs "{candidate.value}"'
                        ),
                    )
                )
                continue

            seeds.append(
                ConflictSeed(
                    subtype=ConflictSubtype.VALUE_MISMATCH,
                    existing_rule_id=existing.id,
                    new_rule_id=candidate.id,
                    reason=(
                        f'Same concept "{candidate.concept_slug}" with different values: '
                        f'"{existing.value}" vs "{candidate.value}" during overlapping period'
                    ),
                )
            )

        seeds.extend(await self._detect_cross_slug_duplicates(candidate))
        return seeds

    async def _detect_cross_slug_duplicates(
        self, candidate: RegulatoryRule
    ) -> list[ConflictSeed]:
        related = slug_family(candidate.concept_slug) - {candidate.concept_slug}
        if not related:
            return await self._detect_unaliased_duplicates(candidate)

        seeds = []
        for slug in sorted(related):
            for existing in await self.store.list_rules(concept_slug=slug):
                if not existing.is_active or existing.value != candidate.value:
                    continue
                if windows_overlap(
                    existing.effective_from,
                    existing.effective_until,
                    candidate.effective_from,
                    None,
                ):
                    seeds.append(
                        ConflictSeed(
                            subtype=ConflictSubtype.CROSS_SLUG_DUPLICATE,
                            existing_rule_id=existing.id,
                            new_rule_id=candidate.id,
                            reason=(
                                f'Known alias duplicate: "{existing.concept_slug}" is alias of '
                                f'"{candidate.concept_slug}" with same value "{candidate.value}"'
                            ),
                        )
                    )
        return seeds

    async def _detect_unaliased_duplicates(
        self, candidate: RegulatoryRule
    ) -> list[ConflictSeed]:
        """Same value and value type under any other slug."""
        if _is_boolean(candidate):
            return []

        seeds = []
        for existing in await self.store.list_rules():
            if (
                existing.id == candidate.id
                or existing.concept_slug == candidate.concept_slug
                or not existing.is_active
                or existing.value != candidate.value
                or existing.value_type != candidate.value_type
            ):
                continue
            if windows_overlap(
                existing.effective_from,
                existing.effective_until,
                candidate.effective_from,
                None,
            ):
                seeds.append(
                    ConflictSeed(
                        subtype=ConflictSubtype.CROSS_SLUG_DUPLICATE,
                        existing_rule_id=existing.id,
                        new_rule_id=candidate.id,
                        reason=(
                            f'Potential duplicate: same value "{candidate.value}" with different '
                            f'slugs: "{existing.concept_slug}" vs "{candidate.concept_slug}"'
                        ),
                    )
                )
        return seeds

    async def seed_conflicts(self, seeds: list[ConflictSeed]) -> list[RegulatoryConflict]:
        """Persist seeds as OPEN conflicts, skipping pairs already open."""
        created = []
        for seed in seeds:
            if await self.store.find_open_conflict(seed.existing_rule_id, seed.new_rule_id):
                logger.debug(
                    "conflict_already_open",
                    existing_rule_id=seed.existing_rule_id,
                    new_rule_id=seed.new_rule_id,
                )
                continue

            conflict = await self.store.add_conflict(
                RegulatoryConflict(
                    conflict_type=SUBTYPE_CONFLICT_TYPE[seed.subtype],
                    item_a_id=seed.existing_rule_id,
                    item_b_id=seed.new_rule_id,
                    description=seed.reason,
                    metadata={
                        "detection_method": "STRUCTURAL",
                        "conflict_subtype": seed.subtype.value,
                        "detected_at": datetime.now(UTC).isoformat(),
                    },
                )
            )
            await log_audit_event(
                self.audit,
                AuditAction.CONFLICT_CREATED,
                "CONFLICT",
                conflict.id,
                {
                    "conflict_type": conflict.conflict_type.value,
                    "conflict_subtype": seed.subtype.value,
                    "item_a_id": seed.existing_rule_id,
                    "item_b_id": seed.new_rule_id,
                },
            )
            created.append(conflict)

        if created:
            logger.warning("structural_conflicts_created", count=len(created))
        return created
