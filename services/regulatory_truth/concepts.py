"""
Concept Resolver
================

Canonicalizes proposed concept slugs and decides merge-vs-create.

A proposal merges into an existing rule when a non-deprecated rule of the
canonical concept already carries the same meaning signature. Known alias
slugs are always replaced by their canonical slug.

Version: 0.1.0
"""

from dataclasses import dataclass
from datetime import UTC, date, datetime
from typing import Any

from services.regulatory_truth.errors import RuleNotFoundError
from services.regulatory_truth.hashing import meaning_signature
from services.regulatory_truth.models import Concept
from services.regulatory_truth.store.base import RuleStore
from shared.config import ComposerSettings
from shared.logging import get_logger


logger = get_logger(__name__)


# Aliases observed as duplicates in production, keyed by canonical slug
CANONICAL_ALIASES: dict[str, list[str]] = {
    "pdv-standardna-stopa": [
        "vat-standard-rate",
        "pdv-standard-rate",
        "standard-vat-rate",
        "vat-rate-standard",
    ],
    "pdv-drzavni-proracun-iban": [
        "vat-payment-iban",
        "hr-vat-payment-iban",
        "state-budget-iban-vat",
        "pdv-uplatni-racun-proracun",
        "pdv-uplatni-racun-proracuna",
        "vat-payment-account-iban",
    ],
    "prag-promidzbenih-darova": [
        "promotional-gift-threshold",
        "representation-gift-threshold",
        "prag-darova-male-vrijednosti",
        "reprezentacija-mali-darovi-limit",
        "reprezentacija-dar-potrosacu-limit",
        "pdv-prag-darovi-potrosaci",
        "small-value-gift-threshold",
    ],
    "rok-cuvanja-dokumentacije": [
        "candidate-data-retention-period",
        "dokumentacija-natjecaj-rok-cuvanja",
        "procurement-documentation-retention-period",
    ],
    "fiskalizacija-2-0-datum": [
        "fiskalizacija-2-0-implementation-date",
        "fiskalizacija-2-0-start-date",
        "fiskalizacija-2-0-primjena",
        "regulation-application-date-2026",
    ],
    "stope-pdv-hrvatska": [
        "croatian-vat-rates",
        "croatian-vat-rates-and-payment",
        "vat-rates-croatia",
        "vat-rates-hr",
    ],
    "eracun-kpd-uskladenost": [
        "eracun-kpd-item-naming-consistency",
        "eracun-kpd-naming-consistency",
        "eracun-kpd-item-naming-alignment",
        "eracun-kpd-naming-alignment",
    ],
    "fiksni-tecaj-konverzije-hrk-eur": [
        "fixed-conversion-rate-health-insurance",
        "eur-hrk-fixed-conversion-rate",
        "hrk-eur-conversion-rate",
    ],
    "upravna-pristojba-zalba-rjesenje": ["administrative-fee-appeal-decision"],
    "regulatory-deadline-2025-12-04": [
        "rok-podnosenja-prosinac-2025",
        "rok-podnosenja-2025-12-04",
        "zakonski-rok-2025-12-04",
        "rok-obveze-2025-12-04",
        "deadline-date-2025-12-04",
    ],
    "standardni-radni-tjedan-zo": [
        "standard-working-week-health-insurance",
        "standard-work-week-hours",
    ],
    "required-professional-experience-years": [
        "min-work-experience-requirement",
        "professional-experience-requirement",
    ],
}

ALIAS_TO_CANONICAL: dict[str, str] = {
    **{alias: canonical for canonical, aliases in CANONICAL_ALIASES.items() for alias in aliases},
    **{canonical: canonical for canonical in CANONICAL_ALIASES},
}

_DIACRITICS = str.maketrans("čćžšđČĆŽŠĐ", "cczsdCCZSD")


def remove_diacritics(text: str) -> str:
    """Strip Croatian diacritics (č ć ž š đ)."""
    return text.translate(_DIACRITICS)


def normalize_slug(slug: str) -> str:
    return remove_diacritics(slug.strip().lower())


def canonical_slug(slug: str) -> str:
    """Canonical slug for a known alias, the slug itself otherwise."""
    return ALIAS_TO_CANONICAL.get(slug, slug)


def slug_family(slug: str) -> set[str]:
    """All slugs known to name the same concept, including the canonical one."""
    canonical = canonical_slug(slug)
    return {canonical, *CANONICAL_ALIASES.get(canonical, [])}


@dataclass
class ResolvedConcept:
    """Outcome of concept resolution."""

    canonical_slug: str
    meaning_signature: str
    should_merge: bool = False
    existing_rule_id: str | None = None
    existing_concept_id: str | None = None
    merge_reason: str | None = None


@dataclass
class MergeResult:
    rule_id: str
    added_pointers: int


class ConceptResolver:
    """Resolves concept identity and merges duplicate evidence into one rule."""

    def __init__(self, store: RuleStore, config: ComposerSettings | None = None) -> None:
        self.store = store
        self.config = config or ComposerSettings()

    def is_blocked_domain(self, domain: str) -> bool:
        """Test and synthetic domains never produce persisted rules."""
        lowered = domain.lower()
        return any(
            lowered == blocked or blocked in lowered for blocked in self.config.blocked_domains
        )

    async def _match_existing_concept(self, proposed_slug: str) -> Concept | None:
        canonical = canonical_slug(proposed_slug)
        concept = await self.store.get_concept(canonical)
        if concept is not None:
            return concept

        normalized = normalize_slug(proposed_slug)
        for candidate in await self.store.list_concepts():
            if (
                normalize_slug(candidate.slug) == normalized
                or ALIAS_TO_CANONICAL.get(candidate.slug) == canonical
            ):
                return candidate
        return None

    async def resolve(
        self,
        proposed_slug: str,
        value: Any,
        value_type: str,
        effective_from: date,
        effective_until: date | None = None,
    ) -> ResolvedConcept:
        """
        Resolve the canonical slug and look for a rule with the same meaning.

        Args:
            proposed_slug: Slug suggested by the agent
            value: Rule value
            value_type: Rule value type
            effective_from: Start of the effective window
            effective_until: End of the effective window, open when None

        Returns:
            ResolvedConcept with should_merge set when a duplicate exists
        """
        slug = canonical_slug(proposed_slug)
        concept = await self._match_existing_concept(proposed_slug)
        if concept is not None:
            slug = concept.slug

        signature = meaning_signature(slug, value, value_type, effective_from, effective_until)
        existing = await self.store.find_rule_by_signature(slug, signature)

        if existing is not None:
            logger.info(
                "concept_resolved_to_existing_rule",
                proposed_slug=proposed_slug,
                canonical_slug=slug,
                rule_id=existing.id,
            )
            return ResolvedConcept(
                canonical_slug=slug,
                meaning_signature=signature,
                should_merge=True,
                existing_rule_id=existing.id,
                existing_concept_id=existing.concept_id,
                merge_reason=(
                    f'Existing rule found with same value "{value}" ({value_type}) '
                    f"and effective window"
                ),
            )

        if slug != proposed_slug:
            logger.info("concept_alias_canonicalized", proposed_slug=proposed_slug, canonical_slug=slug)

        return ResolvedConcept(
            canonical_slug=slug,
            meaning_signature=signature,
            existing_concept_id=concept.id if concept else None,
        )

    async def merge_pointers(self, rule_id: str, pointer_ids: list[str]) -> MergeResult:
        """Attach only the pointers the rule does not already reference."""
        rule = await self.store.get_rule(rule_id)
        if rule is None:
            raise RuleNotFoundError(f"Rule {rule_id} not found")

        existing = set(rule.source_pointer_ids)
        new_ids = [pid for pid in dict.fromkeys(pointer_ids) if pid not in existing]
        if not new_ids:
            return MergeResult(rule_id=rule_id, added_pointers=0)

        now = datetime.now(UTC)
        await self.store.update_rule(
            rule.model_copy(
                update={
                    "source_pointer_ids": (*rule.source_pointer_ids, *new_ids),
                    "composer_notes": (
                        f"[AUTO-MERGED] Added {len(new_ids)} additional source pointers "
                        f"on {now.isoformat()}"
                    ),
                    "updated_at": now,
                }
            )
        )
        logger.info("pointers_merged", rule_id=rule_id, added_pointers=len(new_ids))
        return MergeResult(rule_id=rule_id, added_pointers=len(new_ids))

    async def sync_canonical_aliases(self) -> int:
        """Write the alias table onto stored canonical concepts."""
        updated = 0
        for slug, aliases in CANONICAL_ALIASES.items():
            concept = await self.store.get_concept(slug)
            if concept is None:
                continue
            await self.store.upsert_concept(
                concept.model_copy(
                    update={"aliases": tuple(aliases), "updated_at": datetime.now(UTC)}
                )
            )
            updated += 1
        return updated
