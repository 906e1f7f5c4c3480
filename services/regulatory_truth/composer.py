"""
Rule Composer
=============

Turns a batch of source pointers plus an agent proposal into either a DRAFT
rule, a merge into an existing rule, or an OPEN conflict.

Order of checks:
1. Blocked domain or zero pointers: rejected, nothing persisted
2. Agent-reported conflict: OPEN SOURCE_CONFLICT, no rule
3. AppliesWhen validation: rejected, nothing persisted
4. Concept resolution: merge into an existing rule with the same meaning
5. Explanation validation: quote-only fallback on failure
6. DRAFT rule with derived authority, concept and pointer links
7. Optional AMENDS edge (skipped on cycle)
8. Structural conflict detection

Version: 0.1.0
"""

import asyncio
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Any

from pydantic import ValidationError

from services.regulatory_truth.audit import AuditAction, log_audit_event
from services.regulatory_truth.authority import derive_authority_level
from services.regulatory_truth.collaborators import (
    AgentRunner,
    AuditSink,
    ComposerProposal,
    ConflictReport,
    DraftRuleProposal,
)
from services.regulatory_truth.concepts import ConceptResolver
from services.regulatory_truth.conflicts import StructuralConflictDetector
from services.regulatory_truth.dsl.applies_when import parse_applies_when
from services.regulatory_truth.errors import (
    AppliesWhenError,
    CompositionRejectedError,
    CycleDetectedError,
    DuplicateRuleError,
    ErrorKind,
    RegulatoryTruthError,
    RuleNotFoundError,
)
from services.regulatory_truth.explanation import (
    create_quote_only_explanation,
    validate_explanation,
)
from services.regulatory_truth.graph import AmendmentGraph
from services.regulatory_truth.models import (
    Concept,
    ConflictType,
    RegulatoryConflict,
    RegulatoryRule,
    RuleStatus,
    SourcePointer,
)
from services.regulatory_truth.store.base import RuleStore
from shared.config import ComposerSettings
from shared.logging import get_logger, log_context


logger = get_logger(__name__)


@dataclass
class ComposerResult:
    """Outcome of one composition."""

    success: bool
    rule_id: str | None = None
    conflict_id: str | None = None
    merged: bool = False
    error: str | None = None
    error_kind: ErrorKind | None = None
    warnings: list[str] = field(default_factory=list)
    structural_conflict_ids: list[str] = field(default_factory=list)

    @classmethod
    def failed(cls, error: RegulatoryTruthError) -> "ComposerResult":
        return cls(success=False, error=error.reason, error_kind=error.kind)


class RuleComposer:
    """Orchestrates rule creation from source pointers."""

    def __init__(
        self,
        store: RuleStore,
        audit: AuditSink,
        agent: AgentRunner | None = None,
        config: ComposerSettings | None = None,
    ) -> None:
        self.store = store
        self.audit = audit
        self.agent = agent
        self.config = config or ComposerSettings()
        self.resolver = ConceptResolver(store, self.config)
        self.graph = AmendmentGraph(store)
        self.conflicts = StructuralConflictDetector(store, audit)

    # =========================================================================
    # Input checks
    # =========================================================================

    async def _load_pointers(self, pointer_ids: list[str]) -> list[SourcePointer]:
        if not pointer_ids:
            raise CompositionRejectedError(
                "Cannot create rule without source pointers; every rule must be traceable"
            )

        pointers = await self.store.get_pointers(pointer_ids)
        missing = set(pointer_ids) - {p.id for p in pointers}
        if missing:
            raise CompositionRejectedError(
                f"Unknown source pointers: {', '.join(sorted(missing))}"
            )

        blocked = sorted({p.domain for p in pointers if self.resolver.is_blocked_domain(p.domain)})
        if blocked:
            raise CompositionRejectedError(
                f"Blocked domain(s): {', '.join(blocked)}; test data never becomes a rule"
            )
        return pointers

    async def _obtain_proposal(
        self,
        pointers: list[SourcePointer],
        proposal: ComposerProposal | dict[str, Any] | None,
    ) -> ComposerProposal:
        if proposal is None:
            if self.agent is None:
                raise CompositionRejectedError("No proposal given and no agent configured")
            proposal = await self.agent.run_composer(pointers)

        if isinstance(proposal, ComposerProposal):
            return proposal
        try:
            return ComposerProposal.model_validate(proposal)
        except ValidationError as e:
            raise CompositionRejectedError(
                f"Agent proposal failed validation: {e.error_count()} error(s)"
            ) from e

    async def _source_hierarchies(self, pointers: list[SourcePointer]) -> list[int]:
        hierarchies = []
        for evidence_id in dict.fromkeys(p.evidence_id for p in pointers):
            evidence = await self.store.get_evidence(evidence_id)
            if evidence is None:
                continue
            source = await self.store.get_source(evidence.source_id)
            if source is not None:
                hierarchies.append(source.hierarchy)
        return hierarchies

    # =========================================================================
    # Compose
    # =========================================================================

    async def compose(
        self,
        source_pointer_ids: list[str],
        proposal: ComposerProposal | dict[str, Any] | None = None,
    ) -> ComposerResult:
        """
        Compose a rule from source pointers.

        Args:
            source_pointer_ids: Pointers the rule is built from; only these are linked
            proposal: Agent output; the configured agent is called when omitted

        Returns:
            ComposerResult with a rule id, a conflict id, or a classified error
        """
        pointer_ids = list(dict.fromkeys(source_pointer_ids))

        try:
            pointers = await self._load_pointers(pointer_ids)
            proposal = await self._obtain_proposal(pointers, proposal)
        except CompositionRejectedError as e:
            logger.warning("composition_rejected", reason=e.reason, pointer_count=len(pointer_ids))
            return ComposerResult.failed(e)

        if proposal.conflicts_detected is not None:
            return await self._record_agent_conflict(pointer_ids, proposal.conflicts_detected)

        draft = proposal.draft_rule
        try:
            applies_when = parse_applies_when(
                draft.applies_when if draft.applies_when is not None else {"op": "true"}
            )
        except AppliesWhenError as e:
            logger.warning(
                "composition_rejected",
                reason=e.reason,
                concept_slug=draft.concept_slug,
            )
            return ComposerResult.failed(e)

        resolved = await self.resolver.resolve(
            draft.concept_slug,
            draft.value,
            draft.value_type,
            draft.effective_from,
            draft.effective_until,
        )

        if resolved.should_merge:
            merge = await self.resolver.merge_pointers(resolved.existing_rule_id, pointer_ids)
            await log_audit_event(
                self.audit,
                AuditAction.RULE_MERGED,
                "RULE",
                merge.rule_id,
                {
                    "concept_slug": resolved.canonical_slug,
                    "added_pointers": merge.added_pointers,
                    "merge_reason": resolved.merge_reason,
                },
            )
            return ComposerResult(success=True, rule_id=merge.rule_id, merged=True)

        warnings: list[str] = []
        explanation_hr, explanation_en = draft.explanation_hr, draft.explanation_en
        quotes = [p.exact_quote for p in pointers]
        validation = validate_explanation(explanation_hr, explanation_en, quotes, draft.value)
        if not validation.valid:
            if draft.risk_tier.value in self.config.strict_explanation_tiers:
                error = CompositionRejectedError(
                    f"Explanation for {draft.risk_tier.value} rule not supported by sources: "
                    + "; ".join(validation.errors)
                )
                logger.warning("composition_rejected", reason=error.reason)
                return ComposerResult.failed(error)

            logger.warning(
                "explanation_replaced_with_quotes",
                concept_slug=resolved.canonical_slug,
                errors=validation.errors,
            )
            warnings.extend(validation.errors)
            explanation_hr = create_quote_only_explanation(quotes, draft.value, "hr")
            explanation_en = create_quote_only_explanation(quotes, draft.value, "en")
        warnings.extend(validation.warnings)

        authority = derive_authority_level(await self._source_hierarchies(pointers))

        try:
            async with self.store.transaction():
                concept = await self._ensure_concept(resolved.canonical_slug, draft, authority.value)
                rule = await self.store.add_rule(
                    RegulatoryRule(
                        concept_slug=resolved.canonical_slug,
                        concept_id=concept.id,
                        title_hr=draft.title_hr,
                        title_en=draft.title_en,
                        risk_tier=draft.risk_tier,
                        authority_level=authority,
                        applies_when=applies_when,
                        value=draft.value,
                        value_type=draft.value_type,
                        explanation_hr=explanation_hr,
                        explanation_en=explanation_en,
                        effective_from=draft.effective_from,
                        effective_until=draft.effective_until,
                        supersedes_id=draft.supersedes,
                        status=RuleStatus.DRAFT,
                        confidence=draft.confidence,
                        meaning_signature=resolved.meaning_signature,
                        source_pointer_ids=tuple(pointer_ids),
                        composer_notes=draft.composer_notes,
                    )
                )
                await log_audit_event(
                    self.audit,
                    AuditAction.RULE_CREATED,
                    "RULE",
                    rule.id,
                    {
                        "concept_slug": rule.concept_slug,
                        "value": rule.value,
                        "risk_tier": rule.risk_tier.value,
                        "authority_level": rule.authority_level.value,
                        "source_pointer_count": len(pointer_ids),
                    },
                )
        except DuplicateRuleError as e:
            logger.warning("composition_lost_race", concept_slug=resolved.canonical_slug)
            return ComposerResult.failed(e)

        logger.info(
            "rule_created",
            rule_id=rule.id,
            concept_slug=rule.concept_slug,
            authority_level=authority.value,
        )

        if draft.supersedes:
            warning = await self._link_amendment(rule, draft.supersedes)
            if warning:
                warnings.append(warning)

        seeds = await self.conflicts.detect(rule)
        created = await self.conflicts.seed_conflicts(seeds)

        return ComposerResult(
            success=True,
            rule_id=rule.id,
            warnings=warnings,
            structural_conflict_ids=[c.id for c in created],
        )

    async def _ensure_concept(
        self, slug: str, draft: DraftRuleProposal, authority: str
    ) -> Concept:
        concept = await self.store.get_concept(slug)
        if concept is not None:
            return concept
        return await self.store.upsert_concept(
            Concept(
                slug=slug,
                name_hr=draft.title_hr,
                name_en=draft.title_en,
                description=draft.explanation_hr,
                tags=(draft.risk_tier.value, authority),
            )
        )

    async def _link_amendment(self, rule: RegulatoryRule, supersedes_id: str) -> str | None:
        try:
            await self.graph.create_edge(rule.id, supersedes_id, valid_from=rule.effective_from)
        except (CycleDetectedError, RuleNotFoundError) as e:
            logger.warning(
                "amendment_edge_skipped",
                rule_id=rule.id,
                supersedes_id=supersedes_id,
                reason=e.reason,
            )
            await log_audit_event(
                self.audit,
                AuditAction.AMENDMENT_SKIPPED,
                "RULE",
                rule.id,
                {"supersedes_id": supersedes_id, "reason": e.reason},
            )
            return f"Amendment edge skipped: {e.reason}"
        return None

    async def _record_agent_conflict(
        self, pointer_ids: list[str], report: ConflictReport
    ) -> ComposerResult:
        conflicting = [pid for pid in report.conflicting_pointer_ids if pid in pointer_ids]
        pair = (conflicting or pointer_ids)[:2]
        conflict = await self.store.add_conflict(
            RegulatoryConflict(
                conflict_type=ConflictType.SOURCE_CONFLICT,
                item_a_id=pair[0] if pair else None,
                item_b_id=pair[1] if len(pair) > 1 else None,
                description=report.description,
                metadata={
                    "source_pointer_ids": pointer_ids,
                    "conflicting_pointer_ids": conflicting,
                    "detected_by": "COMPOSER",
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
                "detected_by": "COMPOSER",
                "source_pointer_ids": pointer_ids,
            },
        )
        logger.warning(
            "source_conflict_detected",
            conflict_id=conflict.id,
            pointer_count=len(pointer_ids),
        )
        return ComposerResult(
            success=False,
            conflict_id=conflict.id,
            error="Conflict detected between sources; queued for arbitration",
            error_kind=ErrorKind.DEFERRED,
        )

    # =========================================================================
    # Batch
    # =========================================================================

    async def compose_batch(self) -> dict[str, ComposerResult]:
        """
        Compose rules for every domain with unlinked source pointers.

        Failures are isolated per domain; the configured cooldown is applied
        between domains.
        """
        by_domain: dict[str, list[str]] = defaultdict(list)
        for pointer in await self.store.list_unlinked_pointers():
            by_domain[pointer.domain].append(pointer.id)

        results: dict[str, ComposerResult] = {}
        for index, (domain, pointer_ids) in enumerate(sorted(by_domain.items())):
            if index > 0 and self.config.batch_cooldown_seconds > 0:
                await asyncio.sleep(self.config.batch_cooldown_seconds)
            with log_context(batch="composer", domain=domain):
                try:
                    results[domain] = await self.compose(pointer_ids)
                except Exception as e:
                    logger.exception("domain_composition_failed", error=str(e))
                    results[domain] = ComposerResult(success=False, error=str(e))

        logger.info(
            "composer_batch_completed",
            domains=len(results),
            succeeded=sum(1 for r in results.values() if r.success),
        )
        return results
