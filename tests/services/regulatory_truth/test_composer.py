"""
Tests for the Rule Composer
===========================

Tests for:
- Fail-closed rejections with no writes
- Agent-reported source conflicts
- Merge into existing rules
- Explanation fallback and strict tiers
- Amendment linking
- Per-domain batch isolation
- The compose, approve and publish flow end to end

Version: 0.1.0
"""

from typing import Any

import pytest

from services.regulatory_truth.audit import AuditAction, StoreAuditSink
from services.regulatory_truth.composer import RuleComposer
from services.regulatory_truth.errors import ErrorKind, ProvenanceError
from services.regulatory_truth.models import (
    AuthorityLevel,
    ConflictStatus,
    ConflictType,
    Evidence,
    RegulatorySource,
    RiskTier,
    RuleStatus,
    SourcePointer,
)
from services.regulatory_truth.pipeline import RegulatoryTruthPipeline
from services.regulatory_truth.release import compute_release_hash
from services.regulatory_truth.store import InMemoryRuleStore
from shared.config import ComposerSettings
from tests.conftest import (
    REDUCED_RATE_QUOTE,
    VAT_RATE_QUOTE,
    StaticAgentRunner,
    draft_proposal,
)


@pytest.fixture
def composer(
    store: InMemoryRuleStore, audit: StoreAuditSink, agent: StaticAgentRunner
) -> RuleComposer:
    return RuleComposer(store, audit, agent, ComposerSettings(batch_cooldown_seconds=0))


class DomainFailingAgent(StaticAgentRunner):
    """Agent raising for pointers of one domain."""

    def __init__(self, failing_domain: str) -> None:
        super().__init__(draft_proposal())
        self.failing_domain = failing_domain

    async def run_composer(self, pointers: list[SourcePointer]) -> Any:
        if any(p.domain == self.failing_domain for p in pointers):
            raise RuntimeError("model timeout")
        return await super().run_composer(pointers)


# ============================================================================
# Rejection Tests
# ============================================================================


class TestComposeRejections:
    """Tests for inputs that must never become rules."""

    @pytest.mark.asyncio
    async def test_zero_pointers_rejected(
        self, composer: RuleComposer, store: InMemoryRuleStore
    ) -> None:
        result = await composer.compose([])

        assert result.success is False
        assert result.error_kind == ErrorKind.HARD_REJECT
        assert store.write_count == 0

    @pytest.mark.asyncio
    async def test_unknown_pointer_rejected(
        self, composer: RuleComposer, vat_pointer: SourcePointer
    ) -> None:
        result = await composer.compose([vat_pointer.id, "ptr-missing"])

        assert result.success is False
        assert "ptr-missing" in result.error

    @pytest.mark.asyncio
    async def test_blocked_domain_rejected(
        self,
        composer: RuleComposer,
        store: InMemoryRuleStore,
        vat_evidence: Evidence,
        make_pointer: Any,
        agent: StaticAgentRunner,
    ) -> None:
        """Test that heartbeat data is rejected before the agent runs."""
        pointer = await make_pointer(vat_evidence, domain="heartbeat")
        writes_before = store.write_count

        result = await composer.compose([pointer.id])

        assert result.success is False
        assert result.error_kind == ErrorKind.HARD_REJECT
        assert agent.calls == []
        assert store.write_count == writes_before

    @pytest.mark.asyncio
    async def test_invalid_applies_when_writes_nothing(
        self,
        composer: RuleComposer,
        store: InMemoryRuleStore,
        vat_pointer: SourcePointer,
    ) -> None:
        writes_before = store.write_count

        result = await composer.compose(
            [vat_pointer.id], proposal=draft_proposal(applies_when='{"op": "sometimes"}')
        )

        assert result.success is False
        assert result.error_kind == ErrorKind.HARD_REJECT
        assert store.write_count == writes_before
        assert await store.list_rules() == []

    @pytest.mark.asyncio
    async def test_malformed_proposal_rejected(
        self, composer: RuleComposer, vat_pointer: SourcePointer
    ) -> None:
        result = await composer.compose([vat_pointer.id], proposal={"draft_rule": {"value": "25"}})

        assert result.success is False
        assert result.error_kind == ErrorKind.HARD_REJECT

    @pytest.mark.asyncio
    async def test_no_agent_and_no_proposal(
        self,
        store: InMemoryRuleStore,
        audit: StoreAuditSink,
        vat_pointer: SourcePointer,
    ) -> None:
        composer = RuleComposer(store, audit)

        result = await composer.compose([vat_pointer.id])
        assert result.success is False


# ============================================================================
# Compose Tests
# ============================================================================


class TestCompose:
    """Tests for RuleComposer.compose."""

    @pytest.mark.asyncio
    async def test_creates_draft_rule(
        self,
        composer: RuleComposer,
        store: InMemoryRuleStore,
        vat_pointer: SourcePointer,
        agent: StaticAgentRunner,
    ) -> None:
        result = await composer.compose([vat_pointer.id, vat_pointer.id])

        assert result.success is True
        assert agent.calls == [[vat_pointer.id]]

        rule = await store.get_rule(result.rule_id)
        assert rule.status == RuleStatus.DRAFT
        assert rule.authority_level == AuthorityLevel.LAW
        assert rule.risk_tier == RiskTier.T1
        assert rule.source_pointer_ids == (vat_pointer.id,)
        assert rule.explanation_hr == "PDV se plaća po stopi od 25% na poreznu osnovicu."

        concept = await store.get_concept("pdv-standardna-stopa")
        assert rule.concept_id == concept.id
        assert await store.list_audit_events(entity_id=rule.id, action=AuditAction.RULE_CREATED)

    @pytest.mark.asyncio
    async def test_strongest_source_sets_authority(
        self,
        composer: RuleComposer,
        store: InMemoryRuleStore,
        guidance_source: RegulatorySource,
        vat_pointer: SourcePointer,
        make_pointer: Any,
    ) -> None:
        """Test that a law pointer lifts a rule also backed by guidance."""
        guidance_evidence = await store.add_evidence(
            Evidence.create(
                guidance_source.id,
                "https://www.porezna-uprava.hr/pdv/stope",
                f"<html><body><p>Mišljenje: {VAT_RATE_QUOTE}</p></body></html>",
            )
        )
        guidance_pointer = await make_pointer(guidance_evidence)

        result = await composer.compose([guidance_pointer.id, vat_pointer.id])

        rule = await store.get_rule(result.rule_id)
        assert rule.authority_level == AuthorityLevel.LAW
        assert set(rule.source_pointer_ids) == {guidance_pointer.id, vat_pointer.id}

    @pytest.mark.asyncio
    async def test_guidance_only_rule_is_guidance(
        self,
        composer: RuleComposer,
        store: InMemoryRuleStore,
        guidance_source: RegulatorySource,
        make_pointer: Any,
    ) -> None:
        guidance_evidence = await store.add_evidence(
            Evidence.create(
                guidance_source.id,
                "https://www.porezna-uprava.hr/pdv/stope",
                f"<html><body><p>Mišljenje: {VAT_RATE_QUOTE}</p></body></html>",
            )
        )
        guidance_pointer = await make_pointer(guidance_evidence)

        result = await composer.compose([guidance_pointer.id])

        rule = await store.get_rule(result.rule_id)
        assert rule.authority_level == AuthorityLevel.GUIDANCE

    @pytest.mark.asyncio
    async def test_missing_applies_when_defaults_to_always(
        self, composer: RuleComposer, store: InMemoryRuleStore, vat_pointer: SourcePointer
    ) -> None:
        result = await composer.compose(
            [vat_pointer.id], proposal=draft_proposal(applies_when=None)
        )

        rule = await store.get_rule(result.rule_id)
        assert rule.applies_when.op == "true"

    @pytest.mark.asyncio
    async def test_alias_slug_is_canonicalized(
        self, composer: RuleComposer, store: InMemoryRuleStore, vat_pointer: SourcePointer
    ) -> None:
        result = await composer.compose(
            [vat_pointer.id], proposal=draft_proposal(concept_slug="vat-standard-rate")
        )

        rule = await store.get_rule(result.rule_id)
        assert rule.concept_slug == "pdv-standardna-stopa"

    @pytest.mark.asyncio
    async def test_same_meaning_merges(
        self,
        composer: RuleComposer,
        store: InMemoryRuleStore,
        vat_evidence: Evidence,
        vat_pointer: SourcePointer,
        make_pointer: Any,
        make_rule: Any,
    ) -> None:
        """Test that an equivalent proposal adds pointers instead of a rule."""
        existing = await make_rule(vat_pointer)
        second = await make_pointer(vat_evidence, domain="pdv-2")

        result = await composer.compose([second.id])

        assert result.success is True
        assert result.merged is True
        assert result.rule_id == existing.id
        assert len(await store.list_rules()) == 1
        updated = await store.get_rule(existing.id)
        assert updated.source_pointer_ids == (vat_pointer.id, second.id)
        assert await store.list_audit_events(action=AuditAction.RULE_MERGED)

    @pytest.mark.asyncio
    async def test_unsupported_explanation_replaced_with_quotes(
        self, composer: RuleComposer, store: InMemoryRuleStore, vat_pointer: SourcePointer
    ) -> None:
        result = await composer.compose(
            [vat_pointer.id],
            proposal=draft_proposal(explanation_hr="Stopa je 25%, a snižena 13%."),
        )

        assert result.success is True
        assert result.warnings
        rule = await store.get_rule(result.rule_id)
        assert rule.explanation_hr.startswith("Vrijednost: 25")
        assert rule.explanation_en.startswith("Value: 25")

    @pytest.mark.asyncio
    async def test_strict_tier_rejects_unsupported_explanation(
        self,
        store: InMemoryRuleStore,
        audit: StoreAuditSink,
        vat_pointer: SourcePointer,
    ) -> None:
        composer = RuleComposer(
            store, audit, config=ComposerSettings(strict_explanation_tiers=["T0", "T1"])
        )

        result = await composer.compose(
            [vat_pointer.id],
            proposal=draft_proposal(explanation_hr="Stopa je 25%, a snižena 13%."),
        )

        assert result.success is False
        assert result.error_kind == ErrorKind.HARD_REJECT
        assert await store.list_rules() == []

    @pytest.mark.asyncio
    async def test_supersedes_creates_amendment_edge(
        self,
        composer: RuleComposer,
        store: InMemoryRuleStore,
        vat_pointer: SourcePointer,
        make_rule: Any,
    ) -> None:
        older = await make_rule(vat_pointer, value="23", status=RuleStatus.DEPRECATED)

        result = await composer.compose(
            [vat_pointer.id], proposal=draft_proposal(supersedes=older.id)
        )

        [edge] = await store.list_edges()
        assert (edge.from_rule_id, edge.to_rule_id) == (result.rule_id, older.id)
        assert not any("Amendment" in w for w in result.warnings)

    @pytest.mark.asyncio
    async def test_unknown_supersedes_is_skipped_with_warning(
        self, composer: RuleComposer, store: InMemoryRuleStore, vat_pointer: SourcePointer
    ) -> None:
        """Test that a bad amendment link keeps the rule and records the skip."""
        result = await composer.compose(
            [vat_pointer.id], proposal=draft_proposal(supersedes="rule-missing")
        )

        assert result.success is True
        assert any("Amendment edge skipped" in w for w in result.warnings)
        assert await store.list_edges() == []
        assert await store.list_audit_events(action=AuditAction.AMENDMENT_SKIPPED)

    @pytest.mark.asyncio
    async def test_structural_conflict_recorded(
        self,
        composer: RuleComposer,
        store: InMemoryRuleStore,
        vat_pointer: SourcePointer,
        make_rule: Any,
    ) -> None:
        """Test that a new value against an approved rule opens a conflict."""
        await make_rule(
            vat_pointer,
            value="23",
            status=RuleStatus.APPROVED,
            authority_level=AuthorityLevel.LAW,
        )

        result = await composer.compose([vat_pointer.id])

        assert result.success is True
        [conflict] = await store.list_conflicts(ConflictStatus.OPEN)
        assert result.structural_conflict_ids == [conflict.id]
        assert conflict.item_b_id == result.rule_id


# ============================================================================
# Agent Conflict Tests
# ============================================================================


class TestAgentConflicts:
    """Tests for conflicts reported by the agent."""

    @pytest.mark.asyncio
    async def test_conflict_creates_no_rule(
        self,
        store: InMemoryRuleStore,
        audit: StoreAuditSink,
        vat_evidence: Evidence,
        vat_pointer: SourcePointer,
        make_pointer: Any,
    ) -> None:
        reduced = await make_pointer(vat_evidence, quote=REDUCED_RATE_QUOTE, value="13")
        agent = StaticAgentRunner(
            {
                "conflicts_detected": {
                    "description": "25% and 13% both claimed as the VAT rate",
                    "conflicting_pointer_ids": [reduced.id, vat_pointer.id, "ptr-foreign"],
                }
            }
        )
        composer = RuleComposer(store, audit, agent)

        result = await composer.compose([vat_pointer.id, reduced.id])

        assert result.success is False
        assert result.error_kind == ErrorKind.DEFERRED
        assert await store.list_rules() == []

        conflict = (await store.list_conflicts())[0]
        assert conflict.id == result.conflict_id
        assert conflict.conflict_type == ConflictType.SOURCE_CONFLICT
        assert (conflict.item_a_id, conflict.item_b_id) == (reduced.id, vat_pointer.id)
        assert conflict.metadata["detected_by"] == "COMPOSER"


# ============================================================================
# Batch Tests
# ============================================================================


class TestComposeBatch:
    """Tests for RuleComposer.compose_batch."""

    @pytest.mark.asyncio
    async def test_domains_are_isolated(
        self,
        store: InMemoryRuleStore,
        audit: StoreAuditSink,
        vat_evidence: Evidence,
        make_pointer: Any,
    ) -> None:
        """Test that one failing domain does not stop the others."""
        await make_pointer(vat_evidence, domain="pdv")
        await make_pointer(vat_evidence, domain="porez-na-dobit", value="18")
        await make_pointer(vat_evidence, domain="test-fixtures")
        composer = RuleComposer(
            store,
            audit,
            DomainFailingAgent("porez-na-dobit"),
            ComposerSettings(batch_cooldown_seconds=0),
        )

        results = await composer.compose_batch()

        assert list(results) == ["pdv", "porez-na-dobit", "test-fixtures"]
        assert results["pdv"].success is True
        assert results["porez-na-dobit"].success is False
        assert results["porez-na-dobit"].error == "model timeout"
        assert results["test-fixtures"].error_kind == ErrorKind.HARD_REJECT

    @pytest.mark.asyncio
    async def test_linked_pointers_not_recomposed(
        self,
        composer: RuleComposer,
        vat_pointer: SourcePointer,
        make_rule: Any,
    ) -> None:
        await make_rule(vat_pointer)

        assert await composer.compose_batch() == {}


# ============================================================================
# End-to-End Tests
# ============================================================================


class TestEndToEnd:
    """Compose, approve and publish through the wired pipeline."""

    @pytest.mark.asyncio
    async def test_conflicting_rates_never_publish(
        self,
        pipeline: RegulatoryTruthPipeline,
        store: InMemoryRuleStore,
        vat_evidence: Evidence,
        vat_pointer: SourcePointer,
        make_pointer: Any,
    ) -> None:
        """Test that two sources with different VAT rates end as an open conflict."""
        reduced = await make_pointer(vat_evidence, quote=REDUCED_RATE_QUOTE, value="13")
        pipeline.composer.agent = StaticAgentRunner(
            {"conflicts_detected": {"conflicting_pointer_ids": [vat_pointer.id, reduced.id]}}
        )

        result = await pipeline.composer.compose([vat_pointer.id, reduced.id])

        assert result.conflict_id is not None
        [conflict] = await store.list_conflicts(ConflictStatus.OPEN)
        assert conflict.conflict_type == ConflictType.SOURCE_CONFLICT
        assert await store.list_rules() == []
        assert await store.list_rules(statuses=[RuleStatus.PUBLISHED]) == []

    @pytest.mark.asyncio
    async def test_compose_approve_publish(
        self,
        pipeline: RegulatoryTruthPipeline,
        store: InMemoryRuleStore,
        vat_pointer: SourcePointer,
    ) -> None:
        result = await pipeline.composer.compose([vat_pointer.id])
        await pipeline.lifecycle.approve(result.rule_id, approved_by="reviewer")

        published = await pipeline.lifecycle.publish_rules([result.rule_id], source="release")

        assert published.published_ids == [result.rule_id]
        rules = await store.list_rules(statuses=[RuleStatus.PUBLISHED])
        assert len(compute_release_hash(rules)) == 64

    @pytest.mark.asyncio
    async def test_fabricated_quote_blocks_publish(
        self,
        pipeline: RegulatoryTruthPipeline,
        store: InMemoryRuleStore,
        vat_evidence: Evidence,
        make_pointer: Any,
    ) -> None:
        """Test that a quote absent from the evidence cannot reach PUBLISHED."""
        invented = await make_pointer(vat_evidence, quote="PDV iznosi 25% za sve usluge.")
        result = await pipeline.composer.compose(
            [invented.id], proposal=draft_proposal(explanation_hr="PDV iznosi 25%.")
        )
        await pipeline.lifecycle.approve(result.rule_id, approved_by="reviewer")

        with pytest.raises(ProvenanceError):
            await pipeline.lifecycle.publish_rules([result.rule_id], source="release")

        assert await store.list_rules(statuses=[RuleStatus.PUBLISHED]) == []
