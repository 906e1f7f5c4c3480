"""
In-Memory Rule Store
====================

Dictionary-backed RuleStore for tests and local tooling. Enforces the same
uniqueness rules as the SQL store; ``transaction()`` restores a snapshot
when the block raises.

Version: 0.1.0
"""

from collections.abc import AsyncGenerator, Iterable
from contextlib import asynccontextmanager
from typing import Any

from services.regulatory_truth.errors import DuplicateRuleError, RuleNotFoundError
from services.regulatory_truth.models import (
    AmendmentEdge,
    AuditEvent,
    Concept,
    ConflictStatus,
    EdgeRelation,
    Evidence,
    RegulatoryConflict,
    RegulatoryRule,
    RegulatorySource,
    RuleStatus,
    SourcePointer,
)


class InMemoryRuleStore:
    """RuleStore kept in process memory."""

    def __init__(self) -> None:
        self.sources: dict[str, RegulatorySource] = {}
        self.evidence: dict[str, Evidence] = {}
        self.pointers: dict[str, SourcePointer] = {}
        self.concepts: dict[str, Concept] = {}
        self.rules: dict[str, RegulatoryRule] = {}
        self.conflicts: dict[str, RegulatoryConflict] = {}
        self.edges: dict[str, AmendmentEdge] = {}
        self.audit_events: list[AuditEvent] = []
        self.write_count = 0

    def _snapshot(self) -> dict[str, Any]:
        return {
            "sources": dict(self.sources),
            "evidence": dict(self.evidence),
            "pointers": dict(self.pointers),
            "concepts": dict(self.concepts),
            "rules": dict(self.rules),
            "conflicts": dict(self.conflicts),
            "edges": dict(self.edges),
            "audit_events": list(self.audit_events),
            "write_count": self.write_count,
        }

    @asynccontextmanager
    async def transaction(self) -> AsyncGenerator[None, None]:
        snapshot = self._snapshot()
        try:
            yield
        except BaseException:
            for name, value in snapshot.items():
                setattr(self, name, value)
            raise

    # =========================================================================
    # Sources and Evidence
    # =========================================================================

    async def add_source(self, source: RegulatorySource) -> RegulatorySource:
        self.write_count += 1
        self.sources[source.id] = source
        return source

    async def get_source(self, source_id: str) -> RegulatorySource | None:
        return self.sources.get(source_id)

    async def add_evidence(self, evidence: Evidence) -> Evidence:
        for existing in self.evidence.values():
            if existing.content_hash == evidence.content_hash and existing.deleted_at is None:
                return existing
        self.write_count += 1
        self.evidence[evidence.id] = evidence
        return evidence

    async def get_evidence(self, evidence_id: str) -> Evidence | None:
        return self.evidence.get(evidence_id)

    async def update_evidence(self, evidence: Evidence) -> Evidence:
        if evidence.id not in self.evidence:
            raise RuleNotFoundError(f"Evidence {evidence.id} not found")
        self.write_count += 1
        self.evidence[evidence.id] = evidence
        return evidence

    async def list_evidence(self, include_deleted: bool = False) -> list[Evidence]:
        return [e for e in self.evidence.values() if include_deleted or e.deleted_at is None]

    # =========================================================================
    # Source Pointers
    # =========================================================================

    async def add_pointer(self, pointer: SourcePointer) -> SourcePointer:
        self.write_count += 1
        self.pointers[pointer.id] = pointer
        return pointer

    async def get_pointers(self, pointer_ids: Iterable[str]) -> list[SourcePointer]:
        return [self.pointers[pid] for pid in pointer_ids if pid in self.pointers]

    async def update_pointer(self, pointer: SourcePointer) -> SourcePointer:
        if pointer.id not in self.pointers:
            raise RuleNotFoundError(f"Source pointer {pointer.id} not found")
        self.write_count += 1
        self.pointers[pointer.id] = pointer
        return pointer

    async def list_unlinked_pointers(self) -> list[SourcePointer]:
        linked = {pid for rule in self.rules.values() for pid in rule.source_pointer_ids}
        return [p for p in self.pointers.values() if p.id not in linked]

    # =========================================================================
    # Concepts
    # =========================================================================

    async def get_concept(self, slug: str) -> Concept | None:
        return self.concepts.get(slug)

    async def list_concepts(self) -> list[Concept]:
        return list(self.concepts.values())

    async def upsert_concept(self, concept: Concept) -> Concept:
        self.write_count += 1
        existing = self.concepts.get(concept.slug)
        if existing is not None:
            concept = concept.model_copy(
                update={"id": existing.id, "created_at": existing.created_at}
            )
        self.concepts[concept.slug] = concept
        return concept

    # =========================================================================
    # Rules
    # =========================================================================

    def _check_signature_unique(self, rule: RegulatoryRule) -> None:
        if not rule.is_active:
            return
        for other in self.rules.values():
            if (
                other.id != rule.id
                and other.is_active
                and other.concept_slug == rule.concept_slug
                and other.meaning_signature == rule.meaning_signature
            ):
                raise DuplicateRuleError(
                    f"Rule {other.id} already holds signature for {rule.concept_slug}"
                )

    async def add_rule(self, rule: RegulatoryRule) -> RegulatoryRule:
        if rule.id in self.rules:
            raise DuplicateRuleError(f"Rule {rule.id} already exists")
        self._check_signature_unique(rule)
        self.write_count += 1
        self.rules[rule.id] = rule
        return rule

    async def get_rule(self, rule_id: str) -> RegulatoryRule | None:
        return self.rules.get(rule_id)

    async def update_rule(self, rule: RegulatoryRule) -> RegulatoryRule:
        if rule.id not in self.rules:
            raise RuleNotFoundError(f"Rule {rule.id} not found")
        self._check_signature_unique(rule)
        self.write_count += 1
        self.rules[rule.id] = rule
        return rule

    async def list_rules(
        self,
        concept_slug: str | None = None,
        statuses: Iterable[RuleStatus] | None = None,
    ) -> list[RegulatoryRule]:
        wanted = set(statuses) if statuses is not None else None
        return [
            r
            for r in self.rules.values()
            if (concept_slug is None or r.concept_slug == concept_slug)
            and (wanted is None or r.status in wanted)
        ]

    async def find_rule_by_signature(
        self, concept_slug: str, signature: str
    ) -> RegulatoryRule | None:
        for rule in self.rules.values():
            if (
                rule.is_active
                and rule.concept_slug == concept_slug
                and rule.meaning_signature == signature
            ):
                return rule
        return None

    # =========================================================================
    # Conflicts
    # =========================================================================

    async def add_conflict(self, conflict: RegulatoryConflict) -> RegulatoryConflict:
        self.write_count += 1
        self.conflicts[conflict.id] = conflict
        return conflict

    async def list_conflicts(
        self, status: ConflictStatus | None = None
    ) -> list[RegulatoryConflict]:
        return [c for c in self.conflicts.values() if status is None or c.status == status]

    async def find_open_conflict(
        self, item_a_id: str, item_b_id: str
    ) -> RegulatoryConflict | None:
        pair = {item_a_id, item_b_id}
        for conflict in self.conflicts.values():
            if conflict.status == ConflictStatus.OPEN and {
                conflict.item_a_id,
                conflict.item_b_id,
            } == pair:
                return conflict
        return None

    # =========================================================================
    # Amendment Edges
    # =========================================================================

    async def add_edge(self, edge: AmendmentEdge) -> AmendmentEdge:
        self.write_count += 1
        self.edges[edge.id] = edge
        return edge

    async def list_edges(
        self, relation: EdgeRelation = EdgeRelation.AMENDS
    ) -> list[AmendmentEdge]:
        return [e for e in self.edges.values() if e.relation == relation]

    # =========================================================================
    # Audit
    # =========================================================================

    async def add_audit_event(self, event: AuditEvent) -> AuditEvent:
        self.write_count += 1
        self.audit_events.append(event)
        return event

    async def list_audit_events(
        self,
        entity_id: str | None = None,
        action: str | None = None,
    ) -> list[AuditEvent]:
        return [
            e
            for e in self.audit_events
            if (entity_id is None or e.entity_id == entity_id)
            and (action is None or e.action == action)
        ]
