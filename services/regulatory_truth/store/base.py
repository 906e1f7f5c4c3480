"""
Rule Store Interface
====================

Abstract repository for every record the pipeline reads or writes.

Implementations must enforce:
- one evidence record per content hash
- one non-deprecated rule per (concept_slug, meaning_signature),
  raising DuplicateRuleError on violation
- all-or-nothing writes inside ``transaction()``

Version: 0.1.0
"""

from collections.abc import Iterable
from contextlib import AbstractAsyncContextManager
from typing import Protocol

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


class RuleStore(Protocol):
    """Async repository protocol."""

    def transaction(self) -> AbstractAsyncContextManager[None]: ...

    # Sources and evidence
    async def add_source(self, source: RegulatorySource) -> RegulatorySource: ...

    async def get_source(self, source_id: str) -> RegulatorySource | None: ...

    async def add_evidence(self, evidence: Evidence) -> Evidence: ...

    async def get_evidence(self, evidence_id: str) -> Evidence | None: ...

    async def update_evidence(self, evidence: Evidence) -> Evidence: ...

    async def list_evidence(self, include_deleted: bool = False) -> list[Evidence]: ...

    # Source pointers
    async def add_pointer(self, pointer: SourcePointer) -> SourcePointer: ...

    async def get_pointers(self, pointer_ids: Iterable[str]) -> list[SourcePointer]: ...

    async def update_pointer(self, pointer: SourcePointer) -> SourcePointer: ...

    async def list_unlinked_pointers(self) -> list[SourcePointer]: ...

    # Concepts
    async def get_concept(self, slug: str) -> Concept | None: ...

    async def list_concepts(self) -> list[Concept]: ...

    async def upsert_concept(self, concept: Concept) -> Concept: ...

    # Rules
    async def add_rule(self, rule: RegulatoryRule) -> RegulatoryRule: ...

    async def get_rule(self, rule_id: str) -> RegulatoryRule | None: ...

    async def update_rule(self, rule: RegulatoryRule) -> RegulatoryRule: ...

    async def list_rules(
        self,
        concept_slug: str | None = None,
        statuses: Iterable[RuleStatus] | None = None,
    ) -> list[RegulatoryRule]: ...

    async def find_rule_by_signature(
        self, concept_slug: str, signature: str
    ) -> RegulatoryRule | None: ...

    # Conflicts
    async def add_conflict(self, conflict: RegulatoryConflict) -> RegulatoryConflict: ...

    async def list_conflicts(
        self, status: ConflictStatus | None = None
    ) -> list[RegulatoryConflict]: ...

    async def find_open_conflict(
        self, item_a_id: str, item_b_id: str
    ) -> RegulatoryConflict | None: ...

    # Amendment edges
    async def add_edge(self, edge: AmendmentEdge) -> AmendmentEdge: ...

    async def list_edges(
        self, relation: EdgeRelation = EdgeRelation.AMENDS
    ) -> list[AmendmentEdge]: ...

    # Audit
    async def add_audit_event(self, event: AuditEvent) -> AuditEvent: ...

    async def list_audit_events(
        self,
        entity_id: str | None = None,
        action: str | None = None,
    ) -> list[AuditEvent]: ...
