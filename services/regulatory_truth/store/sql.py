"""
SQL Rule Store
==============

RuleStore backed by SQLAlchemy 2.0 async sessions. Works with
PostgreSQL (asyncpg) in production and SQLite (aiosqlite) in tests.

Calls made inside ``transaction()`` share one session and commit together;
calls outside it each run in their own short session.

Version: 0.1.0
"""

from collections import defaultdict
from collections.abc import AsyncGenerator, Iterable
from contextlib import asynccontextmanager
from contextvars import ContextVar
from datetime import UTC, datetime
from typing import Any

from sqlalchemy import and_, delete, insert, or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from services.regulatory_truth.dsl.applies_when import serialize_applies_when
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
from services.regulatory_truth.store.tables import (
    AmendmentEdgeModel,
    AuditEventModel,
    ConceptModel,
    ConflictModel,
    EvidenceModel,
    RuleModel,
    SourceModel,
    SourcePointerModel,
    rule_source_pointers,
)
from shared.logging import get_logger


logger = get_logger(__name__)

_current_session: ContextVar[AsyncSession | None] = ContextVar(
    "regulatory_truth_session", default=None
)


def _aware(value: datetime | None) -> datetime | None:
    """SQLite drops tzinfo; stored values are always UTC."""
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value


def _row_dict(row: Any, columns: Iterable[str]) -> dict[str, Any]:
    data = {name: getattr(row, name) for name in columns}
    return {k: _aware(v) if isinstance(v, datetime) else v for k, v in data.items()}


# =============================================================================
# Row conversion
# =============================================================================

_EVIDENCE_FIELDS = (
    "id", "source_id", "url", "raw_content", "content_hash", "content_type",
    "fetched_at", "last_verified_at", "source_etag", "source_last_mod",
    "staleness_status", "consecutive_failures", "has_changed", "verify_count",
    "deleted_at",
)  # fmt: skip

_POINTER_FIELDS = (
    "id", "evidence_id", "domain", "value_type", "extracted_value", "exact_quote",
    "start_offset", "end_offset", "confidence", "article_number", "match_type",
    "created_at",
)  # fmt: skip

_CONCEPT_FIELDS = (
    "id", "slug", "name_hr", "name_en", "description", "tags", "aliases",
    "created_at", "updated_at",
)  # fmt: skip

_RULE_FIELDS = (
    "id", "concept_slug", "concept_id", "title_hr", "title_en", "risk_tier",
    "authority_level", "value", "value_type", "explanation_hr", "explanation_en",
    "effective_from", "effective_until", "supersedes_id", "status", "confidence",
    "meaning_signature", "composer_notes", "approved_by", "approved_at",
    "created_at", "updated_at",
)  # fmt: skip


def _rule_values(rule: RegulatoryRule) -> dict[str, Any]:
    values = {name: getattr(rule, name) for name in _RULE_FIELDS}
    values["applies_when"] = serialize_applies_when(rule.applies_when)
    return values


def _to_rule(row: RuleModel, pointer_ids: list[str]) -> RegulatoryRule:
    data = _row_dict(row, _RULE_FIELDS)
    data["applies_when"] = row.applies_when
    data["source_pointer_ids"] = tuple(pointer_ids)
    return RegulatoryRule(**data)


def _to_evidence(row: EvidenceModel) -> Evidence:
    return Evidence(**_row_dict(row, _EVIDENCE_FIELDS))


def _to_pointer(row: SourcePointerModel) -> SourcePointer:
    return SourcePointer(**_row_dict(row, _POINTER_FIELDS))


def _to_concept(row: ConceptModel) -> Concept:
    data = _row_dict(row, _CONCEPT_FIELDS)
    data["tags"] = tuple(data["tags"] or ())
    data["aliases"] = tuple(data["aliases"] or ())
    return Concept(**data)


def _to_conflict(row: ConflictModel) -> RegulatoryConflict:
    data = _row_dict(
        row,
        ("id", "conflict_type", "status", "item_a_id", "item_b_id", "description",
         "created_at", "resolved_at"),
    )  # fmt: skip
    data["metadata"] = row.metadata_ or {}
    return RegulatoryConflict(**data)


def _to_edge(row: AmendmentEdgeModel) -> AmendmentEdge:
    return AmendmentEdge(
        **_row_dict(row, ("id", "from_rule_id", "to_rule_id", "relation", "valid_from", "created_at"))
    )


def _to_audit(row: AuditEventModel) -> AuditEvent:
    data = _row_dict(row, ("id", "action", "entity_type", "entity_id", "performed_by", "timestamp"))
    data["metadata"] = row.metadata_ or {}
    return AuditEvent(**data)


class SqlRuleStore:
    """RuleStore over an async SQLAlchemy session factory."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    @asynccontextmanager
    async def transaction(self) -> AsyncGenerator[None, None]:
        if _current_session.get() is not None:
            yield
            return

        async with self._session_factory() as session:
            token = _current_session.set(session)
            try:
                yield
                await session.commit()
            except BaseException:
                await session.rollback()
                raise
            finally:
                _current_session.reset(token)

    @asynccontextmanager
    async def _session(self) -> AsyncGenerator[AsyncSession, None]:
        current = _current_session.get()
        if current is not None:
            yield current
            return

        async with self._session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    # =========================================================================
    # Sources and Evidence
    # =========================================================================

    async def add_source(self, source: RegulatorySource) -> RegulatorySource:
        async with self._session() as session:
            session.add(SourceModel(**source.model_dump()))
            await session.flush()
        return source

    async def get_source(self, source_id: str) -> RegulatorySource | None:
        async with self._session() as session:
            row = await session.get(SourceModel, source_id)
            if row is None:
                return None
            return RegulatorySource(
                **_row_dict(row, ("id", "slug", "name", "url", "hierarchy"))
            )

    async def add_evidence(self, evidence: Evidence) -> Evidence:
        async with self._session() as session:
            existing = await session.scalar(
                select(EvidenceModel).where(
                    EvidenceModel.content_hash == evidence.content_hash,
                    EvidenceModel.deleted_at.is_(None),
                )
            )
            if existing is not None:
                logger.debug("evidence_already_stored", evidence_id=existing.id)
                return _to_evidence(existing)

            values = evidence.model_dump()
            values["content_type"] = evidence.content_type.value
            session.add(EvidenceModel(**values))
            await session.flush()
        return evidence

    async def get_evidence(self, evidence_id: str) -> Evidence | None:
        async with self._session() as session:
            row = await session.get(EvidenceModel, evidence_id)
            return _to_evidence(row) if row is not None else None

    async def update_evidence(self, evidence: Evidence) -> Evidence:
        async with self._session() as session:
            row = await session.get(EvidenceModel, evidence.id)
            if row is None:
                raise RuleNotFoundError(f"Evidence {evidence.id} not found")
            # raw_content and content_hash are write-once
            for name in (
                "last_verified_at",
                "source_etag",
                "source_last_mod",
                "staleness_status",
                "consecutive_failures",
                "has_changed",
                "verify_count",
                "deleted_at",
            ):
                setattr(row, name, getattr(evidence, name))
            await session.flush()
        return evidence

    async def list_evidence(self, include_deleted: bool = False) -> list[Evidence]:
        async with self._session() as session:
            query = select(EvidenceModel)
            if not include_deleted:
                query = query.where(EvidenceModel.deleted_at.is_(None))
            rows = (await session.scalars(query)).all()
            return [_to_evidence(row) for row in rows]

    # =========================================================================
    # Source Pointers
    # =========================================================================

    async def add_pointer(self, pointer: SourcePointer) -> SourcePointer:
        async with self._session() as session:
            session.add(SourcePointerModel(**pointer.model_dump()))
            await session.flush()
        return pointer

    async def get_pointers(self, pointer_ids: Iterable[str]) -> list[SourcePointer]:
        ids = list(pointer_ids)
        if not ids:
            return []
        async with self._session() as session:
            rows = (
                await session.scalars(
                    select(SourcePointerModel).where(SourcePointerModel.id.in_(ids))
                )
            ).all()
            by_id = {row.id: _to_pointer(row) for row in rows}
        return [by_id[pid] for pid in ids if pid in by_id]

    async def update_pointer(self, pointer: SourcePointer) -> SourcePointer:
        async with self._session() as session:
            row = await session.get(SourcePointerModel, pointer.id)
            if row is None:
                raise RuleNotFoundError(f"Source pointer {pointer.id} not found")
            for name in ("start_offset", "end_offset", "match_type", "confidence"):
                setattr(row, name, getattr(pointer, name))
            await session.flush()
        return pointer

    async def list_unlinked_pointers(self) -> list[SourcePointer]:
        async with self._session() as session:
            linked = select(rule_source_pointers.c.pointer_id)
            rows = (
                await session.scalars(
                    select(SourcePointerModel).where(SourcePointerModel.id.not_in(linked))
                )
            ).all()
            return [_to_pointer(row) for row in rows]

    # =========================================================================
    # Concepts
    # =========================================================================

    async def get_concept(self, slug: str) -> Concept | None:
        async with self._session() as session:
            row = await session.scalar(select(ConceptModel).where(ConceptModel.slug == slug))
            return _to_concept(row) if row is not None else None

    async def list_concepts(self) -> list[Concept]:
        async with self._session() as session:
            rows = (await session.scalars(select(ConceptModel))).all()
            return [_to_concept(row) for row in rows]

    async def upsert_concept(self, concept: Concept) -> Concept:
        async with self._session() as session:
            row = await session.scalar(
                select(ConceptModel).where(ConceptModel.slug == concept.slug)
            )
            if row is None:
                values = concept.model_dump()
                values["tags"] = list(concept.tags)
                values["aliases"] = list(concept.aliases)
                row = ConceptModel(**values)
                session.add(row)
            else:
                row.name_hr = concept.name_hr
                row.name_en = concept.name_en
                row.description = concept.description
                row.tags = list(concept.tags)
                row.aliases = list(concept.aliases)
                row.updated_at = concept.updated_at
            await session.flush()
            return _to_concept(row)

    # =========================================================================
    # Rules
    # =========================================================================

    async def _pointer_ids_for(
        self, session: AsyncSession, rule_ids: list[str]
    ) -> dict[str, list[str]]:
        links: dict[str, list[str]] = defaultdict(list)
        if not rule_ids:
            return links
        result = await session.execute(
            select(rule_source_pointers.c.rule_id, rule_source_pointers.c.pointer_id)
            .where(rule_source_pointers.c.rule_id.in_(rule_ids))
            .order_by(rule_source_pointers.c.rule_id, rule_source_pointers.c.position)
        )
        for rule_id, pointer_id in result.all():
            links[rule_id].append(pointer_id)
        return links

    async def _write_links(self, session: AsyncSession, rule: RegulatoryRule) -> None:
        await session.execute(
            delete(rule_source_pointers).where(rule_source_pointers.c.rule_id == rule.id)
        )
        await session.execute(
            insert(rule_source_pointers),
            [
                {"rule_id": rule.id, "pointer_id": pid, "position": i}
                for i, pid in enumerate(rule.source_pointer_ids)
            ],
        )

    async def add_rule(self, rule: RegulatoryRule) -> RegulatoryRule:
        async with self._session() as session:
            try:
                session.add(RuleModel(**_rule_values(rule)))
                await session.flush()
            except IntegrityError as e:
                raise DuplicateRuleError(
                    f"Rule for {rule.concept_slug} with signature "
                    f"{rule.meaning_signature[:12]} already exists"
                ) from e
            await self._write_links(session, rule)
        return rule

    async def get_rule(self, rule_id: str) -> RegulatoryRule | None:
        async with self._session() as session:
            row = await session.get(RuleModel, rule_id)
            if row is None:
                return None
            links = await self._pointer_ids_for(session, [rule_id])
            return _to_rule(row, links[rule_id])

    async def update_rule(self, rule: RegulatoryRule) -> RegulatoryRule:
        async with self._session() as session:
            row = await session.get(RuleModel, rule.id)
            if row is None:
                raise RuleNotFoundError(f"Rule {rule.id} not found")
            for name, value in _rule_values(rule).items():
                setattr(row, name, value)
            try:
                await session.flush()
            except IntegrityError as e:
                raise DuplicateRuleError(
                    f"Rule {rule.id} collides with an active rule of {rule.concept_slug}"
                ) from e
            await self._write_links(session, rule)
        return rule

    async def list_rules(
        self,
        concept_slug: str | None = None,
        statuses: Iterable[RuleStatus] | None = None,
    ) -> list[RegulatoryRule]:
        async with self._session() as session:
            query = select(RuleModel).order_by(RuleModel.created_at)
            if concept_slug is not None:
                query = query.where(RuleModel.concept_slug == concept_slug)
            if statuses is not None:
                query = query.where(RuleModel.status.in_(list(statuses)))
            rows = (await session.scalars(query)).all()
            links = await self._pointer_ids_for(session, [row.id for row in rows])
            return [_to_rule(row, links[row.id]) for row in rows]

    async def find_rule_by_signature(
        self, concept_slug: str, signature: str
    ) -> RegulatoryRule | None:
        async with self._session() as session:
            row = await session.scalar(
                select(RuleModel).where(
                    RuleModel.concept_slug == concept_slug,
                    RuleModel.meaning_signature == signature,
                    RuleModel.status != RuleStatus.DEPRECATED,
                )
            )
            if row is None:
                return None
            links = await self._pointer_ids_for(session, [row.id])
            return _to_rule(row, links[row.id])

    # =========================================================================
    # Conflicts
    # =========================================================================

    async def add_conflict(self, conflict: RegulatoryConflict) -> RegulatoryConflict:
        async with self._session() as session:
            values = conflict.model_dump(exclude={"metadata"})
            values["metadata_"] = conflict.model_dump(mode="json")["metadata"]
            session.add(ConflictModel(**values))
            await session.flush()
        return conflict

    async def list_conflicts(
        self, status: ConflictStatus | None = None
    ) -> list[RegulatoryConflict]:
        async with self._session() as session:
            query = select(ConflictModel).order_by(ConflictModel.created_at)
            if status is not None:
                query = query.where(ConflictModel.status == status)
            rows = (await session.scalars(query)).all()
            return [_to_conflict(row) for row in rows]

    async def find_open_conflict(
        self, item_a_id: str, item_b_id: str
    ) -> RegulatoryConflict | None:
        async with self._session() as session:
            row = await session.scalar(
                select(ConflictModel).where(
                    ConflictModel.status == ConflictStatus.OPEN,
                    or_(
                        and_(
                            ConflictModel.item_a_id == item_a_id,
                            ConflictModel.item_b_id == item_b_id,
                        ),
                        and_(
                            ConflictModel.item_a_id == item_b_id,
                            ConflictModel.item_b_id == item_a_id,
                        ),
                    ),
                )
            )
            return _to_conflict(row) if row is not None else None

    # =========================================================================
    # Amendment Edges
    # =========================================================================

    async def add_edge(self, edge: AmendmentEdge) -> AmendmentEdge:
        async with self._session() as session:
            session.add(AmendmentEdgeModel(**edge.model_dump()))
            await session.flush()
        return edge

    async def list_edges(
        self, relation: EdgeRelation = EdgeRelation.AMENDS
    ) -> list[AmendmentEdge]:
        async with self._session() as session:
            rows = (
                await session.scalars(
                    select(AmendmentEdgeModel)
                    .where(AmendmentEdgeModel.relation == relation)
                    .order_by(AmendmentEdgeModel.created_at)
                )
            ).all()
            return [_to_edge(row) for row in rows]

    # =========================================================================
    # Audit
    # =========================================================================

    async def add_audit_event(self, event: AuditEvent) -> AuditEvent:
        async with self._session() as session:
            values = event.model_dump(exclude={"metadata"})
            values["metadata_"] = event.model_dump(mode="json")["metadata"]
            session.add(AuditEventModel(**values))
            await session.flush()
        return event

    async def list_audit_events(
        self,
        entity_id: str | None = None,
        action: str | None = None,
    ) -> list[AuditEvent]:
        async with self._session() as session:
            query = select(AuditEventModel).order_by(AuditEventModel.timestamp)
            if entity_id is not None:
                query = query.where(AuditEventModel.entity_id == entity_id)
            if action is not None:
                query = query.where(AuditEventModel.action == action)
            rows = (await session.scalars(query)).all()
            return [_to_audit(row) for row in rows]
