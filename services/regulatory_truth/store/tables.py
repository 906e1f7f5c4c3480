"""
Rule Store Tables
=================

SQLAlchemy ORM tables backing SqlRuleStore.

Uniqueness is enforced by the database:
- evidence: one live row per content hash
- regulatory_rules: one non-deprecated row per (concept_slug, meaning_signature)

Version: 0.1.0
"""

from datetime import UTC, datetime

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    Date,
    DateTime,
    Enum as SQLEnum,
    Float,
    ForeignKey,
    Index,
    Integer,
    LargeBinary,
    String,
    Table,
    Text,
    text,
)

from services.regulatory_truth.models import (
    AuthorityLevel,
    ConflictStatus,
    ConflictType,
    EdgeRelation,
    MatchType,
    RiskTier,
    RuleStatus,
    StalenessStatus,
)
from shared.database.postgres import Base


def _utcnow() -> datetime:
    return datetime.now(UTC)


class SourceModel(Base):
    """Regulatory source publisher."""

    __tablename__ = "regulatory_sources"

    id = Column(String(64), primary_key=True)
    slug = Column(String(255), nullable=False, unique=True)
    name = Column(String(500), nullable=False)
    url = Column(String(2000), nullable=False)
    hierarchy = Column(Integer, nullable=False, default=3)


class EvidenceModel(Base):
    """Captured source content. raw_content is written once."""

    __tablename__ = "evidence"
    __table_args__ = (
        Index(
            "uq_evidence_live_content_hash",
            "content_hash",
            unique=True,
            postgresql_where=text("deleted_at IS NULL"),
            sqlite_where=text("deleted_at IS NULL"),
        ),
        Index("ix_evidence_staleness", "staleness_status"),
        Index("ix_evidence_last_verified", "last_verified_at"),
    )

    id = Column(String(64), primary_key=True)
    source_id = Column(
        String(64),
        ForeignKey("regulatory_sources.id", ondelete="RESTRICT"),
        nullable=False,
    )
    url = Column(String(2000), nullable=False)
    raw_content = Column(LargeBinary, nullable=False)
    content_hash = Column(String(64), nullable=False)
    content_type = Column(String(20), nullable=False, default="html")
    fetched_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)

    # Verification state
    last_verified_at = Column(DateTime(timezone=True))
    source_etag = Column(String(500))
    source_last_mod = Column(DateTime(timezone=True))
    staleness_status = Column(
        SQLEnum(StalenessStatus), nullable=False, default=StalenessStatus.FRESH
    )
    consecutive_failures = Column(Integer, nullable=False, default=0)
    has_changed = Column(Boolean, nullable=False, default=False)
    verify_count = Column(Integer, nullable=False, default=0)
    deleted_at = Column(DateTime(timezone=True))  # Soft delete


class SourcePointerModel(Base):
    """Located quote inside one evidence record."""

    __tablename__ = "source_pointers"
    __table_args__ = (
        Index("ix_source_pointers_evidence", "evidence_id"),
        Index("ix_source_pointers_domain", "domain"),
    )

    id = Column(String(64), primary_key=True)
    evidence_id = Column(
        String(64),
        ForeignKey("evidence.id", ondelete="RESTRICT"),
        nullable=False,
    )
    domain = Column(String(255), nullable=False)
    value_type = Column(String(50), nullable=False)
    extracted_value = Column(Text, nullable=False)
    exact_quote = Column(Text, nullable=False)
    start_offset = Column(Integer)
    end_offset = Column(Integer)
    confidence = Column(Float, nullable=False, default=0.0)
    article_number = Column(String(100))
    match_type = Column(SQLEnum(MatchType))
    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)


class ConceptModel(Base):
    """Canonical concept identity."""

    __tablename__ = "concepts"

    id = Column(String(64), primary_key=True)
    slug = Column(String(255), nullable=False, unique=True)
    name_hr = Column(String(500), nullable=False)
    name_en = Column(String(500))
    description = Column(Text)
    tags = Column(JSON, nullable=False, default=list)
    aliases = Column(JSON, nullable=False, default=list)
    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)


rule_source_pointers = Table(
    "rule_source_pointers",
    Base.metadata,
    Column(
        "rule_id",
        String(64),
        ForeignKey("regulatory_rules.id", ondelete="CASCADE"),
        primary_key=True,
    ),
    Column(
        "pointer_id",
        String(64),
        ForeignKey("source_pointers.id", ondelete="RESTRICT"),
        primary_key=True,
    ),
    Column("position", Integer, nullable=False, default=0),
)


class RuleModel(Base):
    """Versioned regulatory rule."""

    __tablename__ = "regulatory_rules"
    __table_args__ = (
        Index(
            "uq_rules_live_meaning_signature",
            "concept_slug",
            "meaning_signature",
            unique=True,
            postgresql_where=text("status <> 'DEPRECATED'"),
            sqlite_where=text("status <> 'DEPRECATED'"),
        ),
        Index("ix_rules_concept_status", "concept_slug", "status"),
        Index("ix_rules_effective_until", "effective_until"),
    )

    id = Column(String(64), primary_key=True)
    concept_slug = Column(String(255), nullable=False)
    concept_id = Column(String(64), ForeignKey("concepts.id", ondelete="SET NULL"))

    title_hr = Column(String(500), nullable=False)
    title_en = Column(String(500))
    risk_tier = Column(SQLEnum(RiskTier), nullable=False)
    authority_level = Column(SQLEnum(AuthorityLevel), nullable=False)
    # Canonical JSON text of the predicate tree
    applies_when = Column(Text, nullable=False)

    value = Column(Text, nullable=False)
    value_type = Column(String(50), nullable=False)
    explanation_hr = Column(Text)
    explanation_en = Column(Text)

    effective_from = Column(Date, nullable=False)
    effective_until = Column(Date)
    supersedes_id = Column(String(64))

    status = Column(SQLEnum(RuleStatus), nullable=False, default=RuleStatus.DRAFT)
    confidence = Column(Float, nullable=False, default=0.0)
    meaning_signature = Column(String(64), nullable=False)

    composer_notes = Column(Text)
    approved_by = Column(String(255))
    approved_at = Column(DateTime(timezone=True))
    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)


class ConflictModel(Base):
    """Conflict awaiting triage."""

    __tablename__ = "regulatory_conflicts"
    __table_args__ = (Index("ix_conflicts_status", "status"),)

    id = Column(String(64), primary_key=True)
    conflict_type = Column(SQLEnum(ConflictType), nullable=False)
    status = Column(SQLEnum(ConflictStatus), nullable=False, default=ConflictStatus.OPEN)
    item_a_id = Column(String(64))
    item_b_id = Column(String(64))
    description = Column(Text, nullable=False)
    metadata_ = Column("metadata", JSON, nullable=False, default=dict)
    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
    resolved_at = Column(DateTime(timezone=True))


class AmendmentEdgeModel(Base):
    """Supersession edge between two rules."""

    __tablename__ = "amendment_edges"
    __table_args__ = (
        Index("ix_amendment_edges_from", "from_rule_id"),
        Index("ix_amendment_edges_to", "to_rule_id"),
    )

    id = Column(String(64), primary_key=True)
    from_rule_id = Column(
        String(64), ForeignKey("regulatory_rules.id", ondelete="CASCADE"), nullable=False
    )
    to_rule_id = Column(
        String(64), ForeignKey("regulatory_rules.id", ondelete="CASCADE"), nullable=False
    )
    relation = Column(SQLEnum(EdgeRelation), nullable=False, default=EdgeRelation.AMENDS)
    valid_from = Column(Date)
    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)


class AuditEventModel(Base):
    """Append-only audit log."""

    __tablename__ = "audit_events"
    __table_args__ = (
        Index("ix_audit_entity", "entity_id"),
        Index("ix_audit_action", "action"),
    )

    id = Column(String(64), primary_key=True)
    action = Column(String(100), nullable=False)
    entity_type = Column(String(100), nullable=False)
    entity_id = Column(String(64), nullable=False)
    performed_by = Column(String(255))
    metadata_ = Column("metadata", JSON, nullable=False, default=dict)
    timestamp = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
