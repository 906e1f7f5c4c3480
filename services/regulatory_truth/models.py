"""
Regulatory Truth Models
=======================

Immutable domain records. Constructors enforce the record invariants;
services derive updated copies with ``model_copy(update=...)`` and persist
them through the rule store.

Version: 0.1.0
"""

import uuid
from datetime import UTC, date, datetime
from enum import Enum
from typing import Any, Self

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from services.regulatory_truth.dsl.applies_when import (
    AppliesWhen,
    TruePredicate,
    parse_applies_when,
)
from services.regulatory_truth.errors import AppliesWhenError, EvidenceIntegrityError
from services.regulatory_truth.hashing import (
    ContentType,
    detect_content_type,
    hash_content,
    meaning_signature,
)


def new_id() -> str:
    """Generate an opaque record id."""
    return uuid.uuid4().hex


def utcnow() -> datetime:
    return datetime.now(UTC)


# =============================================================================
# Enums
# =============================================================================


class StalenessStatus(str, Enum):
    """Evidence verification freshness."""

    FRESH = "FRESH"
    AGING = "AGING"
    STALE = "STALE"
    UNAVAILABLE = "UNAVAILABLE"
    EXPIRED = "EXPIRED"


class MatchType(str, Enum):
    """How a quote was located in its evidence."""

    EXACT = "EXACT"
    NORMALIZED = "NORMALIZED"
    NOT_FOUND = "NOT_FOUND"


class RiskTier(str, Enum):
    """Impact of getting a rule wrong (T0 = critical)."""

    T0 = "T0"
    T1 = "T1"
    T2 = "T2"
    T3 = "T3"


class AuthorityLevel(str, Enum):
    """Rank of the issuing source, strongest first."""

    LAW = "LAW"
    GUIDANCE = "GUIDANCE"
    PROCEDURE = "PROCEDURE"
    PRACTICE = "PRACTICE"


class RuleStatus(str, Enum):
    """Rule lifecycle states."""

    DRAFT = "DRAFT"
    APPROVED = "APPROVED"
    PUBLISHED = "PUBLISHED"
    DEPRECATED = "DEPRECATED"


class ConflictType(str, Enum):
    """Kinds of recorded disagreement."""

    SOURCE_CONFLICT = "SOURCE_CONFLICT"
    SCOPE_CONFLICT = "SCOPE_CONFLICT"
    TEMPORAL_CONFLICT = "TEMPORAL_CONFLICT"


class ConflictStatus(str, Enum):
    OPEN = "OPEN"
    RESOLVED = "RESOLVED"


class EdgeRelation(str, Enum):
    AMENDS = "AMENDS"


class _Record(BaseModel):
    model_config = ConfigDict(frozen=True)


# =============================================================================
# Sources and Evidence
# =============================================================================


class RegulatorySource(_Record):
    """A government or institutional publisher of regulatory text."""

    id: str = Field(default_factory=new_id)
    slug: str = Field(..., min_length=1)
    name: str
    url: str
    # 1 = law, 2 = regulation, 3 = official guidance, 4 = practice guide, 5 = auto-created
    hierarchy: int = Field(default=3, ge=1, le=5)


class Evidence(_Record):
    """Immutable captured source content."""

    id: str = Field(default_factory=new_id)
    source_id: str
    url: str
    raw_content: bytes
    content_hash: str
    content_type: ContentType = ContentType.HTML
    fetched_at: datetime = Field(default_factory=utcnow)

    # Verification state, owned by the staleness service
    last_verified_at: datetime | None = None
    source_etag: str | None = None
    source_last_mod: datetime | None = None
    staleness_status: StalenessStatus = StalenessStatus.FRESH
    consecutive_failures: int = Field(default=0, ge=0)
    has_changed: bool = False
    verify_count: int = Field(default=0, ge=0)
    deleted_at: datetime | None = None

    @model_validator(mode="after")
    def _check_content_hash(self) -> Self:
        actual = hash_content(self.raw_content, self.content_type)
        if actual != self.content_hash:
            raise EvidenceIntegrityError(
                f"Evidence {self.id} content hash mismatch: "
                f"stored {self.content_hash[:12]}, computed {actual[:12]}"
            )
        return self

    @classmethod
    def create(
        cls,
        source_id: str,
        url: str,
        raw_content: bytes | str,
        content_type: ContentType | str | None = None,
        **kwargs: Any,
    ) -> "Evidence":
        """Build evidence from fetched content, computing its hash."""
        raw = raw_content.encode("utf-8") if isinstance(raw_content, str) else raw_content
        resolved = ContentType(content_type) if content_type else detect_content_type(raw)
        return cls(
            source_id=source_id,
            url=url,
            raw_content=raw,
            content_hash=hash_content(raw, resolved),
            content_type=resolved,
            **kwargs,
        )

    @property
    def text(self) -> str:
        """Raw content decoded as UTF-8; offsets index into this string."""
        return self.raw_content.decode("utf-8", errors="replace")


class SourcePointer(_Record):
    """A located, quoted fact inside one evidence record."""

    id: str = Field(default_factory=new_id)
    evidence_id: str
    domain: str = Field(..., min_length=1)
    value_type: str
    extracted_value: str
    exact_quote: str = Field(..., min_length=1)
    start_offset: int | None = Field(default=None, ge=0)
    end_offset: int | None = Field(default=None, ge=0)
    confidence: float = Field(default=0.0, ge=0.0, le=1.0)
    article_number: str | None = None
    match_type: MatchType | None = None
    created_at: datetime = Field(default_factory=utcnow)

    @model_validator(mode="after")
    def _check_offsets(self) -> Self:
        if (
            self.start_offset is not None
            and self.end_offset is not None
            and self.end_offset < self.start_offset
        ):
            raise ValueError("end_offset must not precede start_offset")
        return self


# =============================================================================
# Concepts and Rules
# =============================================================================


class Concept(_Record):
    """Canonical semantic identity for a family of rules."""

    id: str = Field(default_factory=new_id)
    slug: str = Field(..., min_length=1)
    name_hr: str
    name_en: str | None = None
    description: str | None = None
    tags: tuple[str, ...] = ()
    aliases: tuple[str, ...] = ()
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class RegulatoryRule(_Record):
    """A versioned, evidence-backed fact."""

    id: str = Field(default_factory=new_id)
    concept_slug: str = Field(..., min_length=1)
    concept_id: str | None = None

    title_hr: str
    title_en: str | None = None
    risk_tier: RiskTier = RiskTier.T2
    authority_level: AuthorityLevel = AuthorityLevel.GUIDANCE
    applies_when: AppliesWhen = Field(default_factory=TruePredicate)

    value: str
    value_type: str
    explanation_hr: str | None = None
    explanation_en: str | None = None

    effective_from: date
    effective_until: date | None = None
    supersedes_id: str | None = None

    status: RuleStatus = RuleStatus.DRAFT
    confidence: float = Field(default=0.0, ge=0.0, le=1.0)
    meaning_signature: str = ""
    source_pointer_ids: tuple[str, ...] = Field(..., min_length=1)

    composer_notes: str | None = None
    approved_by: str | None = None
    approved_at: datetime | None = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    @field_validator("applies_when", mode="before")
    @classmethod
    def _parse_applies_when(cls, v: Any) -> Any:
        try:
            return parse_applies_when(v)
        except AppliesWhenError as e:
            raise ValueError(e.reason) from e

    @model_validator(mode="before")
    @classmethod
    def _fill_signature(cls, data: Any) -> Any:
        if isinstance(data, dict) and not data.get("meaning_signature"):
            data = {
                **data,
                "meaning_signature": meaning_signature(
                    data.get("concept_slug", ""),
                    data.get("value"),
                    data.get("value_type", ""),
                    data.get("effective_from"),
                    data.get("effective_until"),
                ),
            }
        return data

    @model_validator(mode="after")
    def _check_invariants(self) -> Self:
        if self.effective_until is not None and self.effective_until < self.effective_from:
            raise ValueError("effective_until must not precede effective_from")
        expected = meaning_signature(
            self.concept_slug,
            self.value,
            self.value_type,
            self.effective_from,
            self.effective_until,
        )
        if self.meaning_signature != expected:
            raise ValueError("meaning_signature does not match rule content")
        return self

    @property
    def is_active(self) -> bool:
        """Non-deprecated rules take part in deduplication and conflicts."""
        return self.status != RuleStatus.DEPRECATED


class RegulatoryConflict(_Record):
    """Recorded disagreement awaiting human or arbiter triage."""

    id: str = Field(default_factory=new_id)
    conflict_type: ConflictType
    status: ConflictStatus = ConflictStatus.OPEN
    item_a_id: str | None = None
    item_b_id: str | None = None
    description: str
    metadata: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=utcnow)
    resolved_at: datetime | None = None


class AmendmentEdge(_Record):
    """Directed supersession between two rules."""

    id: str = Field(default_factory=new_id)
    from_rule_id: str
    to_rule_id: str
    relation: EdgeRelation = EdgeRelation.AMENDS
    valid_from: date | None = None
    created_at: datetime = Field(default_factory=utcnow)


class AuditEvent(_Record):
    """Append-only record of a state-changing action."""

    id: str = Field(default_factory=new_id)
    action: str
    entity_type: str
    entity_id: str
    performed_by: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)
    timestamp: datetime = Field(default_factory=utcnow)
