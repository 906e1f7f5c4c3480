"""
Rules Routes
============

API endpoints for composing rules and moving them through the lifecycle.

Version: 0.1.0
"""

from datetime import date, datetime
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, Field

from services.regulatory_truth.dsl.applies_when import to_tree
from services.regulatory_truth.errors import ErrorKind
from services.regulatory_truth.models import (
    AuthorityLevel,
    RegulatoryRule,
    RiskTier,
    RuleStatus,
)
from services.regulatory_truth.pipeline import RegulatoryTruthPipeline
from services.regulatory_truth.routes.dependencies import get_pipeline
from services.regulatory_truth.staleness import effective_confidence
from shared.logging import get_logger


logger = get_logger(__name__)

router = APIRouter()


# ============================================================================
# Schemas
# ============================================================================


class ComposeRequest(BaseModel):
    """Compose a rule from source pointers."""

    source_pointer_ids: list[str] = Field(default_factory=list)
    # Agent output; the configured agent is called when omitted
    proposal: dict[str, Any] | None = None


class ComposeResponse(BaseModel):
    success: bool
    rule_id: str | None = None
    conflict_id: str | None = None
    merged: bool = False
    error: str | None = None
    warnings: list[str] = Field(default_factory=list)
    structural_conflict_ids: list[str] = Field(default_factory=list)


class RuleResponse(BaseModel):
    """Rule as exposed by the API."""

    id: str
    concept_slug: str
    title_hr: str
    title_en: str | None
    status: RuleStatus
    risk_tier: RiskTier
    authority_level: AuthorityLevel
    value: str
    value_type: str
    applies_when: dict[str, Any]
    effective_from: date
    effective_until: date | None
    confidence: float
    effective_confidence: float
    source_pointer_ids: list[str]
    approved_by: str | None
    approved_at: datetime | None

    @classmethod
    def from_rule(cls, rule: RegulatoryRule) -> "RuleResponse":
        return cls(
            id=rule.id,
            concept_slug=rule.concept_slug,
            title_hr=rule.title_hr,
            title_en=rule.title_en,
            status=rule.status,
            risk_tier=rule.risk_tier,
            authority_level=rule.authority_level,
            value=rule.value,
            value_type=rule.value_type,
            applies_when=to_tree(rule.applies_when),
            effective_from=rule.effective_from,
            effective_until=rule.effective_until,
            confidence=rule.confidence,
            effective_confidence=effective_confidence(rule),
            source_pointer_ids=list(rule.source_pointer_ids),
            approved_by=rule.approved_by,
            approved_at=rule.approved_at,
        )


class ApproveRequest(BaseModel):
    approved_by: str = Field(..., min_length=1)
    source: str = "api"


class PublishRequest(BaseModel):
    rule_ids: list[str] = Field(..., min_length=1)
    source: str = Field(..., min_length=1)
    actor: str | None = None


class PublishResponse(BaseModel):
    published_ids: list[str]
    pointers_checked: int


class DeprecateRequest(BaseModel):
    reason: str = Field(..., min_length=1)
    actor: str | None = None
    source: str = "api"


# ============================================================================
# Endpoints
# ============================================================================


@router.post("/compose", response_model=ComposeResponse)
async def compose_rule(
    request: ComposeRequest,
    pipeline: RegulatoryTruthPipeline = Depends(get_pipeline),
) -> ComposeResponse:
    """
    Compose a DRAFT rule from source pointers.

    Hard rejections (blocked domain, no pointers, invalid appliesWhen)
    return 422 and persist nothing. A detected source conflict returns
    ``success: false`` with the conflict id.
    """
    result = await pipeline.composer.compose(request.source_pointer_ids, request.proposal)

    if result.error_kind == ErrorKind.HARD_REJECT:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=result.error)
    if result.error_kind == ErrorKind.PERMANENT:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=result.error)

    return ComposeResponse(
        success=result.success,
        rule_id=result.rule_id,
        conflict_id=result.conflict_id,
        merged=result.merged,
        error=result.error,
        warnings=result.warnings,
        structural_conflict_ids=result.structural_conflict_ids,
    )


@router.get("", response_model=list[RuleResponse])
async def list_rules(
    concept_slug: str | None = Query(default=None, description="Filter by concept slug"),
    rule_status: RuleStatus | None = Query(default=None, alias="status"),
    pipeline: RegulatoryTruthPipeline = Depends(get_pipeline),
) -> list[RuleResponse]:
    """List rules, optionally filtered by concept and status."""
    rules = await pipeline.store.list_rules(
        concept_slug=concept_slug,
        statuses=[rule_status] if rule_status else None,
    )
    return [RuleResponse.from_rule(rule) for rule in rules]


@router.get("/{rule_id}", response_model=RuleResponse)
async def get_rule(
    rule_id: str,
    pipeline: RegulatoryTruthPipeline = Depends(get_pipeline),
) -> RuleResponse:
    rule = await pipeline.store.get_rule(rule_id)
    if rule is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Rule not found: {rule_id}",
        )
    return RuleResponse.from_rule(rule)


@router.post("/{rule_id}/approve", response_model=RuleResponse)
async def approve_rule(
    rule_id: str,
    request: ApproveRequest,
    pipeline: RegulatoryTruthPipeline = Depends(get_pipeline),
) -> RuleResponse:
    rule = await pipeline.lifecycle.approve(rule_id, request.approved_by, source=request.source)
    return RuleResponse.from_rule(rule)


@router.post("/publish", response_model=PublishResponse)
async def publish_rules(
    request: PublishRequest,
    pipeline: RegulatoryTruthPipeline = Depends(get_pipeline),
) -> PublishResponse:
    """Publish APPROVED rules; the whole batch fails if any quote cannot be traced."""
    result = await pipeline.lifecycle.publish_rules(
        request.rule_ids, source=request.source, actor=request.actor
    )
    return PublishResponse(
        published_ids=result.published_ids,
        pointers_checked=result.pointers_checked,
    )


@router.post("/{rule_id}/deprecate", response_model=RuleResponse)
async def deprecate_rule(
    rule_id: str,
    request: DeprecateRequest,
    pipeline: RegulatoryTruthPipeline = Depends(get_pipeline),
) -> RuleResponse:
    rule = await pipeline.lifecycle.deprecate(
        rule_id, request.reason, source=request.source, actor=request.actor
    )
    logger.info("rule_deprecated_via_api", rule_id=rule_id)
    return RuleResponse.from_rule(rule)
