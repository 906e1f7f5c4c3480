"""
Staleness Routes
================

API endpoints for evidence re-verification, rule expiry and recrawl.

Version: 0.1.0
"""

from dataclasses import asdict

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel

from services.regulatory_truth.pipeline import RegulatoryTruthPipeline
from services.regulatory_truth.routes.dependencies import get_pipeline
from shared.logging import get_logger


logger = get_logger(__name__)

router = APIRouter()


class StalenessCheckResponse(BaseModel):
    checked: int
    fresh: int
    aging: int
    stale: int
    unavailable: int
    expired: int
    changed: int
    errors: int


class DeprecateExpiredResponse(BaseModel):
    deprecated_ids: list[str]
    failed_ids: list[str]


class RecrawlResponse(BaseModel):
    queued_evidence_ids: list[str]


@router.post("/check", response_model=StalenessCheckResponse)
async def check_evidence(
    limit: int | None = Query(default=None, ge=1, le=1000),
    pipeline: RegulatoryTruthPipeline = Depends(get_pipeline),
) -> StalenessCheckResponse:
    """Re-verify evidence that is due for a check."""
    summary = await pipeline.staleness.check_all_evidence(limit=limit)
    return StalenessCheckResponse(**asdict(summary))


@router.post("/deprecate-expired", response_model=DeprecateExpiredResponse)
async def deprecate_expired(
    pipeline: RegulatoryTruthPipeline = Depends(get_pipeline),
) -> DeprecateExpiredResponse:
    """Deprecate PUBLISHED rules past their effective_until date."""
    result = await pipeline.staleness.deprecate_expired_rules()
    return DeprecateExpiredResponse(
        deprecated_ids=result.deprecated_ids,
        failed_ids=result.failed_ids,
    )


@router.post("/recrawl", response_model=RecrawlResponse)
async def queue_recrawl(
    limit: int | None = Query(default=None, ge=1, le=1000),
    pipeline: RegulatoryTruthPipeline = Depends(get_pipeline),
) -> RecrawlResponse:
    queued = await pipeline.staleness.stale_evidence_for_recrawl(limit=limit)
    logger.info("recrawl_requested_via_api", queued=len(queued))
    return RecrawlResponse(queued_evidence_ids=queued)


@router.get("/stats", response_model=dict[str, int])
async def staleness_stats(
    pipeline: RegulatoryTruthPipeline = Depends(get_pipeline),
) -> dict[str, int]:
    return await pipeline.staleness.staleness_stats()
