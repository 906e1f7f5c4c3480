"""
Releases Routes
===============

API endpoints exposing the release hash of the published rule set.

Version: 0.1.0
"""

from datetime import datetime

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from services.regulatory_truth.models import RuleStatus
from services.regulatory_truth.pipeline import RegulatoryTruthPipeline
from services.regulatory_truth.release import build_release_manifest, verify_release_hash
from services.regulatory_truth.routes.dependencies import get_pipeline


router = APIRouter()


class ReleaseManifest(BaseModel):
    release_hash: str
    rule_count: int
    rule_ids: list[str]
    concept_slugs: list[str]
    generated_at: datetime


class VerifyRequest(BaseModel):
    expected_hash: str = Field(..., min_length=64, max_length=64)


class VerifyResponse(BaseModel):
    matches: bool
    release_hash: str


@router.get("/current", response_model=ReleaseManifest)
async def current_release(
    pipeline: RegulatoryTruthPipeline = Depends(get_pipeline),
) -> ReleaseManifest:
    """Manifest and hash over all PUBLISHED rules."""
    rules = await pipeline.store.list_rules(statuses=[RuleStatus.PUBLISHED])
    return ReleaseManifest(**build_release_manifest(rules))


@router.post("/verify", response_model=VerifyResponse)
async def verify_release(
    request: VerifyRequest,
    pipeline: RegulatoryTruthPipeline = Depends(get_pipeline),
) -> VerifyResponse:
    """Check an audited snapshot hash against the published rule set."""
    rules = await pipeline.store.list_rules(statuses=[RuleStatus.PUBLISHED])
    manifest = build_release_manifest(rules)
    return VerifyResponse(
        matches=verify_release_hash(rules, request.expected_hash),
        release_hash=manifest["release_hash"],
    )
