"""
Conflicts Routes
================

API endpoints for recorded rule and source conflicts.

Version: 0.1.0
"""

from datetime import datetime
from typing import Any

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel

from services.regulatory_truth.models import ConflictStatus, ConflictType
from services.regulatory_truth.pipeline import RegulatoryTruthPipeline
from services.regulatory_truth.routes.dependencies import get_pipeline


router = APIRouter()


class ConflictResponse(BaseModel):
    id: str
    conflict_type: ConflictType
    status: ConflictStatus
    item_a_id: str | None
    item_b_id: str | None
    description: str
    metadata: dict[str, Any]
    created_at: datetime


@router.get("", response_model=list[ConflictResponse])
async def list_conflicts(
    conflict_status: ConflictStatus | None = Query(default=ConflictStatus.OPEN, alias="status"),
    pipeline: RegulatoryTruthPipeline = Depends(get_pipeline),
) -> list[ConflictResponse]:
    """List conflicts, OPEN ones by default."""
    conflicts = await pipeline.store.list_conflicts(conflict_status)
    return [ConflictResponse(**c.model_dump()) for c in conflicts]
