"""
Route Dependencies
==================

FastAPI dependencies resolving the pipeline built at startup.

Version: 0.1.0
"""

from fastapi import HTTPException, Request, status

from services.regulatory_truth.pipeline import RegulatoryTruthPipeline


def get_pipeline(request: Request) -> RegulatoryTruthPipeline:
    """Pipeline stored on the application state by the lifespan handler."""
    pipeline = getattr(request.app.state, "pipeline", None)
    if pipeline is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Pipeline not initialized",
        )
    return pipeline
