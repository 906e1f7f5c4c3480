"""
Regulatory Truth Service - Main Application
===========================================

FastAPI application exposing rule composition, lifecycle transitions,
evidence staleness and release hashes.

Version: 0.1.0
"""

from contextlib import asynccontextmanager
from typing import Any

from fastapi import FastAPI, HTTPException, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from services.regulatory_truth.errors import (
    DuplicateRuleError,
    ErrorKind,
    IllegalTransitionError,
    RegulatoryTruthError,
    RuleNotFoundError,
)
from services.regulatory_truth.pipeline import build_pipeline
from services.regulatory_truth.routes import conflicts, releases, rules, staleness
from services.regulatory_truth.store import InMemoryRuleStore, SqlRuleStore
from shared.config import StoreBackend, settings
from shared.database.postgres import PostgresClient
from shared.logging import get_logger, setup_logging
from shared.models.common import ErrorResponse, HealthResponse


# Setup logging
setup_logging(
    log_level=settings.log_level.value,
    json_logs=settings.is_production,
    service_name="regulatory-truth",
)

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> Any:
    """Application lifespan manager."""
    logger.info(
        "regulatory_truth_starting",
        environment=settings.environment.value,
        port=settings.port,
        store_backend=settings.store_backend.value,
    )

    # Startup
    try:
        if settings.store_backend == StoreBackend.POSTGRES:
            store = SqlRuleStore(PostgresClient.get_session_factory())
            logger.info("postgres_store_configured")
        else:
            store = InMemoryRuleStore()
            logger.warning("in_memory_store_configured")
        app.state.pipeline = build_pipeline(store, settings)
    except Exception as e:
        logger.error("startup_failed", error=str(e))
        raise

    yield

    # Shutdown
    logger.info("regulatory_truth_shutting_down")
    await app.state.pipeline.close()
    if settings.store_backend == StoreBackend.POSTGRES:
        await PostgresClient.close()


# Create FastAPI application
app = FastAPI(
    title="Regulatory Truth Service",
    description="Evidence-backed regulatory rules with provenance and lifecycle control",
    version="0.1.0",
    lifespan=lifespan,
    docs_url="/docs" if settings.debug else None,
    redoc_url="/redoc" if settings.debug else None,
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors.origins_list,
    allow_credentials=settings.cors.allow_credentials,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ============================================================================
# Health Check Endpoints
# ============================================================================


@app.get("/health", response_model=HealthResponse, tags=["Health"])
async def health_check() -> HealthResponse:
    """
    Service health check.

    Returns health status of the service and its store.
    """
    components: dict[str, dict[str, Any]] = {}

    if settings.store_backend == StoreBackend.POSTGRES:
        components["postgres"] = await PostgresClient.health_check()
    else:
        components["store"] = {"status": "healthy", "backend": "memory"}

    all_healthy = all(c.get("status") == "healthy" for c in components.values())

    return HealthResponse(
        status="healthy" if all_healthy else "degraded",
        service="regulatory-truth",
        version="0.1.0",
        components=components,
    )


@app.get("/", tags=["Health"])
async def root() -> dict[str, str]:
    """Root endpoint."""
    return {
        "service": "Regulatory Truth Service",
        "version": "0.1.0",
        "docs": "/docs",
    }


# ============================================================================
# Include Routers
# ============================================================================

app.include_router(
    rules.router,
    prefix="/api/v1/rules",
    tags=["Rules"],
)

app.include_router(
    conflicts.router,
    prefix="/api/v1/conflicts",
    tags=["Conflicts"],
)

app.include_router(
    staleness.router,
    prefix="/api/v1/staleness",
    tags=["Staleness"],
)

app.include_router(
    releases.router,
    prefix="/api/v1/releases",
    tags=["Releases"],
)


# ============================================================================
# Error Handlers
# ============================================================================


def status_for_error(exc: RegulatoryTruthError) -> int:
    """HTTP status for a classified pipeline error."""
    if isinstance(exc, RuleNotFoundError):
        return status.HTTP_404_NOT_FOUND
    if isinstance(exc, IllegalTransitionError | DuplicateRuleError):
        return status.HTTP_409_CONFLICT
    if exc.kind == ErrorKind.HARD_REJECT:
        return status.HTTP_422_UNPROCESSABLE_ENTITY
    if exc.kind == ErrorKind.TRANSIENT:
        return status.HTTP_503_SERVICE_UNAVAILABLE
    return status.HTTP_400_BAD_REQUEST


@app.exception_handler(RegulatoryTruthError)
async def regulatory_truth_exception_handler(
    request: Request, exc: RegulatoryTruthError
) -> JSONResponse:
    """Handle classified pipeline errors."""
    status_code = status_for_error(exc)
    logger.warning(
        "regulatory_truth_error",
        status_code=status_code,
        error_kind=exc.kind.value,
        error_type=type(exc).__name__,
        reason=exc.reason,
        path=request.url.path,
    )
    return JSONResponse(
        status_code=status_code,
        content=ErrorResponse(
            error=exc.reason,
            error_kind=exc.kind.value,
            status_code=status_code,
        ).to_content(),
    )


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Handle HTTP exceptions."""
    logger.warning(
        "http_exception",
        status_code=exc.status_code,
        detail=exc.detail,
        path=request.url.path,
    )
    return JSONResponse(
        status_code=exc.status_code,
        content=ErrorResponse(error=exc.detail, status_code=exc.status_code).to_content(),
    )


@app.exception_handler(Exception)
async def general_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Handle unexpected exceptions."""
    logger.error(
        "unhandled_exception",
        error=str(exc),
        error_type=type(exc).__name__,
        path=request.url.path,
    )
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=ErrorResponse(
            error="Internal server error",
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        ).to_content(),
    )


# ============================================================================
# Run with Uvicorn
# ============================================================================

if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "services.regulatory_truth.main:app",
        host="0.0.0.0",
        port=settings.port,
        reload=settings.debug,
        log_level=settings.log_level.value.lower(),
    )
