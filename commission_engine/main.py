from contextlib import asynccontextmanager
import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from fastapi.middleware.cors import CORSMiddleware

from commission_engine.config import settings
from commission_engine.api.v1.router import api_router
from commission_engine.database import init_db, async_session_factory
from commission_engine.jobs.scheduler import start_scheduler, shutdown_scheduler, get_job_status
from commission_engine.services.commission.errors import (
    CommissionError,
    CommissionValidationError,
    CommissionNotFoundError,
    InvalidStatusTransition,
    RuleInactive,
    ConditionsNotMet,
    NoEligibleCalculations,
)


logging.basicConfig(
    level=settings.LOG_LEVEL,
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)
logger = logging.getLogger(__name__)

# Most specific class wins (looked up along the exception's MRO)
ERROR_STATUS_CODES = {
    CommissionValidationError: 400,
    CommissionNotFoundError: 404,
    InvalidStatusTransition: 409,
    RuleInactive: 400,
    ConditionsNotMet: 422,
    NoEligibleCalculations: 404,
}


def status_code_for(exc: CommissionError) -> int:
    for cls in type(exc).__mro__:
        if cls in ERROR_STATUS_CODES:
            return ERROR_STATUS_CODES[cls]
    return 400


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan handler.

    Startup:
    - Create tables
    - Start background scheduler
    """
    # Startup
    logger.info(f"Starting {settings.APP_NAME} v{settings.APP_VERSION}")
    await init_db()

    start_scheduler()

    yield

    # Shutdown
    shutdown_scheduler()
    logger.info("Shutting down...")


FULL_API_DESCRIPTION = """
## Commission Engine API

Rule-based commission calculation, multi-level distribution and payout batching.

| Module | Description |
|--------|-------------|
| **Rules** | Percentage, fixed, tiered and hybrid rules with versioning |
| **Calculations** | Calculate, simulate, approve / reject / hold |
| **Payments** | Period batches per recipient and their lifecycle |

- **API Docs**: /docs (Swagger UI)
- **Health Check**: /health
"""

# Create FastAPI application
app = FastAPI(
    title=settings.APP_NAME,
    version=settings.APP_VERSION,
    description=FULL_API_DESCRIPTION,
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
)

# Add CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include API router
app.include_router(api_router)


@app.exception_handler(CommissionError)
async def commission_exception_handler(request: Request, exc: CommissionError):
    """Render domain errors with their mapped status code."""
    status_code = status_code_for(exc)
    if isinstance(exc, NoEligibleCalculations):
        logger.info(f"{request.method} {request.url.path}: {exc.message}")
    else:
        logger.warning(f"{request.method} {request.url.path}: {type(exc).__name__}: {exc.message}")

    return JSONResponse(
        status_code=status_code,
        content={
            "error": exc.message,
            "type": type(exc).__name__,
            "details": exc.details,
            "path": str(request.url.path),
        },
    )


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Unexpected errors. Details are only exposed in DEBUG."""
    logger.exception(f"Unhandled error on {request.method} {request.url.path}")

    return JSONResponse(
        status_code=500,
        content={
            "error": str(exc) if settings.DEBUG else "Internal server error",
            "type": type(exc).__name__,
            "path": str(request.url.path),
        },
    )


# Health check endpoint
@app.get("/health", tags=["Health"])
async def health_check():
    """Health check endpoint with database validation."""
    from sqlalchemy import text
    from datetime import datetime, timezone

    health_status = {
        "status": "healthy",
        "app": settings.APP_NAME,
        "version": settings.APP_VERSION,
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "checks": {
            "database": "unknown"
        },
        "jobs": get_job_status(),
    }

    # Check database connectivity
    try:
        async with async_session_factory() as session:
            result = await session.execute(text("SELECT 1"))
            result.scalar()
            health_status["checks"]["database"] = "connected"
    except Exception as e:
        health_status["status"] = "unhealthy"
        health_status["checks"]["database"] = f"error: {str(e)}"

    # Return 503 if unhealthy
    if health_status["status"] == "unhealthy":
        return JSONResponse(status_code=503, content=health_status)

    return health_status


@app.get("/", tags=["Root"])
async def root():
    """Root endpoint."""
    return {
        "message": f"Welcome to {settings.APP_NAME}",
        "version": settings.APP_VERSION,
        "docs": "/docs",
        "redoc": "/redoc",
    }
