"""FastAPI backend for the Claim Decision Engine."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from config import CORS_ORIGINS, LOG_LEVEL, METRICS_REFRESH_CRON, SCHEDULER_ENABLED
from routes import (
    analytics_router,
    audit_router,
    claims_router,
    explain_router,
    outcomes_router,
    rules_router,
)
from routes.dependencies import limiter
from rules.errors import (
    DecisionEngineError,
    NotFoundError,
    RuleValidationError,
    TenantIsolationViolation,
)
from services import get_services

logging.basicConfig(
    level=LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Initialize services on startup and start the snapshot refresh job."""
    services = get_services()

    scheduler = None
    if SCHEDULER_ENABLED:
        try:
            from scheduler import shutdown_scheduler, start_scheduler

            scheduler = start_scheduler()
            scheduler.schedule_snapshot_refresh(
                services.aggregator.refresh_snapshots, METRICS_REFRESH_CRON
            )
            logger.info("Scheduler started for analytics snapshot refresh")
        except Exception as e:
            logger.warning(f"Scheduler initialization failed: {e}")

    yield

    if scheduler:
        try:
            shutdown_scheduler(wait=True)
            logger.info("Scheduler shutdown complete")
        except Exception as e:
            logger.warning(f"Scheduler shutdown error: {e}")


app = FastAPI(
    title="Claim Decision Engine",
    description="Rule-based recommendations for insurance claims with outcome feedback",
    version="0.1.0",
    lifespan=lifespan,
)

# Rate limiting: the evaluation endpoint is limited by EVALUATE_RATE_LIMIT
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(RuleValidationError)
async def rule_validation_error_handler(request: Request, exc: RuleValidationError):
    return JSONResponse(
        status_code=422,
        content={"error": "rule_validation_error", "detail": exc.message, "path": exc.path},
    )


@app.exception_handler(TenantIsolationViolation)
async def tenant_isolation_handler(request: Request, exc: TenantIsolationViolation):
    logger.warning(
        f"Tenant isolation violation on {request.url.path}: {exc}",
        extra={"expected_org": exc.expected_org, "actual_org": exc.actual_org},
    )
    return JSONResponse(
        status_code=403,
        content={"error": "tenant_isolation_violation", "detail": "Access denied"},
    )


@app.exception_handler(NotFoundError)
async def not_found_handler(request: Request, exc: NotFoundError):
    return JSONResponse(
        status_code=404,
        content={"error": "not_found", "detail": str(exc), "resource_type": exc.resource_type},
    )


@app.exception_handler(DecisionEngineError)
async def decision_engine_error_handler(request: Request, exc: DecisionEngineError):
    logger.error(f"Unhandled decision engine error on {request.url.path}: {exc}", exc_info=exc)
    return JSONResponse(status_code=500, content={"error": "internal_error", "detail": str(exc)[:200]})


# Register API routers
app.include_router(rules_router)
app.include_router(claims_router)
app.include_router(outcomes_router)
app.include_router(analytics_router)
app.include_router(explain_router)
app.include_router(audit_router)


@app.get("/health")
async def health_check():
    """Health check endpoint."""
    services = get_services()
    return {
        "status": "healthy",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "indexed_cases": services.case_index.count() if services.case_index else 0,
    }


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=8080)
