"""
FastAPI application initialization
"""

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse
from api.routes import health, webhook, review, listings, jargon, notifications, stats
from core.config import settings
from core.database import async_session_maker
from core.exceptions import (
    TradeIntelError,
    ValidationError,
    NotFoundError,
    DuplicateError,
    InvalidStateTransition,
    ExternalServiceError,
)
from core.logging import setup_logging
import logging
from api.middleware import RequestContextMiddleware
from ingestion.context import PipelineContext
from ingestion.scheduler import PipelineScheduler
from ingestion.worker_pool import PipelineWorkerPool

logger = logging.getLogger(__name__)

# Create FastAPI app
app = FastAPI(
    title="Trade Intel Backend API",
    description="Ingests trade-group chat messages and turns them into structured listings",
    version="1.0.0",
    docs_url="/docs",
    redoc_url="/redoc"
)

app.add_middleware(RequestContextMiddleware)

STATUS_BY_ERROR = [
    (ValidationError, 422),
    (NotFoundError, 404),
    (DuplicateError, 409),
    (InvalidStateTransition, 409),
    (ExternalServiceError, 502),
]


def status_for(error: TradeIntelError) -> int:
    for error_cls, status_code in STATUS_BY_ERROR:
        if isinstance(error, error_cls):
            return status_code
    return 500


@app.exception_handler(TradeIntelError)
async def trade_intel_error_handler(request: Request, exc: TradeIntelError):
    status_code = status_for(exc)
    if status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc}")
    body = exc.to_dict()
    body["request_id"] = getattr(request.state, "request_id", None)
    return JSONResponse(status_code=status_code, content=jsonable_encoder(body))


# Include routers
app.include_router(health.router)
app.include_router(webhook.router)
app.include_router(review.router)
app.include_router(listings.router)
app.include_router(jargon.router)
app.include_router(notifications.router)
app.include_router(stats.router)


@app.on_event("startup")
async def startup_event():
    """Application startup event"""
    setup_logging()
    logger.info("Starting Trade Intel Backend API")
    logger.info(f"Environment: {settings.ENVIRONMENT}")
    logger.info(f"Database: {settings.DATABASE_URL.split('@')[1] if '@' in settings.DATABASE_URL else 'configured'}")

    context = PipelineContext()
    pool = PipelineWorkerPool(async_session_maker, context)
    await pool.start()
    app.state.pipeline_context = context
    app.state.worker_pool = pool

    if settings.SCHEDULER_ENABLED:
        scheduler = PipelineScheduler(pool, context)
        scheduler.start()
        app.state.scheduler = scheduler


@app.on_event("shutdown")
async def shutdown_event():
    """Application shutdown event"""
    logger.info("Shutting down Trade Intel Backend API")
    scheduler = getattr(app.state, "scheduler", None)
    if scheduler is not None:
        scheduler.stop()
    pool = getattr(app.state, "worker_pool", None)
    if pool is not None:
        await pool.stop()


@app.get("/")
async def root():
    """Root endpoint"""
    return {
        "message": "Trade Intel Backend API",
        "version": "1.0.0",
        "docs": "/docs",
        "health": "/health",
        "endpoints": {
            "webhook": "/webhooks/messages",
            "review": "/review",
            "listings": "/listings",
            "jargon": "/jargon",
            "notification_rules": "/notifications/rules",
            "stats": "/stats"
        }
    }
