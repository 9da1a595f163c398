from contextlib import asynccontextmanager

import sentry_sdk
import structlog
from fastapi import FastAPI, HTTPException, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from prometheus_fastapi_instrumentator import Instrumentator
from slowapi.errors import RateLimitExceeded
from sqlalchemy import text
from starlette.exceptions import HTTPException as StarletteHTTPException

from app.admin.routes import router as admin_router
from app.attendance.routes import router as attendance_router
from app.auth.routes import router as auth_router
from app.badges.routes import router as badges_router
from app.bookings.routes import router as bookings_router
from app.businesses.routes import router as businesses_router
from app.cancellations.routes import router as cancellations_router
from app.compliance.routes import router as compliance_router
from app.config import settings
from app.database import async_session
from app.disputes.routes import router as disputes_router
from app.earnings.routes import router as earnings_router
from app.jobs.routes import router as jobs_router
from app.messages.routes import router as messages_router
from app.middleware import RequestIdMiddleware, SecurityHeadersMiddleware
from app.notifications.routes import router as notifications_router
from app.reviews.routes import router as reviews_router
from app.schemas.common import fail
from app.social.routes import router as social_router
from app.utils.rate_limit import limiter
from app.wallets.routes import router as wallets_router
from app.workers.routes import router as workers_router

# Configure structlog: JSON in production, console in development
processors = [
    structlog.contextvars.merge_contextvars,
    structlog.processors.add_log_level,
    structlog.processors.TimeStamper(fmt="iso"),
]
if settings.is_production:
    processors.append(structlog.processors.format_exc_info)
    processors.append(structlog.processors.JSONRenderer())
else:
    processors.append(structlog.dev.ConsoleRenderer())

structlog.configure(
    processors=processors,
    wrapper_class=structlog.make_filtering_bound_logger(0),
)

logger = structlog.get_logger()

if settings.SENTRY_DSN:
    sentry_sdk.init(
        dsn=settings.SENTRY_DSN,
        traces_sample_rate=0.1,
        environment=settings.APP_ENV,
        send_default_pii=False,
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    from app.services.notifications import close_push_client
    from app.services.scheduler import start_scheduler, stop_scheduler
    from app.services.social import close_social_client

    logger.info("dailyworker_startup", env=settings.APP_ENV)
    if not settings.PUSH_WEBHOOK_URL:
        logger.warning("push_webhook_not_configured", message="Push notifications will only be logged")

    start_scheduler()
    yield
    await stop_scheduler()
    await close_push_client()
    await close_social_client()
    logger.info("dailyworker_shutdown")


app = FastAPI(
    title="Daily Worker Hub API",
    description="Marketplace connecting daily workers with hospitality businesses in Bali",
    version="0.1.0",
    lifespan=lifespan,
    docs_url=None if settings.is_production else "/docs",
    redoc_url=None if settings.is_production else "/redoc",
    openapi_url=None if settings.is_production else "/openapi.json",
)

app.state.limiter = limiter


# --- Envelope error handlers ---


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    detail = exc.detail if isinstance(exc.detail, str) else "Request failed"
    return JSONResponse(
        status_code=exc.status_code,
        content=fail(detail),
        headers=getattr(exc, "headers", None),
    )


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    errors = jsonable_encoder(exc.errors(), custom_encoder={Exception: str})
    return JSONResponse(
        status_code=422,
        content=fail("Validation failed", data={"errors": errors}),
    )


@app.exception_handler(RateLimitExceeded)
async def rate_limit_exception_handler(request: Request, exc: RateLimitExceeded):
    logger.warning("rate_limit_exceeded", path=request.url.path, limit=str(exc.detail))
    response = JSONResponse(status_code=429, content=fail(f"Rate limit exceeded: {exc.detail}"))
    return request.app.state.limiter._inject_headers(response, request.state.view_rate_limit)


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Log unhandled exceptions and return a safe 500 envelope."""
    logger.exception("unhandled_exception", path=request.url.path)
    message = "Internal server error" if settings.is_production else f"Internal server error: {exc}"
    return JSONResponse(status_code=500, content=fail(message))


# Middleware is LIFO: the last middleware added runs first.
if settings.is_production:
    # Explicit origins only, so credentialed requests stay same-origin checked
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE"],
        allow_headers=["Authorization", "Content-Type"],
    )
    if not settings.cors_origins_list:
        logger.warning("cors_origins_empty_in_production", app_env=settings.APP_ENV)
else:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["http://localhost:3000", "http://localhost:5173"],
        allow_credentials=False,
        allow_methods=["*"],
        allow_headers=["*"],
    )

app.add_middleware(SecurityHeadersMiddleware, is_production=settings.is_production)
app.add_middleware(RequestIdMiddleware)


# Custom instrumentation instead of metrics.default(), which breaks on
# non-numeric Content-Length headers.
def _http_metrics(info) -> None:
    from prometheus_client import Counter, Histogram

    if not hasattr(_http_metrics, "_total"):
        _http_metrics._total = Counter(
            "dwh_http_requests_total", "Total HTTP requests",
            ["method", "status", "handler"],
        )
        _http_metrics._latency = Histogram(
            "dwh_http_request_duration_seconds", "Request latency",
            ["method", "handler"],
            buckets=(0.01, 0.05, 0.1, 0.25, 0.5, 1, 2.5, 5, 10),
        )
    _http_metrics._total.labels(info.method, info.modified_status, info.modified_handler).inc()
    _http_metrics._latency.labels(info.method, info.modified_handler).observe(info.modified_duration)


Instrumentator(
    should_group_status_codes=True,
    should_ignore_untemplated=True,
    excluded_handlers=["/health", "/metrics"],
).add(_http_metrics).instrument(app)


@app.get("/metrics", include_in_schema=False)
async def metrics_endpoint(request: Request):
    """Prometheus metrics, protected by METRICS_API_KEY."""
    from prometheus_client import generate_latest
    from starlette.responses import Response as StarletteResponse

    if settings.is_production and not settings.METRICS_API_KEY:
        raise HTTPException(status_code=503, detail="Metrics not available")
    if settings.METRICS_API_KEY and request.headers.get("x-metrics-key", "") != settings.METRICS_API_KEY:
        raise HTTPException(status_code=403, detail="Invalid metrics API key")

    return StarletteResponse(
        content=generate_latest(),
        media_type="text/plain; version=0.0.4; charset=utf-8",
    )


app.include_router(auth_router, prefix="/auth", tags=["auth"])
# Registered before the workers router so /workers/me/earnings is not read as a worker id
app.include_router(earnings_router, prefix="/workers/me/earnings", tags=["earnings"])
app.include_router(workers_router, prefix="/workers", tags=["workers"])
app.include_router(businesses_router, prefix="/businesses", tags=["businesses"])
app.include_router(jobs_router, prefix="/jobs", tags=["jobs"])
app.include_router(bookings_router, prefix="/bookings", tags=["bookings"])
app.include_router(attendance_router, prefix="/attendance", tags=["attendance"])
app.include_router(cancellations_router, prefix="/cancellation-reasons", tags=["cancellations"])
app.include_router(compliance_router, prefix="/compliance", tags=["compliance"])
app.include_router(wallets_router, prefix="/wallets", tags=["wallets"])
app.include_router(disputes_router, prefix="/disputes", tags=["disputes"])
app.include_router(messages_router, prefix="/messages", tags=["messages"])
app.include_router(notifications_router, prefix="/notifications", tags=["notifications"])
app.include_router(reviews_router, prefix="/reviews", tags=["reviews"])
app.include_router(badges_router, prefix="/badges", tags=["badges"])
app.include_router(social_router, prefix="/social", tags=["social"])
app.include_router(admin_router, prefix="/admin", tags=["admin"])


@app.get("/health")
@limiter.limit("60/minute")
async def health_check(request: Request):
    """Health check with database, Redis and scheduler status."""
    result: dict = {"status": "ok", "database": "connected", "redis": "connected"}

    try:
        async with async_session() as db:
            await db.execute(text("SELECT 1"))
    except Exception:
        logger.warning("health_database_unreachable", exc_info=True)
        return JSONResponse(
            status_code=503,
            content=fail("Database unavailable", data={"status": "unhealthy", "database": "disconnected"}),
        )

    # Redis is optional: lockout, limiter and scheduler locks fall back without it
    try:
        import redis.asyncio as aioredis
        r = aioredis.from_url(settings.REDIS_URL, socket_connect_timeout=2)
        await r.ping()
        await r.aclose()
    except Exception:
        result["redis"] = "unavailable"

    from app.services.scheduler import scheduler
    result["scheduler"] = "running" if scheduler.running else "stopped"

    if settings.is_production and (result["redis"] != "connected" or result["scheduler"] != "running"):
        result["status"] = "degraded"
    return {"success": True, "data": result, "error": None}
