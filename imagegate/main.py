import logging
import traceback
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from sqlalchemy import text

from imagegate.api.v1.router import api_v1_router
from imagegate.core.config import settings, validate_settings_for_production
from imagegate.core.exceptions import AppError, RateLimitedError, ValidationError
from imagegate.core.logging import setup_logging
from imagegate.core.metrics import PrometheusMiddleware, metrics_response
from imagegate.core.middleware import RequestLoggingMiddleware
from imagegate.core.rate_limit import limiter
from imagegate.core.sentry import init_sentry
from imagegate.db.postgres import async_session_factory, engine
from imagegate.db.redis import create_redis
from imagegate.gateway.admission import AdmissionController, AdmissionLimits
from imagegate.gateway.counter_store import RedisCounterStore
from imagegate.gateway.model_registry import ModelRegistry
from imagegate.gateway.provider import ReplicateProvider
from imagegate.services.credit_ledger import CreditLedger
from imagegate.services.credit_store import SqlCreditStore
from imagegate.services.orchestrator import RequestOrchestrator

# Configure logging before anything else
setup_logging()
init_sentry()

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup
    validate_settings_for_production()
    logger.info("Starting imagegate (env=%s)...", settings.app_env)

    redis = create_redis()
    counter_store = RedisCounterStore(redis)
    admission = AdmissionController(
        counter_store,
        AdmissionLimits(
            global_daily=settings.global_daily_limit,
            ip_hourly=settings.ip_hourly_limit,
            ip_daily=settings.ip_daily_limit,
            fingerprints_per_ip=settings.fingerprints_per_ip_limit,
        ),
    )
    ledger = CreditLedger(SqlCreditStore(async_session_factory))
    registry = ModelRegistry()
    provider = ReplicateProvider(
        api_token=settings.replicate_api_token,
        base_url=settings.replicate_api_url,
        timeout=settings.provider_timeout_seconds,
        poll_interval=settings.provider_poll_interval_seconds,
        output_ttl_seconds=settings.output_ttl_seconds,
    )

    app.state.counter_store = counter_store
    app.state.admission = admission
    app.state.ledger = ledger
    app.state.registry = registry
    app.state.orchestrator = RequestOrchestrator(admission, ledger, registry, provider, settings)

    yield

    # Shutdown
    await redis.aclose()
    await engine.dispose()
    logger.info("imagegate shut down")


app = FastAPI(
    title="imagegate",
    description="Image inference gateway: guest admission, credit ledger, provider retry",
    version="1.0.0",
    lifespan=lifespan,
    docs_url="/api/docs" if settings.app_debug else None,
    redoc_url="/api/redoc" if settings.app_debug else None,
)


# --- Error envelope: {"success": false, "error": {code, message, details?}} ---


@app.exception_handler(AppError)
async def _app_error_handler(request: Request, exc: AppError):
    return JSONResponse(status_code=exc.status_code, content=exc.to_envelope())


@app.exception_handler(RequestValidationError)
async def _validation_error_handler(request: Request, exc: RequestValidationError):
    errors = [
        {"field": ".".join(str(p) for p in err["loc"] if p != "body"), "message": err["msg"]}
        for err in exc.errors()
    ]
    error = ValidationError("Invalid request", details={"errors": errors})
    return JSONResponse(status_code=error.status_code, content=error.to_envelope())


@app.exception_handler(RateLimitExceeded)
async def _rate_limit_handler(request: Request, exc: RateLimitExceeded):
    error = RateLimitedError(details={"limit": str(exc.detail)})
    return JSONResponse(status_code=error.status_code, content=error.to_envelope())


# Log unhandled exceptions with the full traceback; the client only sees the envelope
@app.exception_handler(Exception)
async def _unhandled_exception_handler(request: Request, exc: Exception):
    tb = traceback.format_exception(type(exc), exc, exc.__traceback__)
    logger.error("Unhandled %s on %s %s:\n%s", type(exc).__name__, request.method, request.url.path, "".join(tb))
    return JSONResponse(status_code=500, content=AppError().to_envelope())


# Rate limiter
app.state.limiter = limiter

# Middleware
app.add_middleware(PrometheusMiddleware)
app.add_middleware(RequestLoggingMiddleware)

# CORS: parse allowed_origins from settings (comma-separated)
_origins = [o.strip() for o in settings.allowed_origins.split(",") if o.strip()]
app.add_middleware(
    CORSMiddleware,
    allow_origins=_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# API routes
app.include_router(api_v1_router)


@app.get("/api/v1/health")
async def health(request: Request):
    status = {"status": "ok", "postgres": False, "redis": False}
    try:
        async with async_session_factory() as session:
            await session.execute(text("SELECT 1"))
        status["postgres"] = True
    except Exception as e:
        logger.warning("Health: postgres unavailable: %s", e)

    counter_store = getattr(request.app.state, "counter_store", None)
    if counter_store is not None:
        try:
            status["redis"] = await counter_store.ping()
        except Exception as e:
            logger.warning("Health: redis unavailable: %s", e)

    if not (status["postgres"] and status["redis"]):
        status["status"] = "degraded"
    return status


@app.get("/metrics", include_in_schema=False)
async def metrics():
    return metrics_response()
