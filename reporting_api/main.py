"""Reporting API - Main Application."""
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException
from contextlib import asynccontextmanager
import logging

from reporting_api.settings import DEV_PEPPER, get_settings
from reporting_api.errors import ReportingError
from reporting_api.logging_hardening import configure_logging

logger = logging.getLogger(__name__)

# Initialize logging (with redaction filters) early
configure_logging(get_settings().log_level)


async def run_startup_checks() -> None:
    """Prod startup checks. Raises RuntimeError on the first failure."""
    settings = get_settings()

    if settings.idempotency_ttl_seconds < settings.rate_limit_window_seconds:
        logger.warning(
            "IDEMPOTENCY_TTL_SECONDS is shorter than the rate-limit window; "
            "retries late in a window may re-execute"
        )

    if not settings.is_prod:
        return

    if not settings.admin_secret:
        raise RuntimeError("In PROD, ADMIN_SECRET must be present")
    if not settings.pdf_signing_secret:
        raise RuntimeError("In PROD, PDF_SIGNING_SECRET must be present")
    if not settings.api_key_pepper or settings.api_key_pepper == DEV_PEPPER:
        raise RuntimeError("In PROD, API_KEY_PEPPER must be set to a unique value")

    if settings.store_backend.lower() != "redis":
        raise RuntimeError("In PROD, STORE_BACKEND must be 'redis'")

    # Verify connectivity
    from reporting_api.adapters.redis.client import get_redis
    logger.info("Verifying Redis connectivity for PROD startup...")
    r = await get_redis()
    await r.ping()
    logger.info("Redis connectivity verified.")

    if settings.tracing_enabled and not settings.otel_exporter_otlp_endpoint:
        raise RuntimeError("In PROD, OTEL_EXPORTER_OTLP_ENDPOINT must be present when tracing is enabled")


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup
    try:
        await run_startup_checks()
    except Exception as e:
        logger.critical(f"CRITICAL STARTUP ERROR: {e}")
        raise

    from reporting_api.middleware.shutdown_gate import ShutdownGateMiddleware
    ShutdownGateMiddleware.set_shutting_down(False)

    yield
    # Shutdown
    logger.info("Initiating graceful shutdown...")
    from reporting_api.middleware.shutdown_gate import ShutdownGateMiddleware
    ShutdownGateMiddleware.set_shutting_down(True)

    from reporting_api.adapters.redis.client import close_redis
    await close_redis()

    logger.info("Shutdown complete.")


app = FastAPI(
    title="Reporting API",
    description="Multi-tenant analytics reporting API",
    version="0.1.0",
    lifespan=lifespan
)

from reporting_api.middleware.request_id import RequestIdMiddleware
from reporting_api.middleware.shutdown_gate import ShutdownGateMiddleware

app.add_middleware(ShutdownGateMiddleware)
app.add_middleware(RequestIdMiddleware)


# OpenTelemetry Setup
def setup_opentelemetry(app: FastAPI):
    from opentelemetry import trace
    from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
    from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
    from opentelemetry.sdk.resources import Resource
    from opentelemetry.sdk.trace import TracerProvider
    from opentelemetry.sdk.trace.export import BatchSpanProcessor

    from reporting_api.observability.tracing import RedactingSpanProcessor

    settings = get_settings()
    provider = TracerProvider(resource=Resource.create({"service.name": "reporting-api"}))

    if settings.otel_exporter_otlp_endpoint:
        processor = BatchSpanProcessor(OTLPSpanExporter(endpoint=settings.otel_exporter_otlp_endpoint, insecure=True))
        # Wrap with Redaction Processor
        provider.add_span_processor(RedactingSpanProcessor(processor))

    trace.set_tracer_provider(provider)

    # Exclude health checks from tracing to reduce noise
    FastAPIInstrumentor.instrument_app(
        app,
        tracer_provider=provider,
        excluded_urls="api/health.*"
    )


if get_settings().tracing_enabled:
    setup_opentelemetry(app)


def _request_id(request: Request):
    return getattr(request.state, "request_id", None)


@app.exception_handler(ReportingError)
async def reporting_error_handler(request: Request, exc: ReportingError):
    headers = dict(getattr(request.state, "rate_limit_headers", None) or {})
    headers.update(exc.headers)
    return JSONResponse(
        status_code=exc.status_code,
        content=exc.to_body(_request_id(request)),
        headers=headers,
    )


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    return JSONResponse(
        status_code=400,
        content={"ok": False, "error": {
            "code": "INVALID_REQUEST",
            "message": "Request body or parameters are invalid",
            "request_id": _request_id(request),
        }},
    )


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    code = "NOT_FOUND" if exc.status_code == 404 else "HTTP_ERROR"
    return JSONResponse(
        status_code=exc.status_code,
        content={"ok": False, "error": {
            "code": code,
            "message": str(exc.detail),
            "request_id": _request_id(request),
        }},
        headers=getattr(exc, "headers", None),
    )


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    logger.exception(f"Unhandled error on {request.method} {request.url.path}")
    return JSONResponse(
        status_code=500,
        content={"ok": False, "error": {
            "code": "INTERNAL_ERROR",
            "message": "Internal server error",
            "request_id": _request_id(request),
        }},
    )


# Mount routers
from reporting_api.routers import health
from reporting_api.api.agency import router as agency_router
from reporting_api.api.clients import router as clients_router
from reporting_api.api.reports import router as reports_router
from reporting_api.api.admin import router as admin_router

app.include_router(health.router, tags=["Health"])
app.include_router(agency_router.router, tags=["Agency"])
app.include_router(clients_router.router, tags=["Clients"])
app.include_router(reports_router.router, tags=["Reports"])
app.include_router(admin_router.router, tags=["Admin"])
