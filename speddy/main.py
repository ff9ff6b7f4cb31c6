"""
Speddy Scheduling Service - Main Application.

Weekly scheduling for special-education providers:
- Drag-and-drop session moves with conflict validation
- Dated session instances generated from weekly templates
- Role-based session visibility and grid filters
- Attendance marking and summaries
"""

from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .config import settings
from .database import close_db_pool, get_db_pool
from .domain.exceptions import SpeddyException
from .logging_config import request_id_middleware, setup_logging
from .metrics import metrics_endpoint, track_request_metrics
from .metrics_middleware import PrometheusMiddleware
from .routers import admin, attendance, health, schedule, sessions, students
from .tracing import configure_opentelemetry, instrument_fastapi

setup_logging()
logger = structlog.get_logger(__name__)

tracing_enabled = configure_opentelemetry(
    service_name=settings.SERVICE_NAME,
    service_version=settings.SERVICE_VERSION,
    otlp_endpoint=settings.OTEL_EXPORTER_OTLP_ENDPOINT,
    enable_tracing=settings.ENABLE_TRACING,
)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager."""
    logger.info("Starting Scheduling Service", version=settings.SERVICE_VERSION)
    app.state.is_shutting_down = False
    await get_db_pool()
    logger.info("Scheduling Service started")

    yield

    logger.info("Shutting down Scheduling Service")
    app.state.is_shutting_down = True
    await close_db_pool()
    logger.info("Scheduling Service stopped")


app = FastAPI(
    title="Speddy Scheduling Service",
    description="Weekly session scheduling, conflict checks and attendance",
    version=settings.SERVICE_VERSION,
    docs_url="/docs" if settings.DEBUG else None,
    redoc_url="/redoc" if settings.DEBUG else None,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins_list,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS", "PATCH"],
    allow_headers=[
        "Content-Type",
        "Authorization",
        "Accept",
        "Origin",
        "X-Requested-With",
        "X-Request-ID",
    ],
    expose_headers=["Content-Length", "X-Request-ID"],
    max_age=600,
)

app.add_middleware(PrometheusMiddleware, track_func=track_request_metrics)
app.middleware("http")(request_id_middleware)

if tracing_enabled:
    instrument_fastapi(app)


@app.middleware("http")
async def shutdown_middleware(request: Request, call_next):
    """Reject new requests with 503 during graceful shutdown."""
    if getattr(request.app.state, "is_shutting_down", False):
        if request.url.path not in ("/health", "/metrics"):
            return JSONResponse(
                status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
                content={"detail": "Service is shutting down"},
            )
    return await call_next(request)


@app.exception_handler(SpeddyException)
async def speddy_exception_handler(request: Request, exc: SpeddyException):
    """Map domain exceptions to JSON error responses."""
    log = logger.error if exc.status_code >= 500 else logger.info
    log(
        "Request failed",
        path=request.url.path,
        method=request.method,
        error_code=exc.error_code,
        error=exc.message,
    )
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.message, "error_code": exc.error_code, "details": exc.details},
    )


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Handle all unhandled exceptions."""
    logger.error(
        "Unhandled exception",
        path=request.url.path,
        method=request.method,
        error=str(exc),
        exc_info=True,
    )
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"detail": "Internal server error"},
    )


@app.get("/metrics", include_in_schema=False)
async def metrics():
    """Prometheus metrics endpoint."""
    return await metrics_endpoint()


app.include_router(health.router)
app.include_router(sessions.router)
app.include_router(students.router)
app.include_router(attendance.router)
app.include_router(schedule.router)
app.include_router(admin.router)


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "speddy.main:app",
        host=settings.SERVICE_HOST,
        port=settings.SERVICE_PORT,
        reload=settings.DEBUG,
        log_level=settings.LOG_LEVEL.lower(),
    )
