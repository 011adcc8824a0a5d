"""
Main FastAPI application for the tenant RAG service.
"""
import time
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response
from prometheus_client import CONTENT_TYPE_LATEST, Counter, Histogram, generate_latest
from starlette.exceptions import HTTPException as StarletteHTTPException

from tenant_rag.api.v1.router import api_router
from tenant_rag.config.settings import get_settings
from tenant_rag.core.exceptions import ConfigurationError, RAGServiceException, handle_exception
from tenant_rag.core.logging import configure_logging
from tenant_rag.database.connection import db_manager
from tenant_rag.rag.kafka_integration import DocumentEventConsumer
from tenant_rag.rag.service import RAGService

settings = get_settings()
configure_logging(settings.monitoring.log_level, settings.monitoring.log_format)
logger = structlog.get_logger(__name__)

# Prometheus metrics
REQUEST_COUNT = Counter("http_requests_total", "Total HTTP requests", ["method", "endpoint", "status"])
REQUEST_LATENCY = Histogram("http_request_duration_seconds", "HTTP request latency")


def warn_missing_credentials() -> None:
    """Log every missing credential as a configuration warning."""
    for name in settings.missing_credentials():
        error = ConfigurationError("startup", f"{name} is not set")
        logger.warning("Missing configuration", setting=name, error=error.message)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager."""
    logger.info(
        "Starting tenant RAG service",
        version=settings.service.version,
        environment=settings.service.environment,
    )
    warn_missing_credentials()

    consumer = None
    if settings.rag.enabled:
        try:
            await db_manager.initialize()
            rag_service = RAGService(db_manager)
            await rag_service.initialize()
            app.state.rag_service = rag_service
            logger.info("RAG service ready")

            if settings.kafka.enabled:
                consumer = DocumentEventConsumer(rag_service.ingestion, settings)
                if await consumer.start():
                    app.state.event_consumer = consumer
        except Exception as e:
            # Keep serving /health and /metrics; RAG endpoints retry initialization per request.
            logger.error("Failed to initialize RAG service", error=str(e))
            if settings.service.debug:
                raise
    else:
        logger.info("RAG disabled in settings")

    try:
        yield
    finally:
        logger.info("Shutting down tenant RAG service")
        if consumer is not None:
            await consumer.stop()
        await db_manager.close()
        logger.info("Service shutdown completed")


# Create FastAPI application
app = FastAPI(
    title="Tenant RAG Service",
    description="Tenant-scoped document retrieval and streamed answers",
    version=settings.service.version,
    docs_url="/docs" if settings.service.debug else None,
    redoc_url="/redoc" if settings.service.debug else None,
    openapi_url="/openapi.json" if settings.service.debug else None,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.service.cors_origin_list,
    allow_credentials=True,
    allow_methods=["GET", "POST", "DELETE", "OPTIONS"],
    allow_headers=["*"],
)

app.include_router(api_router, prefix="/api/v1")


@app.middleware("http")
async def metrics_middleware(request: Request, call_next):
    """Record request count and latency."""
    start_time = time.time()
    try:
        response = await call_next(request)
    except Exception:
        REQUEST_COUNT.labels(method=request.method, endpoint=request.url.path, status=500).inc()
        raise

    process_time = time.time() - start_time
    response.headers["X-Process-Time"] = str(process_time)
    REQUEST_LATENCY.observe(process_time)
    REQUEST_COUNT.labels(method=request.method, endpoint=request.url.path, status=response.status_code).inc()
    return response


@app.exception_handler(RAGServiceException)
async def rag_exception_handler(request: Request, exc: RAGServiceException):
    """Handle service errors with their own status code."""
    body = handle_exception(exc)
    log = logger.warning if 400 <= exc.status_code < 500 else logger.error
    log("Request failed", path=request.url.path, error_code=exc.error_code, error=exc.message)
    return JSONResponse(
        status_code=body.pop("status_code"),
        content={**body, "timestamp": time.time()},
    )


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """Malformed request bodies are client errors."""
    logger.warning("Validation error", path=request.url.path, errors=exc.errors())
    return JSONResponse(
        status_code=400,
        content={
            "error": "VALIDATION_ERROR",
            "message": "Request validation failed",
            "details": jsonable_errors(exc),
            "timestamp": time.time(),
        },
    )


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    """Handle HTTP exceptions."""
    logger.warning("HTTP exception", path=request.url.path, status_code=exc.status_code, detail=exc.detail)
    return JSONResponse(
        status_code=exc.status_code,
        content={
            "error": "HTTP_ERROR",
            "message": exc.detail,
            "status_code": exc.status_code,
            "timestamp": time.time(),
        },
    )


@app.exception_handler(Exception)
async def general_exception_handler(request: Request, exc: Exception):
    """Handle general exceptions."""
    body = handle_exception(exc)
    return JSONResponse(
        status_code=body.pop("status_code"),
        content={**body, "timestamp": time.time()},
    )


def jsonable_errors(exc: RequestValidationError):
    return [
        {"loc": list(error.get("loc", ())), "msg": error.get("msg"), "type": error.get("type")}
        for error in exc.errors()
    ]


@app.get("/")
async def root():
    """Root endpoint."""
    return {
        "message": "Tenant RAG service is running",
        "version": settings.service.version,
        "status": "healthy",
        "timestamp": time.time(),
    }


@app.get("/health")
async def health_check(request: Request):
    """Health check endpoint."""
    rag_service = getattr(request.app.state, "rag_service", None)
    consumer = getattr(request.app.state, "event_consumer", None)
    return {
        "status": "healthy",
        "database": await db_manager.health_check(),
        "rag": await rag_service.health_check() if rag_service else {"status": "not_initialized"},
        "events": consumer.describe() if consumer else {"running": False},
        "timestamp": time.time(),
    }


@app.get("/metrics")
async def metrics():
    """Prometheus metrics endpoint."""
    if not settings.monitoring.metrics_enabled:
        raise StarletteHTTPException(status_code=404, detail="Metrics are disabled")
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)
