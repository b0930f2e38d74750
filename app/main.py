import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from typing import Any

from fastapi import FastAPI, HTTPException, Request, status
from fastapi.responses import JSONResponse, PlainTextResponse
from pythonjsonlogger.json import JsonFormatter
from starlette.middleware.cors import CORSMiddleware

from app.core.database_manager import db_manager
from app.core.exceptions import DomainError
from app.core.settings import get_settings
from app.middleware.monitoring import (
    MonitoringMiddleware,
    get_health_status,
    get_prometheus_metrics,
)

from .api.api import api_router

settings = get_settings()

# Configure structured logging
log_handler = logging.StreamHandler()
if settings.monitoring.LOG_FORMAT == "json":
    log_handler.setFormatter(
        JsonFormatter(
            "%(levelname)s %(asctime)s %(message)s %(name)s %(processName)s "
            "%(filename)s %(lineno)d",
            rename_fields={
                "levelname": "level",
                "asctime": "time",
                "name": "loggerName",
                "lineno": "lineNumber",
                "filename": "fileName",
            },
        )
    )
else:
    log_handler.setFormatter(
        logging.Formatter("%(asctime)s %(levelname)s [%(name)s] %(message)s")
    )
logging.basicConfig(handlers=[log_handler], level=settings.monitoring.LOG_LEVEL)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Verify the database on startup and release connections on shutdown."""
    logger.info(f"Starting {settings.PROJECT_NAME} ({settings.ENVIRONMENT})")

    try:
        if db_manager.is_sqlite:
            # Local and test databases are created on the fly; Alembic owns the rest
            await db_manager.create_all()

        db_health = await db_manager.health_check()
        if db_health.get("status") == "healthy":
            logger.info("Database connection verified")
        else:
            logger.warning(f"Database health check failed: {db_health.get('message')}")

        yield

    finally:
        await db_manager.close()
        logger.info("Application shutdown completed")


app = FastAPI(
    title=settings.PROJECT_NAME,
    description="""
    Capacity and waitlist service for bookable fitness activities.

    * **Booking ledger**: join and leave activities without ever exceeding capacity
    * **Waitlists**: first-come first-served queues for full activities
    * **Spot promotion**: freed spots are offered to the next person in line for a limited time
    * **Notifications**: in-app and email notices delivered by background workers

    All endpoints under `/api/v1/` except the activity reads require a bearer
    token issued by the auth provider:

    ```
    Authorization: Bearer <token>
    ```
    """,
    version=settings.VERSION,
    openapi_url=f"{settings.API_V1_PREFIX}/openapi.json",
    docs_url=f"{settings.API_V1_PREFIX}/docs",
    redoc_url=f"{settings.API_V1_PREFIX}/redoc",
    lifespan=lifespan,
)

app.add_middleware(MonitoringMiddleware)

# Set all CORS enabled origins
if settings.BACKEND_CORS_ORIGINS:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=[str(origin) for origin in settings.BACKEND_CORS_ORIGINS],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

app.include_router(api_router, prefix=settings.API_V1_PREFIX)


@app.exception_handler(DomainError)  # type: ignore[misc]
async def domain_exception_handler(request: Request, exc: DomainError) -> JSONResponse:
    log = logger.warning if exc.retryable or exc.status_code >= 500 else logger.info
    log(
        "Request rejected: %s",
        exc.code,
        extra={"status_code": exc.status_code, "path": request.url.path},
    )
    headers = {"Retry-After": "1"} if exc.retryable else None
    return JSONResponse(
        status_code=exc.status_code, content=exc.to_dict(), headers=headers
    )


@app.exception_handler(HTTPException)  # type: ignore[misc]
async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    logger.error(
        "HTTPException occurred: %s",
        exc.detail,
        extra={"status_code": exc.status_code},
    )
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.detail},
        headers=exc.headers,
    )


@app.exception_handler(Exception)  # type: ignore[misc]
async def general_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled exception occurred: %s", exc)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"detail": "Internal Server Error", "code": "internal_error"},
    )


@app.get("/", tags=["Root"], summary="API Welcome Message")  # type: ignore[misc]
async def root() -> dict[str, Any]:
    return {
        "message": f"Welcome to {settings.PROJECT_NAME}",
        "version": settings.VERSION,
        "docs": f"{settings.API_V1_PREFIX}/docs",
        "status": "operational",
    }


@app.get("/health", tags=["Health"], summary="Health Check")  # type: ignore[misc]
async def health_check() -> dict[str, Any]:
    """
    Operational status of the service and its database.
    """
    return await get_health_status()


@app.get("/metrics", tags=["Monitoring"], summary="Prometheus Metrics")  # type: ignore[misc]
async def metrics() -> PlainTextResponse:
    """
    Prometheus metrics endpoint for monitoring and alerting.
    """
    if not settings.monitoring.ENABLE_PROMETHEUS:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND, detail="Metrics endpoint is disabled"
        )

    metrics_data = await get_prometheus_metrics()
    return PlainTextResponse(
        content=metrics_data, media_type="text/plain; version=0.0.4; charset=utf-8"
    )
