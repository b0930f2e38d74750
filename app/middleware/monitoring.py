"""
Request ids, structured request logs and Prometheus metrics.

Besides HTTP traffic, the ledger reports every join, leave, enqueue and
capacity change with its outcome code, plus promotion and conflict counts.
"""

import logging
import time
import uuid
from typing import Any, Awaitable, Callable, Dict

import structlog
from fastapi import Request, Response
from prometheus_client import Counter, Gauge, Histogram, generate_latest
from starlette.middleware.base import BaseHTTPMiddleware

from app.core.settings import get_settings

logger = logging.getLogger(__name__)
settings = get_settings()

structlog.configure(
    processors=[
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.format_exc_info,
        (
            structlog.processors.JSONRenderer()
            if settings.monitoring.LOG_FORMAT == "json"
            else structlog.dev.ConsoleRenderer()
        ),
    ],
    context_class=dict,
    logger_factory=structlog.stdlib.LoggerFactory(),
    wrapper_class=structlog.stdlib.BoundLogger,
    cache_logger_on_first_use=True,
)

access_logger = structlog.get_logger("app.access")


class LedgerMetrics:
    """Prometheus collectors for the API and the booking ledger"""

    def __init__(self) -> None:
        self.requests = Counter(
            "http_requests_total",
            "HTTP requests by route and status",
            ["method", "route", "status_code"],
        )
        self.latency = Histogram(
            "http_request_duration_seconds",
            "HTTP request latency",
            ["method", "route"],
            buckets=(0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0),
        )
        self.in_flight = Gauge("http_requests_in_flight", "Requests being served")
        self.unhandled_errors = Counter(
            "unhandled_errors_total", "Exceptions that escaped a handler", ["error_type"]
        )

        self.operations = Counter(
            "booking_operations_total",
            "Ledger operations by outcome code",
            ["operation", "outcome"],
        )
        self.promotions = Counter(
            "waitlist_promotions_total", "Waitlist entries offered a spot"
        )
        self.expired_offers = Counter(
            "waitlist_offers_expired_total", "Spot offers that lapsed unclaimed"
        )
        self.conflicts = Counter(
            "transaction_conflicts_total",
            "Ledger transactions that kept losing a race",
            ["operation"],
        )

    def record_request(
        self, method: str, route: str, status_code: int, duration: float
    ) -> None:
        self.requests.labels(method=method, route=route, status_code=status_code).inc()
        self.latency.labels(method=method, route=route).observe(duration)

    def record_error(self, error_type: str) -> None:
        self.unhandled_errors.labels(error_type=error_type).inc()

    def record_operation(self, operation: str, outcome: str) -> None:
        """``outcome`` is "ok" or the domain error code."""
        self.operations.labels(operation=operation, outcome=outcome).inc()

    def record_promotion(self, notified: int, expired: int) -> None:
        if notified:
            self.promotions.inc(notified)
        if expired:
            self.expired_offers.inc(expired)

    def record_conflict(self, operation: str) -> None:
        self.conflicts.labels(operation=operation).inc()


# Collectors register once per process
metrics = LedgerMetrics()


def _route_template(request: Request) -> str:
    # Label by route pattern, not raw path, to keep event ids out of the labels
    route = request.scope.get("route")
    return getattr(route, "path", None) or "unmatched"


class MonitoringMiddleware(BaseHTTPMiddleware):
    """Tags each request with an id, logs it and records its metrics."""

    async def dispatch(
        self, request: Request, call_next: Callable[[Request], Awaitable[Response]]
    ) -> Response:
        request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
        request.state.request_id = request_id
        log = access_logger.bind(
            request_id=request_id, method=request.method, path=request.url.path
        )

        start_time = time.perf_counter()
        metrics.in_flight.inc()
        try:
            response = await call_next(request)
        except Exception as e:
            metrics.record_error(e.__class__.__name__)
            log.error(
                "request_failed",
                duration=time.perf_counter() - start_time,
                error_type=e.__class__.__name__,
                exc_info=True,
            )
            raise
        finally:
            metrics.in_flight.dec()

        duration = time.perf_counter() - start_time
        if settings.monitoring.ENABLE_PROMETHEUS:
            metrics.record_request(
                request.method, _route_template(request), response.status_code, duration
            )
        response.headers["X-Request-ID"] = request_id
        log.info("request_completed", status_code=response.status_code, duration=duration)
        return response


async def get_health_status() -> Dict[str, Any]:
    from app.core.database_manager import db_manager

    db_health = await db_manager.health_check()
    healthy = db_health.get("status") == "healthy"
    return {
        "status": "healthy" if healthy else "degraded",
        "version": settings.VERSION,
        "environment": settings.ENVIRONMENT,
        "timestamp": time.time(),
        "database": db_health,
    }


async def get_prometheus_metrics() -> str:
    return generate_latest().decode("utf-8")
