import logging
import sys
import time
import uuid

import structlog
from fastapi import Request
from prometheus_client import Counter, Histogram
from starlette.responses import JSONResponse

from .config import settings

STAFFING_TRANSITIONS = Counter(
    "staffing_transitions_total",
    "Committed assignment lifecycle transitions",
    ["transition"],
)
NOTIFICATION_DELIVERIES = Counter(
    "notification_deliveries_total",
    "Outbox notification delivery attempts",
    ["outcome"],
)
REQUEST_LATENCY = Histogram(
    "http_request_duration_seconds",
    "HTTP request latency",
    ["method", "status"],
)

_configured = False


def configure_logging() -> None:
    global _configured
    if _configured:
        return

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, settings.LOG_LEVEL, logging.INFO),
    )
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.StackInfoRenderer(),
            structlog.dev.set_exc_info,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.JSONRenderer(),
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
    _configured = True


def get_logger(name: str):
    return structlog.get_logger(name)


logger = get_logger("service_scheduler.http")


async def request_tracing_middleware(request: Request, call_next):
    request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
    tenant_slug = (request.headers.get("X-Tenant-Slug") or "").strip().lower() or None

    structlog.contextvars.clear_contextvars()
    structlog.contextvars.bind_contextvars(
        request_id=request_id,
        tenant_slug=tenant_slug,
        path=request.url.path,
        method=request.method,
    )

    start_time = time.perf_counter()
    try:
        response = await call_next(request)
    except Exception as exc:
        duration_ms = round((time.perf_counter() - start_time) * 1000, 2)
        REQUEST_LATENCY.labels(method=request.method, status="500").observe(duration_ms / 1000.0)
        logger.exception("http_request_failed", error=str(exc), duration_ms=duration_ms)
        return JSONResponse(
            status_code=500,
            content={"detail": "Internal Server Error", "request_id": request_id},
            headers={"X-Request-ID": request_id},
        )

    duration_ms = round((time.perf_counter() - start_time) * 1000, 2)
    REQUEST_LATENCY.labels(method=request.method, status=str(response.status_code)).observe(
        duration_ms / 1000.0
    )
    logger.info("http_request", status=response.status_code, duration_ms=duration_ms)
    response.headers["X-Request-ID"] = request_id
    return response
