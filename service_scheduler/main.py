from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse, Response
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from sqlalchemy import text

import redis

from .api import router
from .config import settings
from .db import Base, SessionLocal, engine, is_sqlite_url, run_schema_migrations
from .employees_api import router as employees_router
from .errors import register_error_handlers
from .mobile_api import router as mobile_router
from .observability import configure_logging, get_logger, request_tracing_middleware
from .platform_api import router as platform_router
from .platform_api import staffing_router

_MAINTENANCE_BYPASS_PREFIXES = (
    "/health",
    "/ping",
    "/metrics",
    "/docs",
    "/redoc",
    "/openapi.json",
)

configure_logging()
log = get_logger("service_scheduler.main")

run_schema_migrations()
if is_sqlite_url(settings.DATABASE_URL) or bool(settings.DB_AUTO_CREATE_ALL):
    Base.metadata.create_all(bind=engine)

app = FastAPI(
    title="Service Scheduler",
    description="Booking staffing API for admin dashboard and field-employee app",
    version="0.1.0",
)
app.state.session_local = SessionLocal
register_error_handlers(app)


@app.middleware("http")
async def maintenance_mode_middleware(request: Request, call_next):
    path = request.url.path or ""
    if bool(settings.MAINTENANCE_MODE):
        if not any(path.startswith(prefix) for prefix in _MAINTENANCE_BYPASS_PREFIXES):
            return JSONResponse(
                status_code=503,
                content={"detail": "Service temporarily unavailable: maintenance mode"},
                headers={"Retry-After": str(max(1, int(settings.MAINTENANCE_RETRY_AFTER_SECONDS)))},
            )
    return await call_next(request)


@app.middleware("http")
async def tracing_middleware(request: Request, call_next):
    return await request_tracing_middleware(request, call_next)


@app.middleware("http")
async def security_headers_middleware(request: Request, call_next):
    response = await call_next(request)
    if bool(settings.SECURITY_HEADERS_ENABLED):
        response.headers.setdefault("X-Content-Type-Options", "nosniff")
        response.headers.setdefault("X-Frame-Options", "DENY")
        response.headers.setdefault("Referrer-Policy", "no-referrer")
        response.headers.setdefault("Cache-Control", "no-store")
    return response


@app.get("/ping")
def ping():
    return {"ok": True}


@app.get("/health")
def health():
    return {"status": "ok"}


@app.get("/health/ready")
def ready(request: Request):
    checks = {"db": "ok", "redis": "skipped"}
    db_ok = True
    redis_ok = True

    try:
        with request.app.state.session_local() as db:
            db.execute(text("SELECT 1"))
    except Exception as exc:
        log.warning("readiness_db_failed", error=str(exc))
        checks["db"] = "error"
        db_ok = False

    if settings.REDIS_URL:
        try:
            client = redis.from_url(settings.REDIS_URL, decode_responses=True)
            client.ping()
            checks["redis"] = "ok"
        except Exception as exc:
            log.warning("readiness_redis_failed", error=str(exc))
            checks["redis"] = "error"
            redis_ok = False

    if db_ok and redis_ok:
        return {"status": "ready", "checks": checks}
    return JSONResponse(status_code=503, content={"status": "not_ready", "checks": checks})


@app.get("/metrics")
def metrics():
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)


app.include_router(router)
app.include_router(employees_router)
app.include_router(mobile_router)
app.include_router(platform_router)
app.include_router(staffing_router)
