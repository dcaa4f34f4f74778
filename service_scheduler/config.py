import os

from dotenv import load_dotenv

load_dotenv()


def _get_int(name: str, default: int) -> int:
    raw = os.getenv(name, str(default)).strip()
    try:
        return int(raw)
    except Exception:
        return int(default)


def _get_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name, "1" if default else "0").strip().lower()
    if raw in {"1", "true", "yes", "on"}:
        return True
    if raw in {"0", "false", "no", "off"}:
        return False
    return bool(default)


def _get_csv(name: str, default: str) -> set[str]:
    raw = os.getenv(name, default)
    return {part.strip().lower() for part in raw.split(",") if part.strip()}


class Settings:
    DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./service_scheduler.db")
    DB_AUTO_CREATE_ALL = _get_bool("DB_AUTO_CREATE_ALL", False)
    SQLITE_BUSY_TIMEOUT_SECONDS = _get_int("SQLITE_BUSY_TIMEOUT_SECONDS", 30)
    REDIS_URL = os.getenv("REDIS_URL", "").strip()
    DEFAULT_TENANT_SLUG = os.getenv("DEFAULT_TENANT_SLUG", "default").strip().lower()

    AUTH_SECRET_KEY = os.getenv("AUTH_SECRET_KEY", "change-this-in-prod").strip()
    AUTH_ALGORITHM = os.getenv("AUTH_ALGORITHM", "HS256").strip()
    AUTH_ISSUER = os.getenv("AUTH_ISSUER", "service-scheduler-auth").strip()
    AUTH_AUDIENCE = os.getenv("AUTH_AUDIENCE", "service-scheduler-api").strip()
    AUTH_ACCESS_TOKEN_MINUTES = _get_int("AUTH_ACCESS_TOKEN_MINUTES", 60)
    ADMIN_ROLES = _get_csv("ADMIN_ROLES", "admin,owner")

    NOTIFY_TRANSPORT = os.getenv("NOTIFY_TRANSPORT", "log").strip().lower()
    NOTIFY_WEBHOOK_URL = os.getenv("NOTIFY_WEBHOOK_URL", "").strip()
    NOTIFY_WEBHOOK_SECRET = os.getenv("NOTIFY_WEBHOOK_SECRET", "").strip()
    NOTIFY_WEBHOOK_TIMEOUT_SECONDS = _get_int("NOTIFY_WEBHOOK_TIMEOUT_SECONDS", 10)
    NOTIFY_STREAM = os.getenv("NOTIFY_STREAM", "service_scheduler.notifications").strip()

    OUTBOX_MAX_RETRIES = _get_int("OUTBOX_MAX_RETRIES", 8)
    OUTBOX_BATCH_SIZE = _get_int("OUTBOX_BATCH_SIZE", 50)
    OUTBOX_POLL_INTERVAL_SECONDS = _get_int("OUTBOX_POLL_INTERVAL_SECONDS", 5)
    OUTBOX_RETRY_BASE_SECONDS = _get_int("OUTBOX_RETRY_BASE_SECONDS", 5)
    OUTBOX_RETRY_MAX_SECONDS = _get_int("OUTBOX_RETRY_MAX_SECONDS", 900)
    OUTBOX_CLAIM_TIMEOUT_SECONDS = _get_int("OUTBOX_CLAIM_TIMEOUT_SECONDS", 300)

    MAINTENANCE_MODE = _get_bool("MAINTENANCE_MODE", False)
    MAINTENANCE_RETRY_AFTER_SECONDS = _get_int("MAINTENANCE_RETRY_AFTER_SECONDS", 120)
    SECURITY_HEADERS_ENABLED = _get_bool("SECURITY_HEADERS_ENABLED", True)
    LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").strip().upper()


settings = Settings()
