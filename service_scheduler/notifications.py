"""Delivery transports for staffing notifications.

The outbox dispatcher hands each pending event to an emitter. An emitter
raises on failure; the dispatcher records the error and retries later.
"""

import hashlib
import hmac
import json

import httpx
import redis

from .config import settings
from .observability import get_logger

log = get_logger("service_scheduler.notifications")


def _json_dumps(payload: dict) -> str:
    return json.dumps(payload, ensure_ascii=False, separators=(",", ":"), sort_keys=True, default=str)


class NotificationEmitter:
    name = "base"

    def deliver(self, message: dict) -> None:
        raise NotImplementedError

    def close(self) -> None:
        return None


class LogEmitter(NotificationEmitter):
    """Writes the notification to the structured log. Default for development."""

    name = "log"

    def deliver(self, message: dict) -> None:
        log.info(
            "notification_emitted",
            event_id=message.get("event_id"),
            topic=message.get("topic"),
            audience=(message.get("payload") or {}).get("audience"),
        )


class WebhookEmitter(NotificationEmitter):
    name = "webhook"

    def __init__(
        self,
        url: str,
        *,
        secret: str = "",
        timeout_seconds: int = 10,
        client: httpx.Client | None = None,
    ):
        if not url:
            raise ValueError("NOTIFY_WEBHOOK_URL is required for the webhook transport")
        self.url = url
        self.secret = secret
        self._owns_client = client is None
        self.client = client or httpx.Client(timeout=max(1, int(timeout_seconds)))

    def _signature(self, body: bytes) -> str:
        return hmac.new(self.secret.encode("utf-8"), body, hashlib.sha256).hexdigest()

    def deliver(self, message: dict) -> None:
        body = _json_dumps(message).encode("utf-8")
        headers = {"Content-Type": "application/json", "X-Event-Topic": str(message.get("topic") or "")}
        if self.secret:
            headers["X-Signature-SHA256"] = self._signature(body)
        response = self.client.post(self.url, content=body, headers=headers)
        response.raise_for_status()

    def close(self) -> None:
        if self._owns_client:
            self.client.close()


class RedisStreamEmitter(NotificationEmitter):
    name = "redis"

    def __init__(self, redis_url: str, *, stream: str, client=None):
        if client is None and not redis_url:
            raise ValueError("REDIS_URL is required for the redis transport")
        self.stream = stream
        self.client = client or redis.from_url(redis_url, decode_responses=True)

    def deliver(self, message: dict) -> None:
        fields = {
            "event_id": str(message.get("event_id") or ""),
            "topic": str(message.get("topic") or ""),
            "tenant_id": str(message.get("tenant_id") or ""),
            "key": str(message.get("key") or ""),
            "payload_json": _json_dumps(message.get("payload") or {}),
        }
        self.client.xadd(self.stream, fields=fields, maxlen=50000, approximate=True)


def build_emitter(transport: str | None = None) -> NotificationEmitter:
    kind = (transport or settings.NOTIFY_TRANSPORT or "log").strip().lower()
    if kind == "log":
        return LogEmitter()
    if kind == "webhook":
        return WebhookEmitter(
            settings.NOTIFY_WEBHOOK_URL,
            secret=settings.NOTIFY_WEBHOOK_SECRET,
            timeout_seconds=settings.NOTIFY_WEBHOOK_TIMEOUT_SECONDS,
        )
    if kind == "redis":
        return RedisStreamEmitter(settings.REDIS_URL, stream=settings.NOTIFY_STREAM)
    raise ValueError(f"Unknown notification transport: {kind}")
