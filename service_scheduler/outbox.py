import json
from datetime import timedelta

from sqlalchemy import and_, func, or_, select
from sqlalchemy.orm import Session

from .config import settings
from .models import OutboxEvent, utc_now_naive
from .notifications import NotificationEmitter, build_emitter
from .observability import NOTIFICATION_DELIVERIES, get_logger

log = get_logger("service_scheduler.outbox")

OUTBOX_STATUSES = ("pending", "dispatching", "published", "failed", "dead_letter")


def _json_dumps(payload: dict | None) -> str:
    return json.dumps(payload or {}, ensure_ascii=False, separators=(",", ":"), sort_keys=True, default=str)


def enqueue_outbox_event(
    db: Session,
    *,
    topic: str,
    payload: dict,
    tenant_id: int | None = None,
    key: str | None = None,
) -> OutboxEvent:
    """Stage an event in the caller's transaction. The caller commits."""
    row = OutboxEvent(
        tenant_id=tenant_id,
        topic=(topic or "").strip(),
        key=(key or "").strip() or None,
        payload_json=_json_dumps(payload),
        status="pending",
        retries=0,
        created_at=utc_now_naive(),
        updated_at=utc_now_naive(),
    )
    db.add(row)
    return row


def list_outbox_events(
    db: Session,
    *,
    tenant_id: int | None = None,
    status: str | None = None,
    topic: str | None = None,
    limit: int = 200,
) -> list[OutboxEvent]:
    q = db.query(OutboxEvent)
    if tenant_id is not None:
        q = q.filter(OutboxEvent.tenant_id == tenant_id)
    if status:
        q = q.filter(OutboxEvent.status == status.strip().lower())
    if topic:
        q = q.filter(OutboxEvent.topic == topic.strip())
    return (
        q.order_by(OutboxEvent.created_at.asc(), OutboxEvent.id.asc())
        .limit(max(1, min(limit, 1000)))
        .all()
    )


def _message_for(row: OutboxEvent) -> dict:
    return {
        "event_id": row.id,
        "topic": row.topic,
        "tenant_id": row.tenant_id,
        "key": row.key,
        "payload": json.loads(row.payload_json or "{}"),
    }


def retry_delay_seconds(retries: int) -> int:
    """Exponential backoff after the ``retries``-th failed delivery, capped."""
    base = max(1, int(settings.OUTBOX_RETRY_BASE_SECONDS))
    cap = max(base, int(settings.OUTBOX_RETRY_MAX_SECONDS))
    return min(cap, base * 2 ** max(0, int(retries) - 1))


def claim_outbox_events(
    db: Session,
    *,
    tenant_id: int | None = None,
    batch_size: int | None = None,
) -> list[dict]:
    """Mark a batch of due events ``dispatching`` and commit.

    Returns the messages to deliver. A row stuck in ``dispatching`` (worker
    died mid-delivery) becomes claimable again after
    ``OUTBOX_CLAIM_TIMEOUT_SECONDS``, so delivery is at-least-once.
    """
    now = utc_now_naive()
    limit = max(1, min(int(batch_size or settings.OUTBOX_BATCH_SIZE), 500))
    stale_before = now - timedelta(seconds=max(1, int(settings.OUTBOX_CLAIM_TIMEOUT_SECONDS)))
    due = or_(
        and_(
            OutboxEvent.status.in_(["pending", "failed"]),
            or_(OutboxEvent.next_attempt_at.is_(None), OutboxEvent.next_attempt_at <= now),
        ),
        and_(OutboxEvent.status == "dispatching", OutboxEvent.claimed_at < stale_before),
    )
    stmt = select(OutboxEvent).where(due)
    if tenant_id is not None:
        stmt = stmt.where(OutboxEvent.tenant_id == tenant_id)
    rows = (
        db.execute(
            stmt.order_by(OutboxEvent.created_at.asc(), OutboxEvent.id.asc())
            .limit(limit)
            .with_for_update(skip_locked=True)
        )
        .scalars()
        .all()
    )
    messages = []
    for row in rows:
        row.status = "dispatching"
        row.claimed_at = now
        row.updated_at = now
        messages.append(_message_for(row))
    db.commit()
    return messages


def record_delivery_outcomes(db: Session, outcomes: list[tuple[int, str | None]]) -> dict:
    """Write back ``(event_id, error)`` pairs; ``error`` is None on success."""
    published = 0
    failed = 0
    dead_lettered = 0
    max_retries = max(1, int(settings.OUTBOX_MAX_RETRIES))
    now = utc_now_naive()
    for event_id, error in outcomes:
        row = db.get(OutboxEvent, event_id)
        if row is None or row.status != "dispatching":
            continue
        row.updated_at = now
        if error is None:
            row.status = "published"
            row.published_at = now
            row.next_attempt_at = None
            row.last_error = None
            published += 1
            NOTIFICATION_DELIVERIES.labels(outcome="published").inc()
            continue
        row.retries = int(row.retries or 0) + 1
        row.last_error = error[:500]
        failed += 1
        if int(row.retries) >= max_retries:
            row.status = "dead_letter"
            row.next_attempt_at = None
            dead_lettered += 1
            NOTIFICATION_DELIVERIES.labels(outcome="dead_letter").inc()
        else:
            row.status = "failed"
            row.next_attempt_at = now + timedelta(seconds=retry_delay_seconds(row.retries))
            NOTIFICATION_DELIVERIES.labels(outcome="failed").inc()
        log.warning(
            "notification_delivery_failed",
            outbox_id=row.id,
            topic=row.topic,
            retries=row.retries,
            status=row.status,
            next_attempt_at=row.next_attempt_at,
            error=row.last_error,
        )
    db.commit()
    return {"published": published, "failed": failed, "dead_lettered": dead_lettered}


def dispatch_outbox_events(
    db: Session,
    *,
    tenant_id: int | None = None,
    batch_size: int | None = None,
    emitter: NotificationEmitter | None = None,
) -> dict:
    """Deliver due pending and failed events.

    Claiming and recording are two short transactions; delivery runs between
    them with no transaction open, so a slow backend never holds the database
    write lock. A failed delivery is rescheduled with backoff and dead-lettered
    after ``OUTBOX_MAX_RETRIES``. Delivery errors never propagate to the caller.
    """
    messages = claim_outbox_events(db, tenant_id=tenant_id, batch_size=batch_size)
    if not messages:
        return {"processed": 0, "published": 0, "failed": 0, "dead_lettered": 0}

    owns_emitter = emitter is None
    active_emitter = emitter or build_emitter()
    outcomes: list[tuple[int, str | None]] = []
    try:
        for message in messages:
            try:
                active_emitter.deliver(message)
                outcomes.append((message["event_id"], None))
            except Exception as exc:
                outcomes.append((message["event_id"], str(exc) or exc.__class__.__name__))
    finally:
        if owns_emitter:
            active_emitter.close()
    return {"processed": len(messages), **record_delivery_outcomes(db, outcomes)}


def retry_outbox_events(
    db: Session,
    *,
    tenant_id: int | None = None,
    include_dead_letter: bool = False,
    limit: int = 100,
) -> dict:
    statuses = {"failed"}
    if include_dead_letter:
        statuses.add("dead_letter")
    q = db.query(OutboxEvent).filter(OutboxEvent.status.in_(sorted(statuses)))
    if tenant_id is not None:
        q = q.filter(OutboxEvent.tenant_id == tenant_id)
    rows = (
        q.order_by(OutboxEvent.updated_at.asc(), OutboxEvent.id.asc())
        .limit(max(1, min(limit, 1000)))
        .all()
    )
    for row in rows:
        if row.status == "dead_letter":
            row.retries = 0
        row.status = "pending"
        row.next_attempt_at = None
        row.last_error = None
        row.updated_at = utc_now_naive()
    db.commit()
    return {"retried": len(rows)}


def cleanup_outbox_events(
    db: Session,
    *,
    tenant_id: int | None = None,
    older_than_hours: int = 24 * 7,
) -> dict:
    cutoff = utc_now_naive() - timedelta(hours=max(1, int(older_than_hours)))
    q = db.query(OutboxEvent).filter(
        OutboxEvent.status.in_(["published", "dead_letter"]),
        OutboxEvent.updated_at < cutoff,
    )
    if tenant_id is not None:
        q = q.filter(OutboxEvent.tenant_id == tenant_id)
    deleted = q.delete(synchronize_session=False)
    db.commit()
    return {
        "tenant_id": (int(tenant_id) if tenant_id is not None else None),
        "deleted_events": int(deleted or 0),
        "cutoff": cutoff,
    }


def get_outbox_health(db: Session, *, tenant_id: int | None = None) -> dict:
    stmt = select(OutboxEvent.status, func.count(OutboxEvent.id)).group_by(OutboxEvent.status)
    oldest_stmt = select(func.min(OutboxEvent.created_at)).where(OutboxEvent.status == "pending")
    if tenant_id is not None:
        stmt = stmt.where(OutboxEvent.tenant_id == tenant_id)
        oldest_stmt = oldest_stmt.where(OutboxEvent.tenant_id == tenant_id)
    counts = {status: 0 for status in OUTBOX_STATUSES}
    for status, count in db.execute(stmt).all():
        counts[status] = int(count)
    oldest_pending = db.execute(oldest_stmt).scalar()
    now = utc_now_naive()
    oldest_pending_age = int((now - oldest_pending).total_seconds()) if oldest_pending else 0
    return {
        "tenant_id": (int(tenant_id) if tenant_id is not None else None),
        "checked_at": now,
        "pending_count": counts["pending"],
        "dispatching_count": counts["dispatching"],
        "failed_count": counts["failed"],
        "dead_letter_count": counts["dead_letter"],
        "published_count": counts["published"],
        "oldest_pending_age_seconds": max(0, oldest_pending_age),
    }
