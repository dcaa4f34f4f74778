from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from .db import get_db
from .deps import get_current_tenant, require_admin
from .identity import Actor
from .integrity import build_integrity_report, repair_auth_identity_references, repair_staff_fulfilled_drift
from .models import Tenant
from .outbox import (
    cleanup_outbox_events,
    dispatch_outbox_events,
    get_outbox_health,
    list_outbox_events,
    retry_outbox_events,
)
from .schemas import (
    OutboxCleanupOut,
    OutboxDispatchOut,
    OutboxEventOut,
    OutboxHealthOut,
    OutboxRetryOut,
)

router = APIRouter(prefix="/api/platform", tags=["platform"])
staffing_router = APIRouter(prefix="/api/staffing", tags=["staffing"])


@router.get("/outbox/events", response_model=list[OutboxEventOut])
def get_outbox_events(
    status: Optional[str] = Query(default=None),
    topic: Optional[str] = Query(default=None),
    limit: int = Query(default=200, ge=1, le=1000),
    db: Session = Depends(get_db),
    tenant: Tenant = Depends(get_current_tenant),
    actor: Actor = Depends(require_admin),
):
    rows = list_outbox_events(db=db, tenant_id=tenant.id, status=status, topic=topic, limit=limit)
    return [
        OutboxEventOut(
            id=row.id,
            tenant_id=row.tenant_id,
            topic=row.topic,
            key=row.key,
            payload_json=row.payload_json,
            status=row.status,
            retries=row.retries,
            last_error=row.last_error,
            created_at=row.created_at,
            updated_at=row.updated_at,
            published_at=row.published_at,
            next_attempt_at=row.next_attempt_at,
        )
        for row in rows
    ]


@router.post("/outbox/dispatch", response_model=OutboxDispatchOut)
def post_outbox_dispatch(
    batch_size: int = Query(default=50, ge=1, le=500),
    db: Session = Depends(get_db),
    tenant: Tenant = Depends(get_current_tenant),
    actor: Actor = Depends(require_admin),
):
    return OutboxDispatchOut(**dispatch_outbox_events(db=db, tenant_id=tenant.id, batch_size=batch_size))


@router.post("/outbox/retry-failed", response_model=OutboxRetryOut)
def post_outbox_retry_failed(
    include_dead_letter: bool = Query(default=False),
    limit: int = Query(default=100, ge=1, le=1000),
    db: Session = Depends(get_db),
    tenant: Tenant = Depends(get_current_tenant),
    actor: Actor = Depends(require_admin),
):
    return OutboxRetryOut(
        **retry_outbox_events(
            db=db, tenant_id=tenant.id, include_dead_letter=include_dead_letter, limit=limit
        )
    )


@router.get("/outbox/health", response_model=OutboxHealthOut)
def get_outbox_health_endpoint(
    db: Session = Depends(get_db),
    tenant: Tenant = Depends(get_current_tenant),
    actor: Actor = Depends(require_admin),
):
    return OutboxHealthOut(**get_outbox_health(db=db, tenant_id=tenant.id))


@router.post("/outbox/cleanup", response_model=OutboxCleanupOut)
def post_outbox_cleanup(
    older_than_hours: int = Query(default=24 * 7, ge=1, le=24 * 365),
    db: Session = Depends(get_db),
    tenant: Tenant = Depends(get_current_tenant),
    actor: Actor = Depends(require_admin),
):
    return OutboxCleanupOut(
        **cleanup_outbox_events(db=db, tenant_id=tenant.id, older_than_hours=older_than_hours)
    )


@staffing_router.get("/integrity", response_model=dict)
def get_staffing_integrity(
    db: Session = Depends(get_db),
    tenant: Tenant = Depends(get_current_tenant),
    actor: Actor = Depends(require_admin),
):
    return build_integrity_report(db, tenant.id)


@staffing_router.post("/integrity/repair", response_model=dict)
def post_staffing_integrity_repair(
    db: Session = Depends(get_db),
    tenant: Tenant = Depends(get_current_tenant),
    actor: Actor = Depends(require_admin),
):
    remapped = repair_auth_identity_references(db, tenant.id)
    drift = repair_staff_fulfilled_drift(db, tenant.id)
    return {**remapped, **drift, "report": build_integrity_report(db, tenant.id)}
