from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy import select
from sqlalchemy.orm import Session

from .api import to_assignment_out, to_booking_out, to_mutation_out
from .assignments import list_by_employee
from .authn import AuthIdentity
from .db import get_db
from .deps import get_current_tenant, require_identity
from .errors import ValidationFailed
from .identity import Actor, build_actor, resolve_employee_id
from .models import Assignment, Tenant
from .progress import progress_for_bookings
from .schemas import (
    AssignmentMutationOut,
    JobPickupIn,
    MobileAssignmentOut,
    MobileAssignmentsPage,
    OtherStaffOut,
)
from .staffing import pickup_job
from .transitions import ACTIVE_STATUSES, ASSIGNMENT_STATUSES

router = APIRouter(prefix="/api/mobile/staff", tags=["mobile"])


def _parse_status_filter(raw: str | None) -> list[str] | None:
    if not raw:
        return None
    statuses = [part.strip().lower() for part in raw.split(",") if part.strip()]
    unknown = [s for s in statuses if s not in ASSIGNMENT_STATUSES]
    if unknown:
        raise ValidationFailed(f"Unknown assignment status: {', '.join(unknown)}")
    return statuses


@router.get("/assignments", response_model=MobileAssignmentsPage)
def get_my_assignments(
    status: Optional[str] = Query(default=None),
    day: Optional[date] = Query(default=None, alias="date"),
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    db: Session = Depends(get_db),
    tenant: Tenant = Depends(get_current_tenant),
    identity: AuthIdentity = Depends(require_identity),
):
    employee_id = resolve_employee_id(db, tenant.id, identity.auth_identity_id)
    rows = list_by_employee(
        db,
        tenant.id,
        employee_id,
        statuses=_parse_status_filter(status),
        scheduled_date=day,
        limit=limit,
        offset=offset,
    )
    bookings = {a.booking_id: a.booking for a in rows}
    progress = progress_for_bookings(db, list(bookings.values()))

    others: dict[int, list[Assignment]] = {booking_id: [] for booking_id in bookings}
    if bookings:
        for other in db.execute(
            select(Assignment)
            .where(
                Assignment.booking_id.in_(list(bookings)),
                Assignment.employee_id != str(employee_id),
                Assignment.status.in_(sorted(ACTIVE_STATUSES)),
            )
            .order_by(Assignment.id.asc())
        ).scalars():
            others[other.booking_id].append(other)

    items = []
    for a in rows:
        booking = bookings[a.booking_id]
        items.append(
            MobileAssignmentOut(
                assignment=to_assignment_out(a),
                booking=to_booking_out(booking),
                staffing_status=progress[booking.id].band,
                staff_required=booking.staff_required,
                staff_fulfilled=booking.staff_fulfilled,
                other_staff=[
                    OtherStaffOut(
                        assignment_id=o.id,
                        employee_id=o.employee_id,
                        employee_name=(o.employee.name if o.employee is not None else None),
                        role=o.role,
                        status=o.status,
                    )
                    for o in others[booking.id]
                ],
            )
        )
    return MobileAssignmentsPage(items=items, limit=limit, offset=offset, count=len(items))


@router.post("/jobs/pickup", response_model=AssignmentMutationOut)
def post_job_pickup(
    payload: JobPickupIn,
    db: Session = Depends(get_db),
    tenant: Tenant = Depends(get_current_tenant),
    identity: AuthIdentity = Depends(require_identity),
):
    actor: Actor = build_actor(db, tenant.id, identity)
    result = pickup_job(
        db,
        tenant.id,
        actor=actor,
        booking_id=payload.booking_id,
        assignment_id=payload.assignment_id,
        notes=payload.notes,
    )
    return to_mutation_out(result)
