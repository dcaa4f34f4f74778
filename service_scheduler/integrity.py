"""Consistency checks for staffing data.

Legacy rows were written with the caller's auth identity in
``booking_staff_assignments.employee_id``. The report finds those rows and the
other drift the write path now prevents; the repair helpers fix what can be
fixed mechanically.
"""

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from .models import Assignment, AuthUser, Booking, Employee, utc_now_naive
from .observability import get_logger
from .progress import progress_for_bookings, refresh_staff_fulfilled
from .transitions import ACTIVE_STATUSES

log = get_logger("service_scheduler.integrity")


def _orphan_assignments(db: Session, tenant_id: int) -> list[Assignment]:
    return (
        db.execute(
            select(Assignment)
            .outerjoin(Employee, Employee.id == Assignment.employee_id)
            .where(Assignment.tenant_id == tenant_id, Employee.id.is_(None))
            .order_by(Assignment.id.asc())
        )
        .scalars()
        .all()
    )


def build_integrity_report(db: Session, tenant_id: int) -> dict:
    orphans = _orphan_assignments(db, tenant_id)
    auth_ids: set[str] = set()
    if orphans:
        auth_ids = set(
            db.execute(
                select(AuthUser.id).where(AuthUser.id.in_([a.employee_id for a in orphans]))
            ).scalars()
        )

    employees_without_auth = (
        db.execute(
            select(Employee.id)
            .where(Employee.tenant_id == tenant_id, Employee.auth_identity_id.is_(None))
            .order_by(Employee.id.asc())
        )
        .scalars()
        .all()
    )

    duplicate_pairs = db.execute(
        select(Assignment.booking_id, Assignment.employee_id, func.count(Assignment.id))
        .where(Assignment.tenant_id == tenant_id, Assignment.status.in_(sorted(ACTIVE_STATUSES)))
        .group_by(Assignment.booking_id, Assignment.employee_id)
        .having(func.count(Assignment.id) > 1)
    ).all()

    bookings = db.execute(select(Booking).where(Booking.tenant_id == tenant_id)).scalars().all()
    progress = progress_for_bookings(db, bookings)
    drift = []
    over_capacity = []
    for booking in bookings:
        p = progress[int(booking.id)]
        if int(booking.staff_fulfilled or 0) != p.accepted:
            drift.append(
                {"booking_id": booking.id, "staff_fulfilled": booking.staff_fulfilled, "accepted": p.accepted}
            )
        if p.assigned > p.required:
            over_capacity.append({"booking_id": booking.id, "required": p.required, "assigned": p.assigned})

    report = {
        "tenant_id": tenant_id,
        "checked_at": utc_now_naive(),
        "orphan_assignments": [
            {"assignment_id": a.id, "booking_id": a.booking_id, "employee_id": a.employee_id, "status": a.status}
            for a in orphans
        ],
        "auth_identity_assignments": [
            {"assignment_id": a.id, "booking_id": a.booking_id, "auth_identity_id": a.employee_id}
            for a in orphans
            if a.employee_id in auth_ids
        ],
        "employees_without_auth_identity": list(employees_without_auth),
        "fulfilled_drift": drift,
        "duplicate_active_pairs": [
            {"booking_id": booking_id, "employee_id": employee_id, "count": int(n)}
            for booking_id, employee_id, n in duplicate_pairs
        ],
        "over_capacity": over_capacity,
    }
    report["ok"] = not any(
        report[k]
        for k in (
            "orphan_assignments",
            "fulfilled_drift",
            "duplicate_active_pairs",
            "over_capacity",
        )
    )
    return report


def repair_auth_identity_references(db: Session, tenant_id: int) -> dict:
    """Point legacy assignments at the employee that owns the auth identity.

    A row that would collide with an existing active assignment for the same
    pair is cancelled instead.
    """
    remapped = 0
    cancelled = 0
    touched_bookings: set[int] = set()
    for assignment in _orphan_assignments(db, tenant_id):
        employee = db.execute(
            select(Employee).where(
                Employee.tenant_id == tenant_id,
                Employee.auth_identity_id == assignment.employee_id,
            )
        ).scalar_one_or_none()
        if employee is None:
            continue
        clash = db.execute(
            select(Assignment.id).where(
                Assignment.booking_id == assignment.booking_id,
                Assignment.employee_id == employee.id,
                Assignment.status.in_(sorted(ACTIVE_STATUSES)),
                Assignment.id != assignment.id,
            )
        ).first()
        now = utc_now_naive()
        if clash is not None and assignment.status in ACTIVE_STATUSES:
            assignment.status = "cancelled"
            assignment.cancelled_at = now
            cancelled += 1
        assignment.employee_id = employee.id
        assignment.updated_at = now
        remapped += 1
        touched_bookings.add(int(assignment.booking_id))
        db.flush()

    for booking_id in sorted(touched_bookings):
        booking = db.get(Booking, booking_id)
        if booking is not None:
            refresh_staff_fulfilled(db, booking)
    db.commit()
    log.info("integrity_auth_identity_repair", tenant_id=tenant_id, remapped=remapped, cancelled=cancelled)
    return {"remapped": remapped, "cancelled": cancelled}


def repair_staff_fulfilled_drift(db: Session, tenant_id: int) -> dict:
    bookings = db.execute(select(Booking).where(Booking.tenant_id == tenant_id)).scalars().all()
    repaired = []
    for booking in bookings:
        before = int(booking.staff_fulfilled or 0)
        progress = refresh_staff_fulfilled(db, booking)
        if before != progress.accepted:
            repaired.append(booking.id)
    db.commit()
    log.info("integrity_fulfilled_repair", tenant_id=tenant_id, repaired=len(repaired))
    return {"repaired_bookings": repaired}
