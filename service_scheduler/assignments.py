"""Persistence for booking staff assignments.

None of these helpers commit. Callers in ``staffing`` own the transaction and
lock the booking row before any recount-then-insert.
"""

from datetime import date

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from .errors import (
    BookingClosed,
    CapacityExceeded,
    DuplicateAssignment,
    EmployeeInactive,
    NotFound,
    translate_integrity_error,
)
from .identity import get_employee
from .ids import EmployeeId
from .models import Assignment, AssignmentStatusEvent, Booking, utc_now_naive
from .transitions import ACTIVE_STATUSES

CLOSED_BOOKING_STATUSES = frozenset({"cancelled", "completed"})


def get_booking(db: Session, tenant_id: int, booking_id: int, *, for_update: bool = False) -> Booking:
    stmt = select(Booking).where(Booking.tenant_id == tenant_id, Booking.id == booking_id)
    if for_update:
        stmt = stmt.with_for_update()
    booking = db.execute(stmt).scalar_one_or_none()
    if booking is None:
        raise NotFound("Booking not found")
    return booking


def lock_booking(db: Session, tenant_id: int, booking_id: int) -> Booking:
    return get_booking(db, tenant_id, booking_id, for_update=True)


def get_assignment(
    db: Session, tenant_id: int, assignment_id: int, *, booking_id: int | None = None
) -> Assignment:
    stmt = select(Assignment).where(Assignment.tenant_id == tenant_id, Assignment.id == assignment_id)
    if booking_id is not None:
        stmt = stmt.where(Assignment.booking_id == booking_id)
    assignment = db.execute(stmt).scalar_one_or_none()
    if assignment is None:
        raise NotFound("Assignment not found")
    return assignment


def list_by_booking(db: Session, tenant_id: int, booking_id: int) -> list[Assignment]:
    return (
        db.execute(
            select(Assignment)
            .where(Assignment.tenant_id == tenant_id, Assignment.booking_id == booking_id)
            .order_by(Assignment.assigned_at.asc(), Assignment.id.asc())
        )
        .scalars()
        .all()
    )


def list_by_employee(
    db: Session,
    tenant_id: int,
    employee_id: EmployeeId,
    *,
    statuses: list[str] | None = None,
    scheduled_date: date | None = None,
    limit: int = 50,
    offset: int = 0,
) -> list[Assignment]:
    stmt = (
        select(Assignment)
        .join(Booking, Booking.id == Assignment.booking_id)
        .where(Assignment.tenant_id == tenant_id, Assignment.employee_id == str(employee_id))
    )
    if statuses:
        stmt = stmt.where(Assignment.status.in_(statuses))
    if scheduled_date is not None:
        stmt = stmt.where(Booking.scheduled_date == scheduled_date)
    stmt = (
        stmt.order_by(Booking.scheduled_date.asc(), Booking.scheduled_time.asc(), Assignment.id.asc())
        .offset(max(0, int(offset)))
        .limit(max(1, min(int(limit), 200)))
    )
    return db.execute(stmt).scalars().all()


def find_active(db: Session, booking_id: int, employee_id: EmployeeId) -> Assignment | None:
    return db.execute(
        select(Assignment).where(
            Assignment.booking_id == booking_id,
            Assignment.employee_id == str(employee_id),
            Assignment.status.in_(sorted(ACTIVE_STATUSES)),
        )
    ).scalar_one_or_none()


def count_active(db: Session, booking_id: int) -> int:
    return int(
        db.execute(
            select(func.count(Assignment.id)).where(
                Assignment.booking_id == booking_id,
                Assignment.status.in_(sorted(ACTIVE_STATUSES)),
            )
        ).scalar()
        or 0
    )


def insert_assignment(
    db: Session,
    *,
    booking: Booking,
    employee_id: EmployeeId,
    role: str,
    notes: str | None = None,
    assigned_by: str | None = None,
) -> Assignment:
    """Insert an ``assigned`` row; ``booking`` must already be locked.

    Duplicate is checked before capacity so re-adding a staffed employee to a
    full booking reports the duplicate. The partial unique index backs the
    duplicate check for writers this lock does not cover.
    """
    db.flush()
    employee = get_employee(db, booking.tenant_id, employee_id)
    if not bool(employee.is_active):
        raise EmployeeInactive("Cannot assign a deactivated employee")
    if booking.status in CLOSED_BOOKING_STATUSES:
        raise BookingClosed(f"Booking is {booking.status}")
    if find_active(db, booking.id, EmployeeId(employee.id)) is not None:
        raise DuplicateAssignment()
    assigned = count_active(db, booking.id)
    if assigned >= int(booking.staff_required):
        raise CapacityExceeded(required=int(booking.staff_required), assigned=assigned)

    now = utc_now_naive()
    assignment = Assignment(
        tenant_id=booking.tenant_id,
        booking_id=booking.id,
        employee_id=employee.id,
        role=(role or "assistant").strip().lower(),
        status="assigned",
        notes=notes,
        assigned_by=assigned_by,
        assigned_at=now,
        updated_at=now,
    )
    db.add(assignment)
    try:
        db.flush()
    except IntegrityError as exc:
        db.rollback()
        raise translate_integrity_error(exc) from exc
    return assignment


def record_status_event(
    db: Session,
    assignment: Assignment,
    *,
    from_status: str | None,
    to_status: str,
    actor: str | None,
    note: str | None = None,
) -> AssignmentStatusEvent:
    event = AssignmentStatusEvent(
        tenant_id=assignment.tenant_id,
        assignment_id=assignment.id,
        from_status=from_status,
        to_status=to_status,
        actor=actor,
        note=(note or "")[:500] or None,
        created_at=utc_now_naive(),
    )
    db.add(event)
    return event


def list_status_events(db: Session, tenant_id: int, assignment_id: int) -> list[AssignmentStatusEvent]:
    return (
        db.execute(
            select(AssignmentStatusEvent)
            .where(
                AssignmentStatusEvent.tenant_id == tenant_id,
                AssignmentStatusEvent.assignment_id == assignment_id,
            )
            .order_by(AssignmentStatusEvent.created_at.asc(), AssignmentStatusEvent.id.asc())
        )
        .scalars()
        .all()
    )
