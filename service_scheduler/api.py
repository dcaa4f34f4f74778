from datetime import date
from typing import List, Optional

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from .assignments import get_assignment, get_booking, list_by_booking, list_status_events
from .bookings import create_booking, list_bookings, update_booking
from .db import get_db
from .deps import get_current_actor, get_current_tenant, require_admin
from .identity import Actor
from .ids import EmployeeId
from .models import Assignment, Booking, Tenant
from .progress import StaffingProgress, compute_progress
from .schemas import (
    AssignmentCreate,
    AssignmentMutationOut,
    AssignmentOut,
    AssignmentReassign,
    AssignmentStatusEventOut,
    AssignmentUpdate,
    BookingCreate,
    BookingOut,
    BookingUpdate,
    StaffingProgressOut,
)
from .staffing import (
    TransitionResult,
    create_assignment,
    reassign_assignment,
    remove_assignment,
    transition_assignment,
)

router = APIRouter(prefix="/api", tags=["staffing"])


def to_booking_out(b: Booking) -> BookingOut:
    return BookingOut(
        id=b.id,
        customer_name=b.customer_name,
        service_name=b.service_name,
        service_address=b.service_address,
        scheduled_date=b.scheduled_date,
        scheduled_time=b.scheduled_time,
        status=b.status,
        staff_required=b.staff_required,
        staff_fulfilled=b.staff_fulfilled,
        notes=b.notes,
        created_at=b.created_at,
        updated_at=b.updated_at,
    )


def to_assignment_out(a: Assignment) -> AssignmentOut:
    return AssignmentOut(
        id=a.id,
        booking_id=a.booking_id,
        employee_id=a.employee_id,
        employee_name=(a.employee.name if a.employee is not None else None),
        role=a.role,
        status=a.status,
        notes=a.notes,
        assigned_by=a.assigned_by,
        assigned_at=a.assigned_at,
        accepted_at=a.accepted_at,
        declined_at=a.declined_at,
        completed_at=a.completed_at,
        cancelled_at=a.cancelled_at,
    )


def to_progress_out(progress: StaffingProgress, staff_fulfilled: int) -> StaffingProgressOut:
    return StaffingProgressOut(**progress.as_dict(), staff_fulfilled=int(staff_fulfilled))


def to_mutation_out(result: TransitionResult) -> AssignmentMutationOut:
    return AssignmentMutationOut(
        assignment=to_assignment_out(result.assignment),
        progress=to_progress_out(result.progress, result.assignment.booking.staff_fulfilled),
        changed=result.changed,
    )


@router.post("/bookings", response_model=BookingOut, status_code=status.HTTP_201_CREATED)
def add_booking(
    payload: BookingCreate,
    db: Session = Depends(get_db),
    tenant: Tenant = Depends(get_current_tenant),
    actor: Actor = Depends(require_admin),
):
    booking = create_booking(
        db,
        tenant.id,
        actor=actor,
        customer_name=payload.customer_name,
        service_name=payload.service_name,
        service_address=payload.service_address,
        scheduled_date=payload.scheduled_date,
        scheduled_time=payload.scheduled_time,
        staff_required=payload.staff_required,
        notes=payload.notes,
    )
    return to_booking_out(booking)


@router.get("/bookings", response_model=List[BookingOut])
def get_bookings(
    status_filter: Optional[str] = Query(default=None, alias="status"),
    date_from: Optional[date] = Query(default=None),
    date_to: Optional[date] = Query(default=None),
    limit: int = Query(default=100, ge=1, le=500),
    offset: int = Query(default=0, ge=0),
    db: Session = Depends(get_db),
    tenant: Tenant = Depends(get_current_tenant),
    actor: Actor = Depends(get_current_actor),
):
    rows = list_bookings(
        db,
        tenant.id,
        status=status_filter,
        date_from=date_from,
        date_to=date_to,
        limit=limit,
        offset=offset,
    )
    return [to_booking_out(b) for b in rows]


@router.get("/bookings/{booking_id}", response_model=BookingOut)
def get_booking_detail(
    booking_id: int,
    db: Session = Depends(get_db),
    tenant: Tenant = Depends(get_current_tenant),
    actor: Actor = Depends(get_current_actor),
):
    return to_booking_out(get_booking(db, tenant.id, booking_id))


@router.patch("/bookings/{booking_id}", response_model=BookingOut)
def patch_booking(
    booking_id: int,
    payload: BookingUpdate,
    db: Session = Depends(get_db),
    tenant: Tenant = Depends(get_current_tenant),
    actor: Actor = Depends(require_admin),
):
    booking = update_booking(
        db,
        tenant.id,
        booking_id,
        actor=actor,
        changes=payload.model_dump(exclude_unset=True),
    )
    return to_booking_out(booking)


@router.get("/bookings/{booking_id}/staff/summary", response_model=StaffingProgressOut)
def get_staff_summary(
    booking_id: int,
    db: Session = Depends(get_db),
    tenant: Tenant = Depends(get_current_tenant),
    actor: Actor = Depends(get_current_actor),
):
    booking = get_booking(db, tenant.id, booking_id)
    return to_progress_out(compute_progress(db, booking), booking.staff_fulfilled)


@router.get("/bookings/{booking_id}/staff", response_model=List[AssignmentOut])
def get_booking_staff(
    booking_id: int,
    db: Session = Depends(get_db),
    tenant: Tenant = Depends(get_current_tenant),
    actor: Actor = Depends(get_current_actor),
):
    booking = get_booking(db, tenant.id, booking_id)
    return [to_assignment_out(a) for a in list_by_booking(db, tenant.id, booking.id)]


@router.post(
    "/bookings/{booking_id}/staff",
    response_model=AssignmentMutationOut,
    status_code=status.HTTP_201_CREATED,
)
def add_booking_staff(
    booking_id: int,
    payload: AssignmentCreate,
    db: Session = Depends(get_db),
    tenant: Tenant = Depends(get_current_tenant),
    actor: Actor = Depends(get_current_actor),
):
    result = create_assignment(
        db,
        tenant.id,
        booking_id,
        actor=actor,
        employee_id=EmployeeId(payload.employee_id),
        role=payload.role,
        notes=payload.notes,
    )
    return to_mutation_out(result)


@router.put("/bookings/{booking_id}/staff/{assignment_id}", response_model=AssignmentMutationOut)
def update_booking_staff(
    booking_id: int,
    assignment_id: int,
    payload: AssignmentUpdate,
    db: Session = Depends(get_db),
    tenant: Tenant = Depends(get_current_tenant),
    actor: Actor = Depends(get_current_actor),
):
    result = transition_assignment(
        db,
        tenant.id,
        booking_id,
        assignment_id,
        actor=actor,
        status=payload.status,
        notes=payload.notes,
    )
    return to_mutation_out(result)


@router.delete("/bookings/{booking_id}/staff/{assignment_id}", response_model=AssignmentMutationOut)
def delete_booking_staff(
    booking_id: int,
    assignment_id: int,
    db: Session = Depends(get_db),
    tenant: Tenant = Depends(get_current_tenant),
    actor: Actor = Depends(get_current_actor),
):
    result = remove_assignment(db, tenant.id, booking_id, assignment_id, actor=actor)
    return to_mutation_out(result)


@router.post(
    "/bookings/{booking_id}/staff/{assignment_id}/reassign",
    response_model=AssignmentMutationOut,
    status_code=status.HTTP_201_CREATED,
)
def reassign_booking_staff(
    booking_id: int,
    assignment_id: int,
    payload: AssignmentReassign,
    db: Session = Depends(get_db),
    tenant: Tenant = Depends(get_current_tenant),
    actor: Actor = Depends(get_current_actor),
):
    result = reassign_assignment(
        db,
        tenant.id,
        booking_id,
        assignment_id,
        actor=actor,
        to_employee_id=EmployeeId(payload.to_employee_id),
        notes=payload.notes,
    )
    return to_mutation_out(result)


@router.get(
    "/bookings/{booking_id}/staff/{assignment_id}/history",
    response_model=List[AssignmentStatusEventOut],
)
def get_booking_staff_history(
    booking_id: int,
    assignment_id: int,
    db: Session = Depends(get_db),
    tenant: Tenant = Depends(get_current_tenant),
    actor: Actor = Depends(get_current_actor),
):
    assignment = get_assignment(db, tenant.id, assignment_id, booking_id=booking_id)
    return [
        AssignmentStatusEventOut(
            id=e.id,
            assignment_id=e.assignment_id,
            created_at=e.created_at,
            from_status=e.from_status,
            to_status=e.to_status,
            actor=e.actor,
            note=e.note,
        )
        for e in list_status_events(db, tenant.id, assignment.id)
    ]
