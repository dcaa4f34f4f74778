"""Staffing commands.

Each command is one transaction: lock the booking, mutate assignments, write
the status history, refresh ``staff_fulfilled`` and stage the notification in
the outbox, then commit once.
"""

from dataclasses import dataclass

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from .assignments import (
    get_assignment,
    insert_assignment,
    list_by_booking,
    lock_booking,
    record_status_event,
)
from .errors import Forbidden, InvalidTransition, NotFound, ValidationFailed, translate_integrity_error
from .identity import Actor, get_employee
from .ids import EmployeeId
from .models import Assignment, Booking, utc_now_naive
from .observability import STAFFING_TRANSITIONS, get_logger
from .outbox import enqueue_outbox_event
from .progress import StaffingProgress, refresh_staff_fulfilled
from .transitions import (
    OPEN_STATUSES,
    TOPIC_ASSIGNMENT_CREATED,
    TRANSITION_TOPICS,
    apply_transition,
    authorize_transition,
    forbidden_transition,
    is_noop_cancel,
    normalize_status,
    validate_transition,
)

log = get_logger("service_scheduler.staffing")

_NOTIFICATION_TEXT = {
    TOPIC_ASSIGNMENT_CREATED: ("employee", "New Booking Assignment", "You have been assigned to {service} on {when}."),
    "staffing.assignment_accepted": ("admins", "Assignment Accepted", "{employee} accepted {service} on {when}."),
    "staffing.assignment_declined": ("admins", "Assignment Declined", "{employee} declined {service} on {when}."),
    "staffing.assignment_removed": ("employee", "Assignment Removed", "You have been removed from {service} on {when}."),
}


@dataclass
class TransitionResult:
    assignment: Assignment
    progress: StaffingProgress
    changed: bool


def _require_admin(actor: Actor) -> None:
    if not actor.is_admin:
        raise Forbidden("Admin role required")


def _commit(db: Session) -> None:
    try:
        db.commit()
    except IntegrityError as exc:
        db.rollback()
        raise translate_integrity_error(exc) from exc


def _stage_notification(db: Session, topic: str, booking: Booking, assignment: Assignment) -> None:
    audience, title, template = _NOTIFICATION_TEXT[topic]
    employee = assignment.employee
    employee_name = employee.name if employee is not None else str(assignment.employee_id)
    when = f"{booking.scheduled_date.isoformat()} {booking.scheduled_time}"
    enqueue_outbox_event(
        db,
        tenant_id=booking.tenant_id,
        topic=topic,
        key=f"assignment:{assignment.id}",
        payload={
            "audience": audience,
            "title": title,
            "message": template.format(employee=employee_name, service=booking.service_name, when=when),
            "assignment_id": assignment.id,
            "booking_id": booking.id,
            "employee_id": assignment.employee_id,
            "role": assignment.role,
            "status": assignment.status,
            "scheduled_date": booking.scheduled_date.isoformat(),
            "scheduled_time": booking.scheduled_time,
        },
    )


def _log_transition(actor: Actor, assignment: Assignment, from_status: str | None, progress: StaffingProgress) -> None:
    transition = f"{from_status or 'new'}->{assignment.status}"
    STAFFING_TRANSITIONS.labels(transition=transition).inc()
    log.info(
        "assignment_transition",
        assignment_id=assignment.id,
        booking_id=assignment.booking_id,
        employee_id=assignment.employee_id,
        from_status=from_status,
        to_status=assignment.status,
        actor=actor.label,
        band=progress.band,
    )


def create_assignment(
    db: Session,
    tenant_id: int,
    booking_id: int,
    *,
    actor: Actor,
    employee_id: EmployeeId,
    role: str = "assistant",
    notes: str | None = None,
) -> TransitionResult:
    _require_admin(actor)
    booking = lock_booking(db, tenant_id, booking_id)
    assignment = insert_assignment(
        db,
        booking=booking,
        employee_id=employee_id,
        role=role,
        notes=notes,
        assigned_by=actor.label,
    )
    record_status_event(db, assignment, from_status=None, to_status="assigned", actor=actor.label, note=notes)
    progress = refresh_staff_fulfilled(db, booking)
    _stage_notification(db, TOPIC_ASSIGNMENT_CREATED, booking, assignment)
    _commit(db)
    db.refresh(assignment)
    _log_transition(actor, assignment, None, progress)
    return TransitionResult(assignment=assignment, progress=progress, changed=True)


def _transition_locked(
    db: Session,
    booking: Booking,
    assignment: Assignment,
    *,
    actor: Actor,
    requested: str,
    notes: str | None,
) -> str | None:
    """Apply one transition inside the caller's transaction.

    Returns the previous status, or None when the request is a no-op cancel.
    """
    authorize_transition(actor, assignment, requested)
    if is_noop_cancel(assignment, requested):
        return None
    validate_transition(assignment.status, requested)
    previous = apply_transition(assignment, requested, utc_now_naive())
    if notes is not None:
        assignment.notes = notes
    record_status_event(
        db, assignment, from_status=previous, to_status=requested, actor=actor.label, note=notes
    )
    topic = TRANSITION_TOPICS.get(requested)
    if topic:
        _stage_notification(db, topic, booking, assignment)
    return previous


def transition_assignment(
    db: Session,
    tenant_id: int,
    booking_id: int,
    assignment_id: int,
    *,
    actor: Actor,
    status: str,
    notes: str | None = None,
) -> TransitionResult:
    requested = normalize_status(status)
    booking = lock_booking(db, tenant_id, booking_id)
    try:
        assignment = get_assignment(db, tenant_id, assignment_id, booking_id=booking.id)
    except NotFound:
        # Non-admins get the same answer for unknown ids and for other people's.
        if not actor.is_admin:
            raise forbidden_transition(requested) from None
        raise
    previous = _transition_locked(db, booking, assignment, actor=actor, requested=requested, notes=notes)
    progress = refresh_staff_fulfilled(db, booking)
    _commit(db)
    db.refresh(assignment)
    if previous is None:
        log.info("assignment_cancel_noop", assignment_id=assignment.id, status=assignment.status)
        return TransitionResult(assignment=assignment, progress=progress, changed=False)
    _log_transition(actor, assignment, previous, progress)
    return TransitionResult(assignment=assignment, progress=progress, changed=True)


def remove_assignment(
    db: Session,
    tenant_id: int,
    booking_id: int,
    assignment_id: int,
    *,
    actor: Actor,
    notes: str | None = None,
) -> TransitionResult:
    return transition_assignment(
        db, tenant_id, booking_id, assignment_id, actor=actor, status="cancelled", notes=notes
    )


def pickup_job(
    db: Session,
    tenant_id: int,
    *,
    actor: Actor,
    booking_id: int,
    assignment_id: int,
    notes: str | None = None,
) -> TransitionResult:
    """Mobile "pick up job": the owning employee accepts an assigned job."""
    return transition_assignment(
        db, tenant_id, booking_id, assignment_id, actor=actor, status="accepted", notes=notes
    )


def reassign_assignment(
    db: Session,
    tenant_id: int,
    booking_id: int,
    assignment_id: int,
    *,
    actor: Actor,
    to_employee_id: EmployeeId,
    notes: str | None = None,
) -> TransitionResult:
    """Cancel an open assignment and hand its role to another employee."""
    _require_admin(actor)
    booking = lock_booking(db, tenant_id, booking_id)
    source = get_assignment(db, tenant_id, assignment_id, booking_id=booking.id)
    if source.status not in OPEN_STATUSES:
        raise InvalidTransition(source.status, "cancelled", "Only open assignments can be reassigned")
    target = get_employee(db, tenant_id, to_employee_id)
    if target.id == source.employee_id:
        raise ValidationFailed("Assignment already belongs to this employee")

    reason = notes or "reassigned"
    previous = _transition_locked(db, booking, source, actor=actor, requested="cancelled", notes=reason)
    replacement = insert_assignment(
        db,
        booking=booking,
        employee_id=EmployeeId(target.id),
        role=source.role,
        notes=notes,
        assigned_by=actor.label,
    )
    record_status_event(
        db,
        replacement,
        from_status=None,
        to_status="assigned",
        actor=actor.label,
        note=f"reassigned from assignment {source.id}",
    )
    progress = refresh_staff_fulfilled(db, booking)
    _stage_notification(db, TOPIC_ASSIGNMENT_CREATED, booking, replacement)
    _commit(db)
    db.refresh(source)
    db.refresh(replacement)
    _log_transition(actor, source, previous, progress)
    _log_transition(actor, replacement, None, progress)
    return TransitionResult(assignment=replacement, progress=progress, changed=True)


def cancel_open_assignments(db: Session, booking: Booking, *, actor: Actor, note: str) -> int:
    """Cancel every open assignment of a locked booking. Does not commit."""
    cancelled = 0
    for assignment in list_by_booking(db, booking.tenant_id, booking.id):
        if assignment.status not in OPEN_STATUSES:
            continue
        _transition_locked(db, booking, assignment, actor=actor, requested="cancelled", notes=note)
        cancelled += 1
    return cancelled
