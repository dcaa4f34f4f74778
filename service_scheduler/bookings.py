from datetime import date

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from .assignments import count_active, lock_booking
from .errors import CapacityExceeded, Forbidden, InvalidTransition, ValidationFailed, translate_integrity_error
from .identity import Actor
from .models import Booking, utc_now_naive
from .observability import get_logger
from .progress import refresh_staff_fulfilled
from .staffing import cancel_open_assignments

log = get_logger("service_scheduler.bookings")

BOOKING_STATUSES = ("pending", "confirmed", "in-progress", "completed", "cancelled")

ALLOWED_BOOKING_STATUS_TRANSITIONS = {
    "pending": {"confirmed", "cancelled"},
    "confirmed": {"in-progress", "cancelled"},
    "in-progress": {"completed", "cancelled"},
    "completed": set(),
    "cancelled": set(),
}


def _validate_time(value: str) -> str:
    raw = (value or "").strip()
    parts = raw.split(":")
    if len(parts) != 2 or not all(p.isdigit() and len(p) == 2 for p in parts):
        raise ValidationFailed("scheduled_time must be HH:MM")
    hour, minute = int(parts[0]), int(parts[1])
    if hour > 23 or minute > 59:
        raise ValidationFailed("scheduled_time must be HH:MM")
    return raw


def create_booking(
    db: Session,
    tenant_id: int,
    *,
    actor: Actor,
    customer_name: str,
    service_name: str,
    scheduled_date: date,
    scheduled_time: str,
    staff_required: int = 1,
    service_address: str | None = None,
    notes: str | None = None,
) -> Booking:
    if not actor.is_admin:
        raise Forbidden("Admin role required")
    if int(staff_required) < 1:
        raise ValidationFailed("staff_required must be at least 1")
    now = utc_now_naive()
    booking = Booking(
        tenant_id=tenant_id,
        customer_name=customer_name.strip(),
        service_name=service_name.strip(),
        service_address=(service_address or "").strip() or None,
        scheduled_date=scheduled_date,
        scheduled_time=_validate_time(scheduled_time),
        status="pending",
        staff_required=int(staff_required),
        staff_fulfilled=0,
        notes=notes,
        created_at=now,
        updated_at=now,
    )
    db.add(booking)
    try:
        db.commit()
    except IntegrityError as exc:
        db.rollback()
        raise translate_integrity_error(exc) from exc
    db.refresh(booking)
    log.info("booking_created", booking_id=booking.id, staff_required=booking.staff_required)
    return booking


def list_bookings(
    db: Session,
    tenant_id: int,
    *,
    status: str | None = None,
    date_from: date | None = None,
    date_to: date | None = None,
    limit: int = 100,
    offset: int = 0,
) -> list[Booking]:
    stmt = select(Booking).where(Booking.tenant_id == tenant_id)
    if status:
        stmt = stmt.where(Booking.status == status.strip().lower())
    if date_from is not None:
        stmt = stmt.where(Booking.scheduled_date >= date_from)
    if date_to is not None:
        stmt = stmt.where(Booking.scheduled_date <= date_to)
    stmt = (
        stmt.order_by(Booking.scheduled_date.asc(), Booking.scheduled_time.asc(), Booking.id.asc())
        .offset(max(0, int(offset)))
        .limit(max(1, min(int(limit), 500)))
    )
    return db.execute(stmt).scalars().all()


def update_booking(
    db: Session,
    tenant_id: int,
    booking_id: int,
    *,
    actor: Actor,
    changes: dict,
) -> Booking:
    """Apply admin edits. ``staff_required`` cannot drop below the active assignment count."""
    if not actor.is_admin:
        raise Forbidden("Admin role required")
    booking = lock_booking(db, tenant_id, booking_id)
    now = utc_now_naive()

    for field in ("customer_name", "service_name", "service_address", "notes", "scheduled_date"):
        if field in changes and changes[field] is not None:
            value = changes[field]
            setattr(booking, field, value.strip() if isinstance(value, str) else value)
    if changes.get("scheduled_time") is not None:
        booking.scheduled_time = _validate_time(changes["scheduled_time"])

    if changes.get("staff_required") is not None:
        required = int(changes["staff_required"])
        if required < 1:
            raise ValidationFailed("staff_required must be at least 1")
        assigned = count_active(db, booking.id)
        if required < assigned:
            raise CapacityExceeded(
                f"Booking already has {assigned} assigned staff; remove assignments first",
                required=required,
                assigned=assigned,
            )
        booking.staff_required = required

    cancelled_assignments = 0
    new_status = (changes.get("status") or "").strip().lower()
    if new_status and new_status != booking.status:
        if new_status not in BOOKING_STATUSES:
            raise ValidationFailed(f"Unknown booking status: {new_status}")
        if new_status not in ALLOWED_BOOKING_STATUS_TRANSITIONS.get(booking.status, set()):
            raise InvalidTransition(booking.status, new_status)
        booking.status = new_status
        if new_status == "cancelled":
            cancelled_assignments = cancel_open_assignments(
                db, booking, actor=actor, note="booking cancelled"
            )

    booking.updated_at = now
    refresh_staff_fulfilled(db, booking)
    try:
        db.commit()
    except IntegrityError as exc:
        db.rollback()
        raise translate_integrity_error(exc) from exc
    db.refresh(booking)
    log.info(
        "booking_updated",
        booking_id=booking.id,
        status=booking.status,
        staff_required=booking.staff_required,
        cancelled_assignments=cancelled_assignments,
    )
    return booking
