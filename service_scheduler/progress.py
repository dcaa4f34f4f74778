from dataclasses import dataclass

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from .models import Assignment, Booking, utc_now_naive
from .transitions import ACCEPTED_STATUSES, ACTIVE_STATUSES


@dataclass(frozen=True)
class StaffingProgress:
    booking_id: int
    required: int
    assigned: int
    accepted: int
    completed: int

    @property
    def band(self) -> str:
        # A booking nobody has accepted yet is unstaffed even when every slot is assigned.
        if self.accepted >= self.required:
            return "fully_staffed"
        if self.assigned >= self.required and self.accepted > 0:
            return "partially_staffed"
        return "unstaffed"

    def as_dict(self) -> dict:
        return {
            "booking_id": self.booking_id,
            "required": self.required,
            "assigned": self.assigned,
            "accepted": self.accepted,
            "completed": self.completed,
            "band": self.band,
        }


def _from_status_counts(booking: Booking, counts: dict[str, int]) -> StaffingProgress:
    return StaffingProgress(
        booking_id=int(booking.id),
        required=int(booking.staff_required),
        assigned=sum(n for status, n in counts.items() if status in ACTIVE_STATUSES),
        accepted=sum(n for status, n in counts.items() if status in ACCEPTED_STATUSES),
        completed=int(counts.get("completed", 0)),
    )


def compute_progress(db: Session, booking: Booking) -> StaffingProgress:
    db.flush()
    rows = db.execute(
        select(Assignment.status, func.count(Assignment.id))
        .where(Assignment.booking_id == booking.id)
        .group_by(Assignment.status)
    ).all()
    return _from_status_counts(booking, {status: int(n) for status, n in rows})


def progress_for_bookings(db: Session, bookings: list[Booking]) -> dict[int, StaffingProgress]:
    if not bookings:
        return {}
    counts: dict[int, dict[str, int]] = {int(b.id): {} for b in bookings}
    rows = db.execute(
        select(Assignment.booking_id, Assignment.status, func.count(Assignment.id))
        .where(Assignment.booking_id.in_(list(counts)))
        .group_by(Assignment.booking_id, Assignment.status)
    ).all()
    for booking_id, status, n in rows:
        counts[int(booking_id)][status] = int(n)
    return {int(b.id): _from_status_counts(b, counts[int(b.id)]) for b in bookings}


def refresh_staff_fulfilled(db: Session, booking: Booking) -> StaffingProgress:
    """Write ``progress.accepted`` into ``Booking.staff_fulfilled``. Does not commit."""
    progress = compute_progress(db, booking)
    if int(booking.staff_fulfilled or 0) != progress.accepted:
        booking.staff_fulfilled = progress.accepted
        booking.updated_at = utc_now_naive()
    return progress
