"""Assignment lifecycle rules.

    assigned --accept--> accepted --complete--> completed
    assigned --decline--> declined
    assigned | accepted --cancel (admin)--> cancelled

declined, completed and cancelled are terminal.
"""

from datetime import datetime

from .errors import Forbidden, InvalidTransition, ValidationFailed
from .identity import Actor
from .models import Assignment

ASSIGNMENT_STATUSES = ("assigned", "accepted", "declined", "completed", "cancelled")
ACTIVE_STATUSES = frozenset({"assigned", "accepted", "completed"})
ACCEPTED_STATUSES = frozenset({"accepted", "completed"})
OPEN_STATUSES = frozenset({"assigned", "accepted"})
TERMINAL_STATUSES = frozenset({"declined", "completed", "cancelled"})

ALLOWED_ASSIGNMENT_TRANSITIONS = {
    "assigned": {"accepted", "declined", "cancelled"},
    "accepted": {"completed", "cancelled"},
    "declined": set(),
    "completed": set(),
    "cancelled": set(),
}

# Only the employee the assignment belongs to may request these.
OWNER_TRANSITIONS = frozenset({"accepted", "declined", "completed"})
ADMIN_TRANSITIONS = frozenset({"cancelled"})

TOPIC_ASSIGNMENT_CREATED = "staffing.assignment_created"
TRANSITION_TOPICS = {
    "accepted": "staffing.assignment_accepted",
    "declined": "staffing.assignment_declined",
    "cancelled": "staffing.assignment_removed",
}

ROLE_CHOICES = ("lead", "assistant", "specialist", "trainee")


def normalize_status(value: str) -> str:
    status = (value or "").strip().lower()
    if status not in ASSIGNMENT_STATUSES:
        raise ValidationFailed(f"Unknown assignment status: {value}")
    return status


def forbidden_transition(requested: str) -> Forbidden:
    if requested in OWNER_TRANSITIONS:
        return Forbidden("Only the assigned employee can change this assignment")
    if requested in ADMIN_TRANSITIONS:
        return Forbidden("Only an admin can remove an assignment")
    return Forbidden()


def authorize_transition(actor: Actor, assignment: Assignment, requested: str) -> None:
    """Runs before the state check, so an outsider always sees Forbidden."""
    is_owner = actor.employee_id is not None and str(actor.employee_id) == str(assignment.employee_id)
    if requested in OWNER_TRANSITIONS:
        allowed = is_owner
    elif requested in ADMIN_TRANSITIONS:
        allowed = actor.is_admin
    else:
        allowed = is_owner or actor.is_admin
    if not allowed:
        raise forbidden_transition(requested)


def is_noop_cancel(assignment: Assignment, requested: str) -> bool:
    return requested == "cancelled" and assignment.status in TERMINAL_STATUSES


def validate_transition(current: str, requested: str) -> None:
    if requested not in ALLOWED_ASSIGNMENT_TRANSITIONS.get(current, set()):
        raise InvalidTransition(current, requested)


def apply_transition(assignment: Assignment, requested: str, now: datetime) -> str:
    previous = assignment.status
    assignment.status = requested
    if requested == "accepted":
        assignment.accepted_at = now
    elif requested == "declined":
        assignment.declined_at = now
    elif requested == "completed":
        assignment.completed_at = now
    elif requested == "cancelled":
        assignment.cancelled_at = now
    assignment.updated_at = now
    return previous
