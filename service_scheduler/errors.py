from typing import Any

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from sqlalchemy.exc import IntegrityError

from .observability import get_logger

log = get_logger("service_scheduler.errors")


class StaffingError(Exception):
    """Base for every error the staffing API reports with a stable code."""

    code = "staffing_error"
    status_code = 400
    default_message = "Staffing request failed"

    def __init__(self, message: str | None = None, **details: Any):
        self.message = message or self.default_message
        self.details = details
        super().__init__(self.message)

    def to_dict(self) -> dict:
        body: dict[str, Any] = {"code": self.code, "message": self.message}
        if self.details:
            body["details"] = self.details
        return body


class NotFound(StaffingError):
    code = "not_found"
    status_code = 404
    default_message = "Resource not found"


class IdentityNotProvisioned(StaffingError):
    code = "identity_not_provisioned"
    status_code = 409
    default_message = "No employee record exists for this account yet"


class EmployeeInactive(StaffingError):
    code = "employee_inactive"
    status_code = 403
    default_message = "Employee account is deactivated"


class DuplicateAssignment(StaffingError):
    code = "duplicate_assignment"
    status_code = 409
    default_message = "Employee is already assigned to this booking"


class CapacityExceeded(StaffingError):
    code = "capacity_exceeded"
    status_code = 422
    default_message = "Booking already has the required number of staff"


class InvalidTransition(StaffingError):
    code = "invalid_transition"
    status_code = 409

    def __init__(self, current: str, requested: str, message: str | None = None):
        super().__init__(
            message or f"Invalid status transition: {current} -> {requested}",
            current=current,
            requested=requested,
        )


class Forbidden(StaffingError):
    code = "forbidden"
    status_code = 403
    default_message = "Not allowed to modify this assignment"


class BookingClosed(StaffingError):
    code = "booking_closed"
    status_code = 409
    default_message = "Booking is no longer open for staffing"


class ValidationFailed(StaffingError):
    code = "validation_error"
    status_code = 422
    default_message = "Invalid request"


def translate_integrity_error(exc: IntegrityError) -> StaffingError:
    """Map a storage constraint violation onto the staffing taxonomy."""
    raw = str(getattr(exc, "orig", exc)).lower()
    if "uq_assignments_active_pair" in raw or (
        "unique" in raw and "booking_staff_assignments" in raw
    ):
        return DuplicateAssignment()
    if "foreign key" in raw:
        return NotFound("Referenced booking or employee does not exist")
    if "staff_required" in raw:
        return ValidationFailed("staff_required must be at least 1")
    return ValidationFailed("Request violates a storage constraint")


async def staffing_error_handler(request: Request, exc: StaffingError) -> JSONResponse:
    log.info(
        "staffing_error",
        code=exc.code,
        status_code=exc.status_code,
        error=exc.message,
    )
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.to_dict()})


def register_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(StaffingError, staffing_error_handler)
