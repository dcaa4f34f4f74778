from datetime import date, datetime

from pydantic import BaseModel, Field, validator


class BookingCreate(BaseModel):
    customer_name: str = Field(min_length=2, max_length=120)
    service_name: str = Field(min_length=2, max_length=120)
    service_address: str | None = Field(default=None, max_length=255)
    scheduled_date: date
    scheduled_time: str = Field(pattern=r"^\d{2}:\d{2}$")
    staff_required: int = Field(default=1, ge=1, le=50)
    notes: str | None = Field(default=None, max_length=2000)


class BookingUpdate(BaseModel):
    customer_name: str | None = Field(default=None, min_length=2, max_length=120)
    service_name: str | None = Field(default=None, min_length=2, max_length=120)
    service_address: str | None = Field(default=None, max_length=255)
    scheduled_date: date | None = None
    scheduled_time: str | None = Field(default=None, pattern=r"^\d{2}:\d{2}$")
    staff_required: int | None = Field(default=None, ge=1, le=50)
    status: str | None = None
    notes: str | None = Field(default=None, max_length=2000)


class BookingOut(BaseModel):
    id: int
    customer_name: str
    service_name: str
    service_address: str | None = None
    scheduled_date: date
    scheduled_time: str
    status: str
    staff_required: int
    staff_fulfilled: int
    notes: str | None = None
    created_at: datetime
    updated_at: datetime


class StaffingProgressOut(BaseModel):
    booking_id: int
    required: int
    assigned: int
    accepted: int
    completed: int
    band: str
    staff_fulfilled: int


class AssignmentCreate(BaseModel):
    employee_id: str = Field(min_length=1, max_length=64)
    role: str = Field(default="assistant", min_length=2, max_length=40)
    notes: str | None = Field(default=None, max_length=2000)

    @validator("role")
    @classmethod
    def normalize_role(cls, value: str) -> str:
        return value.strip().lower()


class AssignmentUpdate(BaseModel):
    status: str = Field(min_length=3, max_length=20)
    notes: str | None = Field(default=None, max_length=2000)


class AssignmentReassign(BaseModel):
    to_employee_id: str = Field(min_length=1, max_length=64)
    notes: str | None = Field(default=None, max_length=2000)


class AssignmentOut(BaseModel):
    id: int
    booking_id: int
    employee_id: str
    employee_name: str | None = None
    role: str
    status: str
    notes: str | None = None
    assigned_by: str | None = None
    assigned_at: datetime
    accepted_at: datetime | None = None
    declined_at: datetime | None = None
    completed_at: datetime | None = None
    cancelled_at: datetime | None = None


class AssignmentMutationOut(BaseModel):
    assignment: AssignmentOut
    progress: StaffingProgressOut
    changed: bool = True


class AssignmentStatusEventOut(BaseModel):
    id: int
    assignment_id: int
    created_at: datetime
    from_status: str | None = None
    to_status: str
    actor: str | None = None
    note: str | None = None


class EmployeeProvision(BaseModel):
    auth_identity_id: str = Field(min_length=1, max_length=64)
    name: str = Field(min_length=2, max_length=120)
    email: str | None = Field(default=None, max_length=255)
    position: str | None = Field(default=None, max_length=80)
    role: str = Field(default="employee", max_length=32)


class EmployeeOut(BaseModel):
    id: str
    auth_identity_id: str | None = None
    name: str
    email: str | None = None
    position: str | None = None
    is_active: bool
    created_at: datetime


class OtherStaffOut(BaseModel):
    assignment_id: int
    employee_id: str
    employee_name: str | None = None
    role: str
    status: str


class MobileAssignmentOut(BaseModel):
    assignment: AssignmentOut
    booking: BookingOut
    staffing_status: str
    staff_required: int
    staff_fulfilled: int
    other_staff: list[OtherStaffOut]


class MobileAssignmentsPage(BaseModel):
    items: list[MobileAssignmentOut]
    limit: int
    offset: int
    count: int


class JobPickupIn(BaseModel):
    booking_id: int = Field(ge=1)
    assignment_id: int = Field(ge=1)
    notes: str | None = Field(default=None, max_length=2000)


class OutboxEventOut(BaseModel):
    id: int
    tenant_id: int | None = None
    topic: str
    key: str | None = None
    payload_json: str
    status: str
    retries: int
    last_error: str | None = None
    created_at: datetime
    updated_at: datetime
    published_at: datetime | None = None
    next_attempt_at: datetime | None = None


class OutboxDispatchOut(BaseModel):
    processed: int
    published: int
    failed: int
    dead_lettered: int


class OutboxRetryOut(BaseModel):
    retried: int


class OutboxCleanupOut(BaseModel):
    tenant_id: int | None = None
    deleted_events: int
    cutoff: datetime


class OutboxHealthOut(BaseModel):
    tenant_id: int | None = None
    checked_at: datetime
    pending_count: int
    dispatching_count: int
    failed_count: int
    dead_letter_count: int
    published_count: int
    oldest_pending_age_seconds: int
