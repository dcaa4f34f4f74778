from datetime import date, datetime, timezone

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .db import Base
from .ids import new_employee_id

ACTIVE_ASSIGNMENT_SQL = "status IN ('assigned', 'accepted', 'completed')"


def utc_now_naive() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


class Tenant(Base):
    __tablename__ = "tenants"
    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    slug: Mapped[str] = mapped_column(String(80), unique=True, index=True)
    name: Mapped[str] = mapped_column(String(120))


class AuthUser(Base):
    """Local mirror of a user issued by the external auth provider."""

    __tablename__ = "auth_users"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    tenant_id: Mapped[int] = mapped_column(ForeignKey("tenants.id"), index=True)
    email: Mapped[str] = mapped_column(String(255), index=True)
    role: Mapped[str] = mapped_column(String(32), default="employee")
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utc_now_naive)


class Employee(Base):
    __tablename__ = "employees"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_employee_id)
    tenant_id: Mapped[int] = mapped_column(ForeignKey("tenants.id"), index=True)
    # Nullable only while an invite is being provisioned.
    auth_identity_id: Mapped[str | None] = mapped_column(
        ForeignKey("auth_users.id"), unique=True, nullable=True
    )
    name: Mapped[str] = mapped_column(String(120))
    email: Mapped[str | None] = mapped_column(String(255), nullable=True)
    position: Mapped[str | None] = mapped_column(String(80), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, index=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utc_now_naive)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utc_now_naive)

    auth_user = relationship("AuthUser")


class Booking(Base):
    __tablename__ = "bookings"
    __table_args__ = (
        CheckConstraint("staff_required >= 1", name="ck_bookings_staff_required_positive"),
        CheckConstraint("staff_fulfilled >= 0", name="ck_bookings_staff_fulfilled_non_negative"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    tenant_id: Mapped[int] = mapped_column(ForeignKey("tenants.id"), index=True)
    customer_name: Mapped[str] = mapped_column(String(120))
    service_name: Mapped[str] = mapped_column(String(120))
    service_address: Mapped[str | None] = mapped_column(String(255), nullable=True)
    scheduled_date: Mapped[date] = mapped_column(Date, index=True)
    scheduled_time: Mapped[str] = mapped_column(String(5))
    status: Mapped[str] = mapped_column(String(20), default="pending", index=True)
    staff_required: Mapped[int] = mapped_column(Integer, default=1)
    # Write-through copy of the accepted count; see progress.refresh_staff_fulfilled.
    staff_fulfilled: Mapped[int] = mapped_column(Integer, default=0)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utc_now_naive)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utc_now_naive)


class Assignment(Base):
    __tablename__ = "booking_staff_assignments"
    __table_args__ = (
        Index(
            "uq_assignments_active_pair",
            "booking_id",
            "employee_id",
            unique=True,
            sqlite_where=text(ACTIVE_ASSIGNMENT_SQL),
            postgresql_where=text(ACTIVE_ASSIGNMENT_SQL),
        ),
        Index("ix_assignments_employee_status", "employee_id", "status"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    tenant_id: Mapped[int] = mapped_column(ForeignKey("tenants.id"), index=True)
    booking_id: Mapped[int] = mapped_column(ForeignKey("bookings.id"), index=True)
    # References employees, never auth_users.
    employee_id: Mapped[str] = mapped_column(ForeignKey("employees.id"))
    role: Mapped[str] = mapped_column(String(40), default="assistant")
    status: Mapped[str] = mapped_column(String(20), default="assigned", index=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    assigned_by: Mapped[str | None] = mapped_column(String(255), nullable=True)
    assigned_at: Mapped[datetime] = mapped_column(DateTime, default=utc_now_naive)
    accepted_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    declined_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    cancelled_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utc_now_naive)

    booking = relationship("Booking")
    employee = relationship("Employee")


class AssignmentStatusEvent(Base):
    __tablename__ = "assignment_status_events"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    tenant_id: Mapped[int] = mapped_column(ForeignKey("tenants.id"), index=True)
    assignment_id: Mapped[int] = mapped_column(
        ForeignKey("booking_staff_assignments.id"), index=True
    )
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utc_now_naive, index=True)
    from_status: Mapped[str | None] = mapped_column(String(20), nullable=True)
    to_status: Mapped[str] = mapped_column(String(20))
    actor: Mapped[str | None] = mapped_column(String(255), nullable=True)
    note: Mapped[str | None] = mapped_column(String(500), nullable=True)


class OutboxEvent(Base):
    __tablename__ = "outbox_events"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    tenant_id: Mapped[int | None] = mapped_column(ForeignKey("tenants.id"), nullable=True, index=True)
    topic: Mapped[str] = mapped_column(String(120), index=True)
    key: Mapped[str | None] = mapped_column(String(120), nullable=True)
    payload_json: Mapped[str] = mapped_column(Text, default="{}")
    status: Mapped[str] = mapped_column(String(20), default="pending", index=True)
    retries: Mapped[int] = mapped_column(Integer, default=0)
    last_error: Mapped[str | None] = mapped_column(String(500), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utc_now_naive, index=True)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utc_now_naive)
    published_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    next_attempt_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True, index=True)
    claimed_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
