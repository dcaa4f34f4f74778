import pytest
from sqlalchemy.exc import IntegrityError

from service_scheduler.assignments import (
    count_active,
    insert_assignment,
    list_by_booking,
    list_by_employee,
    lock_booking,
)
from service_scheduler.errors import (
    BookingClosed,
    CapacityExceeded,
    DuplicateAssignment,
    EmployeeInactive,
    NotFound,
)
from service_scheduler.identity import deactivate_employee
from service_scheduler.ids import EmployeeId
from service_scheduler.models import Assignment


def _insert(session_factory, tenant_id, booking_id, employee_id, role="assistant"):
    with session_factory() as db:
        booking = lock_booking(db, tenant_id, booking_id)
        assignment = insert_assignment(db, booking=booking, employee_id=employee_id, role=role)
        db.commit()
        return assignment.id


def test_insert_and_list(seed, session_factory):
    alice, _ = seed.employee("Alice")
    bob, _ = seed.employee("Bob")
    booking_id = seed.booking(staff_required=2)

    _insert(session_factory, seed.tenant_id, booking_id, alice, role="Lead")
    _insert(session_factory, seed.tenant_id, booking_id, bob)

    with session_factory() as db:
        rows = list_by_booking(db, seed.tenant_id, booking_id)
        assert [(r.employee_id, r.role, r.status) for r in rows] == [
            (alice, "lead", "assigned"),
            (bob, "assistant", "assigned"),
        ]
        assert count_active(db, booking_id) == 2
        assert [r.booking_id for r in list_by_employee(db, seed.tenant_id, alice)] == [booking_id]
        assert list_by_employee(db, seed.tenant_id, alice, statuses=["accepted"]) == []


def test_duplicate_active_pair_is_rejected(seed, session_factory):
    alice, _ = seed.employee("Alice")
    booking_id = seed.booking(staff_required=3)
    _insert(session_factory, seed.tenant_id, booking_id, alice)

    with pytest.raises(DuplicateAssignment):
        _insert(session_factory, seed.tenant_id, booking_id, alice)


def test_duplicate_is_reported_before_capacity(seed, session_factory):
    alice, _ = seed.employee("Alice")
    booking_id = seed.booking(staff_required=1)
    _insert(session_factory, seed.tenant_id, booking_id, alice)

    with pytest.raises(DuplicateAssignment):
        _insert(session_factory, seed.tenant_id, booking_id, alice)


def test_capacity_is_enforced(seed, session_factory):
    alice, _ = seed.employee("Alice")
    bob, _ = seed.employee("Bob")
    booking_id = seed.booking(staff_required=1)
    _insert(session_factory, seed.tenant_id, booking_id, alice)

    with pytest.raises(CapacityExceeded) as exc_info:
        _insert(session_factory, seed.tenant_id, booking_id, bob)
    assert exc_info.value.details == {"required": 1, "assigned": 1}


def test_closed_booking_rejects_new_staff(seed, session_factory):
    alice, _ = seed.employee("Alice")
    booking_id = seed.booking(staff_required=2, status="cancelled")

    with pytest.raises(BookingClosed):
        _insert(session_factory, seed.tenant_id, booking_id, alice)


def test_inactive_employee_cannot_be_assigned(seed, session_factory):
    alice, _ = seed.employee("Alice")
    booking_id = seed.booking(staff_required=2)
    with session_factory() as db:
        deactivate_employee(db, seed.tenant_id, alice)

    with pytest.raises(EmployeeInactive):
        _insert(session_factory, seed.tenant_id, booking_id, alice)


def test_unknown_booking_is_not_found(seed, session_factory):
    alice, _ = seed.employee("Alice")
    with pytest.raises(NotFound):
        _insert(session_factory, seed.tenant_id, 9999, alice)


def test_auth_identity_used_as_employee_id_is_rejected(seed, session_factory):
    # Regression: the caller's auth subject was written where an employee id belongs.
    _, auth_id = seed.employee("Alice")
    booking_id = seed.booking(staff_required=2)

    with pytest.raises(NotFound):
        _insert(session_factory, seed.tenant_id, booking_id, EmployeeId(str(auth_id)))

    with session_factory() as db:
        assert count_active(db, booking_id) == 0


def test_storage_rejects_auth_identity_in_employee_column(seed, session_factory):
    _, auth_id = seed.employee("Alice")
    booking_id = seed.booking(staff_required=2)

    with session_factory() as db:
        db.add(
            Assignment(
                tenant_id=seed.tenant_id,
                booking_id=booking_id,
                employee_id=str(auth_id),
                role="lead",
                status="assigned",
            )
        )
        with pytest.raises(IntegrityError):
            db.commit()
        db.rollback()


def test_storage_partial_index_allows_reassigning_after_decline(seed, session_factory):
    alice, _ = seed.employee("Alice")
    booking_id = seed.booking(staff_required=2)

    with session_factory() as db:
        db.add(
            Assignment(
                tenant_id=seed.tenant_id, booking_id=booking_id, employee_id=alice, status="declined"
            )
        )
        db.add(
            Assignment(
                tenant_id=seed.tenant_id, booking_id=booking_id, employee_id=alice, status="assigned"
            )
        )
        db.commit()

    with session_factory() as db:
        db.add(
            Assignment(
                tenant_id=seed.tenant_id, booking_id=booking_id, employee_id=alice, status="accepted"
            )
        )
        with pytest.raises(IntegrityError):
            db.commit()
        db.rollback()
