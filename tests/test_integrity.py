import sqlite3
import sys
from pathlib import Path

from service_scheduler.integrity import (
    build_integrity_report,
    repair_auth_identity_references,
    repair_staff_fulfilled_drift,
)
from service_scheduler.models import Assignment, Booking
from service_scheduler.staffing import create_assignment

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT / "scripts") not in sys.path:
    sys.path.insert(0, str(ROOT / "scripts"))

import check_staffing_integrity  # noqa: E402


def _write_legacy_rows(db_path, tenant_id, booking_id, auth_id):
    # A plain sqlite3 connection does not enforce foreign keys, like the legacy writer.
    conn = sqlite3.connect(str(db_path))
    try:
        conn.execute(
            "INSERT INTO booking_staff_assignments "
            "(tenant_id, booking_id, employee_id, role, status, assigned_at, accepted_at, updated_at) "
            "VALUES (?, ?, ?, 'assistant', 'accepted', '2030-01-01 08:00:00', '2030-01-01 09:00:00', "
            "'2030-01-01 09:00:00')",
            (tenant_id, booking_id, auth_id),
        )
        conn.execute(
            "INSERT INTO employees (id, tenant_id, auth_identity_id, name, is_active, created_at, updated_at) "
            "VALUES ('legacy-employee', ?, NULL, 'Pending Invite', 1, '2030-01-01 08:00:00', "
            "'2030-01-01 08:00:00')",
            (tenant_id,),
        )
        conn.commit()
    finally:
        conn.close()


def test_clean_data_reports_ok(seed, session_factory):
    alice, _ = seed.employee("Alice")
    booking_id = seed.booking(staff_required=1)
    with session_factory() as db:
        create_assignment(db, seed.tenant_id, booking_id, actor=seed.admin(), employee_id=alice)
    with session_factory() as db:
        report = build_integrity_report(db, seed.tenant_id)
    assert report["ok"] is True
    assert report["orphan_assignments"] == []


def test_report_finds_auth_identity_rows_and_drift(seed, session_factory, db_path):
    _, auth_id = seed.employee("Alice")
    booking_id = seed.booking(staff_required=2)
    _write_legacy_rows(db_path, seed.tenant_id, booking_id, str(auth_id))

    with session_factory() as db:
        report = build_integrity_report(db, seed.tenant_id)
    assert report["ok"] is False
    assert [r["employee_id"] for r in report["orphan_assignments"]] == [str(auth_id)]
    assert [r["auth_identity_id"] for r in report["auth_identity_assignments"]] == [str(auth_id)]
    assert report["employees_without_auth_identity"] == ["legacy-employee"]
    assert report["fulfilled_drift"] == [{"booking_id": booking_id, "staff_fulfilled": 0, "accepted": 1}]


def test_repair_remaps_auth_identity_and_fixes_drift(seed, session_factory, db_path):
    alice, auth_id = seed.employee("Alice")
    booking_id = seed.booking(staff_required=2)
    _write_legacy_rows(db_path, seed.tenant_id, booking_id, str(auth_id))

    with session_factory() as db:
        assert repair_auth_identity_references(db, seed.tenant_id) == {"remapped": 1, "cancelled": 0}
    with session_factory() as db:
        assert repair_staff_fulfilled_drift(db, seed.tenant_id) == {"repaired_bookings": []}
        row = db.query(Assignment).filter(Assignment.booking_id == booking_id).one()
        assert row.employee_id == alice
        assert db.get(Booking, booking_id).staff_fulfilled == 1
        report = build_integrity_report(db, seed.tenant_id)
    assert report["ok"] is True


def test_repair_cancels_legacy_row_that_duplicates_active_pair(seed, session_factory, db_path):
    alice, auth_id = seed.employee("Alice")
    booking_id = seed.booking(staff_required=2)
    with session_factory() as db:
        create_assignment(db, seed.tenant_id, booking_id, actor=seed.admin(), employee_id=alice)
    _write_legacy_rows(db_path, seed.tenant_id, booking_id, str(auth_id))

    with session_factory() as db:
        assert repair_auth_identity_references(db, seed.tenant_id) == {"remapped": 1, "cancelled": 1}
    with session_factory() as db:
        statuses = sorted(
            r.status for r in db.query(Assignment).filter(Assignment.employee_id == alice)
        )
        assert statuses == ["assigned", "cancelled"]
        assert build_integrity_report(db, seed.tenant_id)["duplicate_active_pairs"] == []


def test_script_reports_and_repairs(seed, session_factory, db_path):
    _, auth_id = seed.employee("Alice")
    booking_id = seed.booking(staff_required=2)
    _write_legacy_rows(db_path, seed.tenant_id, booking_id, str(auth_id))

    dry = check_staffing_integrity.run("acme", session_factory=session_factory)
    assert dry["report"]["ok"] is False
    assert "repair" not in dry

    fixed = check_staffing_integrity.run("acme", repair=True, session_factory=session_factory)
    assert fixed["repair"]["remapped"] == 1
    assert fixed["report"]["ok"] is True


def test_integrity_endpoint_is_admin_only(client, admin_headers, headers_for):
    report = client.get("/api/staffing/integrity", headers=admin_headers)
    assert report.status_code == 200
    assert report.json()["ok"] is True

    client.post("/api/employees", headers=admin_headers, json={"auth_identity_id": "auth-alice", "name": "Alice"})
    denied = client.get("/api/staffing/integrity", headers=headers_for("auth-alice"))
    assert denied.status_code == 403
