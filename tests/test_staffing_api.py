def _provision(client, admin_headers, subject, name):
    response = client.post(
        "/api/employees",
        headers=admin_headers,
        json={"auth_identity_id": subject, "name": name, "email": f"{subject}@example.test"},
    )
    assert response.status_code == 201
    return response.json()["id"]


def _create_booking(client, admin_headers, staff_required=2):
    response = client.post(
        "/api/bookings",
        headers=admin_headers,
        json={
            "customer_name": "Jane Customer",
            "service_name": "Move-out Clean",
            "scheduled_date": "2030-06-01",
            "scheduled_time": "08:00",
            "staff_required": staff_required,
        },
    )
    assert response.status_code == 201
    return response.json()["id"]


def _summary(client, headers, booking_id):
    response = client.get(f"/api/bookings/{booking_id}/staff/summary", headers=headers)
    assert response.status_code == 200
    return response.json()


def test_staffing_lifecycle_scenario(client, admin_headers, headers_for):
    alice_id = _provision(client, admin_headers, "auth-alice", "Alice")
    bob_id = _provision(client, admin_headers, "auth-bob", "Bob")
    alice = headers_for("auth-alice")
    bob = headers_for("auth-bob")
    booking_id = _create_booking(client, admin_headers, staff_required=2)

    a = client.post(
        f"/api/bookings/{booking_id}/staff",
        headers=admin_headers,
        json={"employee_id": alice_id, "role": "lead"},
    )
    assert a.status_code == 201
    b = client.post(
        f"/api/bookings/{booking_id}/staff",
        headers=admin_headers,
        json={"employee_id": bob_id, "role": "assistant"},
    )
    assert b.status_code == 201
    a_id = a.json()["assignment"]["id"]
    b_id = b.json()["assignment"]["id"]

    summary = _summary(client, admin_headers, booking_id)
    assert {k: summary[k] for k in ("required", "assigned", "accepted", "completed")} == {
        "required": 2,
        "assigned": 2,
        "accepted": 0,
        "completed": 0,
    }
    assert summary["band"] == "unstaffed"

    accepted = client.put(
        f"/api/bookings/{booking_id}/staff/{a_id}", headers=alice, json={"status": "accepted"}
    )
    assert accepted.status_code == 200
    summary = _summary(client, admin_headers, booking_id)
    assert summary["accepted"] == 1
    assert summary["band"] == "partially_staffed"

    accepted = client.put(
        f"/api/bookings/{booking_id}/staff/{b_id}", headers=bob, json={"status": "accepted"}
    )
    assert accepted.status_code == 200
    summary = _summary(client, admin_headers, booking_id)
    assert summary["accepted"] == 2
    assert summary["band"] == "fully_staffed"
    assert summary["staff_fulfilled"] == 2
    assert client.get(f"/api/bookings/{booking_id}", headers=admin_headers).json()["staff_fulfilled"] == 2

    completed = client.put(
        f"/api/bookings/{booking_id}/staff/{a_id}", headers=alice, json={"status": "completed"}
    )
    assert completed.status_code == 200
    assert _summary(client, admin_headers, booking_id)["completed"] == 1

    removed = client.delete(f"/api/bookings/{booking_id}/staff/{b_id}", headers=admin_headers)
    assert removed.status_code == 200
    assert removed.json()["assignment"]["status"] == "cancelled"
    summary = _summary(client, admin_headers, booking_id)
    assert summary["assigned"] == 1
    assert summary["accepted"] == 1
    assert summary["completed"] == 1
    assert summary["staff_fulfilled"] == 1

    staff = client.get(f"/api/bookings/{booking_id}/staff", headers=admin_headers)
    assert staff.status_code == 200
    assert [row["status"] for row in staff.json()] == ["completed", "cancelled"]
    assert staff.json()[0]["employee_name"] == "Alice"


def test_error_codes_are_stable(client, admin_headers, headers_for):
    alice_id = _provision(client, admin_headers, "auth-alice", "Alice")
    bob_id = _provision(client, admin_headers, "auth-bob", "Bob")
    booking_id = _create_booking(client, admin_headers, staff_required=1)

    first = client.post(
        f"/api/bookings/{booking_id}/staff", headers=admin_headers, json={"employee_id": alice_id}
    )
    assert first.status_code == 201
    assignment_id = first.json()["assignment"]["id"]

    duplicate = client.post(
        f"/api/bookings/{booking_id}/staff", headers=admin_headers, json={"employee_id": alice_id}
    )
    assert duplicate.status_code == 409
    assert duplicate.json()["detail"]["code"] == "duplicate_assignment"

    full = client.post(
        f"/api/bookings/{booking_id}/staff", headers=admin_headers, json={"employee_id": bob_id}
    )
    assert full.status_code == 422
    assert full.json()["detail"]["code"] == "capacity_exceeded"

    forbidden = client.put(
        f"/api/bookings/{booking_id}/staff/{assignment_id}",
        headers=headers_for("auth-bob"),
        json={"status": "accepted"},
    )
    assert forbidden.status_code == 403
    assert forbidden.json()["detail"]["code"] == "forbidden"

    invalid = client.put(
        f"/api/bookings/{booking_id}/staff/{assignment_id}",
        headers=headers_for("auth-alice"),
        json={"status": "completed"},
    )
    assert invalid.status_code == 409
    body = invalid.json()["detail"]
    assert body["code"] == "invalid_transition"
    assert body["details"] == {"current": "assigned", "requested": "completed"}

    missing = client.put(
        f"/api/bookings/{booking_id}/staff/99999",
        headers=admin_headers,
        json={"status": "cancelled"},
    )
    assert missing.status_code == 404
    assert missing.json()["detail"]["code"] == "not_found"


def test_outsider_cannot_tell_unknown_assignment_from_someone_elses(client, admin_headers, headers_for):
    alice_id = _provision(client, admin_headers, "auth-alice", "Alice")
    _provision(client, admin_headers, "auth-bob", "Bob")
    booking_id = _create_booking(client, admin_headers)
    created = client.post(
        f"/api/bookings/{booking_id}/staff", headers=admin_headers, json={"employee_id": alice_id}
    )
    assignment_id = created.json()["assignment"]["id"]

    existing = client.put(
        f"/api/bookings/{booking_id}/staff/{assignment_id}",
        headers=headers_for("auth-bob"),
        json={"status": "accepted"},
    )
    unknown = client.put(
        f"/api/bookings/{booking_id}/staff/99999",
        headers=headers_for("auth-bob"),
        json={"status": "accepted"},
    )
    assert existing.status_code == unknown.status_code == 403
    assert existing.json() == unknown.json()


def test_auth_identity_is_not_accepted_as_employee_id(client, admin_headers):
    _provision(client, admin_headers, "auth-alice", "Alice")
    booking_id = _create_booking(client, admin_headers)

    response = client.post(
        f"/api/bookings/{booking_id}/staff", headers=admin_headers, json={"employee_id": "auth-alice"}
    )
    assert response.status_code == 404
    assert response.json()["detail"]["code"] == "not_found"


def test_unprovisioned_caller_gets_identity_not_provisioned(client, admin_headers, headers_for):
    booking_id = _create_booking(client, admin_headers)
    response = client.get(f"/api/bookings/{booking_id}/staff", headers=headers_for("auth-stranger"))
    assert response.status_code == 409
    assert response.json()["detail"]["code"] == "identity_not_provisioned"


def test_deactivated_caller_gets_employee_inactive(client, admin_headers, headers_for):
    alice_id = _provision(client, admin_headers, "auth-alice", "Alice")
    archived = client.delete(f"/api/employees/{alice_id}", headers=admin_headers)
    assert archived.status_code == 200
    assert archived.json()["is_active"] is False

    response = client.get("/api/employees/me", headers=headers_for("auth-alice"))
    assert response.status_code == 403
    assert response.json()["detail"]["code"] == "employee_inactive"


def test_delete_is_idempotent(client, admin_headers):
    alice_id = _provision(client, admin_headers, "auth-alice", "Alice")
    booking_id = _create_booking(client, admin_headers)
    created = client.post(
        f"/api/bookings/{booking_id}/staff", headers=admin_headers, json={"employee_id": alice_id}
    )
    assignment_id = created.json()["assignment"]["id"]

    first = client.delete(f"/api/bookings/{booking_id}/staff/{assignment_id}", headers=admin_headers)
    second = client.delete(f"/api/bookings/{booking_id}/staff/{assignment_id}", headers=admin_headers)
    assert first.status_code == 200
    assert first.json()["changed"] is True
    assert second.status_code == 200
    assert second.json()["changed"] is False
    assert second.json()["assignment"]["status"] == "cancelled"


def test_employee_cannot_create_assignment(client, admin_headers, headers_for):
    alice_id = _provision(client, admin_headers, "auth-alice", "Alice")
    booking_id = _create_booking(client, admin_headers)
    response = client.post(
        f"/api/bookings/{booking_id}/staff",
        headers=headers_for("auth-alice"),
        json={"employee_id": alice_id},
    )
    assert response.status_code == 403


def test_missing_token_is_unauthorized(client):
    response = client.get("/api/bookings/1/staff", headers={"X-Tenant-Slug": "acme"})
    assert response.status_code == 401


def test_tenant_header_must_match_token(client, headers_for):
    headers = headers_for("auth-admin", role="admin")
    headers["X-Tenant-Slug"] = "someone-else"
    response = client.get("/api/bookings", headers=headers)
    assert response.status_code == 403


def test_bookings_are_tenant_scoped(client, admin_headers, headers_for):
    booking_id = _create_booking(client, admin_headers)
    other_admin = headers_for("auth-other-admin", role="admin", tenant="other-co")
    response = client.get(f"/api/bookings/{booking_id}", headers=other_admin)
    assert response.status_code == 404


def test_staff_required_cannot_drop_below_assigned(client, admin_headers):
    alice_id = _provision(client, admin_headers, "auth-alice", "Alice")
    bob_id = _provision(client, admin_headers, "auth-bob", "Bob")
    booking_id = _create_booking(client, admin_headers, staff_required=2)
    for employee_id in (alice_id, bob_id):
        created = client.post(
            f"/api/bookings/{booking_id}/staff", headers=admin_headers, json={"employee_id": employee_id}
        )
        assert created.status_code == 201

    shrink = client.patch(f"/api/bookings/{booking_id}", headers=admin_headers, json={"staff_required": 1})
    assert shrink.status_code == 422
    assert shrink.json()["detail"]["code"] == "capacity_exceeded"

    grow = client.patch(f"/api/bookings/{booking_id}", headers=admin_headers, json={"staff_required": 3})
    assert grow.status_code == 200
    assert grow.json()["staff_required"] == 3


def test_cancelling_booking_cancels_open_assignments(client, admin_headers, headers_for):
    alice_id = _provision(client, admin_headers, "auth-alice", "Alice")
    booking_id = _create_booking(client, admin_headers, staff_required=1)
    created = client.post(
        f"/api/bookings/{booking_id}/staff", headers=admin_headers, json={"employee_id": alice_id}
    )
    assignment_id = created.json()["assignment"]["id"]
    client.put(
        f"/api/bookings/{booking_id}/staff/{assignment_id}",
        headers=headers_for("auth-alice"),
        json={"status": "accepted"},
    )

    cancelled = client.patch(f"/api/bookings/{booking_id}", headers=admin_headers, json={"status": "cancelled"})
    assert cancelled.status_code == 200
    assert cancelled.json()["status"] == "cancelled"
    assert cancelled.json()["staff_fulfilled"] == 0

    staff = client.get(f"/api/bookings/{booking_id}/staff", headers=admin_headers).json()
    assert [row["status"] for row in staff] == ["cancelled"]

    closed = client.post(
        f"/api/bookings/{booking_id}/staff", headers=admin_headers, json={"employee_id": alice_id}
    )
    assert closed.status_code == 409
    assert closed.json()["detail"]["code"] == "booking_closed"

    reopen = client.patch(f"/api/bookings/{booking_id}", headers=admin_headers, json={"status": "pending"})
    assert reopen.status_code == 409
    assert reopen.json()["detail"]["code"] == "invalid_transition"


def test_reassign_and_history(client, admin_headers):
    alice_id = _provision(client, admin_headers, "auth-alice", "Alice")
    carol_id = _provision(client, admin_headers, "auth-carol", "Carol")
    booking_id = _create_booking(client, admin_headers, staff_required=1)
    created = client.post(
        f"/api/bookings/{booking_id}/staff",
        headers=admin_headers,
        json={"employee_id": alice_id, "role": "lead"},
    )
    source_id = created.json()["assignment"]["id"]

    moved = client.post(
        f"/api/bookings/{booking_id}/staff/{source_id}/reassign",
        headers=admin_headers,
        json={"to_employee_id": carol_id, "notes": "Alice is sick"},
    )
    assert moved.status_code == 201
    assert moved.json()["assignment"]["employee_id"] == carol_id
    assert moved.json()["assignment"]["role"] == "lead"
    assert moved.json()["progress"]["assigned"] == 1

    history = client.get(
        f"/api/bookings/{booking_id}/staff/{source_id}/history", headers=admin_headers
    )
    assert history.status_code == 200
    assert [(e["from_status"], e["to_status"]) for e in history.json()] == [
        (None, "assigned"),
        ("assigned", "cancelled"),
    ]
    assert history.json()[0]["actor"] == "admin@example.test"


def test_invalid_payload_is_rejected(client, admin_headers):
    response = client.post(
        "/api/bookings",
        headers=admin_headers,
        json={
            "customer_name": "Jane",
            "service_name": "Clean",
            "scheduled_date": "2030-06-01",
            "scheduled_time": "8am",
            "staff_required": 0,
        },
    )
    assert response.status_code == 422
