from datetime import date

import pytest

import appointments
from appointments import check_transition, validate_booking
from config import get_settings
from errors import TransitionError, ValidationError
from notifications import CUSTOMER_CONFIRMATION, SHOP_NOTIFICATION

JANE = {
    "name": "Jane Doe",
    "email": "jane@x.com",
    "phone": "352-555-0100",
    "service": "oil-change",
    "date": "2025-08-01",
    "time": "10:00 AM",
}


@pytest.mark.parametrize("missing", ["name", "email", "phone", "service", "date", "time"])
def test_booking_names_missing_field(client, missing):
    payload = {k: v for k, v in JANE.items() if k != missing}
    response = client.post("/api/appointments", json=payload)
    assert response.status_code == 400
    assert response.json()["detail"] == f"{missing.capitalize()} is required"


def test_first_missing_field_wins():
    with pytest.raises(ValidationError) as exc:
        validate_booking({"phone": "3525550100", "date": "2025-08-01"})
    assert exc.value.message == "Name is required"

    with pytest.raises(ValidationError) as exc:
        validate_booking({**JANE, "email": "   ", "service": ""})
    assert exc.value.message == "Email is required"


@pytest.mark.parametrize("email", ["jane", "jane@x", "jane @x.com", "@x.com", "jane@x .com"])
def test_booking_rejects_bad_email(client, email):
    response = client.post("/api/appointments", json={**JANE, "email": email})
    assert response.status_code == 400
    assert response.json()["detail"] == "Please enter a valid email address"


@pytest.mark.parametrize("phone", ["555-0100", "(352) 555-01", "call me"])
def test_booking_rejects_short_phone(client, phone):
    response = client.post("/api/appointments", json={**JANE, "phone": phone})
    assert response.status_code == 400
    assert response.json()["detail"] == "Please enter a valid phone number"


def test_jane_doe_booking(client, store, notifier):
    response = client.post("/api/appointments", json=JANE)
    assert response.status_code == 200
    body = response.json()
    assert body["success"] is True
    created = body["appointment"]
    assert created["status"] == "pending"
    assert created["urgency"] == "medium"
    assert created["confirmation_sent"] is False
    assert created["email"] == "jane@x.com"

    channels = [function for function, _ in notifier.sent]
    assert channels == [SHOP_NOTIFICATION, CUSTOMER_CONFIRMATION]
    stored = store.get("appointment", created["id"])
    assert stored["confirmation_sent"] is True


def test_booking_ignores_client_status_and_urgency(client, store):
    payload = {**JANE, "status": "completed", "urgency": "emergency", "email": "  Jane@X.com "}
    created = client.post("/api/appointments", json=payload).json()["appointment"]
    stored = store.get("appointment", created["id"])
    assert stored["status"] == "pending"
    assert stored["urgency"] == "medium"
    assert stored["email"] == "jane@x.com"


def test_booking_collects_vehicle_info(client):
    payload = {**JANE, "vehicleYear": "2015", "vehicleMake": "Ford", "vehicleModel": "F-150"}
    created = client.post("/api/appointments", json=payload).json()["appointment"]
    assert created["vehicle_info"]["year"] == "2015"
    assert created["vehicle_info"]["make"] == "Ford"
    assert created["vehicle_info"]["model"] == "F-150"


def test_failed_emails_do_not_fail_booking(client, store, notifier):
    notifier.failing = {SHOP_NOTIFICATION, CUSTOMER_CONFIRMATION}
    response = client.post("/api/appointments", json=JANE)
    assert response.status_code == 200
    stored = store.get("appointment", response.json()["appointment"]["id"])
    assert stored["confirmation_sent"] is False


def test_crashing_notifier_does_not_fail_booking(client, store, notifier):
    notifier.explode = True
    response = client.post("/api/appointments", json=JANE)
    assert response.status_code == 200
    assert store.count("appointment") == 1


def test_only_confirmation_failure_leaves_flag_unset(client, store, notifier):
    notifier.failing = {CUSTOMER_CONFIRMATION}
    created = client.post("/api/appointments", json=JANE).json()["appointment"]
    assert store.get("appointment", created["id"])["confirmation_sent"] is False


def test_store_failure_returns_call_us_message(client, store):
    store.fail = True
    response = client.post("/api/appointments", json=JANE)
    assert response.status_code == 500
    body = response.json()
    assert "(352) 933-5181" in body["detail"]
    assert body["detail"].startswith("Sorry, there was a problem submitting your appointment")
    assert "debug" in body


def test_store_failure_hides_debug_in_production(client, store, monkeypatch):
    monkeypatch.setenv("APP_ENV", "production")
    get_settings.cache_clear()
    store.fail = True
    response = client.post("/api/appointments", json=JANE)
    assert response.status_code == 500
    assert "debug" not in response.json()


def test_listing_requires_admin(client):
    assert client.get("/api/appointments").status_code == 401


def test_listing_filters_and_orders(client, store, admin_headers):
    today = date.today().isoformat()
    client.post("/api/appointments", json={**JANE, "date": today, "time": "2:00 PM"})
    client.post("/api/appointments", json={**JANE, "date": today, "time": "10:00 AM"})
    client.post("/api/appointments", json={**JANE, "date": "2030-01-01"})

    response = client.get("/api/appointments", params={"date": "today"}, headers=admin_headers)
    assert response.status_code == 200
    items = response.json()["appointments"]
    assert [a["time"] for a in items] == ["10:00 AM", "2:00 PM"]

    assert client.get("/api/appointments", params={"status": "confirmed"}, headers=admin_headers).json()["count"] == 0
    assert client.get("/api/appointments", params={"status": "pending"}, headers=admin_headers).json()["count"] == 3


def test_status_follows_transition_table(client, admin_headers):
    appointment_id = client.post("/api/appointments", json=JANE).json()["appointment"]["id"]
    url = f"/api/appointments/{appointment_id}"

    assert client.put(url, json={"status": "confirmed"}, headers=admin_headers).status_code == 200
    response = client.put(url, json={"status": "completed"}, headers=admin_headers)
    assert response.status_code == 409
    assert "confirmed" in response.json()["detail"]

    assert client.put(url, json={"status": "in-progress"}, headers=admin_headers).status_code == 200
    assert client.put(url, json={"status": "completed"}, headers=admin_headers).status_code == 200
    assert client.put(url, json={"status": "completed"}, headers=admin_headers).status_code == 200
    assert client.put(url, json={"status": "pending"}, headers=admin_headers).status_code == 409
    assert client.get(url, headers=admin_headers).json()["status"] == "completed"


def test_admin_update_assigns_technician(client, admin_headers):
    appointment_id = client.post("/api/appointments", json=JANE).json()["appointment"]["id"]
    response = client.put(
        f"/api/appointments/{appointment_id}",
        json={"assigned_technician": "Mike", "estimated_cost": {"labor": 80, "parts": 40, "total": 120}},
        headers=admin_headers,
    )
    assert response.status_code == 200
    assert response.json()["assigned_technician"] == "Mike"
    assert response.json()["estimated_cost"]["total"] == 120
    assert response.json()["status"] == "pending"


def test_add_note(client, admin_headers):
    appointment_id = client.post("/api/appointments", json=JANE).json()["appointment"]["id"]
    response = client.post(
        f"/api/appointments/{appointment_id}/notes",
        json={"author": "Front desk", "message": "Customer will drop off early"},
        headers=admin_headers,
    )
    assert response.status_code == 200
    notes = response.json()["notes"]
    assert len(notes) == 1
    assert notes[0]["author"] == "Front desk"
    assert notes[0]["is_customer_visible"] is False


def test_unknown_appointment_is_404(client, admin_headers):
    assert client.get("/api/appointments/missing", headers=admin_headers).status_code == 404


def test_check_transition_rules():
    check_transition("pending", "pending")
    check_transition("confirmed", "pending")
    with pytest.raises(TransitionError):
        check_transition("cancelled", "confirmed")
    with pytest.raises(TransitionError):
        check_transition("no-show", "in-progress")
    with pytest.raises(ValidationError):
        check_transition("pending", "archived")
    assert appointments.ALLOWED_TRANSITIONS["completed"] == set()
