from datetime import date, datetime, timezone

import main
from conftest import add_vehicle
from notifications import GENERIC_EMAIL

CONTACT = {
    "name": "Sam Rivera",
    "email": "sam@example.com",
    "phone": "352-555-0111",
    "subject": "Question about a truck",
    "message": "Is it still available?",
}


def test_root(client):
    assert client.get("/").json() == {"message": "Auto Pro Backend Running"}


def test_health_reports_store(client):
    body = client.get("/test").json()
    assert body["connection_status"] == "Connected"
    assert body["backend"].endswith("Running")


def test_health_without_database(client):
    main.app.dependency_overrides[main.get_store] = lambda: None
    body = client.get("/test").json()
    assert body["connection_status"] == "Not Connected"


def test_contact_requires_fields(client):
    response = client.post("/api/contact", json={"name": "Sam", "email": "sam@example.com"})
    assert response.status_code == 400
    assert response.json()["detail"] == "Missing required fields"


def test_contact_rejects_bad_email(client):
    response = client.post("/api/contact", json={**CONTACT, "email": "sam-at-example"})
    assert response.status_code == 400
    assert response.json()["detail"] == "Please enter a valid email address"


def test_contact_reports_the_failing_field(client, store):
    response = client.post("/api/contact", json={**CONTACT, "message": "x" * 5001})
    assert response.status_code == 400
    assert response.json()["detail"].startswith("Invalid message:")
    assert store.count("contactmessage") == 0


def test_contact_store_failure_gives_generic_message(client, store):
    store.fail = True
    response = client.post("/api/contact", json=CONTACT)
    assert response.status_code == 500
    assert "Database error" not in response.json()["detail"]
    assert "call us at (352) 933-5181" in response.json()["detail"]


def test_contact_is_stored_and_forwarded(client, store, notifier):
    response = client.post("/api/contact", json=CONTACT)
    assert response.json() == {"success": True, "message": "Message sent successfully"}
    saved = store.find_one("contactmessage", {"email": "sam@example.com"})
    assert saved["read"] is False
    assert saved["responded"] is False
    function, payload = notifier.sent[0]
    assert function == GENERIC_EMAIL
    assert payload["reply_to"] == "sam@example.com"


def test_contact_about_vehicle_counts_inquiry(client, store, notifier):
    vehicle = add_vehicle(store, year=2017, make="Ford", model="F-150", price=21500.0, stock_number="AP55")
    client.post("/api/contact", json={**CONTACT, "vehicle_id": vehicle["id"]})
    assert store.get("vehicle", vehicle["id"])["inquiries"] == 1
    assert "2017 Ford F-150 - $21,500" in notifier.sent[0][1]["html"]


def test_contact_with_unknown_vehicle_still_succeeds(client, store):
    response = client.post("/api/contact", json={**CONTACT, "vehicle_id": "gone"})
    assert response.status_code == 200
    assert store.count("contactmessage") == 1


def test_contact_notification_failure_is_swallowed(client, notifier):
    notifier.failing = {GENERIC_EMAIL}
    assert client.post("/api/contact", json=CONTACT).status_code == 200


def test_admin_messages(client, admin_headers):
    client.post("/api/contact", json=CONTACT)
    messages = client.get("/api/admin/messages", headers=admin_headers).json()
    assert messages["count"] == 1
    message_id = messages["messages"][0]["id"]
    assert client.patch(f"/api/admin/messages/{message_id}/read", headers=admin_headers).json()["read"] is True
    assert client.get("/api/admin/messages", params={"unread": "true"}, headers=admin_headers).json()["count"] == 0
    assert client.patch("/api/admin/messages/missing/read", headers=admin_headers).status_code == 404


def test_sitemap(client, store, settings):
    listed = add_vehicle(store, updated_at=datetime(2024, 5, 1, tzinfo=timezone.utc))
    sold = add_vehicle(store, status="sold")

    response = client.get("/sitemap.xml")
    assert response.status_code == 200
    assert response.headers["content-type"].startswith("application/xml")
    assert response.headers["cache-control"] == "public, max-age=3600"
    xml = response.text
    for path in ("/", "/about", "/services", "/inventory", "/specials", "/contact", "/appointment"):
        assert f"<loc>{settings.site_url}{path}</loc>" in xml
    assert f"/inventory/{listed['id']}</loc>" in xml
    assert "<lastmod>2024-05-01T00:00:00+00:00</lastmod>" in xml
    assert sold["id"] not in xml


def test_sitemap_survives_store_failure(client, store):
    store.fail = True
    response = client.get("/sitemap.xml")
    assert response.status_code == 200
    assert "/inventory/" not in response.text


BRAKES = {"name": "Brake Repair", "category": "Repair", "description": "Pads, rotors and calipers", "order": 2}


def test_service_catalog(client, admin_headers):
    created = client.post("/api/services", json=BRAKES, headers=admin_headers)
    assert created.status_code == 201
    assert created.json()["slug"] == "brake-repair"
    client.post(
        "/api/services",
        json={"name": "Oil Change", "category": "Maintenance", "description": "Synthetic oil", "order": 1},
        headers=admin_headers,
    )
    hidden = client.post(
        "/api/services",
        json={"name": "Towing", "category": "Towing", "description": "Local towing", "active": False},
        headers=admin_headers,
    ).json()

    public = client.get("/api/services").json()
    assert [s["name"] for s in public["services"]] == ["Oil Change", "Brake Repair"]
    assert client.get("/api/services/brake-repair").json()["name"] == "Brake Repair"
    assert client.get(f"/api/services/{hidden['slug']}").status_code == 404
    assert client.get("/api/admin/services", headers=admin_headers).json()["count"] == 3

    duplicate = client.post("/api/services", json=BRAKES, headers=admin_headers)
    assert duplicate.status_code == 400


def test_service_update_and_delete(client, admin_headers):
    service = client.post("/api/services", json=BRAKES, headers=admin_headers).json()
    updated = client.put(
        f"/api/services/{service['id']}", json={"name": "Brake Service", "slug": None}, headers=admin_headers
    )
    assert updated.status_code == 200
    assert updated.json()["slug"] == "brake-service"
    assert client.put(f"/api/services/{service['id']}", json={"category": "Bogus"}, headers=admin_headers).status_code == 400
    assert client.delete(f"/api/services/{service['id']}", headers=admin_headers).status_code == 200
    assert client.delete(f"/api/services/{service['id']}", headers=admin_headers).status_code == 404


def test_services_require_admin(client):
    assert client.post("/api/services", json=BRAKES).status_code == 401


def test_analytics(client, store, admin_headers):
    add_vehicle(store)
    add_vehicle(store, status="sold")
    store.insert("appointment", {"name": "A", "status": "pending", "date": date.today().isoformat()})
    store.insert("appointment", {"name": "B", "status": "confirmed", "date": "2030-01-01"})
    store.insert("testimonial", {"name": "C", "approved": True})

    body = client.get("/api/admin/analytics", headers=admin_headers).json()
    assert body["stats"]["total_vehicles"] == 2
    assert body["stats"]["available_vehicles"] == 1
    assert body["stats"]["sold_vehicles"] == 1
    assert body["stats"]["total_appointments"] == 2
    assert body["stats"]["pending_appointments"] == 1
    assert body["stats"]["today_appointments"] == 1
    assert body["stats"]["total_testimonials"] == 1
    assert len(body["recent_vehicles"]) == 2
