import shutil
from datetime import datetime, time, timedelta

from lab_agenda import create_app


def _slot_at(make_slot, day, hour, capacity=1):
    return make_slot(datetime.combine(day, time(hour, 0)), capacity=capacity)


def test_post_without_csrf_token_is_rejected(client, catalog):
    resp = client.post("/api/bookings", json={"patient_id": "p1", "slot_id": "x"})
    assert resp.status_code == 400
    assert resp.get_json()["error"] == "csrf_failed"


def test_generate_and_list_slots(client, csrf_headers, catalog):
    resp = client.post(
        "/api/slots/generate",
        json={
            "service_id": "blood",
            "location_id": "main",
            "date_from": "2030-01-07",
            "date_to": "2030-01-08",
            "step_minutes": 30,
            "capacity": 2,
            "template": {"0": [["09:00", "10:00"]]},
        },
        headers=csrf_headers,
    )
    assert resp.status_code == 201
    assert resp.get_json() == {"success": True, "created": 2}

    listing = client.get("/api/slots?service=blood&location=main&from=2030-01-07&to=2030-01-07").get_json()
    assert listing["count"] == 2
    assert listing["slots"][0]["starts_at"] == "2030-01-07T09:00:00"
    assert listing["slots"][0]["remaining"] == 2

    detail = client.get(f"/api/slots/{listing['slots'][0]['id']}").get_json()
    assert detail["slot"]["bookings"] == []


def test_generate_reports_structured_errors(client, csrf_headers, catalog):
    resp = client.post(
        "/api/slots/generate",
        json={"service_id": "nope", "location_id": "main", "date_from": "2030-01-07", "date_to": "2030-01-08"},
        headers=csrf_headers,
    )
    assert resp.status_code == 404
    body = resp.get_json()
    assert body["success"] is False
    assert body["error"] == "unknown_service"
    assert body["context"] == {"service_id": "nope"}

    resp = client.post(
        "/api/slots/generate",
        json={"service_id": "blood", "location_id": "main", "date_from": "2030-01-07"},
        headers=csrf_headers,
    )
    assert resp.status_code == 400
    assert "date_to" in resp.get_json()["fields"]

    resp = client.post(
        "/api/slots/generate",
        json={"service_id": "blood", "location_id": "main", "date_from": "2030-01-09", "date_to": "2030-01-08"},
        headers=csrf_headers,
    )
    assert resp.status_code == 400
    assert resp.get_json()["error"] == "invalid_range"


def test_listing_requires_service(client):
    resp = client.get("/api/slots")
    assert resp.status_code == 400
    assert resp.get_json()["success"] is False


def test_booking_flow_over_http(client, csrf_headers, tomorrow, make_slot):
    s = _slot_at(make_slot, tomorrow, 9)
    t = _slot_at(make_slot, tomorrow, 11, capacity=5)
    headers = {**csrf_headers, "X-Actor-Id": "desk-1"}

    created = client.post("/api/bookings", json={"patient_id": "p-a", "slot_id": s}, headers=headers)
    assert created.status_code == 201
    booking_id = created.get_json()["booking"]["id"]

    full = client.post("/api/bookings", json={"patient_id": "p-b", "slot_id": s}, headers=headers)
    assert full.status_code == 409
    assert full.get_json()["error"] == "slot_full"

    rebook = client.post("/api/bookings", json={"patient_id": "p-a", "slot_id": s}, headers=headers)
    assert rebook.get_json()["error"] == "slot_full"

    moved = client.post(f"/api/bookings/{booking_id}/reschedule", json={"slot_id": t}, headers=headers)
    assert moved.status_code == 200
    assert moved.get_json()["booking"]["slot_id"] == t

    conflict = client.post("/api/bookings", json={"patient_id": "p-a", "slot_id": t}, headers=headers)
    assert conflict.status_code == 409
    assert conflict.get_json()["error"] == "schedule_conflict"
    assert conflict.get_json()["context"]["booking_id"] == booking_id

    confirmed = client.post(f"/api/bookings/{booking_id}/confirm", headers=headers)
    assert confirmed.get_json()["booking"]["status"] == "CONFIRMED"

    missing_reason = client.post(f"/api/bookings/{booking_id}/cancel", json={}, headers=headers)
    assert missing_reason.status_code == 400
    assert "reason" in missing_reason.get_json()["fields"]

    cancelled = client.post(f"/api/bookings/{booking_id}/cancel", json={"reason": "travel"}, headers=headers)
    assert cancelled.get_json()["booking"]["status"] == "CANCELLED"
    assert cancelled.get_json()["booking"]["cancelled_by"] == "desk-1"

    again = client.post(f"/api/bookings/{booking_id}/cancel", json={"reason": "travel"}, headers=headers)
    assert again.status_code == 409
    assert again.get_json()["error"] == "already_cancelled"

    history = client.get("/api/patients/p-a/bookings").get_json()
    assert [b["id"] for b in history["bookings"]] == [booking_id]
    assert client.get(f"/api/bookings/{booking_id}").get_json()["booking"]["slot_id"] == t
    assert client.get("/api/bookings/unknown").status_code == 404


def test_complete_and_no_show_routes(client, csrf_headers, tomorrow, make_slot):
    slot = _slot_at(make_slot, tomorrow, 9, capacity=2)
    first = client.post("/api/bookings", json={"patient_id": "p1", "slot_id": slot, "confirmed": True}, headers=csrf_headers)
    second = client.post("/api/bookings", json={"patient_id": "p2", "slot_id": slot}, headers=csrf_headers)
    assert first.get_json()["booking"]["status"] == "CONFIRMED"

    done = client.post(f"/api/bookings/{first.get_json()['booking']['id']}/complete", headers=csrf_headers)
    assert done.get_json()["booking"]["status"] == "COMPLETED"
    missed = client.post(f"/api/bookings/{second.get_json()['booking']['id']}/no-show", headers=csrf_headers)
    assert missed.get_json()["booking"]["status"] == "NO_SHOW"
    bad = client.post(f"/api/bookings/{second.get_json()['booking']['id']}/confirm", headers=csrf_headers)
    assert bad.status_code == 409
    assert bad.get_json()["error"] == "invalid_status_transition"


def test_slot_admin_routes(client, csrf_headers, tomorrow, make_slot):
    booked = _slot_at(make_slot, tomorrow, 9, capacity=2)
    empty = _slot_at(make_slot, tomorrow, 10)
    client.post("/api/bookings", json={"patient_id": "p1", "slot_id": booked}, headers=csrf_headers)

    too_small = client.post(f"/api/slots/{booked}/capacity", json={"total_capacity": 0}, headers=csrf_headers)
    assert too_small.status_code == 400
    resized = client.post(f"/api/slots/{booked}/capacity", json={"total_capacity": 3}, headers=csrf_headers)
    assert resized.get_json()["slot"]["total_capacity"] == 3

    assert client.delete(f"/api/slots/{booked}", headers=csrf_headers).get_json()["outcome"] == "deactivated"
    purge = client.post(
        "/api/slots/purge",
        json={"date_from": tomorrow.isoformat(), "date_to": tomorrow.isoformat()},
        headers=csrf_headers,
    )
    assert purge.get_json()["removed"] == 1
    assert client.get(f"/api/slots/{empty}").status_code == 404


def test_schedule_template_routes(client, csrf_headers):
    assert client.get("/api/schedule/template").get_json()["scope"] == "builtin"
    saved = client.put(
        "/api/schedule/template",
        json={"service_id": "blood", "location_id": "main", "template": {"1": [["08:00", "12:00"]]}},
        headers=csrf_headers,
    )
    assert saved.status_code == 200
    assert saved.get_json()["scope"] == "blood:main"
    loaded = client.get("/api/schedule/template?service=blood&location=main").get_json()
    assert loaded["template"]["1"] == [["08:00", "12:00"]]

    invalid = client.put("/api/schedule/template", json={"template": {"1": [["12:00", "08:00"]]}}, headers=csrf_headers)
    assert invalid.status_code == 400
    assert invalid.get_json()["error"] == "invalid_template"

    malformed = client.put("/api/schedule/template", json={"template": {"0": 5}}, headers=csrf_headers)
    assert malformed.status_code == 400
    assert malformed.get_json()["error"] == "invalid_template"


def test_holiday_routes(client, csrf_headers):
    day = (datetime.now().date() + timedelta(days=30)).isoformat()
    put = client.put(f"/api/holidays/{day}", json={"label": "Inventory day", "scope": "main"}, headers=csrf_headers)
    assert put.status_code == 200
    assert put.get_json()["holiday"]["label"] == "Inventory day"
    assert client.get(f"/api/holidays?from={day}&to={day}").get_json()["count"] == 1

    past = client.put("/api/holidays/2020-01-01", json={"label": "Old"}, headers=csrf_headers)
    assert past.status_code == 409
    assert past.get_json()["error"] == "holiday_in_past"

    assert client.delete(f"/api/holidays/{day}?scope=main", headers=csrf_headers).status_code == 200
    assert client.delete(f"/api/holidays/{day}?scope=main", headers=csrf_headers).status_code == 404


def test_booking_rate_limit(tmp_path, monkeypatch, _template_db):
    db_path = tmp_path / "app.db"
    shutil.copy2(_template_db, db_path)
    monkeypatch.setenv("LAB_DB_PATH", str(db_path))
    monkeypatch.setenv("LAB_AUTO_MIGRATE", "0")
    monkeypatch.setenv("AGENDA_BOOKING_RATE_LIMIT", "2 per minute")
    app = create_app()
    app.config.update(TESTING=True, WTF_CSRF_ENABLED=False)
    client = app.test_client()

    statuses = [client.post("/api/bookings", json={"patient_id": "p1", "slot_id": "nope"}).status_code for _ in range(3)]
    assert statuses == [404, 404, 429]
    assert client.post("/api/bookings", json={"patient_id": "p1", "slot_id": "nope"}).get_json()["error"] == "rate_limited"
