from datetime import datetime, time, timedelta
from zoneinfo import ZoneInfo

import pytest
from fastapi.testclient import TestClient

from workshop_engine.config.settings import settings
from workshop_engine.core.rate_limit import limiter
from workshop_engine.database.supabase_client import get_service_supabase, get_supabase
from workshop_engine.main import app
from workshop_engine.modules.bookings import routes as booking_routes

from conftest import STAFF_TOKEN, next_weekday

STAFF = {"Authorization": f"Bearer {STAFF_TOKEN}"}


@pytest.fixture
def client(supabase):
    app.dependency_overrides[get_supabase] = lambda: supabase
    app.dependency_overrides[get_service_supabase] = lambda: supabase
    limiter.reset()
    yield TestClient(app)
    app.dependency_overrides.clear()


def public_booking(on_date, name="Mia Chen", phone="+1 555 010 2233"):
    return {
        "date": on_date.isoformat(),
        "attendee": {"attendee_name": name, "guardian_name": "Lin Chen", "phone_number": phone, "email": "lin@example.com"},
    }


def test_health(client):
    response = client.get("/health")

    assert response.status_code == 200
    assert response.headers["X-Content-Type-Options"] == "nosniff"


def test_ready_needs_a_configured_store(client, monkeypatch):
    monkeypatch.setattr(settings, "supabase_url", "")
    assert client.get("/ready").status_code == 503

    monkeypatch.setattr(settings, "supabase_url", "https://project.supabase.co")
    monkeypatch.setattr(settings, "supabase_key", "anon-key")
    assert client.get("/ready").json() == {"status": "ready", "outreach_enabled": False}


def test_staff_routes_require_a_valid_token(client):
    assert client.get("/api/v1/workshop-templates").status_code in (401, 403)
    response = client.get("/api/v1/workshop-templates", headers={"Authorization": "Bearer nope"})
    assert response.status_code == 401


def test_create_template_and_share_link(client):
    response = client.post("/api/v1/workshop-templates", headers=STAFF, json={
        "title": "Intro to Robotics",
        "duration": 90,
        "recurrence_type": "weekly",
        "recurrence_pattern": {"days": [2, 4], "time": "16:00"},
        "capacity_per_slot": 8,
    })

    assert response.status_code == 201
    template = response.json()
    link = client.get(f"/api/v1/workshop-templates/{template['id']}/share-link", headers=STAFF).json()
    assert link["url"].endswith(f"/?mode=booking&slug={template['shareable_slug']}")


def test_invalid_template_is_a_422_naming_the_field(client):
    response = client.post("/api/v1/workshop-templates", headers=STAFF, json={
        "title": "Broken",
        "recurrence_type": "weekly",
        "recurrence_pattern": {"days": [], "time": "16:00"},
    })

    assert response.status_code == 422
    assert response.json()["detail"]["field"] == "recurrence_pattern"


def test_virtual_calendar_and_summary(client, weekly_template, today):
    tuesday = next_weekday(today, 2)
    params = {"from_date": tuesday.isoformat(), "window_days": 14}

    slots = client.get("/api/v1/workshop-slots/virtual", headers=STAFF, params=params).json()
    summary = client.get("/api/v1/workshop-slots/summary", headers=STAFF, params=params).json()

    assert len(slots) == 4
    assert slots[0]["remaining_seats"] == 3
    assert slots[0]["is_full"] is False
    assert summary["total_events"] == 4
    assert summary["total_capacity"] == 12


def test_staff_booking_and_roster(client, weekly_template, today):
    tuesday = next_weekday(today, 2)
    response = client.post("/api/v1/bookings", headers=STAFF, json={
        "slot": {"workshop_template_id": weekly_template["id"], "date": tuesday.isoformat()},
        "attendee": {"attendee_name": "Mia Chen", "phone_number": "5550102233"},
    })

    assert response.status_code == 201
    booking = response.json()
    assert booking["source"] == "staff"
    roster = client.get(f"/api/v1/workshop-slots/{booking['workshop_slot_id']}/bookings", headers=STAFF).json()
    assert [b["id"] for b in roster] == [booking["id"]]
    history = client.get("/api/v1/bookings", headers=STAFF, params={"phone": "555-010-2233"}).json()
    assert [b["id"] for b in history] == [booking["id"]]


def test_booking_request_needs_a_slot(client):
    response = client.post("/api/v1/bookings", headers=STAFF, json={
        "slot": {},
        "attendee": {"attendee_name": "Mia Chen", "phone_number": "5550102233"},
    })

    assert response.status_code == 422


def test_public_page_and_booking(client, one_time_template, today):
    drone_day = today + timedelta(days=10)

    page = client.get("/api/v1/public/workshops/drone-day-x9y8z").json()
    assert page["template"]["title"] == "Drone Day"
    assert page["schedule"] == f"{drone_day.isoformat()} at 10:00"
    assert [s["date_str"] for s in page["slots"]] == [drone_day.isoformat()]

    first = client.post("/api/v1/public/workshops/drone-day-x9y8z/bookings", json=public_booking(drone_day))
    client.post("/api/v1/public/workshops/drone-day-x9y8z/bookings", json=public_booking(drone_day, "Leo", "5550100000"))
    full = client.post("/api/v1/public/workshops/drone-day-x9y8z/bookings", json=public_booking(drone_day, "Ava", "5550100001"))

    assert first.status_code == 201
    assert first.json()["source"] == "public"
    assert full.status_code == 409
    assert full.json()["detail"]["error"] == "capacity_exceeded"
    page = client.get("/api/v1/public/workshops/drone-day-x9y8z").json()
    assert page["slots"][0]["is_full"] is True


def test_public_booking_rejects_past_dates_and_unknown_workshops(client, one_time_template, today):
    past = client.post("/api/v1/public/workshops/drone-day-x9y8z/bookings", json=public_booking(today - timedelta(days=1)))
    unknown = client.get("/api/v1/public/workshops/no-such-workshop")

    assert past.status_code == 422
    assert unknown.status_code == 404


def test_public_booking_rejects_a_session_that_already_started(client, one_time_template, today, monkeypatch):
    drone_day = today + timedelta(days=10)
    local = ZoneInfo(settings.academy_timezone)
    url = "/api/v1/public/workshops/drone-day-x9y8z/bookings"

    monkeypatch.setattr(booking_routes, "academy_now", lambda: datetime.combine(drone_day, time(10, 30), tzinfo=local))
    late = client.post(url, json=public_booking(drone_day))
    monkeypatch.setattr(booking_routes, "academy_now", lambda: datetime.combine(drone_day, time(9, 30), tzinfo=local))
    on_time = client.post(url, json=public_booking(drone_day))

    assert late.status_code == 422
    assert late.json()["detail"]["field"] == "date"
    assert on_time.status_code == 201


def test_public_booking_is_rate_limited(client, supabase, today):
    supabase.add(
        "workshop_templates",
        title="Open Lab",
        duration=60,
        recurrence_type="one-time",
        recurrence_pattern={"date": (today + timedelta(days=3)).isoformat(), "time": "18:00"},
        capacity_per_slot=50,
        shareable_slug="open-lab-00000",
    )
    body = public_booking(today + timedelta(days=3))

    codes = [client.post("/api/v1/public/workshops/open-lab-00000/bookings", json=body).status_code for _ in range(11)]

    assert codes[:10] == [201] * 10
    assert codes[10] == 429


def test_transitions_over_http(client, weekly_template, today):
    tuesday = next_weekday(today, 2)
    booking = client.post("/api/v1/bookings", headers=STAFF, json={
        "slot": {"workshop_template_id": weekly_template["id"], "date": tuesday.isoformat()},
        "attendee": {"attendee_name": "Mia Chen", "phone_number": "5550102233"},
    }).json()
    url = f"/api/v1/bookings/{booking['id']}/transitions"

    cancelled = client.post(url, headers=STAFF, json={"event": "cancel"})
    invalid = client.post(url, headers=STAFF, json={"event": "mark_attended"})
    unknown = client.post(url, headers=STAFF, json={"event": "teleport"})

    assert cancelled.json()["status"] == "cancelled"
    assert invalid.status_code == 409
    assert invalid.json()["detail"]["error"] == "invalid_transition"
    assert unknown.status_code == 422
    assert client.get(f"/api/v1/bookings/{booking['id']}", headers=STAFF).json()["status"] == "cancelled"


def test_unknown_booking_is_404(client):
    assert client.get("/api/v1/bookings/missing", headers=STAFF).status_code == 404


def test_pipeline_sync_endpoint(client, supabase):
    supabase.add("leads", name="Mia", phone="5550102233", status="new")
    supabase.add("bookings", workshop_slot_id="slot-1", attendee_name="Mia", phone_number="555 010 2233")

    response = client.post("/api/v1/pipeline/sync", headers=STAFF)

    assert response.status_code == 200
    assert response.json()["promoted"] == 1


def test_retry_deferred_endpoint(client):
    response = client.post("/api/v1/pipeline/retry-deferred", headers=STAFF)

    assert response.json() == {"promoted": 0, "retried": 0, "deferred": 0}


def test_action_center_endpoint(client, one_time_template, today):
    drone_day = today + timedelta(days=10)
    booking = client.post("/api/v1/bookings", headers=STAFF, json={
        "slot": {"workshop_template_id": one_time_template["id"], "date": drone_day.isoformat()},
        "attendee": {"attendee_name": "Mia Chen", "phone_number": "5550102233"},
    }).json()
    client.post(f"/api/v1/bookings/{booking['id']}/transitions", headers=STAFF, json={"event": "send_reminder"})

    response = client.get("/api/v1/bookings/action-center", headers=STAFF)

    assert response.status_code == 200
    body = response.json()
    assert body["needs_reminder"] == []
    assert [item["booking"]["id"] for item in body["awaiting_reconfirm"]] == [booking["id"]]
    assert "reconfirm" in body["awaiting_reconfirm"][0]["allowed_events"]
