from __future__ import annotations

from app.db import SessionLocal
from app.models import Notification
from app.seed.maintenance_templates import SEED, seed_templates

from conftest import headers

HOME = headers("owner@example.com")
ADMIN = headers("ops@example.com", "admin")


def _mk_property(client) -> int:
    r = client.post(
        "/api/properties",
        json={"name": "Main house", "address": "12 Elm St", "city": "Detroit", "state": "MI", "zip": "48201"},
        headers=HOME,
    )
    assert r.status_code == 200, r.text
    return r.json()["id"]


def test_health(client):
    r = client.get("/api/health")
    assert r.status_code == 200
    assert r.json()["status"] == "ok"


def test_bad_timezone_is_rejected(client):
    r = client.post(
        "/api/properties",
        json={"address": "1 Main", "city": "X", "state": "MI", "zip": "1", "timezone": "Mars/Olympus"},
        headers=HOME,
    )
    assert r.status_code == 400


def test_plan_tasks_and_completion(client):
    db = SessionLocal()
    try:
        seed_templates(db)
    finally:
        db.close()

    pid = _mk_property(client)
    r = client.post(f"/api/properties/{pid}/maintenance-plan", headers=HOME)
    assert r.json()["count"] == len(SEED)
    assert client.post(f"/api/properties/{pid}/maintenance-plan", headers=HOME).json()["count"] == 0

    r = client.get("/api/maintenance/tasks", headers=HOME)
    assert r.status_code == 200
    body = r.json()
    all_tasks = body["overdue"] + body["due_soon"] + body["upcoming"] + body["completed"]
    assert len(all_tasks) == len(SEED)

    filters = next(t for t in all_tasks if t["title"] == "Replace HVAC filters")
    assert filters["frequency_label"] == "Every 3 months"

    r = client.post(
        f"/api/maintenance/tasks/{filters['id']}/complete",
        json={"notes": "MERV 11", "cost_cents": 2400, "completed_at": "2024-02-01T10:00:00"},
        headers=HOME,
    )
    assert r.status_code == 200, r.text
    assert r.json()["next_due_date"] == "2024-05-01"

    r = client.get(f"/api/maintenance/tasks/{filters['id']}/completions", headers=HOME)
    assert [c["notes"] for c in r.json()] == ["MERV 11"]

    r = client.get("/api/maintenance/calendar", params={"year": 2024, "month": 2}, headers=HOME)
    assert r.status_code == 200
    cal = r.json()
    assert len(cal["days"]) == 29
    assert cal["days"][0]["completed_task_ids"] == [filters["id"]]

    r = client.post(
        "/api/maintenance/create-request",
        json={"property_id": pid, "task_ids": [filters["id"]]},
        headers=HOME,
    )
    assert r.status_code == 200, r.text
    assert r.json()["category"] == "hvac"
    assert r.json()["linked_count"] == 1


def test_custom_task_crud(client):
    pid = _mk_property(client)

    r = client.post(
        "/api/maintenance/tasks",
        json={
            "property_id": pid,
            "title": "Clean dryer vent",
            "category": "appliances",
            "frequency_type": "interval_years",
            "next_due_date": "2030-01-15",
        },
        headers=HOME,
    )
    assert r.status_code == 200, r.text
    task = r.json()
    assert task["is_custom"] is True
    assert task["due_status"] == "upcoming"

    r = client.patch(f"/api/maintenance/tasks/{task['id']}", json={"title": "Clean dryer duct"}, headers=HOME)
    assert r.json()["title"] == "Clean dryer duct"

    r = client.delete(f"/api/maintenance/tasks/{task['id']}", headers=HOME)
    assert r.json()["status"] == "archived"
    assert client.delete(f"/api/maintenance/tasks/{task['id']}", headers=HOME).status_code == 409

    r = client.post(
        "/api/maintenance/tasks",
        json={"property_id": pid, "title": "Bad", "category": "x", "frequency_type": "interval_days", "frequency_interval": 0},
        headers=HOME,
    )
    assert r.status_code == 400

    assert client.get(f"/api/maintenance/tasks/{task['id']}", headers=headers("stranger@example.com")).status_code == 404


def test_next_due_date_helper(client):
    r = client.post(
        "/api/maintenance/next-due-date",
        json={"frequency_type": "seasonal_months", "suggested_months": [4, 10], "from": "2024-10-20"},
        headers=HOME,
    )
    assert r.json() == {"next_due_date": "2025-04-01"}

    r = client.post("/api/maintenance/next-due-date", json={"frequency_type": "one_time"}, headers=HOME)
    assert r.json() == {"next_due_date": None}


def test_template_admin(client):
    payload = {"title": "Drain sediment", "category": "plumbing", "frequency_type": "interval_months", "frequency_interval": 6}

    assert client.post("/api/admin/maintenance-templates", json=payload, headers=HOME).status_code == 403

    r = client.post("/api/admin/maintenance-templates", json=payload, headers=ADMIN)
    assert r.status_code == 200, r.text
    tid = r.json()["id"]
    assert client.post("/api/admin/maintenance-templates", json=payload, headers=ADMIN).status_code == 409

    r = client.patch(f"/api/admin/maintenance-templates/{tid}", json={"is_active": False}, headers=ADMIN)
    assert r.json()["is_active"] is False

    r = client.get("/api/admin/maintenance-templates", params={"include_inactive": False}, headers=ADMIN)
    assert r.json() == []

    bad = {**payload, "title": "Seasonal nothing", "frequency_type": "seasonal_months", "suggested_months": [14]}
    assert client.post("/api/admin/maintenance-templates", json=bad, headers=ADMIN).status_code == 400


def test_notifications_read(client):
    me = client.get("/api/auth/me", headers=HOME).json()
    db = SessionLocal()
    try:
        db.add(Notification(user_id=me["user_id"], kind="task_overdue", title="Overdue: Filters"))
        db.commit()
    finally:
        db.close()

    r = client.get("/api/notifications", params={"unread_only": True}, headers=HOME)
    assert len(r.json()) == 1
    nid = r.json()[0]["id"]

    r = client.post(f"/api/notifications/{nid}/read", headers=HOME)
    assert r.json()["read_at"] is not None
    assert client.get("/api/notifications", params={"unread_only": True}, headers=HOME).json() == []
    assert client.post(f"/api/notifications/{nid}/read", headers=headers("stranger@example.com")).status_code == 404
