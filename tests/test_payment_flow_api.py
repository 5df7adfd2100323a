from __future__ import annotations

from conftest import headers

HOME = headers("owner@example.com")
PRO = headers("pro@example.com", "provider")
ADMIN = headers("ops@example.com", "admin")


def _setup_request(client) -> int:
    # fixed fee regardless of when the suite runs
    r = client.put("/api/admin/config/after_hours", json={"value": {"enabled": False}}, headers=ADMIN)
    assert r.status_code == 200, r.text

    r = client.post(
        "/api/properties",
        json={"address": "12 Elm St", "city": "detroit", "state": "mi", "zip": "48201", "timezone": "America/Detroit"},
        headers=HOME,
    )
    assert r.status_code == 200, r.text
    prop = r.json()
    assert prop["city"] == "Detroit" and prop["state"] == "MI"

    r = client.put("/api/providers/me", json={"business_name": "Fix-It Co", "stripe_account_id": "acct_123"}, headers=PRO)
    assert r.status_code == 200, r.text

    r = client.post(
        "/api/service-requests",
        json={"property_id": prop["id"], "title": "Kitchen sink leak", "category": "Plumbing", "urgency": "high"},
        headers=HOME,
    )
    assert r.status_code == 200, r.text
    return r.json()["id"]


def test_full_money_flow(client, gateway):
    sr_id = _setup_request(client)

    r = client.post(f"/api/service-requests/{sr_id}/diagnostic-fee", headers=HOME)
    assert r.status_code == 200, r.text
    assert r.json()["fee_cents"] == 7900
    assert client.post(f"/api/service-requests/{sr_id}/diagnostic-fee", headers=HOME).status_code == 409

    # provider sees the open request in the pool
    r = client.get("/api/service-requests", headers=PRO)
    assert [x["id"] for x in r.json()] == [sr_id]

    r = client.post(
        f"/api/service-requests/{sr_id}/estimates",
        json={"total_cents": 10000, "line_items": [{"description": "Replace P-trap", "amount_cents": 10000}]},
        headers=PRO,
    )
    assert r.status_code == 200, r.text
    est = r.json()
    assert est["status"] == "draft"
    assert est["line_items"][0]["description"] == "Replace P-trap"

    assert client.post(f"/api/estimates/{est['id']}/send", headers=PRO).json()["status"] == "sent"
    assert client.get(f"/api/estimates/{est['id']}", headers=HOME).json()["status"] == "viewed"

    r = client.post(f"/api/estimates/{est['id']}/approve", headers=HOME)
    assert r.status_code == 200, r.text
    auth = r.json()
    assert (auth["authorized_amount"], auth["buffer_amount"], auth["platform_fee"]) == (12000, 2000, 600)
    assert auth["client_secret"].endswith("_secret")

    r = client.get(f"/api/service-requests/{sr_id}/payment-state", headers=HOME)
    assert r.json()["state"] == "estimate_approved"

    r = client.post(
        f"/api/service-requests/{sr_id}/change-order", json={"additional_cents": 1000, "reason": "Extra fitting"}, headers=PRO
    )
    assert r.status_code == 400
    assert r.json()["error"] == "change_order_not_required"
    assert r.json()["percentage_increase"] == 10.0

    r = client.post(
        f"/api/service-requests/{sr_id}/change-order", json={"additional_cents": 2000, "reason": "Corroded valve"}, headers=PRO
    )
    assert r.status_code == 200, r.text
    co = r.json()

    r = client.post(f"/api/change-orders/{co['id']}/approve", headers=HOME)
    assert r.status_code == 200, r.text
    assert r.json()["authorized_amount"] == 14400

    r = client.post(f"/api/service-requests/{sr_id}/invoices", json={"total_cents": 15000}, headers=PRO)
    assert r.status_code == 400
    assert r.json()["error"] == "authorization_ceiling_exceeded"

    r = client.post(f"/api/service-requests/{sr_id}/invoices", json={"total_cents": 14000}, headers=PRO)
    assert r.status_code == 200, r.text
    inv = r.json()
    assert client.get(f"/api/service-requests/{sr_id}/payment-state", headers=HOME).json()["state"] == (
        "invoice_pending_approval"
    )

    # the provider cannot approve its own invoice
    assert client.post(f"/api/invoices/{inv['id']}/approve", headers=PRO).status_code == 403

    r = client.post(f"/api/invoices/{inv['id']}/approve", headers=HOME)
    assert r.status_code == 200, r.text
    paid = r.json()
    assert (paid["platform_fee"], paid["provider_amount"]) == (1120, 12880)

    r = client.post(
        f"/api/invoices/{inv['id']}/dispute", json={"reason": "quality", "description": "Still dripping"}, headers=HOME
    )
    assert r.status_code == 200, r.text
    state = client.get(f"/api/service-requests/{sr_id}/payment-state", headers=HOME).json()
    assert state["state"] == "disputed"
    assert state["service_request_status"] == "disputed"

    assert gateway.ops() == [
        "create_diagnostic_fee_payment",
        "authorize_estimate",
        "update_authorization",
        "capture_payment",
        "transfer_to_provider",
    ]


def test_gateway_failure_maps_to_502(client, gateway):
    sr_id = _setup_request(client)
    gateway.fail_on.add("create_diagnostic_fee_payment")

    r = client.post(f"/api/service-requests/{sr_id}/diagnostic-fee", headers=HOME)
    assert r.status_code == 502
    assert r.json()["error"] == "payment_provider_error"
    assert r.headers.get("X-Request-ID")

    r = client.get(f"/api/service-requests/{sr_id}", headers=HOME)
    assert r.json()["diagnostic_fee_paid"] is False


def test_outsiders_and_homeowners_cannot_act_as_provider(client):
    sr_id = _setup_request(client)

    r = client.post(f"/api/service-requests/{sr_id}/estimates", json={"total_cents": 5000}, headers=HOME)
    assert r.status_code == 403

    r = client.get(f"/api/service-requests/{sr_id}", headers=headers("stranger@example.com"))
    assert r.status_code == 404

    # unassigned and submitted: visible to any provider
    r = client.get(f"/api/service-requests/{sr_id}", headers=PRO)
    assert r.status_code == 200
    assert sr_id in [x["id"] for x in client.get("/api/service-requests", headers=PRO).json()]


def test_auth_me_and_dev_token(client):
    r = client.get("/api/auth/me", headers=PRO)
    assert r.json()["role"] == "provider"

    token = client.post("/api/auth/token", headers=PRO).json()["access_token"]
    r = client.get("/api/auth/me", headers={"Authorization": f"Bearer {token}"})
    assert r.json()["email"] == "pro@example.com"

    assert client.get("/api/auth/me", headers={"Authorization": "Bearer nope"}).status_code == 401
    assert client.get("/api/auth/me").status_code == 401
