from __future__ import annotations

import json

import pytest
from fastapi import HTTPException

from app.domain.config_sections import SECTION_MODELS
from app.domain.errors import DomainValidationError
from app.models import AdminConfig
from app.services import admin_config

from conftest import mk_user, principal_for


def _store(db, key: str, raw: str) -> None:
    db.add(AdminConfig(key=key, value_json=raw))
    db.commit()


def test_missing_rows_fall_back_to_defaults(db):
    cfg = admin_config.marketplace_payments(db)
    assert cfg.estimate_buffer_percentage == 20
    assert cfg.estimate_buffer_cap_cents == 25000
    assert cfg.change_order_threshold_percentage == 12
    assert cfg.dispute_window_hours == 72

    assert admin_config.provider_fees(db).minimum_cents == 350
    assert admin_config.diagnostic_fees(db).lookup("hvac").fee_cents == 8900
    assert admin_config.after_hours(db).window_local.start == "18:00"

    assert set(admin_config.get_all_config(db)) == set(SECTION_MODELS)


def test_unparsable_json_uses_defaults(db):
    _store(db, "provider_fees", "{not json")
    assert admin_config.provider_fees(db).percentage == 8.0


def test_partial_document_keeps_valid_fields(db):
    _store(db, "marketplace_payments", json.dumps({"estimate_buffer_percentage": 30, "dispute_window_hours": -5}))
    cfg = admin_config.marketplace_payments(db)
    assert cfg.estimate_buffer_percentage == 30
    assert cfg.dispute_window_hours == 72


def test_flat_diagnostic_mapping_is_read(db):
    _store(db, "diagnostic_fees", json.dumps({"hvac": {"fee_cents": 9900}, "default": {"fee_cents": 4000}}))
    cfg = admin_config.diagnostic_fees(db)
    assert cfg.lookup("hvac").fee_cents == 9900
    assert cfg.lookup("roofing").fee_cents == 4000


def test_update_requires_admin_and_valid_value(db):
    admin = principal_for(mk_user(db, "admin@example.com", role="admin"))
    owner = principal_for(mk_user(db, "owner@example.com"))

    with pytest.raises(HTTPException) as ei:
        admin_config.update_config(db, "provider_fees", {"percentage": 10}, owner)
    assert ei.value.status_code == 403

    with pytest.raises(DomainValidationError):
        admin_config.update_config(db, "provider_fees", {"percentage": 150}, admin)
    with pytest.raises(DomainValidationError):
        admin_config.update_config(db, "surge_pricing", {}, admin)

    stored = admin_config.update_config(db, "provider_fees", {"percentage": 10}, admin)
    assert stored == {"percentage": 10.0, "minimum_cents": 350}
    assert admin_config.provider_fees(db).percentage == 10.0


def test_config_api_round_trip(client):
    h = {"X-User-Email": "ops@example.com", "X-User-Role": "admin"}

    r = client.put("/api/admin/config/after_hours", json={"value": {"enabled": False}}, headers=h)
    assert r.status_code == 200, r.text
    assert r.json()["value"]["enabled"] is False

    r = client.get("/api/admin/config", headers=h)
    assert r.status_code == 200
    assert r.json()["after_hours"]["enabled"] is False

    r = client.put(
        "/api/admin/config/after_hours",
        json={"value": {"window_local": {"start": "25:00"}}},
        headers=h,
    )
    assert r.status_code == 400
    assert r.json()["error"] == "validation_error"

    r = client.get("/api/admin/config", headers={"X-User-Email": "someone@example.com"})
    assert r.status_code == 403
