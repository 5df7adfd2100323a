from __future__ import annotations

from datetime import date

import pytest
from sqlalchemy import select

from app.domain.errors import DomainValidationError
from app.models import TaskRequestLink
from app.seed.maintenance_templates import SEED, seed_templates
from app.services import maintenance_service as svc

from conftest import mk_property, mk_user, principal_for


def _task(db, p, prop, title: str, category: str, description: str | None = None):
    return svc.create_task(
        db,
        principal=p,
        property_id=prop.id,
        title=title,
        category=category,
        frequency_type="interval_years",
        frequency_interval=1,
        description=description,
        today=date(2024, 1, 1),
    )


def test_request_takes_most_common_category_and_links_tasks(db):
    u = mk_user(db, "owner@example.com")
    prop = mk_property(db, u)
    p = principal_for(u)

    a = _task(db, p, prop, "Service furnace", "hvac", "Annual tune-up")
    b = _task(db, p, prop, "Check water heater", "plumbing")
    c = _task(db, p, prop, "Clean AC coils", "hvac")

    sr, linked = svc.create_request_from_tasks(db, principal=p, property_id=prop.id, task_ids=[a.id, b.id, c.id, a.id])

    assert linked == 3
    assert sr.category == "hvac"
    assert sr.status == "submitted"
    assert sr.customer_user_id == u.id
    assert sr.title == "Service furnace (+2 more)"
    assert "- Service furnace: Annual tune-up" in sr.description
    assert "- Check water heater" in sr.description

    links = db.scalars(select(TaskRequestLink).where(TaskRequestLink.service_request_id == sr.id)).all()
    assert sorted(x.task_id for x in links) == sorted([a.id, b.id, c.id])


def test_category_tie_goes_to_first_listed(db):
    u = mk_user(db, "owner@example.com")
    prop = mk_property(db, u)
    p = principal_for(u)
    a = _task(db, p, prop, "Check water heater", "plumbing")
    b = _task(db, p, prop, "Service furnace", "hvac")

    sr, _ = svc.create_request_from_tasks(
        db, principal=p, property_id=prop.id, task_ids=[a.id, b.id], title="Spring visit", urgency="low"
    )
    assert sr.category == "plumbing"
    assert sr.title == "Spring visit"
    assert sr.urgency == "low"


def test_missing_or_foreign_tasks_are_rejected(db):
    u = mk_user(db, "owner@example.com")
    prop = mk_property(db, u)
    other = mk_property(db, u)
    p = principal_for(u)
    a = _task(db, p, prop, "Check water heater", "plumbing")
    elsewhere = _task(db, p, other, "Service furnace", "hvac")

    with pytest.raises(DomainValidationError):
        svc.create_request_from_tasks(db, principal=p, property_id=prop.id, task_ids=[])

    with pytest.raises(DomainValidationError) as ei:
        svc.create_request_from_tasks(db, principal=p, property_id=prop.id, task_ids=[a.id, elsewhere.id, 9999])
    assert ei.value.details["missing"] == [elsewhere.id, 9999]


def test_plan_generation_is_idempotent(db):
    u = mk_user(db, "owner@example.com")
    prop = mk_property(db, u)
    p = principal_for(u)

    assert seed_templates(db) == len(SEED)
    # re-seeding updates rows in place
    assert seed_templates(db) == len(SEED)

    first = svc.generate_property_plan(db, principal=p, property_id=prop.id, today=date(2024, 3, 15))
    assert first["count"] == len(SEED)

    second = svc.generate_property_plan(db, principal=p, property_id=prop.id, today=date(2024, 3, 15))
    assert second["count"] == 0
    assert second["task_ids"] == []

    buckets = svc.list_property_tasks(db, principal=p, property_ids=[prop.id], today=date(2024, 3, 15))
    total = sum(len(v) for v in buckets.values())
    assert total == len(SEED)
