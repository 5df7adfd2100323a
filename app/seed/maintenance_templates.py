# backend/app/seed/maintenance_templates.py
from __future__ import annotations

"""
Default maintenance templates. Plan generation copies every active template
onto a property as a task.

Run example:
  python -m app.cli seed-templates
"""

import json

from sqlalchemy import select
from sqlalchemy.orm import Session

from ..models import MaintenanceTemplate


SEED = [
    dict(
        title="Replace HVAC filters",
        description="Replace air filters to maintain air quality and system efficiency.",
        category="hvac",
        frequency_type="interval_months",
        frequency_interval=3,
    ),
    dict(
        title="Test smoke & CO detectors",
        description="Test every smoke and carbon monoxide detector; replace batteries as needed.",
        category="safety",
        frequency_type="interval_months",
        frequency_interval=6,
    ),
    dict(
        title="Check water heater",
        description="Inspect for leaks, test the relief valve and check the temperature setting.",
        category="plumbing",
        frequency_type="interval_years",
        frequency_interval=1,
    ),
    dict(
        title="Clean gutters and downspouts",
        description="Clear debris and confirm water drains away from the foundation.",
        category="exterior",
        frequency_type="seasonal_months",
        frequency_interval=1,
        suggested_months=[4, 10],
    ),
    dict(
        title="Service heating system",
        description="Professional furnace or boiler tune-up before the heating season.",
        category="hvac",
        frequency_type="seasonal_months",
        frequency_interval=1,
        suggested_months=[9],
    ),
    dict(
        title="Service air conditioning",
        description="Clean the condenser coils and check refrigerant before summer.",
        category="hvac",
        frequency_type="seasonal_months",
        frequency_interval=1,
        suggested_months=[4],
    ),
    dict(
        title="Check for water leaks",
        description="Look under sinks, around toilets and along visible pipes.",
        category="plumbing",
        frequency_type="interval_months",
        frequency_interval=2,
    ),
    dict(
        title="Seasonal lawn care check",
        description="Review lawn and landscaping needs for the season.",
        category="landscaping",
        frequency_type="seasonal_months",
        frequency_interval=1,
        suggested_months=[3, 6, 9],
    ),
    dict(
        title="Clean dryer vent",
        description="Remove lint buildup from the dryer duct and exterior vent.",
        category="appliances",
        frequency_type="interval_years",
        frequency_interval=1,
    ),
    dict(
        title="Inspect roof",
        description="Look for missing shingles, flashing gaps and signs of leaks.",
        category="roofing",
        frequency_type="interval_years",
        frequency_interval=1,
    ),
]


def upsert_template(db: Session, payload: dict, sort_order: int) -> MaintenanceTemplate:
    data = dict(payload)
    months = data.pop("suggested_months", None)
    existing = db.execute(
        select(MaintenanceTemplate).where(MaintenanceTemplate.title == data["title"])
    ).scalar_one_or_none()

    row = existing or MaintenanceTemplate(title=data["title"])
    for k, v in data.items():
        setattr(row, k, v)
    row.suggested_months_json = json.dumps(months) if months else None
    row.sort_order = sort_order
    if existing is None:
        row.is_active = True
        db.add(row)
    return row


def seed_templates(db: Session) -> int:
    for i, payload in enumerate(SEED):
        upsert_template(db, payload, sort_order=(i + 1) * 10)
    db.commit()
    return len(SEED)
