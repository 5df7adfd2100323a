# backend/app/routers/templates.py
from __future__ import annotations

from datetime import datetime

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy import select
from sqlalchemy.orm import Session

from ..auth import require_admin
from ..db import get_db
from ..domain.events import emit_audit_event
from ..domain.recurrence import compute_next_due_date
from ..models import MaintenanceTemplate
from ..schemas import MaintenanceTemplateCreate, MaintenanceTemplateOut, MaintenanceTemplateUpdate
from ..services.maintenance_service import dump_months, parse_months

router = APIRouter(prefix="/admin/maintenance-templates", tags=["admin"])


def _snapshot(t: MaintenanceTemplate) -> dict:
    return {
        "title": t.title,
        "category": t.category,
        "frequency_type": t.frequency_type,
        "frequency_interval": t.frequency_interval,
        "suggested_months": list(parse_months(t.suggested_months_json)),
        "is_active": t.is_active,
        "sort_order": t.sort_order,
    }


@router.get("", response_model=list[MaintenanceTemplateOut])
def list_templates(
    include_inactive: bool = Query(default=True),
    db: Session = Depends(get_db),
    p=Depends(require_admin),
):
    q = select(MaintenanceTemplate).order_by(MaintenanceTemplate.sort_order, MaintenanceTemplate.id)
    if not include_inactive:
        q = q.where(MaintenanceTemplate.is_active.is_(True))
    return [MaintenanceTemplateOut.model_validate(t) for t in db.scalars(q).all()]


@router.post("", response_model=MaintenanceTemplateOut)
def create_template(payload: MaintenanceTemplateCreate, db: Session = Depends(get_db), p=Depends(require_admin)):
    # rejects bad rules (interval < 1, empty seasonal months) before anything is stored
    compute_next_due_date(payload.frequency_type, payload.frequency_interval, payload.suggested_months)

    if db.scalar(select(MaintenanceTemplate.id).where(MaintenanceTemplate.title == payload.title.strip())):
        raise HTTPException(status_code=409, detail="template title already exists")

    row = MaintenanceTemplate(
        title=payload.title.strip(),
        description=payload.description,
        category=payload.category.strip().lower(),
        frequency_type=payload.frequency_type,
        frequency_interval=int(payload.frequency_interval),
        suggested_months_json=dump_months(payload.suggested_months),
        is_active=payload.is_active,
        sort_order=payload.sort_order,
        created_at=datetime.utcnow(),
    )
    db.add(row)
    db.flush()
    emit_audit_event(
        db, principal=p, action="maintenance_template.create", entity_type="maintenance_template",
        entity_id=row.id, after=_snapshot(row),
    )
    db.commit()
    db.refresh(row)
    return MaintenanceTemplateOut.model_validate(row)


@router.patch("/{template_id}", response_model=MaintenanceTemplateOut)
def update_template(
    template_id: int,
    payload: MaintenanceTemplateUpdate,
    db: Session = Depends(get_db),
    p=Depends(require_admin),
):
    row = db.get(MaintenanceTemplate, template_id)
    if row is None:
        raise HTTPException(status_code=404, detail="template not found")

    before = _snapshot(row)
    changes = payload.model_dump(exclude_unset=True)
    if "suggested_months" in changes:
        row.suggested_months_json = dump_months(changes.pop("suggested_months"))
    for k, v in changes.items():
        if v is not None:
            setattr(row, k, v)

    compute_next_due_date(row.frequency_type, row.frequency_interval, parse_months(row.suggested_months_json))

    db.add(row)
    emit_audit_event(
        db, principal=p, action="maintenance_template.update", entity_type="maintenance_template",
        entity_id=row.id, before=before, after=_snapshot(row),
    )
    db.commit()
    db.refresh(row)
    return MaintenanceTemplateOut.model_validate(row)
