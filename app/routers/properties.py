# backend/app/routers/properties.py
from __future__ import annotations

from datetime import datetime
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy import select, desc
from sqlalchemy.orm import Session

from ..auth import get_principal
from ..db import get_db
from ..domain.events import emit_audit_event, emit_workflow_event
from ..models import Property
from ..schemas import PlanGenerateOut, PropertyCreate, PropertyOut
from ..services.maintenance_service import generate_property_plan
from ..services.ownership import must_get_property

router = APIRouter(prefix="/properties", tags=["properties"])


@router.post("", response_model=PropertyOut)
def create_property(payload: PropertyCreate, db: Session = Depends(get_db), p=Depends(get_principal)):
    try:
        ZoneInfo(payload.timezone)
    except (ZoneInfoNotFoundError, ValueError):
        raise HTTPException(status_code=400, detail=f"unknown timezone: {payload.timezone}")

    row = Property(
        owner_user_id=p.user_id,
        name=payload.name,
        address=payload.address.strip(),
        city=payload.city.strip().title(),
        state=payload.state.strip().upper(),
        zip=payload.zip.strip(),
        year_built=payload.year_built,
        timezone=payload.timezone,
        created_at=datetime.utcnow(),
    )
    db.add(row)
    db.flush()

    emit_audit_event(
        db, principal=p, action="property.create", entity_type="property", entity_id=row.id,
        after={"address": row.address, "city": row.city, "state": row.state, "zip": row.zip},
    )
    emit_workflow_event(db, principal=p, event_type="property.created", property_id=row.id)
    db.commit()
    db.refresh(row)
    return row


@router.get("", response_model=list[PropertyOut])
def list_properties(db: Session = Depends(get_db), p=Depends(get_principal)):
    q = select(Property).order_by(desc(Property.id))
    if not p.is_admin:
        q = q.where(Property.owner_user_id == p.user_id)
    return list(db.scalars(q).all())


@router.get("/{property_id}", response_model=PropertyOut)
def get_property(property_id: int, db: Session = Depends(get_db), p=Depends(get_principal)):
    return must_get_property(db, principal=p, property_id=property_id)


@router.post("/{property_id}/maintenance-plan", response_model=PlanGenerateOut)
def generate_plan(property_id: int, db: Session = Depends(get_db), p=Depends(get_principal)):
    return generate_property_plan(db, principal=p, property_id=property_id)
