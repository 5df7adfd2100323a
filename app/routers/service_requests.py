# backend/app/routers/service_requests.py
from __future__ import annotations

from datetime import datetime

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy import select, desc, or_
from sqlalchemy.orm import Session

from ..auth import get_principal
from ..db import get_db
from ..domain.events import emit_audit_event, emit_workflow_event
from ..models import Provider, ServiceRequest
from ..schemas import ProviderOut, ProviderUpsert, ServiceRequestCreate, ServiceRequestOut
from ..services.ownership import must_get_property, must_get_service_request

router = APIRouter(tags=["service_requests"])


# -------------------- Provider profile --------------------

@router.put("/providers/me", response_model=ProviderOut)
def upsert_provider_profile(payload: ProviderUpsert, db: Session = Depends(get_db), p=Depends(get_principal)):
    if p.role != "provider":
        raise HTTPException(status_code=403, detail="Only provider accounts have a provider profile")

    row = db.scalar(select(Provider).where(Provider.user_id == p.user_id))
    before = None
    if row is None:
        row = Provider(user_id=p.user_id, business_name=payload.business_name, created_at=datetime.utcnow())
    else:
        before = {"business_name": row.business_name, "stripe_account_id": row.stripe_account_id}
        row.business_name = payload.business_name

    if payload.stripe_account_id is not None:
        row.stripe_account_id = payload.stripe_account_id.strip() or None

    db.add(row)
    db.flush()
    emit_audit_event(
        db, principal=p, action="provider.upsert", entity_type="provider", entity_id=row.id,
        before=before, after={"business_name": row.business_name, "stripe_account_id": row.stripe_account_id},
    )
    db.commit()
    db.refresh(row)
    return row


# -------------------- Service requests --------------------

@router.post("/service-requests", response_model=ServiceRequestOut)
def create_service_request(payload: ServiceRequestCreate, db: Session = Depends(get_db), p=Depends(get_principal)):
    prop = must_get_property(db, principal=p, property_id=payload.property_id)

    row = ServiceRequest(
        property_id=prop.id,
        customer_user_id=p.user_id,
        title=payload.title.strip(),
        description=payload.description,
        category=payload.category.strip().lower(),
        urgency=payload.urgency,
        status="submitted",
        created_at=datetime.utcnow(),
        updated_at=datetime.utcnow(),
    )
    db.add(row)
    db.flush()
    emit_workflow_event(
        db, principal=p, event_type="service_request.created", property_id=prop.id,
        service_request_id=row.id, payload={"category": row.category, "urgency": row.urgency},
    )
    db.commit()
    db.refresh(row)
    return row


@router.get("/service-requests", response_model=list[ServiceRequestOut])
def list_service_requests(db: Session = Depends(get_db), p=Depends(get_principal)):
    q = select(ServiceRequest).order_by(desc(ServiceRequest.id))
    if not p.is_admin:
        if p.provider_id is not None:
            # providers see their own jobs plus the open pool
            q = q.where(
                or_(
                    ServiceRequest.provider_id == p.provider_id,
                    ServiceRequest.provider_id.is_(None) & (ServiceRequest.status == "submitted"),
                )
            )
        else:
            q = q.where(ServiceRequest.customer_user_id == p.user_id)
    return list(db.scalars(q).all())


@router.get("/service-requests/{service_request_id}", response_model=ServiceRequestOut)
def get_service_request(service_request_id: int, db: Session = Depends(get_db), p=Depends(get_principal)):
    if p.provider_id is not None:
        row = db.get(ServiceRequest, service_request_id)
        if row is not None and row.provider_id is None and row.status == "submitted":
            return row
    return must_get_service_request(db, principal=p, service_request_id=service_request_id)
