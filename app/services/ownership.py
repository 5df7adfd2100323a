# backend/app/services/ownership.py
from __future__ import annotations

from fastapi import HTTPException
from sqlalchemy import select
from sqlalchemy.orm import Session

from ..auth import Principal
from ..models import ChangeOrder, Estimate, Invoice, MaintenanceTask, Property, ServiceRequest


def must_get_property(db: Session, *, principal: Principal, property_id: int) -> Property:
    row = db.scalar(select(Property).where(Property.id == property_id))
    if not row or (row.owner_user_id != principal.user_id and not principal.is_admin):
        raise HTTPException(status_code=404, detail="property not found")
    return row


def must_get_task(db: Session, *, principal: Principal, task_id: int) -> MaintenanceTask:
    row = db.scalar(select(MaintenanceTask).where(MaintenanceTask.id == task_id))
    if not row:
        raise HTTPException(status_code=404, detail="task not found")
    must_get_property(db, principal=principal, property_id=row.property_id)
    return row


def must_get_service_request(
    db: Session,
    *,
    principal: Principal,
    service_request_id: int,
    as_role: str | None = None,
) -> ServiceRequest:
    """
    as_role="customer": only the homeowner who opened it.
    as_role="provider": only the assigned provider.
    None: either side. Admins pass every check.
    """
    row = db.scalar(select(ServiceRequest).where(ServiceRequest.id == service_request_id))
    if not row:
        raise HTTPException(status_code=404, detail="service request not found")
    if principal.is_admin:
        return row

    is_customer = row.customer_user_id == principal.user_id
    is_provider = principal.provider_id is not None and row.provider_id == principal.provider_id

    if as_role == "customer":
        ok = is_customer
    elif as_role == "provider":
        ok = is_provider
    else:
        ok = is_customer or is_provider

    if not ok:
        # same answer as a missing row for parties with no access at all
        if not (is_customer or is_provider):
            raise HTTPException(status_code=404, detail="service request not found")
        raise HTTPException(status_code=403, detail=f"Only the {as_role} can do this")
    return row


def must_get_estimate(db: Session, *, principal: Principal, estimate_id: int, as_role: str | None = None) -> Estimate:
    row = db.scalar(select(Estimate).where(Estimate.id == estimate_id))
    if not row:
        raise HTTPException(status_code=404, detail="estimate not found")
    must_get_service_request(db, principal=principal, service_request_id=row.service_request_id, as_role=as_role)
    return row


def must_get_change_order(
    db: Session, *, principal: Principal, change_order_id: int, as_role: str | None = None
) -> ChangeOrder:
    row = db.scalar(select(ChangeOrder).where(ChangeOrder.id == change_order_id))
    if not row:
        raise HTTPException(status_code=404, detail="change order not found")
    must_get_service_request(db, principal=principal, service_request_id=row.service_request_id, as_role=as_role)
    return row


def must_get_invoice(db: Session, *, principal: Principal, invoice_id: int, as_role: str | None = None) -> Invoice:
    row = db.scalar(select(Invoice).where(Invoice.id == invoice_id))
    if not row:
        raise HTTPException(status_code=404, detail="invoice not found")
    must_get_service_request(db, principal=principal, service_request_id=row.service_request_id, as_role=as_role)
    return row
