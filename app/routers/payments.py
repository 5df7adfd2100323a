# backend/app/routers/payments.py
from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from ..auth import get_principal, require_provider
from ..clients.stripe_gateway import PaymentGateway
from ..db import get_db
from ..schemas import (
    AuthorizationOut,
    CaptureOut,
    ChangeOrderAcceptOut,
    ChangeOrderCreate,
    ChangeOrderOut,
    DiagnosticFeeOut,
    DisputeCreate,
    DisputeOut,
    EstimateCreate,
    EstimateOut,
    InvoiceCreate,
    InvoiceOut,
    RejectIn,
)
from ..services import payment_service as svc
from .deps import get_gateway

router = APIRouter(tags=["payments"])


# -------------------- Diagnostic fee / read model --------------------

@router.post("/service-requests/{service_request_id}/diagnostic-fee", response_model=DiagnosticFeeOut)
def charge_diagnostic_fee(
    service_request_id: int,
    db: Session = Depends(get_db),
    p=Depends(get_principal),
    gateway: PaymentGateway = Depends(get_gateway),
):
    return svc.charge_diagnostic_fee(db, principal=p, gateway=gateway, service_request_id=service_request_id)


@router.get("/service-requests/{service_request_id}/payment-state", response_model=dict)
def payment_state(service_request_id: int, db: Session = Depends(get_db), p=Depends(get_principal)):
    return svc.payment_state(db, principal=p, service_request_id=service_request_id)


# -------------------- Estimates --------------------

@router.post("/service-requests/{service_request_id}/estimates", response_model=EstimateOut)
def create_estimate(
    service_request_id: int,
    payload: EstimateCreate,
    db: Session = Depends(get_db),
    p=Depends(require_provider),
):
    est = svc.create_estimate(
        db,
        principal=p,
        service_request_id=service_request_id,
        total_cents=payload.total_cents,
        line_items=payload.line_items,
        notes=payload.notes,
    )
    return EstimateOut.model_validate(est)


@router.post("/estimates/{estimate_id}/send", response_model=EstimateOut)
def send_estimate(estimate_id: int, db: Session = Depends(get_db), p=Depends(require_provider)):
    return EstimateOut.model_validate(svc.send_estimate(db, principal=p, estimate_id=estimate_id))


@router.get("/estimates/{estimate_id}", response_model=EstimateOut)
def get_estimate(estimate_id: int, db: Session = Depends(get_db), p=Depends(get_principal)):
    return EstimateOut.model_validate(svc.view_estimate(db, principal=p, estimate_id=estimate_id))


@router.post("/estimates/{estimate_id}/approve", response_model=AuthorizationOut)
def approve_estimate(
    estimate_id: int,
    db: Session = Depends(get_db),
    p=Depends(get_principal),
    gateway: PaymentGateway = Depends(get_gateway),
):
    return svc.approve_estimate(db, principal=p, gateway=gateway, estimate_id=estimate_id)


@router.post("/estimates/{estimate_id}/reject", response_model=EstimateOut)
def reject_estimate(estimate_id: int, payload: RejectIn, db: Session = Depends(get_db), p=Depends(get_principal)):
    est = svc.reject_estimate(db, principal=p, estimate_id=estimate_id, reason=payload.reason)
    return EstimateOut.model_validate(est)


# -------------------- Change orders --------------------

@router.post("/service-requests/{service_request_id}/change-order", response_model=ChangeOrderOut)
def submit_change_order(
    service_request_id: int,
    payload: ChangeOrderCreate,
    db: Session = Depends(get_db),
    p=Depends(require_provider),
):
    return svc.submit_change_order(
        db,
        principal=p,
        service_request_id=service_request_id,
        additional_cents=payload.additional_cents,
        reason=payload.reason,
    )


@router.post("/change-orders/{change_order_id}/approve", response_model=ChangeOrderAcceptOut)
def approve_change_order(
    change_order_id: int,
    db: Session = Depends(get_db),
    p=Depends(get_principal),
    gateway: PaymentGateway = Depends(get_gateway),
):
    return svc.accept_change_order(db, principal=p, gateway=gateway, change_order_id=change_order_id)


@router.post("/change-orders/{change_order_id}/reject", response_model=ChangeOrderOut)
def reject_change_order(change_order_id: int, db: Session = Depends(get_db), p=Depends(get_principal)):
    return svc.reject_change_order(db, principal=p, change_order_id=change_order_id)


# -------------------- Invoices / disputes --------------------

@router.post("/service-requests/{service_request_id}/invoices", response_model=InvoiceOut)
def create_invoice(
    service_request_id: int,
    payload: InvoiceCreate,
    db: Session = Depends(get_db),
    p=Depends(require_provider),
):
    inv = svc.create_invoice(
        db,
        principal=p,
        service_request_id=service_request_id,
        total_cents=payload.total_cents,
        line_items=payload.line_items,
    )
    return InvoiceOut.model_validate(inv)


@router.post("/invoices/{invoice_id}/approve", response_model=CaptureOut)
def approve_invoice(
    invoice_id: int,
    db: Session = Depends(get_db),
    p=Depends(get_principal),
    gateway: PaymentGateway = Depends(get_gateway),
):
    return svc.approve_invoice(db, principal=p, gateway=gateway, invoice_id=invoice_id)


@router.post("/invoices/{invoice_id}/dispute", response_model=DisputeOut)
def open_dispute(invoice_id: int, payload: DisputeCreate, db: Session = Depends(get_db), p=Depends(get_principal)):
    return svc.open_dispute(
        db,
        principal=p,
        invoice_id=invoice_id,
        reason=payload.reason,
        description=payload.description,
    )
