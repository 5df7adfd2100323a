# backend/app/services/payment_service.py
from __future__ import annotations

import json
import logging
from datetime import datetime
from typing import Any, Optional
from zoneinfo import ZoneInfo

from fastapi import HTTPException
from sqlalchemy import select
from sqlalchemy.orm import Session

from ..auth import Principal
from ..clients.stripe_gateway import PaymentGateway
from ..domain.errors import (
    AuthorizationCeilingError,
    DomainValidationError,
    PaymentProviderError,
    StateConflictError,
)
from ..domain.events import emit_audit_event, emit_workflow_event
from ..domain.fees import is_after_hours
from ..domain.payments import (
    ChangeOrderSnapshot,
    EstimateSnapshot,
    InvoiceSnapshot,
    check_dispute_window,
    check_estimate_transition,
    derive_money_state,
    evaluate_change_order,
    is_change_order_expired,
    plan_capture,
    plan_change_order_acceptance,
    plan_diagnostic_fee,
    plan_estimate_authorization,
)
from ..models import (
    AppUser,
    ChangeOrder,
    Dispute,
    Estimate,
    Invoice,
    PaymentTransaction,
    Property,
    Provider,
    ServiceRequest,
)
from . import admin_config
from .ownership import (
    must_get_change_order,
    must_get_estimate,
    must_get_invoice,
    must_get_service_request,
)
from .transitions import claim_flag, transition_status

log = logging.getLogger(__name__)

# request states in which the job's scope (and hold) may still change
CHANGE_ORDER_OPEN_STATUSES = ("estimate_approved", "in_progress")


def _now() -> datetime:
    return datetime.utcnow()


# -----------------------------
# Snapshots
# -----------------------------
def estimate_snapshot(e: Estimate) -> EstimateSnapshot:
    return EstimateSnapshot(
        id=int(e.id),
        service_request_id=int(e.service_request_id),
        total_cents=int(e.total_cents),
        status=str(e.status),
        authorized_amount_cents=e.authorized_amount_cents,
        buffer_amount_cents=e.buffer_amount_cents,
        payment_intent_id=e.payment_intent_id,
    )


def change_order_snapshot(co: ChangeOrder) -> ChangeOrderSnapshot:
    return ChangeOrderSnapshot(
        id=int(co.id),
        estimate_id=int(co.estimate_id),
        original_total_cents=int(co.original_total_cents),
        additional_cents=int(co.additional_cents),
        new_total_cents=int(co.new_total_cents),
        status=str(co.status),
        expires_at=co.expires_at,
        authorization_ref=co.authorization_ref,
    )


def invoice_snapshot(inv: Invoice) -> InvoiceSnapshot:
    return InvoiceSnapshot(
        id=int(inv.id),
        service_request_id=int(inv.service_request_id),
        total_cents=int(inv.total_cents),
        status=str(inv.status),
        created_at=inv.created_at,
    )


def _estimate_audit(e: Estimate) -> dict[str, Any]:
    return {
        "status": e.status,
        "total_cents": e.total_cents,
        "authorized_amount_cents": e.authorized_amount_cents,
        "buffer_amount_cents": e.buffer_amount_cents,
        "payment_intent_id": e.payment_intent_id,
    }


def _record_txn(db: Session, **kw: Any) -> PaymentTransaction:
    row = PaymentTransaction(created_at=_now(), **kw)
    db.add(row)
    return row


def _customer_ref(db: Session, sr: ServiceRequest) -> Optional[str]:
    return db.scalar(select(AppUser.stripe_customer_id).where(AppUser.id == sr.customer_user_id))


def _gateway_failed(db: Session, err: PaymentProviderError, **ids: Any) -> None:
    # claim + writes of this request are discarded; nothing to compensate on our side
    db.rollback()
    log.error("payment_step_failed", extra={"event": "payment_step_failed", "error": err.message, **ids})


def _latest_estimate(db: Session, service_request_id: int, statuses: tuple[str, ...] | None = None) -> Estimate | None:
    q = select(Estimate).where(Estimate.service_request_id == service_request_id)
    if statuses:
        q = q.where(Estimate.status.in_(statuses))
    return db.scalar(q.order_by(Estimate.id.desc()))


def _change_orders_for(db: Session, estimate_id: int) -> list[ChangeOrder]:
    return list(db.scalars(select(ChangeOrder).where(ChangeOrder.estimate_id == estimate_id).order_by(ChangeOrder.id)).all())


# -----------------------------
# Diagnostic fee
# -----------------------------
def charge_diagnostic_fee(
    db: Session,
    *,
    principal: Principal,
    gateway: PaymentGateway,
    service_request_id: int,
    now: Optional[datetime] = None,
) -> dict[str, Any]:
    sr = must_get_service_request(db, principal=principal, service_request_id=service_request_id, as_role="customer")

    tz = db.scalar(select(Property.timezone).where(Property.id == sr.property_id)) or "America/New_York"
    now_utc = now or _now()
    now_local = now_utc.replace(tzinfo=ZoneInfo("UTC")).astimezone(ZoneInfo(tz))
    ah_cfg = admin_config.after_hours(db)

    quote = plan_diagnostic_fee(
        sr.category,
        sr.diagnostic_fee_paid,
        admin_config.diagnostic_fees(db),
        ah_cfg if is_after_hours(now_local, ah_cfg) else None,
    )

    claim_flag(
        db,
        ServiceRequest,
        sr.id,
        flag="diagnostic_fee_paid",
        entity="diagnostic_fee",
        claimed_status="paid",
        values={"diagnostic_fee_cents": quote.fee_cents, "updated_at": _now()},
    )

    try:
        pi = gateway.create_diagnostic_fee_payment(
            customer_ref=_customer_ref(db, sr),
            service_request_id=sr.id,
            amount_cents=quote.fee_cents,
            category=quote.category,
        )
    except PaymentProviderError as e:
        _gateway_failed(db, e, service_request_id=service_request_id)
        raise

    sr.diagnostic_payment_ref = pi.payment_intent_id
    db.add(sr)
    _record_txn(
        db,
        service_request_id=sr.id,
        kind="diagnostic_fee",
        amount_cents=quote.fee_cents,
        platform_fee_cents=0,
        provider_amount_cents=0,
        external_ref=pi.payment_intent_id,
    )
    emit_audit_event(
        db, principal=principal, action="service_request.diagnostic_fee", entity_type="service_request",
        entity_id=sr.id, before={"diagnostic_fee_paid": False},
        after={"diagnostic_fee_paid": True, "diagnostic_fee_cents": quote.fee_cents},
    )
    emit_workflow_event(
        db, principal=principal, event_type="payment.diagnostic_fee_charged", property_id=sr.property_id,
        service_request_id=sr.id, payload={"fee_cents": quote.fee_cents, "after_hours": quote.after_hours},
    )
    db.commit()
    log.info("diagnostic_fee_charged", extra={"user_id": principal.user_id, "service_request_id": sr.id})
    return {
        "client_secret": pi.client_secret,
        "payment_intent_id": pi.payment_intent_id,
        "fee_cents": quote.fee_cents,
        "creditable": quote.creditable,
        "after_hours": quote.after_hours,
    }


# -----------------------------
# Estimates
# -----------------------------
def create_estimate(
    db: Session,
    *,
    principal: Principal,
    service_request_id: int,
    total_cents: int,
    line_items: Optional[list[dict[str, Any]]] = None,
    notes: Optional[str] = None,
) -> Estimate:
    if principal.provider_id is None:
        raise HTTPException(status_code=403, detail="Only providers can create estimates")

    sr = db.scalar(select(ServiceRequest).where(ServiceRequest.id == service_request_id))
    if sr is None:
        raise HTTPException(status_code=404, detail="service request not found")
    if sr.provider_id is not None and sr.provider_id != principal.provider_id:
        raise HTTPException(status_code=403, detail="Service request is assigned to another provider")
    if int(total_cents) <= 0:
        raise DomainValidationError("total_cents must be positive", field="total_cents")
    if sr.status not in ("submitted", "estimate_sent"):
        raise StateConflictError("service_request", sr.status)

    if sr.provider_id is None:
        sr.provider_id = principal.provider_id
        db.add(sr)

    est = Estimate(
        service_request_id=sr.id,
        provider_id=principal.provider_id,
        total_cents=int(total_cents),
        line_items_json=json.dumps(line_items) if line_items else None,
        notes=notes,
        status="draft",
        created_at=_now(),
        updated_at=_now(),
    )
    db.add(est)
    db.flush()

    emit_audit_event(
        db, principal=principal, action="estimate.create", entity_type="estimate", entity_id=est.id,
        after=_estimate_audit(est),
    )
    db.commit()
    db.refresh(est)
    return est


def send_estimate(db: Session, *, principal: Principal, estimate_id: int) -> Estimate:
    est = must_get_estimate(db, principal=principal, estimate_id=estimate_id, as_role="provider")
    check_estimate_transition(est.status, "sent")
    before = _estimate_audit(est)

    transition_status(
        db, Estimate, est.id, expected=(est.status,), target="sent", entity="estimate",
        values={"sent_at": _now(), "updated_at": _now()},
    )
    transition_status(
        db, ServiceRequest, est.service_request_id, expected=("submitted", "estimate_sent"),
        target="estimate_sent", entity="service_request", values={"updated_at": _now()},
    )
    emit_audit_event(
        db, principal=principal, action="estimate.send", entity_type="estimate", entity_id=est.id,
        before=before, after=_estimate_audit(est),
    )
    emit_workflow_event(
        db, principal=principal, event_type="estimate.sent", service_request_id=est.service_request_id,
        payload={"estimate_id": est.id, "total_cents": est.total_cents},
    )
    db.commit()
    db.refresh(est)
    return est


def view_estimate(db: Session, *, principal: Principal, estimate_id: int) -> Estimate:
    """The customer opening a sent estimate marks it viewed; every other read is side-effect free."""
    est = must_get_estimate(db, principal=principal, estimate_id=estimate_id)
    sr = db.get(ServiceRequest, est.service_request_id)
    if est.status == "sent" and sr is not None and sr.customer_user_id == principal.user_id:
        check_estimate_transition(est.status, "viewed")
        transition_status(
            db, Estimate, est.id, expected=("sent",), target="viewed", entity="estimate",
            values={"viewed_at": _now(), "updated_at": _now()},
        )
        db.commit()
        db.refresh(est)
    return est


def approve_estimate(
    db: Session,
    *,
    principal: Principal,
    gateway: PaymentGateway,
    estimate_id: int,
) -> dict[str, Any]:
    """
    Authorizes estimate total + buffer (manual capture hold). The hold is the
    ceiling for every later capture on this request.
    """
    est = must_get_estimate(db, principal=principal, estimate_id=estimate_id, as_role="customer")
    sr = db.get(ServiceRequest, est.service_request_id)
    if sr is None:
        raise HTTPException(status_code=404, detail="service request not found")

    plan = plan_estimate_authorization(
        estimate_snapshot(est),
        admin_config.marketplace_payments(db),
        admin_config.homeowner_platform_fees(db),
    )
    before = _estimate_audit(est)

    # both claims land before the hold; a sibling estimate already approved loses here
    transition_status(
        db, ServiceRequest, sr.id, expected=("submitted", "estimate_sent"), target="estimate_approved",
        entity="service_request", values={"updated_at": _now()},
    )
    transition_status(
        db, Estimate, est.id, expected=(est.status,), target="approved", entity="estimate",
        values={
            "authorized_amount_cents": plan.authorized_cents,
            "buffer_amount_cents": plan.buffer_cents,
            "platform_fee_cents": plan.platform_fee_cents,
            "responded_at": _now(),
            "updated_at": _now(),
        },
    )

    try:
        pi = gateway.authorize_estimate(
            customer_ref=_customer_ref(db, sr),
            estimate_id=est.id,
            service_request_id=sr.id,
            amount_cents=plan.amount_cents,
            buffer_cents=plan.buffer_cents,
        )
    except PaymentProviderError as e:
        _gateway_failed(db, e, estimate_id=estimate_id)
        raise

    est.payment_intent_id = pi.payment_intent_id
    db.add(est)

    _record_txn(
        db,
        service_request_id=sr.id,
        kind="authorization",
        amount_cents=plan.authorized_cents,
        platform_fee_cents=plan.platform_fee_cents,
        external_ref=pi.payment_intent_id,
        status="authorized",
    )
    db.flush()
    emit_audit_event(
        db, principal=principal, action="estimate.approve", entity_type="estimate", entity_id=est.id,
        before=before, after=_estimate_audit(est),
    )
    emit_workflow_event(
        db, principal=principal, event_type="estimate.approved", property_id=sr.property_id,
        service_request_id=sr.id, payload={"estimate_id": est.id, "authorized_cents": plan.authorized_cents},
    )
    db.commit()
    log.info(
        "estimate_authorized",
        extra={"user_id": principal.user_id, "estimate_id": est.id, "service_request_id": sr.id},
    )
    return {
        "client_secret": pi.client_secret,
        "payment_intent_id": pi.payment_intent_id,
        "authorized_amount": plan.authorized_cents,
        "buffer_amount": plan.buffer_cents,
        "platform_fee": plan.platform_fee_cents,
    }


def reject_estimate(db: Session, *, principal: Principal, estimate_id: int, reason: Optional[str] = None) -> Estimate:
    est = must_get_estimate(db, principal=principal, estimate_id=estimate_id, as_role="customer")
    check_estimate_transition(est.status, "rejected")
    before = _estimate_audit(est)

    transition_status(
        db, Estimate, est.id, expected=(est.status,), target="rejected", entity="estimate",
        values={"responded_at": _now(), "updated_at": _now()},
    )
    emit_audit_event(
        db, principal=principal, action="estimate.reject", entity_type="estimate", entity_id=est.id,
        before=before, after=_estimate_audit(est),
    )
    emit_workflow_event(
        db, principal=principal, event_type="estimate.rejected", service_request_id=est.service_request_id,
        payload={"estimate_id": est.id, "reason": reason},
    )
    db.commit()
    db.refresh(est)
    return est


# -----------------------------
# Change orders
# -----------------------------
def submit_change_order(
    db: Session,
    *,
    principal: Principal,
    service_request_id: int,
    additional_cents: int,
    reason: str,
    now: Optional[datetime] = None,
) -> ChangeOrder:
    sr = must_get_service_request(db, principal=principal, service_request_id=service_request_id, as_role="provider")
    now = now or _now()

    if not (reason or "").strip():
        raise DomainValidationError("reason is required", field="reason")

    if sr.status not in CHANGE_ORDER_OPEN_STATUSES:
        raise StateConflictError("service_request", sr.status, "Change orders are only possible on an active job")

    est = _latest_estimate(db, sr.id, ("approved",))
    if est is None:
        latest = _latest_estimate(db, sr.id)
        raise StateConflictError("estimate", latest.status if latest else None, "No approved estimate for this request")

    for co in _change_orders_for(db, est.id):
        if co.status == "pending" and not is_change_order_expired(change_order_snapshot(co), now):
            raise StateConflictError("change_order", "pending", "A change order is already awaiting approval")

    draft = evaluate_change_order(
        est.total_cents,
        additional_cents,
        admin_config.marketplace_payments(db).change_order_threshold_percentage,
        now,
    )

    co = ChangeOrder(
        estimate_id=est.id,
        service_request_id=sr.id,
        reason=reason.strip(),
        original_total_cents=draft.original_total_cents,
        additional_cents=draft.additional_cents,
        new_total_cents=draft.new_total_cents,
        percentage_increase=draft.percentage_increase,
        status="pending",
        expires_at=draft.expires_at,
        created_at=now,
    )
    db.add(co)
    db.flush()

    emit_workflow_event(
        db, principal=principal, event_type="change_order.submitted", service_request_id=sr.id,
        payload={"change_order_id": co.id, "new_total_cents": co.new_total_cents},
    )
    db.commit()
    db.refresh(co)
    log.info("change_order_submitted", extra={"user_id": principal.user_id, "service_request_id": sr.id})
    return co


def _expire_if_stale(db: Session, co: ChangeOrder, now: datetime) -> None:
    """Read-time expiry: persists the expired status, then refuses the action."""
    if co.status == "pending" and is_change_order_expired(change_order_snapshot(co), now):
        transition_status(db, ChangeOrder, co.id, expected=("pending",), target="expired", entity="change_order")
        db.commit()
        raise StateConflictError("change_order", "expired", "Change order has expired")


def accept_change_order(
    db: Session,
    *,
    principal: Principal,
    gateway: PaymentGateway,
    change_order_id: int,
    now: Optional[datetime] = None,
) -> dict[str, Any]:
    co = must_get_change_order(db, principal=principal, change_order_id=change_order_id, as_role="customer")
    now = now or _now()
    _expire_if_stale(db, co, now)

    est = db.get(Estimate, co.estimate_id)
    sr = db.get(ServiceRequest, co.service_request_id)
    if est is None or sr is None:
        raise HTTPException(status_code=404, detail="estimate not found")
    plan = plan_change_order_acceptance(
        change_order_snapshot(co),
        estimate_snapshot(est),
        admin_config.marketplace_payments(db),
        admin_config.homeowner_platform_fees(db),
        now,
    )
    before = _estimate_audit(est)

    # status stays put; the guarded write keeps an invoice from landing under the reauthorization
    transition_status(
        db, ServiceRequest, sr.id, expected=CHANGE_ORDER_OPEN_STATUSES, target=sr.status,
        entity="service_request", values={"updated_at": now},
    )
    transition_status(
        db, ChangeOrder, co.id, expected=("pending",), target="accepted", entity="change_order",
        values={"responded_at": now, "authorized_amount_cents": plan.authorized_cents},
    )

    try:
        pi = gateway.update_authorization(
            payment_intent_id=str(est.payment_intent_id),
            amount_cents=plan.authorized_cents,
            change_order_id=co.id,
        )
    except PaymentProviderError as e:
        _gateway_failed(db, e, service_request_id=co.service_request_id)
        raise

    co.authorization_ref = pi.payment_intent_id
    est.total_cents = co.new_total_cents
    est.authorized_amount_cents = plan.authorized_cents
    est.buffer_amount_cents = plan.buffer_cents
    est.platform_fee_cents = plan.platform_fee_cents
    est.updated_at = _now()
    db.add_all([co, est])

    _record_txn(
        db,
        service_request_id=co.service_request_id,
        kind="reauthorization",
        amount_cents=plan.authorized_cents,
        platform_fee_cents=plan.platform_fee_cents,
        external_ref=pi.payment_intent_id,
        status="authorized",
    )
    db.flush()
    emit_audit_event(
        db, principal=principal, action="change_order.accept", entity_type="estimate", entity_id=est.id,
        before=before, after=_estimate_audit(est),
    )
    emit_workflow_event(
        db, principal=principal, event_type="change_order.accepted", service_request_id=co.service_request_id,
        payload={"change_order_id": co.id, "authorized_cents": plan.authorized_cents},
    )
    db.commit()
    log.info(
        "change_order_reauthorized",
        extra={"user_id": principal.user_id, "service_request_id": co.service_request_id, "estimate_id": est.id},
    )
    return {
        "change_order_id": co.id,
        "payment_intent_id": pi.payment_intent_id,
        "new_total_cents": co.new_total_cents,
        "authorized_amount": plan.authorized_cents,
        "buffer_amount": plan.buffer_cents,
        "platform_fee": plan.platform_fee_cents,
    }


def reject_change_order(
    db: Session,
    *,
    principal: Principal,
    change_order_id: int,
    now: Optional[datetime] = None,
) -> ChangeOrder:
    co = must_get_change_order(db, principal=principal, change_order_id=change_order_id, as_role="customer")
    now = now or _now()
    _expire_if_stale(db, co, now)

    transition_status(
        db, ChangeOrder, co.id, expected=("pending",), target="rejected", entity="change_order",
        values={"responded_at": now},
    )
    emit_workflow_event(
        db, principal=principal, event_type="change_order.rejected", service_request_id=co.service_request_id,
        payload={"change_order_id": co.id},
    )
    db.commit()
    db.refresh(co)
    return co


# -----------------------------
# Invoices
# -----------------------------
def create_invoice(
    db: Session,
    *,
    principal: Principal,
    service_request_id: int,
    total_cents: int,
    line_items: Optional[list[dict[str, Any]]] = None,
) -> Invoice:
    sr = must_get_service_request(db, principal=principal, service_request_id=service_request_id, as_role="provider")
    if int(total_cents) <= 0:
        raise DomainValidationError("total_cents must be positive", field="total_cents")

    est = _latest_estimate(db, sr.id, ("approved",))
    if est is None or est.authorized_amount_cents is None:
        raise StateConflictError("service_request", sr.status, "No authorized estimate for this request")
    if int(total_cents) > int(est.authorized_amount_cents):
        raise AuthorizationCeilingError(int(total_cents), int(est.authorized_amount_cents))

    transition_status(
        db, ServiceRequest, sr.id, expected=("estimate_approved",), target="invoiced",
        entity="service_request", values={"updated_at": _now()},
    )

    inv = Invoice(
        service_request_id=sr.id,
        estimate_id=est.id,
        provider_id=int(est.provider_id),
        total_cents=int(total_cents),
        line_items_json=json.dumps(line_items) if line_items else None,
        status="pending_approval",
        created_at=_now(),
    )
    db.add(inv)
    db.flush()

    emit_workflow_event(
        db, principal=principal, event_type="invoice.created", property_id=sr.property_id,
        service_request_id=sr.id, payload={"invoice_id": inv.id, "total_cents": inv.total_cents},
    )
    db.commit()
    db.refresh(inv)
    log.info("invoice_created", extra={"user_id": principal.user_id, "invoice_id": inv.id, "service_request_id": sr.id})
    return inv


def _authorization_for(db: Session, est: Estimate) -> tuple[Optional[str], Optional[int]]:
    """Latest accepted change order's authorization if any, else the estimate's own."""
    accepted = [co for co in _change_orders_for(db, est.id) if co.status == "accepted" and co.authorization_ref]
    if accepted:
        return accepted[-1].authorization_ref, est.authorized_amount_cents
    return est.payment_intent_id, est.authorized_amount_cents


def approve_invoice(
    db: Session,
    *,
    principal: Principal,
    gateway: PaymentGateway,
    invoice_id: int,
) -> dict[str, Any]:
    """
    Capture + provider transfer, run in sequence.

    A capture failure rolls the paid claim back. A transfer failure after a
    successful capture keeps the invoice paid, records the failed transfer for
    manual follow-up and still surfaces PaymentProviderError.
    """
    inv = must_get_invoice(db, principal=principal, invoice_id=invoice_id, as_role="customer")
    est = db.get(Estimate, inv.estimate_id)
    provider = db.get(Provider, inv.provider_id)
    if est is None or provider is None:
        raise HTTPException(status_code=404, detail="estimate not found")

    auth_ref, authorized = _authorization_for(db, est)
    split = plan_capture(invoice_snapshot(inv), auth_ref, authorized, admin_config.provider_fees(db))

    if not provider.stripe_account_id:
        raise DomainValidationError("Provider has not completed payout onboarding", field="provider_id")

    transition_status(
        db, Invoice, inv.id, expected=("pending_approval",), target="paid", entity="invoice",
        values={
            "captured_amount_cents": split.captured_cents,
            "platform_fee_cents": split.platform_fee_cents,
            "provider_payout_cents": split.provider_payout_cents,
            "paid_at": _now(),
        },
    )

    try:
        capture = gateway.capture_payment(payment_intent_id=str(auth_ref), amount_cents=split.captured_cents, invoice_id=inv.id)
    except PaymentProviderError as e:
        _gateway_failed(db, e, invoice_id=invoice_id)
        raise

    inv.charge_id = capture.charge_id
    db.add(inv)
    transition_status(
        db, ServiceRequest, inv.service_request_id, expected=("invoiced",), target="completed",
        entity="service_request", values={"updated_at": _now()},
    )
    txn = _record_txn(
        db,
        service_request_id=inv.service_request_id,
        invoice_id=inv.id,
        kind="capture",
        amount_cents=split.captured_cents,
        platform_fee_cents=split.platform_fee_cents,
        provider_amount_cents=split.provider_payout_cents,
        external_ref=capture.charge_id,
    )

    transfer_error: Optional[PaymentProviderError] = None
    try:
        transfer = gateway.transfer_to_provider(
            amount_cents=split.provider_payout_cents,
            destination_account=str(provider.stripe_account_id),
            charge_id=capture.charge_id,
            invoice_id=inv.id,
            provider_id=provider.id,
        )
        inv.transfer_id = transfer.transfer_id
        txn.transfer_ref = transfer.transfer_id
    except PaymentProviderError as e:
        transfer_error = e
        txn.status = "transfer_failed"
        log.error(
            "provider_transfer_failed_after_capture",
            extra={
                "event": "manual_followup_required",
                "invoice_id": inv.id,
                "service_request_id": inv.service_request_id,
                "charge_id": capture.charge_id,
                "provider_id": provider.id,
            },
        )

    db.flush()
    emit_audit_event(
        db, principal=principal, action="invoice.approve", entity_type="invoice", entity_id=inv.id,
        before={"status": "pending_approval"},
        after={
            "status": "paid",
            "captured_amount_cents": split.captured_cents,
            "platform_fee_cents": split.platform_fee_cents,
            "provider_payout_cents": split.provider_payout_cents,
            "charge_id": capture.charge_id,
            "transfer_id": inv.transfer_id,
        },
    )
    emit_workflow_event(
        db, principal=principal, event_type="invoice.paid", service_request_id=inv.service_request_id,
        payload={"invoice_id": inv.id, "captured_cents": split.captured_cents},
    )
    db.commit()

    if transfer_error is not None:
        raise transfer_error

    log.info("invoice_captured", extra={"user_id": principal.user_id, "invoice_id": inv.id})
    return {
        "charge_id": capture.charge_id,
        "provider_transfer_id": inv.transfer_id,
        "provider_amount": split.provider_payout_cents,
        "platform_fee": split.platform_fee_cents,
    }


# -----------------------------
# Disputes
# -----------------------------
def open_dispute(
    db: Session,
    *,
    principal: Principal,
    invoice_id: int,
    reason: str,
    description: Optional[str] = None,
    now: Optional[datetime] = None,
) -> Dispute:
    """
    Moves the invoice and its service request to `disputed`. There is no
    resolve transition here; resolution happens outside this service.
    """
    inv = must_get_invoice(db, principal=principal, invoice_id=invoice_id, as_role="customer")
    now = now or _now()

    if not (reason or "").strip():
        raise DomainValidationError("reason is required", field="reason")

    check_dispute_window(invoice_snapshot(inv), now, admin_config.marketplace_payments(db).dispute_window_hours)

    transition_status(
        db, Invoice, inv.id, expected=(inv.status,), target="disputed", entity="invoice",
    )
    transition_status(
        db, ServiceRequest, inv.service_request_id, expected=("invoiced", "completed"), target="disputed",
        entity="service_request", values={"updated_at": _now()},
    )

    dispute = Dispute(
        invoice_id=inv.id,
        service_request_id=inv.service_request_id,
        opened_by_user_id=principal.user_id,
        reason=reason.strip(),
        description=description,
        amount_disputed_cents=int(inv.total_cents),
        status="open",
        created_at=now,
    )
    db.add(dispute)
    db.flush()

    emit_audit_event(
        db, principal=principal, action="invoice.dispute", entity_type="invoice", entity_id=inv.id,
        after={"status": "disputed", "dispute_id": dispute.id},
    )
    emit_workflow_event(
        db, principal=principal, event_type="invoice.disputed", service_request_id=inv.service_request_id,
        payload={"invoice_id": inv.id, "dispute_id": dispute.id, "reason": dispute.reason},
    )
    db.commit()
    db.refresh(dispute)
    log.info("dispute_opened", extra={"user_id": principal.user_id, "invoice_id": inv.id})
    return dispute


# -----------------------------
# Read model
# -----------------------------
def payment_state(
    db: Session,
    *,
    principal: Principal,
    service_request_id: int,
    now: Optional[datetime] = None,
) -> dict[str, Any]:
    sr = must_get_service_request(db, principal=principal, service_request_id=service_request_id)
    now = now or _now()

    est = _latest_estimate(db, sr.id, ("approved",)) or _latest_estimate(db, sr.id)
    cos = _change_orders_for(db, est.id) if est is not None else []
    inv = db.scalar(select(Invoice).where(Invoice.service_request_id == sr.id).order_by(Invoice.id.desc()))

    co_snaps = [change_order_snapshot(c) for c in cos]
    state = derive_money_state(
        diagnostic_fee_paid=bool(sr.diagnostic_fee_paid),
        estimate=estimate_snapshot(est) if est is not None else None,
        change_orders=co_snaps,
        invoice=invoice_snapshot(inv) if inv is not None else None,
        now=now,
    )
    return {
        "service_request_id": sr.id,
        "service_request_status": sr.status,
        "state": state,
        "diagnostic_fee_paid": bool(sr.diagnostic_fee_paid),
        "diagnostic_fee_cents": sr.diagnostic_fee_cents,
        "estimate": None
        if est is None
        else {
            "id": est.id,
            "status": est.status,
            "total_cents": est.total_cents,
            "authorized_amount_cents": est.authorized_amount_cents,
            "buffer_amount_cents": est.buffer_amount_cents,
        },
        "change_orders": [
            {
                "id": s.id,
                "status": "expired" if is_change_order_expired(s, now) else s.status,
                "new_total_cents": s.new_total_cents,
                "expires_at": s.expires_at,
            }
            for s in co_snaps
        ],
        "invoice": None
        if inv is None
        else {
            "id": inv.id,
            "status": inv.status,
            "total_cents": inv.total_cents,
            "captured_amount_cents": inv.captured_amount_cents,
        },
    }
