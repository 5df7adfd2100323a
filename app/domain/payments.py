# backend/app/domain/payments.py
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from fractions import Fraction
from typing import Iterable, Optional

from .config_sections import (
    AfterHoursConfig,
    DiagnosticFeesConfig,
    HomeownerPlatformFeesConfig,
    MarketplacePaymentsConfig,
    ProviderFeesConfig,
)
from .errors import (
    AuthorizationCeilingError,
    ChangeOrderNotRequired,
    DomainValidationError,
    StateConflictError,
)
from .fees import AuthorizationAmounts, DiagnosticFeeQuote, authorization_amounts, diagnostic_fee, provider_fee

CHANGE_ORDER_EXPIRY = timedelta(hours=48)

ESTIMATE_TRANSITIONS: dict[str, frozenset[str]] = {
    "draft": frozenset({"sent"}),
    "sent": frozenset({"viewed", "approved", "rejected", "expired"}),
    "viewed": frozenset({"sent", "approved", "rejected", "expired"}),
    "approved": frozenset(),
    "rejected": frozenset(),
    "expired": frozenset(),
}

DISPUTABLE_INVOICE_STATUSES = frozenset({"pending_approval", "paid"})

MONEY_STATES = (
    "none",
    "diagnostic_fee_charged",
    "estimate_sent",
    "estimate_approved",
    "change_order_pending",
    "reauthorized",
    "invoice_pending_approval",
    "invoice_paid",
    "disputed",
)


# -----------------------------
# Snapshots (engine inputs)
# -----------------------------
@dataclass(frozen=True)
class EstimateSnapshot:
    id: int
    service_request_id: int
    total_cents: int
    status: str
    authorized_amount_cents: Optional[int] = None
    buffer_amount_cents: Optional[int] = None
    payment_intent_id: Optional[str] = None


@dataclass(frozen=True)
class ChangeOrderSnapshot:
    id: int
    estimate_id: int
    original_total_cents: int
    additional_cents: int
    new_total_cents: int
    status: str
    expires_at: datetime
    authorization_ref: Optional[str] = None


@dataclass(frozen=True)
class InvoiceSnapshot:
    id: int
    service_request_id: int
    total_cents: int
    status: str
    created_at: datetime


# -----------------------------
# Plans (engine outputs)
# -----------------------------
@dataclass(frozen=True)
class ChangeOrderDraft:
    original_total_cents: int
    additional_cents: int
    new_total_cents: int
    percentage_increase: float
    threshold: float
    expires_at: datetime


@dataclass(frozen=True)
class CaptureSplit:
    captured_cents: int
    provider_payout_cents: int
    platform_fee_cents: int


def derive_money_state(
    *,
    diagnostic_fee_paid: bool,
    estimate: Optional[EstimateSnapshot],
    change_orders: Iterable[ChangeOrderSnapshot] = (),
    invoice: Optional[InvoiceSnapshot] = None,
    now: Optional[datetime] = None,
) -> str:
    """
    Composite money state of one service request, read off the
    estimate / change order / invoice status fields. Later stages win.
    """
    now = now or datetime.utcnow()

    if invoice is not None:
        if invoice.status == "disputed":
            return "disputed"
        if invoice.status == "paid":
            return "invoice_paid"
        if invoice.status == "pending_approval":
            return "invoice_pending_approval"

    cos = list(change_orders)
    if any(co.status == "pending" and not is_change_order_expired(co, now) for co in cos):
        return "change_order_pending"

    if estimate is not None:
        if estimate.status == "approved":
            if any(co.status == "accepted" for co in cos):
                return "reauthorized"
            return "estimate_approved"
        if estimate.status in ("sent", "viewed"):
            return "estimate_sent"

    if diagnostic_fee_paid:
        return "diagnostic_fee_charged"
    return "none"


def plan_diagnostic_fee(
    category: str,
    already_paid: bool,
    cfg: DiagnosticFeesConfig,
    after_hours: Optional[AfterHoursConfig] = None,
) -> DiagnosticFeeQuote:
    # fails closed: never charge twice
    if already_paid:
        raise StateConflictError("diagnostic_fee", "paid", "Diagnostic fee already paid")
    return diagnostic_fee(category, cfg, after_hours)


def check_estimate_transition(current: str, target: str) -> None:
    allowed = ESTIMATE_TRANSITIONS.get(current)
    if allowed is None:
        raise DomainValidationError(f"Unknown estimate status: {current!r}", field="status")
    if target not in allowed:
        raise StateConflictError("estimate", current, f"Cannot move estimate from '{current}' to '{target}'")


def plan_estimate_authorization(
    estimate: EstimateSnapshot,
    payments_cfg: MarketplacePaymentsConfig,
    homeowner_cfg: HomeownerPlatformFeesConfig,
) -> AuthorizationAmounts:
    if estimate.status not in ("sent", "viewed"):
        raise StateConflictError("estimate", estimate.status, f"Estimate cannot be approved from '{estimate.status}'")
    if estimate.total_cents <= 0:
        raise DomainValidationError("Estimate total must be positive", field="total_cents")
    return authorization_amounts(estimate.total_cents, payments_cfg, homeowner_cfg)


def evaluate_change_order(
    original_total_cents: int,
    additional_cents: int,
    threshold_pct: float,
    now: datetime,
) -> ChangeOrderDraft:
    """
    Increases at or under the threshold fit in the authorization buffer and are
    refused with ChangeOrderNotRequired (carrying the computed percentage).
    """
    if additional_cents is None or int(additional_cents) <= 0:
        raise DomainValidationError("additional_cents must be positive", field="additional_cents")
    if original_total_cents is None or int(original_total_cents) <= 0:
        raise DomainValidationError("original total must be positive", field="original_total_cents")

    pct = int(additional_cents) / int(original_total_cents) * 100
    # exact compare; the float above is only reported
    if Fraction(int(additional_cents) * 100) <= Fraction(str(threshold_pct)) * int(original_total_cents):
        raise ChangeOrderNotRequired(pct, float(threshold_pct))

    return ChangeOrderDraft(
        original_total_cents=int(original_total_cents),
        additional_cents=int(additional_cents),
        new_total_cents=int(original_total_cents) + int(additional_cents),
        percentage_increase=pct,
        threshold=float(threshold_pct),
        expires_at=now + CHANGE_ORDER_EXPIRY,
    )


def is_change_order_expired(change_order: ChangeOrderSnapshot, now: datetime) -> bool:
    if change_order.status == "expired":
        return True
    return change_order.status == "pending" and now > change_order.expires_at


def plan_change_order_acceptance(
    change_order: ChangeOrderSnapshot,
    estimate: EstimateSnapshot,
    payments_cfg: MarketplacePaymentsConfig,
    homeowner_cfg: HomeownerPlatformFeesConfig,
    now: datetime,
) -> AuthorizationAmounts:
    if change_order.status != "pending":
        raise StateConflictError("change_order", change_order.status)
    if is_change_order_expired(change_order, now):
        raise StateConflictError("change_order", "expired", "Change order has expired")
    if estimate.status != "approved" or not estimate.payment_intent_id:
        raise StateConflictError("estimate", estimate.status, "Estimate has no active authorization")
    return authorization_amounts(change_order.new_total_cents, payments_cfg, homeowner_cfg)


def plan_capture(
    invoice: InvoiceSnapshot,
    authorization_ref: Optional[str],
    authorized_cents: Optional[int],
    provider_cfg: ProviderFeesConfig,
) -> CaptureSplit:
    """
    Guards, in order: invoice awaiting approval, an authorization exists,
    total within the hold. Never a partial capture.
    """
    if invoice.status != "pending_approval":
        raise StateConflictError("invoice", invoice.status)
    if not authorization_ref or authorized_cents is None:
        raise StateConflictError("authorization", None, "No payment authorization found")
    if invoice.total_cents > int(authorized_cents):
        raise AuthorizationCeilingError(invoice.total_cents, int(authorized_cents))

    captured = int(invoice.total_cents)
    fee = min(provider_fee(captured, provider_cfg), captured)
    return CaptureSplit(
        captured_cents=captured,
        provider_payout_cents=captured - fee,
        platform_fee_cents=fee,
    )


def check_dispute_window(invoice: InvoiceSnapshot, now: datetime, window_hours: float) -> float:
    """Returns hours elapsed since the invoice was created."""
    if invoice.status not in DISPUTABLE_INVOICE_STATUSES:
        raise StateConflictError("invoice", invoice.status, "Invoice cannot be disputed in its current state")
    hours_elapsed = (now - invoice.created_at).total_seconds() / 3600
    if hours_elapsed > float(window_hours):
        raise DomainValidationError(
            f"Dispute window of {window_hours:g} hours has passed",
            hours_elapsed=round(hours_elapsed, 2),
            dispute_window_hours=window_hours,
        )
    return hours_elapsed
