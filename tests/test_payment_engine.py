from __future__ import annotations

from datetime import datetime, timedelta

import pytest

from app.domain.config_sections import (
    DiagnosticFeesConfig,
    HomeownerPlatformFeesConfig,
    MarketplacePaymentsConfig,
    ProviderFeesConfig,
)
from app.domain.errors import (
    AuthorizationCeilingError,
    ChangeOrderNotRequired,
    DomainValidationError,
    StateConflictError,
)
from app.domain.payments import (
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

NOW = datetime(2024, 4, 1, 12, 0)


def _est(status: str = "sent", total: int = 10000, pi: str | None = None) -> EstimateSnapshot:
    return EstimateSnapshot(id=1, service_request_id=1, total_cents=total, status=status, payment_intent_id=pi)


def _co(status: str = "pending", expires_at: datetime = NOW + timedelta(hours=1)) -> ChangeOrderSnapshot:
    return ChangeOrderSnapshot(
        id=1,
        estimate_id=1,
        original_total_cents=10000,
        additional_cents=2000,
        new_total_cents=12000,
        status=status,
        expires_at=expires_at,
    )


def _inv(status: str = "pending_approval", total: int = 10000, created_at: datetime = NOW) -> InvoiceSnapshot:
    return InvoiceSnapshot(id=1, service_request_id=1, total_cents=total, status=status, created_at=created_at)


# -------------------- estimates --------------------

def test_estimate_transition_table():
    check_estimate_transition("draft", "sent")
    check_estimate_transition("viewed", "approved")
    with pytest.raises(StateConflictError):
        check_estimate_transition("approved", "sent")
    with pytest.raises(StateConflictError):
        check_estimate_transition("draft", "approved")
    with pytest.raises(DomainValidationError):
        check_estimate_transition("archived", "sent")


def test_estimate_authorization_requires_sent_or_viewed():
    payments, homeowner = MarketplacePaymentsConfig(), HomeownerPlatformFeesConfig()
    with pytest.raises(StateConflictError):
        plan_estimate_authorization(_est("draft"), payments, homeowner)

    plan = plan_estimate_authorization(_est("viewed"), payments, homeowner)
    assert (plan.amount_cents, plan.buffer_cents, plan.authorized_cents, plan.platform_fee_cents) == (
        10000,
        2000,
        12000,
        600,
    )


def test_diagnostic_fee_never_charged_twice():
    with pytest.raises(StateConflictError):
        plan_diagnostic_fee("plumbing", True, DiagnosticFeesConfig())
    assert plan_diagnostic_fee("plumbing", False, DiagnosticFeesConfig()).fee_cents == 7900


# -------------------- change orders --------------------

def test_change_order_at_threshold_is_not_required():
    with pytest.raises(ChangeOrderNotRequired) as ei:
        evaluate_change_order(10000, 1200, 12, NOW)
    assert ei.value.percentage_increase == pytest.approx(12.0)
    assert ei.value.to_dict()["error"] == "change_order_not_required"


@pytest.mark.parametrize(
    "original, additional, threshold",
    [(100, 7, 7), (300, 21, 7), (1000, 145, 14.5), (10000, 2900, 29)],
)
def test_change_order_threshold_boundary_is_exact(original, additional, threshold):
    # 7 / 100 * 100 is 7.000000000000001 in floats
    with pytest.raises(ChangeOrderNotRequired):
        evaluate_change_order(original, additional, threshold, NOW)
    assert evaluate_change_order(original, additional + 1, threshold, NOW).new_total_cents == original + additional + 1


def test_change_order_above_threshold_expires_in_48_hours():
    draft = evaluate_change_order(10000, 1201, 12, NOW)
    assert draft.new_total_cents == 11201
    assert draft.percentage_increase == pytest.approx(12.01)
    assert draft.expires_at == NOW + timedelta(hours=48)


def test_change_order_rejects_non_positive_amounts():
    with pytest.raises(DomainValidationError):
        evaluate_change_order(10000, 0, 12, NOW)
    with pytest.raises(DomainValidationError):
        evaluate_change_order(0, 500, 12, NOW)


def test_change_order_expiry():
    assert is_change_order_expired(_co(expires_at=NOW - timedelta(seconds=1)), NOW) is True
    assert is_change_order_expired(_co(expires_at=NOW), NOW) is False
    assert is_change_order_expired(_co("expired"), NOW) is True
    assert is_change_order_expired(_co("accepted", NOW - timedelta(days=3)), NOW) is False


def test_change_order_acceptance_guards():
    payments, homeowner = MarketplacePaymentsConfig(), HomeownerPlatformFeesConfig()
    approved = _est("approved", pi="pi_1")

    with pytest.raises(StateConflictError):
        plan_change_order_acceptance(_co("rejected"), approved, payments, homeowner, NOW)
    with pytest.raises(StateConflictError):
        plan_change_order_acceptance(_co(expires_at=NOW - timedelta(hours=1)), approved, payments, homeowner, NOW)
    with pytest.raises(StateConflictError):
        plan_change_order_acceptance(_co(), _est("approved", pi=None), payments, homeowner, NOW)

    plan = plan_change_order_acceptance(_co(), approved, payments, homeowner, NOW)
    assert plan.authorized_cents == 14400
    assert plan.buffer_cents == 2400


# -------------------- capture --------------------

def test_capture_guards_run_in_order():
    cfg = ProviderFeesConfig()
    # status is checked before the authorization
    with pytest.raises(StateConflictError) as ei:
        plan_capture(_inv("paid"), None, None, cfg)
    assert ei.value.entity == "invoice"

    with pytest.raises(StateConflictError) as ei:
        plan_capture(_inv(), None, None, cfg)
    assert ei.value.entity == "authorization"

    with pytest.raises(AuthorizationCeilingError) as ei:
        plan_capture(_inv(total=12001), "pi_1", 12000, cfg)
    assert ei.value.authorized_cents == 12000


def test_capture_split_and_fee_clamp():
    cfg = ProviderFeesConfig()
    split = plan_capture(_inv(total=12000), "pi_1", 12000, cfg)
    assert (split.captured_cents, split.platform_fee_cents, split.provider_payout_cents) == (12000, 960, 11040)

    tiny = plan_capture(_inv(total=200), "pi_1", 12000, cfg)
    assert (tiny.platform_fee_cents, tiny.provider_payout_cents) == (200, 0)


# -------------------- disputes --------------------

def test_dispute_window():
    inv = _inv(created_at=NOW - timedelta(hours=71))
    assert check_dispute_window(inv, NOW, 72) == pytest.approx(71.0)
    assert check_dispute_window(_inv("paid", created_at=NOW - timedelta(hours=72)), NOW, 72) == pytest.approx(72.0)

    with pytest.raises(DomainValidationError) as ei:
        check_dispute_window(_inv(created_at=NOW - timedelta(hours=73)), NOW, 72)
    assert ei.value.details["hours_elapsed"] == pytest.approx(73.0)

    with pytest.raises(StateConflictError):
        check_dispute_window(_inv("disputed"), NOW, 72)


# -------------------- read model --------------------

def test_money_state_later_stages_win():
    approved = _est("approved", pi="pi_1")

    assert derive_money_state(diagnostic_fee_paid=False, estimate=None, now=NOW) == "none"
    assert derive_money_state(diagnostic_fee_paid=True, estimate=None, now=NOW) == "diagnostic_fee_charged"
    assert derive_money_state(diagnostic_fee_paid=True, estimate=_est("viewed"), now=NOW) == "estimate_sent"
    assert derive_money_state(diagnostic_fee_paid=True, estimate=approved, now=NOW) == "estimate_approved"
    assert derive_money_state(diagnostic_fee_paid=False, estimate=approved, change_orders=[_co()], now=NOW) == (
        "change_order_pending"
    )
    stale = _co(expires_at=NOW - timedelta(hours=1))
    assert derive_money_state(diagnostic_fee_paid=False, estimate=approved, change_orders=[stale], now=NOW) == (
        "estimate_approved"
    )
    assert derive_money_state(
        diagnostic_fee_paid=False, estimate=approved, change_orders=[_co("accepted")], now=NOW
    ) == "reauthorized"
    assert derive_money_state(
        diagnostic_fee_paid=False, estimate=approved, change_orders=[_co()], invoice=_inv(), now=NOW
    ) == "invoice_pending_approval"
    assert derive_money_state(diagnostic_fee_paid=False, estimate=approved, invoice=_inv("paid"), now=NOW) == (
        "invoice_paid"
    )
    assert derive_money_state(diagnostic_fee_paid=False, estimate=approved, invoice=_inv("disputed"), now=NOW) == (
        "disputed"
    )
