from __future__ import annotations

from datetime import datetime

import pytest

from app.domain.config_sections import (
    AfterHoursConfig,
    DiagnosticFeesConfig,
    FeeTier,
    HomeownerPlatformFeesConfig,
    MarketplacePaymentsConfig,
    ProviderFeesConfig,
)
from app.domain.fees import (
    authorization_amounts,
    buffer_amount,
    diagnostic_fee,
    homeowner_platform_fee,
    is_after_hours,
    provider_fee,
)


@pytest.mark.parametrize(
    "amount,fee",
    [(0, 600), (10000, 600), (29999, 600), (30000, 1200), (150000, 1200), (150001, 2500), (5_000_000, 2500)],
)
def test_homeowner_fee_default_tiers(amount, fee):
    assert homeowner_platform_fee(amount, HomeownerPlatformFeesConfig()) == fee


def test_homeowner_fee_cap_and_gap():
    capped = HomeownerPlatformFeesConfig(cap_cents=1000)
    assert homeowner_platform_fee(200000, capped) == 1000

    gappy = HomeownerPlatformFeesConfig(tiers=[FeeTier(min_cents=0, max_cents=100, fee_cents=50)])
    assert homeowner_platform_fee(500, gappy) == 0


def test_provider_fee_percentage_with_minimum():
    cfg = ProviderFeesConfig()
    assert provider_fee(10000, cfg) == 800
    assert provider_fee(1000, cfg) == 350
    assert provider_fee(10001, ProviderFeesConfig(percentage=8.5, minimum_cents=0)) == 850


def test_buffer_rounds_up_and_caps():
    cfg = MarketplacePaymentsConfig()
    assert buffer_amount(10000, cfg) == 2000
    assert buffer_amount(10001, cfg) == 2001
    assert buffer_amount(200000, cfg) == 25000


def test_authorization_fee_is_computed_on_held_amount():
    amounts = authorization_amounts(28000, MarketplacePaymentsConfig(), HomeownerPlatformFeesConfig())
    assert amounts.buffer_cents == 5600
    assert amounts.authorized_cents == 33600
    # 28000 alone would sit in the first band; the hold lands in the second
    assert amounts.platform_fee_cents == 1200


@pytest.mark.parametrize(
    "hh,mm,expected",
    [(18, 0, True), (23, 59, True), (0, 0, True), (7, 59, True), (8, 0, False), (12, 30, False), (17, 59, False)],
)
def test_after_hours_window_wraps_midnight(hh, mm, expected):
    assert is_after_hours(datetime(2024, 3, 5, hh, mm), AfterHoursConfig()) is expected


def test_after_hours_disabled_and_daytime_window():
    assert is_after_hours(datetime(2024, 3, 5, 22, 0), AfterHoursConfig(enabled=False)) is False

    daytime = AfterHoursConfig.model_validate({"window_local": {"start": "09:00", "end": "17:00"}})
    assert is_after_hours(datetime(2024, 3, 5, 9, 0), daytime) is True
    assert is_after_hours(datetime(2024, 3, 5, 17, 0), daytime) is False


def test_diagnostic_fee_lookup_and_surcharge():
    cfg = DiagnosticFeesConfig()

    q = diagnostic_fee("HVAC", cfg)
    assert (q.category, q.fee_cents, q.creditable, q.after_hours) == ("hvac", 8900, True, False)

    assert diagnostic_fee("chimney", cfg).fee_cents == 5900

    surcharged = diagnostic_fee("plumbing", cfg, AfterHoursConfig())
    assert surcharged.fee_cents == 10665
    assert surcharged.after_hours is True

    odd = DiagnosticFeesConfig.model_validate({"default": {"fee_cents": 1001, "creditable": False}})
    q = diagnostic_fee("anything", odd, AfterHoursConfig(multiplier=1.5))
    assert q.fee_cents == 1502
    assert q.creditable is False
