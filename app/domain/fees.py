# backend/app/domain/fees.py
from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import datetime, time
from typing import Optional

from .config_sections import (
    AfterHoursConfig,
    DiagnosticFeesConfig,
    HomeownerPlatformFeesConfig,
    MarketplacePaymentsConfig,
    ProviderFeesConfig,
)


@dataclass(frozen=True)
class AuthorizationAmounts:
    amount_cents: int
    buffer_cents: int
    authorized_cents: int
    platform_fee_cents: int


@dataclass(frozen=True)
class DiagnosticFeeQuote:
    category: str
    fee_cents: int
    creditable: bool
    after_hours: bool


def homeowner_platform_fee(amount_cents: int, cfg: HomeownerPlatformFeesConfig) -> int:
    """First band containing the amount wins, then the cap applies. No band -> 0."""
    fee = 0
    for tier in cfg.tiers:
        if tier.min_cents <= amount_cents <= tier.max_cents:
            fee = int(tier.fee_cents)
            break
    return min(fee, int(cfg.cap_cents))


def provider_fee(amount_cents: int, cfg: ProviderFeesConfig) -> int:
    """max(floor(amount * pct / 100), minimum). Integer cents only."""
    # percentage may be fractional (8.5); scale to basis points before flooring
    bps = int(round(float(cfg.percentage) * 100))
    calculated = (int(amount_cents) * bps) // 10000
    return max(calculated, int(cfg.minimum_cents))


def buffer_amount(amount_cents: int, cfg: MarketplacePaymentsConfig) -> int:
    bps = int(round(float(cfg.estimate_buffer_percentage) * 100))
    raw = -((-int(amount_cents) * bps) // 10000)  # ceil
    return min(raw, int(cfg.estimate_buffer_cap_cents))


def authorization_amounts(
    amount_cents: int,
    payments_cfg: MarketplacePaymentsConfig,
    homeowner_cfg: HomeownerPlatformFeesConfig,
) -> AuthorizationAmounts:
    """
    Hold = amount + buffer. The homeowner platform fee is computed on the
    held amount and reported alongside it; it is not part of the hold, so the
    capture ceiling is exactly amount + buffer.
    """
    buf = buffer_amount(amount_cents, payments_cfg)
    authorized = int(amount_cents) + buf
    return AuthorizationAmounts(
        amount_cents=int(amount_cents),
        buffer_cents=buf,
        authorized_cents=authorized,
        platform_fee_cents=homeowner_platform_fee(authorized, homeowner_cfg),
    )


def _parse_hhmm(v: str) -> time:
    h, m = v.split(":", 1)
    return time(int(h), int(m))


def is_after_hours(now_local: datetime, cfg: AfterHoursConfig) -> bool:
    """
    `now_local` must already be in the property's local time. Windows that
    wrap midnight (18:00-08:00) are handled; start is inclusive, end exclusive.
    """
    if not cfg.enabled:
        return False
    start = _parse_hhmm(cfg.window_local.start)
    end = _parse_hhmm(cfg.window_local.end)
    t = now_local.time().replace(second=0, microsecond=0)
    if start == end:
        return False
    if start > end:
        return t >= start or t < end
    return start <= t < end


def diagnostic_fee(
    category: str,
    cfg: DiagnosticFeesConfig,
    after_hours: Optional[AfterHoursConfig] = None,
) -> DiagnosticFeeQuote:
    """
    Category fee with `default` fallback. Passing an enabled after-hours
    section applies its multiplier (rounded up to the cent).
    """
    base = cfg.lookup(category)
    fee = int(base.fee_cents)
    surcharged = after_hours is not None and after_hours.enabled
    if surcharged:
        fee = int(math.ceil(round(fee * float(after_hours.multiplier), 6)))
    return DiagnosticFeeQuote(
        category=(category or "").strip().lower() or "default",
        fee_cents=fee,
        creditable=bool(base.creditable),
        after_hours=surcharged,
    )
