# backend/app/domain/config_sections.py
from __future__ import annotations

import re
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


class _Section(BaseModel):
    # stored documents may carry keys from older releases
    model_config = ConfigDict(extra="ignore")


class MarketplacePaymentsConfig(_Section):
    estimate_buffer_percentage: float = Field(default=20, ge=0)
    estimate_buffer_cap_cents: int = Field(default=25000, ge=0)
    change_order_threshold_percentage: float = Field(default=12, ge=0)
    dispute_window_hours: int = Field(default=72, ge=0)


class FeeTier(_Section):
    min_cents: int = Field(ge=0)
    max_cents: int = Field(ge=0)
    fee_cents: int = Field(ge=0)


def _default_tiers() -> list[FeeTier]:
    return [
        FeeTier(min_cents=0, max_cents=29999, fee_cents=600),
        FeeTier(min_cents=30000, max_cents=150000, fee_cents=1200),
        FeeTier(min_cents=150001, max_cents=999999999, fee_cents=2500),
    ]


class HomeownerPlatformFeesConfig(_Section):
    tiers: list[FeeTier] = Field(default_factory=_default_tiers)
    cap_cents: int = Field(default=2500, ge=0)


class ProviderFeesConfig(_Section):
    percentage: float = Field(default=8.0, ge=0, le=100)
    minimum_cents: int = Field(default=350, ge=0)


class DiagnosticFee(_Section):
    fee_cents: int = Field(ge=0)
    creditable: bool = True


DEFAULT_DIAGNOSTIC_FEE_CENTS = 5900

_DEFAULT_DIAGNOSTIC_FEES: dict[str, int] = {
    "handyman": 4900,
    "plumbing": 7900,
    "electrical": 7900,
    "hvac": 8900,
    "roofing": 7900,
    "water_damage": 8900,
    "appliances": 5900,
    "exterior": 5900,
    "interior": 4900,
    "landscaping": 4900,
    "pest_control": 4900,
    "safety": 5900,
    "default": DEFAULT_DIAGNOSTIC_FEE_CENTS,
}


def _default_diagnostic_fees() -> dict[str, DiagnosticFee]:
    return {k: DiagnosticFee(fee_cents=v) for k, v in _DEFAULT_DIAGNOSTIC_FEES.items()}


class DiagnosticFeesConfig(_Section):
    fees: dict[str, DiagnosticFee] = Field(default_factory=_default_diagnostic_fees)

    @model_validator(mode="before")
    @classmethod
    def _accept_flat_mapping(cls, data: Any) -> Any:
        # Stored form is the flat {category: {fee_cents, creditable}} mapping.
        if isinstance(data, dict) and "fees" not in data:
            return {"fees": data}
        return data

    def lookup(self, category: str) -> DiagnosticFee:
        return (
            self.fees.get((category or "").strip().lower())
            or self.fees.get("default")
            or DiagnosticFee(fee_cents=DEFAULT_DIAGNOSTIC_FEE_CENTS)
        )

    def stored_value(self) -> dict[str, Any]:
        return {k: v.model_dump() for k, v in self.fees.items()}


_HHMM = re.compile(r"^([01]\d|2[0-3]):[0-5]\d$")


class AfterHoursWindow(_Section):
    start: str = "18:00"
    end: str = "08:00"

    @field_validator("start", "end")
    @classmethod
    def _hhmm(cls, v: str) -> str:
        if not _HHMM.match(v or ""):
            raise ValueError("expected HH:MM")
        return v


class AfterHoursConfig(_Section):
    enabled: bool = True
    multiplier: float = Field(default=1.35, ge=1)
    window_local: AfterHoursWindow = Field(default_factory=AfterHoursWindow)


SECTION_MODELS: dict[str, type[_Section]] = {
    "marketplace_payments": MarketplacePaymentsConfig,
    "homeowner_platform_fees": HomeownerPlatformFeesConfig,
    "provider_fees": ProviderFeesConfig,
    "diagnostic_fees": DiagnosticFeesConfig,
    "after_hours": AfterHoursConfig,
}


def section_to_stored(section: BaseModel) -> dict[str, Any]:
    if isinstance(section, DiagnosticFeesConfig):
        return section.stored_value()
    return section.model_dump()
