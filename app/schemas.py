# backend/app/schemas.py
from __future__ import annotations

import datetime as dt
import json
from datetime import date, datetime
from typing import Any, ClassVar, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator


def _json_list(raw: Any) -> list:
    if raw is None or raw == "":
        return []
    if isinstance(raw, list):
        return raw
    try:
        v = json.loads(raw)
    except (TypeError, ValueError):
        return []
    return v if isinstance(v, list) else []


class _FromRow(BaseModel):
    """
    Out-models built from ORM rows. `<name>_json` text columns are decoded
    into `<name>` lists.
    """

    model_config = ConfigDict(from_attributes=True)

    json_fields: ClassVar[tuple[str, ...]] = ()

    @model_validator(mode="before")
    @classmethod
    def _decode_json_columns(cls, data: Any) -> Any:
        if not cls.json_fields or isinstance(data, dict):
            return data
        out = {k: getattr(data, k) for k in cls.model_fields if hasattr(data, k)}
        for f in cls.json_fields:
            out[f] = _json_list(getattr(data, f"{f}_json", None))
        return out


# -------------------- Properties --------------------

class PropertyCreate(BaseModel):
    name: Optional[str] = None
    address: str
    city: str
    state: str = Field(min_length=2, max_length=2)
    zip: str
    year_built: Optional[int] = None
    timezone: str = "America/New_York"


class PropertyOut(PropertyCreate):
    id: int
    owner_user_id: int
    created_at: datetime
    model_config = ConfigDict(from_attributes=True)


# -------------------- Maintenance templates --------------------

FrequencyType = Literal[
    "interval_days", "interval_weeks", "interval_months", "interval_years", "seasonal_months", "one_time"
]


class MaintenanceTemplateCreate(BaseModel):
    title: str
    description: Optional[str] = None
    category: str
    frequency_type: FrequencyType
    frequency_interval: int = 1
    suggested_months: List[int] = Field(default_factory=list)
    is_active: bool = True
    sort_order: int = 0


class MaintenanceTemplateUpdate(BaseModel):
    title: Optional[str] = None
    description: Optional[str] = None
    category: Optional[str] = None
    frequency_type: Optional[FrequencyType] = None
    frequency_interval: Optional[int] = None
    suggested_months: Optional[List[int]] = None
    is_active: Optional[bool] = None
    sort_order: Optional[int] = None


class MaintenanceTemplateOut(_FromRow):
    json_fields = ("suggested_months",)

    id: int
    title: str
    description: Optional[str] = None
    category: str
    frequency_type: str
    frequency_interval: int
    suggested_months: List[int] = Field(default_factory=list)
    is_active: bool
    sort_order: int
    created_at: datetime


# -------------------- Maintenance tasks --------------------

class MaintenanceTaskCreate(BaseModel):
    property_id: int
    title: str = Field(min_length=1)
    description: Optional[str] = None
    category: str = Field(min_length=1)
    frequency_type: FrequencyType
    frequency_interval: int = 1
    suggested_months: Optional[List[int]] = None
    next_due_date: Optional[date] = None


class MaintenanceTaskUpdate(BaseModel):
    title: Optional[str] = None
    description: Optional[str] = None
    category: Optional[str] = None
    frequency_type: Optional[FrequencyType] = None
    frequency_interval: Optional[int] = None
    suggested_months: Optional[List[int]] = None
    next_due_date: Optional[date] = None


class MaintenanceTaskOut(BaseModel):
    id: int
    property_id: int
    template_id: Optional[int] = None
    title: str
    description: Optional[str] = None
    category: str
    frequency_type: str
    frequency_interval: int
    suggested_months: List[int] = Field(default_factory=list)
    next_due_date: Optional[date] = None
    last_completed_at: Optional[datetime] = None
    status: str
    is_custom: bool
    created_at: datetime

    # derived for display
    due_status: str
    due_label: str
    frequency_label: str


class TaskListOut(BaseModel):
    overdue: List[MaintenanceTaskOut] = Field(default_factory=list)
    due_soon: List[MaintenanceTaskOut] = Field(default_factory=list)
    upcoming: List[MaintenanceTaskOut] = Field(default_factory=list)
    completed: List[MaintenanceTaskOut] = Field(default_factory=list)


class Attachment(BaseModel):
    url: str
    name: Optional[str] = None
    content_type: Optional[str] = None


class TaskCompleteIn(BaseModel):
    notes: Optional[str] = None
    cost_cents: Optional[int] = None
    attachments: List[Attachment] = Field(default_factory=list)
    related_request_id: Optional[int] = None
    completed_at: Optional[datetime] = None


class TaskCompletionOut(_FromRow):
    json_fields = ("attachments",)

    id: int
    task_id: int
    completed_at: datetime
    completed_by_user_id: Optional[int] = None
    cost_cents: Optional[int] = None
    notes: Optional[str] = None
    attachments: List[dict[str, Any]] = Field(default_factory=list)
    source: str
    related_request_id: Optional[int] = None


class TaskCompleteOut(BaseModel):
    completion: TaskCompletionOut
    next_due_date: Optional[date] = None


class PlanGenerateOut(BaseModel):
    count: int
    task_ids: List[int] = Field(default_factory=list)
    message: str


class NextDueDateIn(BaseModel):
    frequency_type: str
    frequency_interval: int = 1
    suggested_months: Optional[List[int]] = None
    from_date: Optional[date] = Field(default=None, alias="from")

    model_config = ConfigDict(populate_by_name=True)


class NextDueDateOut(BaseModel):
    next_due_date: Optional[date] = None


class CreateRequestIn(BaseModel):
    property_id: int
    task_ids: List[int] = Field(default_factory=list)
    title: Optional[str] = None
    description: Optional[str] = None
    urgency: Literal["low", "normal", "high", "emergency"] = "normal"


class CreateRequestOut(BaseModel):
    service_request_id: int
    status: str
    category: str
    linked_count: int


# -------------------- Calendar --------------------

class CalendarEntryOut(BaseModel):
    task_id: int
    title: str
    category: str
    status: str


class CalendarDayOut(BaseModel):
    date: dt.date
    due: List[CalendarEntryOut] = Field(default_factory=list)
    completed_task_ids: List[int] = Field(default_factory=list)


class CalendarTaskRef(BaseModel):
    task_id: int
    property_id: Optional[int] = None
    title: str
    category: str
    next_due_date: Optional[date] = None


class CalendarOut(BaseModel):
    year: int
    month: int
    overdue: List[CalendarTaskRef] = Field(default_factory=list)
    due_soon: List[CalendarTaskRef] = Field(default_factory=list)
    upcoming: List[CalendarTaskRef] = Field(default_factory=list)
    completed: List[CalendarTaskRef] = Field(default_factory=list)
    days: List[CalendarDayOut] = Field(default_factory=list)


# -------------------- Providers / service requests --------------------

class ProviderUpsert(BaseModel):
    business_name: str = Field(min_length=1)
    stripe_account_id: Optional[str] = None


class ProviderOut(ProviderUpsert):
    id: int
    user_id: int
    model_config = ConfigDict(from_attributes=True)


class ServiceRequestCreate(BaseModel):
    property_id: int
    title: str = Field(min_length=1)
    description: Optional[str] = None
    category: str = Field(min_length=1)
    urgency: Literal["low", "normal", "high", "emergency"] = "normal"


class ServiceRequestOut(BaseModel):
    id: int
    property_id: int
    customer_user_id: int
    provider_id: Optional[int] = None
    title: str
    description: Optional[str] = None
    category: str
    urgency: str
    status: str
    diagnostic_fee_cents: Optional[int] = None
    diagnostic_fee_paid: bool
    created_at: datetime
    model_config = ConfigDict(from_attributes=True)


# -------------------- Money flow --------------------

class DiagnosticFeeOut(BaseModel):
    client_secret: Optional[str] = None
    payment_intent_id: str
    fee_cents: int
    creditable: bool
    after_hours: bool


class EstimateCreate(BaseModel):
    total_cents: int
    line_items: List[dict[str, Any]] = Field(default_factory=list)
    notes: Optional[str] = None


class EstimateOut(_FromRow):
    json_fields = ("line_items",)

    id: int
    service_request_id: int
    provider_id: int
    total_cents: int
    line_items: List[dict[str, Any]] = Field(default_factory=list)
    notes: Optional[str] = None
    status: str
    authorized_amount_cents: Optional[int] = None
    buffer_amount_cents: Optional[int] = None
    platform_fee_cents: Optional[int] = None
    sent_at: Optional[datetime] = None
    viewed_at: Optional[datetime] = None
    responded_at: Optional[datetime] = None
    created_at: datetime


class AuthorizationOut(BaseModel):
    client_secret: Optional[str] = None
    payment_intent_id: str
    authorized_amount: int
    buffer_amount: int
    platform_fee: int


class RejectIn(BaseModel):
    reason: Optional[str] = None


class ChangeOrderCreate(BaseModel):
    additional_cents: int
    reason: str = ""


class ChangeOrderOut(BaseModel):
    id: int
    estimate_id: int
    service_request_id: int
    reason: str
    original_total_cents: int
    additional_cents: int
    new_total_cents: int
    percentage_increase: float
    status: str
    expires_at: datetime
    authorized_amount_cents: Optional[int] = None
    responded_at: Optional[datetime] = None
    created_at: datetime
    model_config = ConfigDict(from_attributes=True)


class ChangeOrderAcceptOut(BaseModel):
    change_order_id: int
    payment_intent_id: str
    new_total_cents: int
    authorized_amount: int
    buffer_amount: int
    platform_fee: int


class InvoiceCreate(BaseModel):
    total_cents: int
    line_items: List[dict[str, Any]] = Field(default_factory=list)


class InvoiceOut(_FromRow):
    json_fields = ("line_items",)

    id: int
    service_request_id: int
    estimate_id: int
    provider_id: int
    total_cents: int
    line_items: List[dict[str, Any]] = Field(default_factory=list)
    status: str
    captured_amount_cents: Optional[int] = None
    platform_fee_cents: Optional[int] = None
    provider_payout_cents: Optional[int] = None
    paid_at: Optional[datetime] = None
    created_at: datetime


class CaptureOut(BaseModel):
    charge_id: str
    provider_transfer_id: Optional[str] = None
    provider_amount: int
    platform_fee: int


class DisputeCreate(BaseModel):
    reason: str = ""
    description: Optional[str] = None


class DisputeOut(BaseModel):
    id: int
    invoice_id: int
    service_request_id: int
    reason: str
    description: Optional[str] = None
    amount_disputed_cents: int
    status: str
    created_at: datetime
    model_config = ConfigDict(from_attributes=True)


# -------------------- Admin config --------------------

class ConfigUpdateIn(BaseModel):
    value: dict[str, Any]


class ConfigUpdateOut(BaseModel):
    key: str
    value: dict[str, Any]


# -------------------- Notifications --------------------

class NotificationOut(BaseModel):
    id: int
    kind: str
    title: str
    body: Optional[str] = None
    link: Optional[str] = None
    read_at: Optional[datetime] = None
    created_at: datetime
    model_config = ConfigDict(from_attributes=True)
