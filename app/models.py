# backend/app/models.py
from __future__ import annotations

from datetime import date, datetime
from typing import List, Optional

from sqlalchemy import (
    Boolean,
    Date,
    DateTime,
    Float,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
    Index,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .db import Base


# -----------------------------
# Users + audit/event log
# -----------------------------
class AppUser(Base):
    __tablename__ = "app_users"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    email: Mapped[str] = mapped_column(String(200), nullable=False, unique=True, index=True)
    display_name: Mapped[Optional[str]] = mapped_column(String(160), nullable=True)
    role: Mapped[str] = mapped_column(String(20), nullable=False, default="homeowner")  # homeowner|provider|admin
    stripe_customer_id: Mapped[Optional[str]] = mapped_column(String(120), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow)


class AuditEvent(Base):
    __tablename__ = "audit_events"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    actor_user_id: Mapped[Optional[int]] = mapped_column(Integer, ForeignKey("app_users.id"), nullable=True)

    action: Mapped[str] = mapped_column(String(80), nullable=False)
    entity_type: Mapped[str] = mapped_column(String(80), nullable=False)
    entity_id: Mapped[str] = mapped_column(String(80), nullable=False)

    before_json: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    after_json: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow)


class WorkflowEvent(Base):
    __tablename__ = "workflow_events"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)

    property_id: Mapped[Optional[int]] = mapped_column(Integer, ForeignKey("properties.id"), nullable=True, index=True)
    service_request_id: Mapped[Optional[int]] = mapped_column(
        Integer, ForeignKey("service_requests.id"), nullable=True, index=True
    )
    actor_user_id: Mapped[Optional[int]] = mapped_column(Integer, ForeignKey("app_users.id"), nullable=True)

    event_type: Mapped[str] = mapped_column(String(80), nullable=False, index=True)
    payload_json: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow)


class AdminConfig(Base):
    __tablename__ = "admin_config"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    key: Mapped[str] = mapped_column(String(80), nullable=False, unique=True, index=True)
    value_json: Mapped[str] = mapped_column(Text, nullable=False, default="{}")
    updated_by_user_id: Mapped[Optional[int]] = mapped_column(Integer, ForeignKey("app_users.id"), nullable=True)
    updated_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow)


class Notification(Base):
    __tablename__ = "notifications"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(Integer, ForeignKey("app_users.id"), nullable=False, index=True)

    kind: Mapped[str] = mapped_column(String(40), nullable=False)  # task_overdue|task_digest|...
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    body: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    link: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)

    # one row per (user, kind, day); null for notifications that may repeat
    dedup_key: Mapped[Optional[str]] = mapped_column(String(160), nullable=True, unique=True)

    read_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow)


# -----------------------------
# Properties + maintenance
# -----------------------------
class Property(Base):
    __tablename__ = "properties"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    owner_user_id: Mapped[int] = mapped_column(Integer, ForeignKey("app_users.id"), nullable=False, index=True)

    name: Mapped[Optional[str]] = mapped_column(String(160), nullable=True)
    address: Mapped[str] = mapped_column(String(255), nullable=False)
    city: Mapped[str] = mapped_column(String(120), nullable=False)
    state: Mapped[str] = mapped_column(String(2), nullable=False)
    zip: Mapped[str] = mapped_column(String(10), nullable=False)

    year_built: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    timezone: Mapped[str] = mapped_column(String(64), nullable=False, default="America/New_York")

    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow)

    tasks: Mapped[List["MaintenanceTask"]] = relationship(back_populates="property", cascade="all, delete-orphan")
    service_requests: Mapped[List["ServiceRequest"]] = relationship(back_populates="property")


class MaintenanceTemplate(Base):
    __tablename__ = "maintenance_templates"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    title: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    category: Mapped[str] = mapped_column(String(60), nullable=False)

    frequency_type: Mapped[str] = mapped_column(String(30), nullable=False)
    frequency_interval: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    suggested_months_json: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    sort_order: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow)


class MaintenanceTask(Base):
    __tablename__ = "maintenance_tasks"
    __table_args__ = (Index("ix_maintenance_tasks_property_status_due", "property_id", "status", "next_due_date"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    property_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("properties.id", ondelete="CASCADE"), nullable=False, index=True
    )
    template_id: Mapped[Optional[int]] = mapped_column(
        Integer, ForeignKey("maintenance_templates.id"), nullable=True, index=True
    )

    title: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    category: Mapped[str] = mapped_column(String(60), nullable=False)

    # interval_days|interval_weeks|interval_months|interval_years|seasonal_months|one_time
    frequency_type: Mapped[str] = mapped_column(String(30), nullable=False)
    frequency_interval: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    suggested_months_json: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    next_due_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    last_completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    last_notified_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    status: Mapped[str] = mapped_column(String(20), nullable=False, default="active")  # active|archived
    is_custom: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow)

    property: Mapped["Property"] = relationship(back_populates="tasks")
    completions: Mapped[List["TaskCompletion"]] = relationship(
        back_populates="task", cascade="all, delete-orphan", order_by="TaskCompletion.completed_at"
    )


class TaskCompletion(Base):
    """Append-only; rows are never edited after insert."""

    __tablename__ = "task_completions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    task_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("maintenance_tasks.id", ondelete="CASCADE"), nullable=False, index=True
    )

    completed_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow)
    completed_by_user_id: Mapped[Optional[int]] = mapped_column(Integer, ForeignKey("app_users.id"), nullable=True)

    cost_cents: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    attachments_json: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    source: Mapped[str] = mapped_column(String(20), nullable=False, default="manual")  # manual|provider_job
    related_request_id: Mapped[Optional[int]] = mapped_column(
        Integer, ForeignKey("service_requests.id"), nullable=True
    )

    task: Mapped["MaintenanceTask"] = relationship(back_populates="completions")


class TaskRequestLink(Base):
    __tablename__ = "task_request_links"
    __table_args__ = (UniqueConstraint("task_id", "service_request_id", name="uq_task_request_links_task_request"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    task_id: Mapped[int] = mapped_column(Integer, ForeignKey("maintenance_tasks.id"), nullable=False, index=True)
    service_request_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("service_requests.id"), nullable=False, index=True
    )
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow)


# -----------------------------
# Marketplace: providers, requests, money
# -----------------------------
class Provider(Base):
    __tablename__ = "providers"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(Integer, ForeignKey("app_users.id"), nullable=False, unique=True)
    business_name: Mapped[str] = mapped_column(String(200), nullable=False)
    stripe_account_id: Mapped[Optional[str]] = mapped_column(String(120), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow)


class ServiceRequest(Base):
    __tablename__ = "service_requests"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    property_id: Mapped[int] = mapped_column(Integer, ForeignKey("properties.id"), nullable=False, index=True)
    customer_user_id: Mapped[int] = mapped_column(Integer, ForeignKey("app_users.id"), nullable=False, index=True)
    provider_id: Mapped[Optional[int]] = mapped_column(Integer, ForeignKey("providers.id"), nullable=True, index=True)

    title: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    category: Mapped[str] = mapped_column(String(60), nullable=False)
    urgency: Mapped[str] = mapped_column(String(20), nullable=False, default="normal")  # low|normal|high|emergency

    # submitted|estimate_sent|estimate_approved|invoiced|completed|disputed
    status: Mapped[str] = mapped_column(String(30), nullable=False, default="submitted", index=True)

    diagnostic_fee_cents: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    diagnostic_fee_paid: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    diagnostic_payment_ref: Mapped[Optional[str]] = mapped_column(String(120), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow)

    property: Mapped["Property"] = relationship(back_populates="service_requests")
    estimates: Mapped[List["Estimate"]] = relationship(back_populates="service_request", order_by="Estimate.id")
    invoices: Mapped[List["Invoice"]] = relationship(back_populates="service_request", order_by="Invoice.id")


class Estimate(Base):
    __tablename__ = "estimates"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    service_request_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("service_requests.id"), nullable=False, index=True
    )
    provider_id: Mapped[int] = mapped_column(Integer, ForeignKey("providers.id"), nullable=False, index=True)

    total_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    line_items_json: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    status: Mapped[str] = mapped_column(String(20), nullable=False, default="draft")  # draft|sent|viewed|approved|rejected|expired

    authorized_amount_cents: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    buffer_amount_cents: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    platform_fee_cents: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    payment_intent_id: Mapped[Optional[str]] = mapped_column(String(120), nullable=True)

    sent_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    viewed_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    responded_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow)

    service_request: Mapped["ServiceRequest"] = relationship(back_populates="estimates")
    change_orders: Mapped[List["ChangeOrder"]] = relationship(back_populates="estimate", order_by="ChangeOrder.id")


class ChangeOrder(Base):
    __tablename__ = "change_orders"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    estimate_id: Mapped[int] = mapped_column(Integer, ForeignKey("estimates.id"), nullable=False, index=True)
    service_request_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("service_requests.id"), nullable=False, index=True
    )

    reason: Mapped[str] = mapped_column(Text, nullable=False)
    original_total_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    additional_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    new_total_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    percentage_increase: Mapped[float] = mapped_column(Float, nullable=False)

    status: Mapped[str] = mapped_column(String(20), nullable=False, default="pending")  # pending|accepted|rejected|expired
    expires_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)

    authorized_amount_cents: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    authorization_ref: Mapped[Optional[str]] = mapped_column(String(120), nullable=True)
    responded_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow)

    estimate: Mapped["Estimate"] = relationship(back_populates="change_orders")


class Invoice(Base):
    __tablename__ = "invoices"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    service_request_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("service_requests.id"), nullable=False, index=True
    )
    estimate_id: Mapped[int] = mapped_column(Integer, ForeignKey("estimates.id"), nullable=False, index=True)
    provider_id: Mapped[int] = mapped_column(Integer, ForeignKey("providers.id"), nullable=False, index=True)

    total_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    line_items_json: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    status: Mapped[str] = mapped_column(String(20), nullable=False, default="pending_approval")  # pending_approval|paid|disputed

    # set only after a successful capture
    captured_amount_cents: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    platform_fee_cents: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    provider_payout_cents: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    charge_id: Mapped[Optional[str]] = mapped_column(String(120), nullable=True)
    transfer_id: Mapped[Optional[str]] = mapped_column(String(120), nullable=True)
    paid_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow)

    service_request: Mapped["ServiceRequest"] = relationship(back_populates="invoices")


class Dispute(Base):
    __tablename__ = "disputes"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    invoice_id: Mapped[int] = mapped_column(Integer, ForeignKey("invoices.id"), nullable=False, index=True)
    service_request_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("service_requests.id"), nullable=False, index=True
    )
    opened_by_user_id: Mapped[int] = mapped_column(Integer, ForeignKey("app_users.id"), nullable=False)

    reason: Mapped[str] = mapped_column(String(60), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    amount_disputed_cents: Mapped[int] = mapped_column(Integer, nullable=False)

    status: Mapped[str] = mapped_column(String(20), nullable=False, default="open")
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow)


class PaymentTransaction(Base):
    __tablename__ = "payment_transactions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    service_request_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("service_requests.id"), nullable=False, index=True
    )
    invoice_id: Mapped[Optional[int]] = mapped_column(Integer, ForeignKey("invoices.id"), nullable=True, index=True)

    # diagnostic_fee|authorization|reauthorization|capture
    kind: Mapped[str] = mapped_column(String(30), nullable=False)
    amount_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    platform_fee_cents: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    provider_amount_cents: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    external_ref: Mapped[Optional[str]] = mapped_column(String(120), nullable=True)
    transfer_ref: Mapped[Optional[str]] = mapped_column(String(120), nullable=True)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="succeeded")

    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow)
