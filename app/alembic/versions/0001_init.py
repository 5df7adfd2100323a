"""init schema

Revision ID: 0001_init
Revises:
Create Date: 2026-10-16
"""
from __future__ import annotations

from alembic import op
import sqlalchemy as sa
from sqlalchemy import inspect


revision = "0001_init"
down_revision = None
branch_labels = None
depends_on = None


def _has_table(name: str) -> bool:
    return name in inspect(op.get_bind()).get_table_names()


def _ts(name: str, nullable: bool = False) -> sa.Column:
    return sa.Column(name, sa.DateTime(), nullable=nullable)


def upgrade() -> None:
    # -------------------------
    # Users, config, event log
    # -------------------------
    if not _has_table("app_users"):
        op.create_table(
            "app_users",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("email", sa.String(length=200), nullable=False),
            sa.Column("display_name", sa.String(length=160), nullable=True),
            sa.Column("role", sa.String(length=20), nullable=False, server_default="homeowner"),
            sa.Column("stripe_customer_id", sa.String(length=120), nullable=True),
            _ts("created_at"),
        )
        op.create_index("ix_app_users_email", "app_users", ["email"], unique=True)

    if not _has_table("admin_config"):
        op.create_table(
            "admin_config",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("key", sa.String(length=80), nullable=False),
            sa.Column("value_json", sa.Text(), nullable=False, server_default="{}"),
            sa.Column("updated_by_user_id", sa.Integer(), sa.ForeignKey("app_users.id"), nullable=True),
            _ts("updated_at"),
        )
        op.create_index("ix_admin_config_key", "admin_config", ["key"], unique=True)

    if not _has_table("notifications"):
        op.create_table(
            "notifications",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("user_id", sa.Integer(), sa.ForeignKey("app_users.id"), nullable=False),
            sa.Column("kind", sa.String(length=40), nullable=False),
            sa.Column("title", sa.String(length=255), nullable=False),
            sa.Column("body", sa.Text(), nullable=True),
            sa.Column("link", sa.String(length=500), nullable=True),
            sa.Column("dedup_key", sa.String(length=160), nullable=True, unique=True),
            _ts("read_at", nullable=True),
            _ts("created_at"),
        )
        op.create_index("ix_notifications_user_id", "notifications", ["user_id"])

    if not _has_table("audit_events"):
        op.create_table(
            "audit_events",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("actor_user_id", sa.Integer(), sa.ForeignKey("app_users.id"), nullable=True),
            sa.Column("action", sa.String(length=80), nullable=False),
            sa.Column("entity_type", sa.String(length=80), nullable=False),
            sa.Column("entity_id", sa.String(length=80), nullable=False),
            sa.Column("before_json", sa.Text(), nullable=True),
            sa.Column("after_json", sa.Text(), nullable=True),
            _ts("created_at"),
        )

    # -------------------------
    # Properties + templates + providers + requests
    # -------------------------
    if not _has_table("properties"):
        op.create_table(
            "properties",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("owner_user_id", sa.Integer(), sa.ForeignKey("app_users.id"), nullable=False),
            sa.Column("name", sa.String(length=160), nullable=True),
            sa.Column("address", sa.String(length=255), nullable=False),
            sa.Column("city", sa.String(length=120), nullable=False),
            sa.Column("state", sa.String(length=2), nullable=False),
            sa.Column("zip", sa.String(length=10), nullable=False),
            sa.Column("year_built", sa.Integer(), nullable=True),
            sa.Column("timezone", sa.String(length=64), nullable=False, server_default="America/New_York"),
            _ts("created_at"),
        )
        op.create_index("ix_properties_owner_user_id", "properties", ["owner_user_id"])

    if not _has_table("maintenance_templates"):
        op.create_table(
            "maintenance_templates",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("title", sa.String(length=255), nullable=False, unique=True),
            sa.Column("description", sa.Text(), nullable=True),
            sa.Column("category", sa.String(length=60), nullable=False),
            sa.Column("frequency_type", sa.String(length=30), nullable=False),
            sa.Column("frequency_interval", sa.Integer(), nullable=False, server_default="1"),
            sa.Column("suggested_months_json", sa.Text(), nullable=True),
            sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
            sa.Column("sort_order", sa.Integer(), nullable=False, server_default="0"),
            _ts("created_at"),
        )

    if not _has_table("providers"):
        op.create_table(
            "providers",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("user_id", sa.Integer(), sa.ForeignKey("app_users.id"), nullable=False, unique=True),
            sa.Column("business_name", sa.String(length=200), nullable=False),
            sa.Column("stripe_account_id", sa.String(length=120), nullable=True),
            _ts("created_at"),
        )

    if not _has_table("service_requests"):
        op.create_table(
            "service_requests",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("property_id", sa.Integer(), sa.ForeignKey("properties.id"), nullable=False),
            sa.Column("customer_user_id", sa.Integer(), sa.ForeignKey("app_users.id"), nullable=False),
            sa.Column("provider_id", sa.Integer(), sa.ForeignKey("providers.id"), nullable=True),
            sa.Column("title", sa.String(length=255), nullable=False),
            sa.Column("description", sa.Text(), nullable=True),
            sa.Column("category", sa.String(length=60), nullable=False),
            sa.Column("urgency", sa.String(length=20), nullable=False, server_default="normal"),
            sa.Column("status", sa.String(length=30), nullable=False, server_default="submitted"),
            sa.Column("diagnostic_fee_cents", sa.Integer(), nullable=True),
            sa.Column("diagnostic_fee_paid", sa.Boolean(), nullable=False, server_default=sa.text("false")),
            sa.Column("diagnostic_payment_ref", sa.String(length=120), nullable=True),
            _ts("created_at"),
            _ts("updated_at"),
        )
        op.create_index("ix_service_requests_property_id", "service_requests", ["property_id"])
        op.create_index("ix_service_requests_customer_user_id", "service_requests", ["customer_user_id"])
        op.create_index("ix_service_requests_provider_id", "service_requests", ["provider_id"])
        op.create_index("ix_service_requests_status", "service_requests", ["status"])

    if not _has_table("workflow_events"):
        op.create_table(
            "workflow_events",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("property_id", sa.Integer(), sa.ForeignKey("properties.id"), nullable=True),
            sa.Column("service_request_id", sa.Integer(), sa.ForeignKey("service_requests.id"), nullable=True),
            sa.Column("actor_user_id", sa.Integer(), sa.ForeignKey("app_users.id"), nullable=True),
            sa.Column("event_type", sa.String(length=80), nullable=False),
            sa.Column("payload_json", sa.Text(), nullable=True),
            _ts("created_at"),
        )
        op.create_index("ix_workflow_events_property_id", "workflow_events", ["property_id"])
        op.create_index("ix_workflow_events_service_request_id", "workflow_events", ["service_request_id"])
        op.create_index("ix_workflow_events_event_type", "workflow_events", ["event_type"])

    # -------------------------
    # Maintenance tasks
    # -------------------------
    if not _has_table("maintenance_tasks"):
        op.create_table(
            "maintenance_tasks",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("property_id", sa.Integer(), sa.ForeignKey("properties.id", ondelete="CASCADE"), nullable=False),
            sa.Column("template_id", sa.Integer(), sa.ForeignKey("maintenance_templates.id"), nullable=True),
            sa.Column("title", sa.String(length=255), nullable=False),
            sa.Column("description", sa.Text(), nullable=True),
            sa.Column("category", sa.String(length=60), nullable=False),
            sa.Column("frequency_type", sa.String(length=30), nullable=False),
            sa.Column("frequency_interval", sa.Integer(), nullable=False, server_default="1"),
            sa.Column("suggested_months_json", sa.Text(), nullable=True),
            sa.Column("next_due_date", sa.Date(), nullable=True),
            _ts("last_completed_at", nullable=True),
            _ts("last_notified_at", nullable=True),
            sa.Column("status", sa.String(length=20), nullable=False, server_default="active"),
            sa.Column("is_custom", sa.Boolean(), nullable=False, server_default=sa.text("false")),
            _ts("created_at"),
            _ts("updated_at"),
        )
        op.create_index("ix_maintenance_tasks_property_id", "maintenance_tasks", ["property_id"])
        op.create_index("ix_maintenance_tasks_template_id", "maintenance_tasks", ["template_id"])
        op.create_index(
            "ix_maintenance_tasks_property_status_due",
            "maintenance_tasks",
            ["property_id", "status", "next_due_date"],
        )

    if not _has_table("task_completions"):
        op.create_table(
            "task_completions",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column(
                "task_id", sa.Integer(), sa.ForeignKey("maintenance_tasks.id", ondelete="CASCADE"), nullable=False
            ),
            _ts("completed_at"),
            sa.Column("completed_by_user_id", sa.Integer(), sa.ForeignKey("app_users.id"), nullable=True),
            sa.Column("cost_cents", sa.Integer(), nullable=True),
            sa.Column("notes", sa.Text(), nullable=True),
            sa.Column("attachments_json", sa.Text(), nullable=True),
            sa.Column("source", sa.String(length=20), nullable=False, server_default="manual"),
            sa.Column("related_request_id", sa.Integer(), sa.ForeignKey("service_requests.id"), nullable=True),
        )
        op.create_index("ix_task_completions_task_id", "task_completions", ["task_id"])

    if not _has_table("task_request_links"):
        op.create_table(
            "task_request_links",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("task_id", sa.Integer(), sa.ForeignKey("maintenance_tasks.id"), nullable=False),
            sa.Column("service_request_id", sa.Integer(), sa.ForeignKey("service_requests.id"), nullable=False),
            _ts("created_at"),
            sa.UniqueConstraint("task_id", "service_request_id", name="uq_task_request_links_task_request"),
        )
        op.create_index("ix_task_request_links_task_id", "task_request_links", ["task_id"])
        op.create_index("ix_task_request_links_service_request_id", "task_request_links", ["service_request_id"])

    # -------------------------
    # Money: estimates, change orders, invoices, disputes, ledger
    # -------------------------
    if not _has_table("estimates"):
        op.create_table(
            "estimates",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("service_request_id", sa.Integer(), sa.ForeignKey("service_requests.id"), nullable=False),
            sa.Column("provider_id", sa.Integer(), sa.ForeignKey("providers.id"), nullable=False),
            sa.Column("total_cents", sa.Integer(), nullable=False),
            sa.Column("line_items_json", sa.Text(), nullable=True),
            sa.Column("notes", sa.Text(), nullable=True),
            sa.Column("status", sa.String(length=20), nullable=False, server_default="draft"),
            sa.Column("authorized_amount_cents", sa.Integer(), nullable=True),
            sa.Column("buffer_amount_cents", sa.Integer(), nullable=True),
            sa.Column("platform_fee_cents", sa.Integer(), nullable=True),
            sa.Column("payment_intent_id", sa.String(length=120), nullable=True),
            _ts("sent_at", nullable=True),
            _ts("viewed_at", nullable=True),
            _ts("responded_at", nullable=True),
            _ts("created_at"),
            _ts("updated_at"),
        )
        op.create_index("ix_estimates_service_request_id", "estimates", ["service_request_id"])
        op.create_index("ix_estimates_provider_id", "estimates", ["provider_id"])

    if not _has_table("change_orders"):
        op.create_table(
            "change_orders",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("estimate_id", sa.Integer(), sa.ForeignKey("estimates.id"), nullable=False),
            sa.Column("service_request_id", sa.Integer(), sa.ForeignKey("service_requests.id"), nullable=False),
            sa.Column("reason", sa.Text(), nullable=False),
            sa.Column("original_total_cents", sa.Integer(), nullable=False),
            sa.Column("additional_cents", sa.Integer(), nullable=False),
            sa.Column("new_total_cents", sa.Integer(), nullable=False),
            sa.Column("percentage_increase", sa.Float(), nullable=False),
            sa.Column("status", sa.String(length=20), nullable=False, server_default="pending"),
            _ts("expires_at"),
            sa.Column("authorized_amount_cents", sa.Integer(), nullable=True),
            sa.Column("authorization_ref", sa.String(length=120), nullable=True),
            _ts("responded_at", nullable=True),
            _ts("created_at"),
        )
        op.create_index("ix_change_orders_estimate_id", "change_orders", ["estimate_id"])
        op.create_index("ix_change_orders_service_request_id", "change_orders", ["service_request_id"])

    if not _has_table("invoices"):
        op.create_table(
            "invoices",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("service_request_id", sa.Integer(), sa.ForeignKey("service_requests.id"), nullable=False),
            sa.Column("estimate_id", sa.Integer(), sa.ForeignKey("estimates.id"), nullable=False),
            sa.Column("provider_id", sa.Integer(), sa.ForeignKey("providers.id"), nullable=False),
            sa.Column("total_cents", sa.Integer(), nullable=False),
            sa.Column("line_items_json", sa.Text(), nullable=True),
            sa.Column("status", sa.String(length=20), nullable=False, server_default="pending_approval"),
            sa.Column("captured_amount_cents", sa.Integer(), nullable=True),
            sa.Column("platform_fee_cents", sa.Integer(), nullable=True),
            sa.Column("provider_payout_cents", sa.Integer(), nullable=True),
            sa.Column("charge_id", sa.String(length=120), nullable=True),
            sa.Column("transfer_id", sa.String(length=120), nullable=True),
            _ts("paid_at", nullable=True),
            _ts("created_at"),
        )
        op.create_index("ix_invoices_service_request_id", "invoices", ["service_request_id"])
        op.create_index("ix_invoices_estimate_id", "invoices", ["estimate_id"])
        op.create_index("ix_invoices_provider_id", "invoices", ["provider_id"])

    if not _has_table("disputes"):
        op.create_table(
            "disputes",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("invoice_id", sa.Integer(), sa.ForeignKey("invoices.id"), nullable=False),
            sa.Column("service_request_id", sa.Integer(), sa.ForeignKey("service_requests.id"), nullable=False),
            sa.Column("opened_by_user_id", sa.Integer(), sa.ForeignKey("app_users.id"), nullable=False),
            sa.Column("reason", sa.String(length=60), nullable=False),
            sa.Column("description", sa.Text(), nullable=True),
            sa.Column("amount_disputed_cents", sa.Integer(), nullable=False),
            sa.Column("status", sa.String(length=20), nullable=False, server_default="open"),
            _ts("created_at"),
        )
        op.create_index("ix_disputes_invoice_id", "disputes", ["invoice_id"])
        op.create_index("ix_disputes_service_request_id", "disputes", ["service_request_id"])

    if not _has_table("payment_transactions"):
        op.create_table(
            "payment_transactions",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("service_request_id", sa.Integer(), sa.ForeignKey("service_requests.id"), nullable=False),
            sa.Column("invoice_id", sa.Integer(), sa.ForeignKey("invoices.id"), nullable=True),
            sa.Column("kind", sa.String(length=30), nullable=False),
            sa.Column("amount_cents", sa.Integer(), nullable=False),
            sa.Column("platform_fee_cents", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("provider_amount_cents", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("external_ref", sa.String(length=120), nullable=True),
            sa.Column("transfer_ref", sa.String(length=120), nullable=True),
            sa.Column("status", sa.String(length=20), nullable=False, server_default="succeeded"),
            _ts("created_at"),
        )
        op.create_index("ix_payment_transactions_service_request_id", "payment_transactions", ["service_request_id"])
        op.create_index("ix_payment_transactions_invoice_id", "payment_transactions", ["invoice_id"])


def downgrade() -> None:
    for name in (
        "payment_transactions",
        "disputes",
        "invoices",
        "change_orders",
        "estimates",
        "task_request_links",
        "task_completions",
        "maintenance_tasks",
        "workflow_events",
        "service_requests",
        "providers",
        "maintenance_templates",
        "properties",
        "audit_events",
        "notifications",
        "admin_config",
        "app_users",
    ):
        if _has_table(name):
            op.drop_table(name)
