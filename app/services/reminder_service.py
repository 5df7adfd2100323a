# backend/app/services/reminder_service.py
from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from typing import Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..clients.resend_email import Mailer
from ..config import settings
from ..domain.events import emit_workflow_event
from ..domain.recurrence import format_due_date
from ..models import AppUser, MaintenanceTask, Notification, Property

log = logging.getLogger(__name__)


@dataclass
class ReminderRunResult:
    users_processed: int = 0
    emails_sent: int = 0
    emails_failed: int = 0
    in_app_created: int = 0
    tasks_marked: int = 0
    skipped_already_sent: int = 0
    errors: list[str] = field(default_factory=list)

    def as_dict(self) -> dict:
        return {
            "users_processed": self.users_processed,
            "emails_sent": self.emails_sent,
            "emails_failed": self.emails_failed,
            "in_app_created": self.in_app_created,
            "tasks_marked": self.tasks_marked,
            "skipped_already_sent": self.skipped_already_sent,
            "errors": list(self.errors),
        }


def digest_dedup_key(user_id: int, today: date) -> str:
    return f"task_digest_{user_id}_{today.isoformat()}"


def _property_label(p: Property) -> str:
    return p.name or p.address


def _digest_text(user: AppUser, overdue: list[tuple[MaintenanceTask, Property]], due_soon: list[tuple[MaintenanceTask, Property]], today: date) -> tuple[str, str]:
    name = user.display_name or "there"
    parts = []
    if overdue:
        parts.append(f"{len(overdue)} overdue")
    if due_soon:
        parts.append(f"{len(due_soon)} due soon")
    subject = f"Maintenance reminder: {', '.join(parts)}"

    lines = [f"Hi {name},", ""]
    if overdue:
        lines.append("Overdue:")
        for t, p in overdue:
            lines.append(f"  - {t.title} ({_property_label(p)}): {format_due_date(t.next_due_date, today)}")
        lines.append("")
    if due_soon:
        lines.append("Coming up:")
        for t, p in due_soon:
            lines.append(f"  - {t.title} ({_property_label(p)}): {format_due_date(t.next_due_date, today)}")
        lines.append("")
    lines.append(f"View your calendar: {settings.app_url.rstrip('/')}/app/calendar")
    return subject, "\n".join(lines)


def run_task_reminders(
    db: Session,
    *,
    mailer: Mailer,
    today: Optional[date] = None,
    days_ahead: Optional[int] = None,
) -> ReminderRunResult:
    """
    Daily digest sweep.

    Per property owner with active tasks overdue or due within `days_ahead`:
      - one email digest (skipped when today's digest already exists)
      - one in-app notification per overdue task
      - every included task gets last_notified_at

    The digest Notification row carries dedup_key task_digest_<user>_<date>,
    so a second run on the same day is a no-op for that user. A failed email
    is counted in the result and the sweep moves on.
    """
    today = today or date.today()
    horizon = today + timedelta(days=int(days_ahead if days_ahead is not None else settings.task_reminder_days_ahead))
    result = ReminderRunResult()

    rows = db.execute(
        select(MaintenanceTask, Property)
        .join(Property, Property.id == MaintenanceTask.property_id)
        .where(
            MaintenanceTask.status == "active",
            MaintenanceTask.next_due_date.is_not(None),
            MaintenanceTask.next_due_date <= horizon,
        )
        .order_by(Property.owner_user_id, MaintenanceTask.next_due_date, MaintenanceTask.title)
    ).all()

    by_user: dict[int, list[tuple[MaintenanceTask, Property]]] = defaultdict(list)
    for task, prop in rows:
        by_user[int(prop.owner_user_id)].append((task, prop))

    for user_id, items in by_user.items():
        key = digest_dedup_key(user_id, today)
        if db.scalar(select(Notification.id).where(Notification.dedup_key == key)) is not None:
            result.skipped_already_sent += 1
            continue

        user = db.get(AppUser, user_id)
        if user is None:
            continue

        overdue = [(t, p) for t, p in items if t.next_due_date < today]
        due_soon = [(t, p) for t, p in items if t.next_due_date >= today]

        try:
            subject, text = _digest_text(user, overdue, due_soon, today)
            db.add(
                Notification(
                    user_id=user_id,
                    kind="task_digest",
                    title=subject,
                    body=f"{len(overdue)} overdue, {len(due_soon)} due soon",
                    link="/app/calendar",
                    dedup_key=key,
                    created_at=datetime.utcnow(),
                )
            )
            for t, p in overdue:
                db.add(
                    Notification(
                        user_id=user_id,
                        kind="task_overdue",
                        title=f"Overdue: {t.title}",
                        body=f"This task at {_property_label(p)} was due on {t.next_due_date.isoformat()}.",
                        link=f"/app/calendar/{t.id}",
                        created_at=datetime.utcnow(),
                    )
                )

            now = datetime.utcnow()
            for t, _ in items:
                t.last_notified_at = now
                db.add(t)
            emit_workflow_event(
                db, actor_user_id=None, event_type="maintenance.reminders_sent",
                payload={"user_id": user_id, "task_ids": [t.id for t, _ in items]},
            )
            db.commit()
            result.in_app_created += len(overdue)
            result.tasks_marked += len(items)
        except IntegrityError:
            # another sweep claimed today's digest first
            db.rollback()
            result.skipped_already_sent += 1
            continue

        email = mailer.send_email(to=user.email, subject=subject, text=text)
        if email.success:
            result.emails_sent += 1
        else:
            result.emails_failed += 1
            result.errors.append(f"Email to user {user_id}: {email.error}")

        result.users_processed += 1

    log.info("task_reminders_done", extra={"event": "task_reminders_done", **result.as_dict()})
    return result
