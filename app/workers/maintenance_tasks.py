# backend/app/workers/maintenance_tasks.py
from __future__ import annotations

import logging
from datetime import date
from typing import Optional

from ..clients.resend_email import ResendEmailClient
from ..db import SessionLocal
from ..services.reminder_service import run_task_reminders
from .celery_app import celery_app

log = logging.getLogger(__name__)


@celery_app.task(
    bind=True,
    max_retries=2,
    default_retry_delay=300,
    name="app.workers.maintenance_tasks.send_task_reminders",
)
def send_task_reminders(self, today: Optional[str] = None, days_ahead: Optional[int] = None) -> dict:
    """
    Daily reminder sweep.

    Safe to retry: users whose digest already went out today are skipped.
    Per-user email failures are counted in the result, not retried.
    """
    db = SessionLocal()
    try:
        result = run_task_reminders(
            db,
            mailer=ResendEmailClient(),
            today=date.fromisoformat(today) if today else None,
            days_ahead=days_ahead,
        )
        return {"ok": True, **result.as_dict()}
    except Exception as e:
        db.rollback()
        log.exception("task_reminders_failed", extra={"event": "task_reminders_failed"})
        raise self.retry(exc=e)
    finally:
        db.close()
