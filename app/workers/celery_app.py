# backend/app/workers/celery_app.py
from __future__ import annotations

from celery import Celery
from celery.schedules import crontab

from ..config import settings

celery_app = Celery(
    "upkeep",
    broker=settings.celery_broker_url,
    backend=settings.celery_result_backend,
    include=["app.workers.maintenance_tasks"],
)

celery_app.conf.update(
    task_acks_late=True,
    worker_prefetch_multiplier=1,
    task_reject_on_worker_lost=True,
    task_track_started=True,
    timezone="UTC",
)

celery_app.conf.task_routes = {
    "app.workers.maintenance_tasks.*": {"queue": "reminders"},
}

# daily digest; the sweep dedups per user per day so a re-run is harmless
celery_app.conf.beat_schedule = {
    "send-task-reminders-daily": {
        "task": "app.workers.maintenance_tasks.send_task_reminders",
        "schedule": crontab(hour=13, minute=0),
    },
}
