# backend/app/services/maintenance_service.py
from __future__ import annotations

import json
import logging
from collections import Counter
from datetime import date, datetime
from typing import Any, Iterable, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from ..auth import Principal
from ..config import settings
from ..domain.errors import DomainValidationError, StateConflictError
from ..domain.events import emit_audit_event, emit_workflow_event
from ..domain.recurrence import (
    CalendarMonth,
    CompletionRecord,
    TaskSchedule,
    advance_on_completion,
    bucket_tasks,
    calendar_month,
    compute_next_due_date,
    month_window,
    normalize_months,
)
from ..models import (
    MaintenanceTask,
    MaintenanceTemplate,
    Property,
    ServiceRequest,
    TaskCompletion,
    TaskRequestLink,
)
from .ownership import must_get_property
from .transitions import transition_status

log = logging.getLogger(__name__)

TASK_EDITABLE_FIELDS = (
    "title",
    "description",
    "category",
    "frequency_type",
    "frequency_interval",
    "suggested_months",
    "next_due_date",
)
FREQUENCY_FIELDS = ("frequency_type", "frequency_interval", "suggested_months")


def parse_months(raw: Optional[str]) -> tuple[int, ...]:
    if not raw:
        return ()
    try:
        return normalize_months(json.loads(raw))
    except json.JSONDecodeError:
        raise DomainValidationError("Stored suggested_months is not valid JSON", field="suggested_months")


def dump_months(months: Optional[Iterable[int]]) -> Optional[str]:
    vals = normalize_months(months)
    return json.dumps(list(vals)) if vals else None


def task_schedule(task: MaintenanceTask) -> TaskSchedule:
    return TaskSchedule(
        task_id=int(task.id),
        title=str(task.title),
        category=str(task.category),
        frequency_type=str(task.frequency_type),
        frequency_interval=int(task.frequency_interval or 1),
        suggested_months=parse_months(task.suggested_months_json),
        next_due_date=task.next_due_date,
        property_id=int(task.property_id),
    )


def task_snapshot(task: MaintenanceTask) -> dict[str, Any]:
    return {
        "id": task.id,
        "property_id": task.property_id,
        "title": task.title,
        "category": task.category,
        "frequency_type": task.frequency_type,
        "frequency_interval": task.frequency_interval,
        "suggested_months": list(parse_months(task.suggested_months_json)),
        "next_due_date": task.next_due_date.isoformat() if task.next_due_date else None,
        "status": task.status,
    }


def _today() -> date:
    return date.today()


# -----------------------------
# Plan generation
# -----------------------------
def generate_property_plan(
    db: Session,
    *,
    principal: Principal,
    property_id: int,
    today: Optional[date] = None,
) -> dict[str, Any]:
    """Adds one task per active template the property does not already have."""
    prop = must_get_property(db, principal=principal, property_id=property_id)
    today = today or _today()

    templates = db.scalars(
        select(MaintenanceTemplate)
        .where(MaintenanceTemplate.is_active.is_(True))
        .order_by(MaintenanceTemplate.sort_order, MaintenanceTemplate.id)
    ).all()
    if not templates:
        return {"count": 0, "task_ids": [], "message": "No active templates found"}

    existing = set(
        db.scalars(
            select(MaintenanceTask.template_id).where(
                MaintenanceTask.property_id == prop.id,
                MaintenanceTask.template_id.is_not(None),
            )
        ).all()
    )

    created: list[MaintenanceTask] = []
    for tpl in templates:
        if tpl.id in existing:
            continue
        months = parse_months(tpl.suggested_months_json)
        task = MaintenanceTask(
            property_id=prop.id,
            template_id=tpl.id,
            title=tpl.title,
            description=tpl.description,
            category=tpl.category,
            frequency_type=tpl.frequency_type,
            frequency_interval=tpl.frequency_interval,
            suggested_months_json=dump_months(months),
            next_due_date=compute_next_due_date(tpl.frequency_type, tpl.frequency_interval, months, today),
            status="active",
            is_custom=False,
            created_at=datetime.utcnow(),
            updated_at=datetime.utcnow(),
        )
        db.add(task)
        created.append(task)

    if not created:
        return {"count": 0, "task_ids": [], "message": "All templates already assigned to this property"}

    db.flush()
    emit_workflow_event(
        db,
        principal=principal,
        event_type="maintenance.plan_generated",
        property_id=prop.id,
        payload={"count": len(created), "template_ids": [t.template_id for t in created]},
    )
    db.commit()
    log.info("maintenance_plan_generated", extra={"user_id": principal.user_id, "property_id": prop.id})
    return {
        "count": len(created),
        "task_ids": [t.id for t in created],
        "message": f"Added {len(created)} maintenance tasks to property",
    }


# -----------------------------
# Task CRUD
# -----------------------------
def create_task(
    db: Session,
    *,
    principal: Principal,
    property_id: int,
    title: str,
    category: str,
    frequency_type: str,
    frequency_interval: int = 1,
    suggested_months: Optional[list[int]] = None,
    description: Optional[str] = None,
    next_due_date: Optional[date] = None,
    today: Optional[date] = None,
) -> MaintenanceTask:
    prop = must_get_property(db, principal=principal, property_id=property_id)
    months = normalize_months(suggested_months)

    # always evaluated so a bad rule fails even with an explicit first date
    computed = compute_next_due_date(frequency_type, frequency_interval, months, today or _today())

    task = MaintenanceTask(
        property_id=prop.id,
        title=title.strip(),
        description=description,
        category=category.strip().lower(),
        frequency_type=frequency_type,
        frequency_interval=int(frequency_interval),
        suggested_months_json=dump_months(months),
        next_due_date=next_due_date or computed,
        status="active",
        is_custom=True,
        created_at=datetime.utcnow(),
        updated_at=datetime.utcnow(),
    )
    db.add(task)
    db.flush()

    emit_audit_event(
        db, principal=principal, action="maintenance_task.create", entity_type="maintenance_task",
        entity_id=task.id, after=task_snapshot(task),
    )
    emit_workflow_event(
        db, principal=principal, event_type="maintenance.task_created", property_id=prop.id,
        payload={"task_id": task.id},
    )
    db.commit()
    db.refresh(task)
    return task


def update_task(
    db: Session,
    *,
    principal: Principal,
    task: MaintenanceTask,
    changes: dict[str, Any],
    today: Optional[date] = None,
) -> MaintenanceTask:
    """
    Manual edit. An explicit next_due_date wins; otherwise a frequency change
    recomputes it from the last completion (or today when never completed).
    """
    if task.status != "active":
        raise StateConflictError("maintenance_task", task.status)

    unknown = set(changes) - set(TASK_EDITABLE_FIELDS)
    if unknown:
        raise DomainValidationError(f"Fields not editable: {sorted(unknown)}", fields=sorted(unknown))

    before = task_snapshot(task)

    for k in ("title", "description"):
        if k in changes and changes[k] is not None:
            setattr(task, k, changes[k])
    if changes.get("category"):
        task.category = str(changes["category"]).strip().lower()
    if changes.get("frequency_type"):
        task.frequency_type = str(changes["frequency_type"])
    if changes.get("frequency_interval") is not None:
        task.frequency_interval = int(changes["frequency_interval"])
    if "suggested_months" in changes:
        task.suggested_months_json = dump_months(changes["suggested_months"])

    anchor = task.last_completed_at.date() if task.last_completed_at else (today or _today())
    recomputed = compute_next_due_date(
        task.frequency_type, task.frequency_interval, parse_months(task.suggested_months_json), anchor
    )

    if "next_due_date" in changes:
        task.next_due_date = changes["next_due_date"]
    elif any(k in changes for k in FREQUENCY_FIELDS):
        task.next_due_date = recomputed

    task.updated_at = datetime.utcnow()
    db.add(task)
    db.flush()

    emit_audit_event(
        db, principal=principal, action="maintenance_task.update", entity_type="maintenance_task",
        entity_id=task.id, before=before, after=task_snapshot(task),
    )
    db.commit()
    db.refresh(task)
    return task


def archive_task(db: Session, *, principal: Principal, task: MaintenanceTask) -> MaintenanceTask:
    before = task_snapshot(task)
    transition_status(
        db,
        MaintenanceTask,
        task.id,
        expected=("active",),
        target="archived",
        entity="maintenance_task",
        values={"updated_at": datetime.utcnow()},
    )
    emit_audit_event(
        db, principal=principal, action="maintenance_task.archive", entity_type="maintenance_task",
        entity_id=task.id, before=before, after={**before, "status": "archived"},
    )
    emit_workflow_event(
        db, principal=principal, event_type="maintenance.task_archived", property_id=task.property_id,
        payload={"task_id": task.id},
    )
    db.commit()
    db.refresh(task)
    return task


# -----------------------------
# Views
# -----------------------------
def _active_tasks(db: Session, property_ids: list[int]) -> list[MaintenanceTask]:
    if not property_ids:
        return []
    return list(
        db.scalars(
            select(MaintenanceTask)
            .where(MaintenanceTask.property_id.in_(property_ids), MaintenanceTask.status == "active")
            .order_by(MaintenanceTask.next_due_date, MaintenanceTask.title)
        ).all()
    )


def _completion_records(
    db: Session, task_ids: list[int], window: Optional[tuple[date, date]] = None
) -> list[CompletionRecord]:
    if not task_ids:
        return []
    q = select(TaskCompletion.task_id, TaskCompletion.completed_at).where(TaskCompletion.task_id.in_(task_ids))
    if window is not None:
        q = q.where(
            TaskCompletion.completed_at >= datetime.combine(window[0], datetime.min.time()),
            TaskCompletion.completed_at <= datetime.combine(window[1], datetime.max.time()),
        )
    return [CompletionRecord(task_id=int(tid), completed_at=ts) for tid, ts in db.execute(q).all()]


def list_property_tasks(
    db: Session,
    *,
    principal: Principal,
    property_ids: list[int],
    today: Optional[date] = None,
) -> dict[str, list[MaintenanceTask]]:
    for pid in property_ids:
        must_get_property(db, principal=principal, property_id=pid)

    today = today or _today()
    tasks = _active_tasks(db, property_ids)
    by_id = {t.id: t for t in tasks}
    buckets = bucket_tasks(
        [task_schedule(t) for t in tasks],
        _completion_records(db, list(by_id)),
        today,
        settings.task_due_soon_days,
    )
    return {
        "overdue": [by_id[s.task_id] for s in buckets.overdue],
        "due_soon": [by_id[s.task_id] for s in buckets.due_soon],
        "upcoming": [by_id[s.task_id] for s in buckets.upcoming],
        "completed": [by_id[s.task_id] for s in buckets.completed],
    }


def owned_property_ids(db: Session, principal: Principal) -> list[int]:
    return [int(x) for x in db.scalars(select(Property.id).where(Property.owner_user_id == principal.user_id)).all()]


def calendar(
    db: Session,
    *,
    principal: Principal,
    year: int,
    month: int,
    property_ids: Optional[list[int]] = None,
    today: Optional[date] = None,
) -> CalendarMonth:
    if property_ids:
        for pid in property_ids:
            must_get_property(db, principal=principal, property_id=pid)
        pids = list(property_ids)
    else:
        pids = owned_property_ids(db, principal)

    window = month_window(year, month)
    tasks = _active_tasks(db, pids)
    completions = _completion_records(db, [t.id for t in tasks], window)
    return calendar_month(
        [task_schedule(t) for t in tasks],
        completions,
        year,
        month,
        today or _today(),
        settings.task_due_soon_days,
    )


# -----------------------------
# Completion
# -----------------------------
def mark_task_complete(
    db: Session,
    *,
    principal: Principal,
    task: MaintenanceTask,
    notes: Optional[str] = None,
    cost_cents: Optional[int] = None,
    attachments: Optional[list[dict[str, Any]]] = None,
    related_request_id: Optional[int] = None,
    completed_at: Optional[datetime] = None,
) -> tuple[TaskCompletion, Optional[date]]:
    """
    Appends a completion and moves next_due_date to the following occurrence,
    measured from the completion date. One-time tasks end up unscheduled.
    """
    if task.status != "active":
        raise StateConflictError("maintenance_task", task.status)
    if cost_cents is not None and int(cost_cents) < 0:
        raise DomainValidationError("cost_cents cannot be negative", field="cost_cents")

    source = "manual"
    if related_request_id is not None:
        sr = db.scalar(select(ServiceRequest).where(ServiceRequest.id == int(related_request_id)))
        if sr is None or sr.property_id != task.property_id:
            raise DomainValidationError("related_request_id does not belong to this property", field="related_request_id")
        source = "provider_job"

    now = completed_at or datetime.utcnow()
    before = task_snapshot(task)

    completion = TaskCompletion(
        task_id=task.id,
        completed_at=now,
        completed_by_user_id=principal.user_id,
        cost_cents=int(cost_cents) if cost_cents is not None else None,
        notes=notes,
        attachments_json=json.dumps(attachments) if attachments else None,
        source=source,
        related_request_id=int(related_request_id) if related_request_id is not None else None,
    )
    db.add(completion)

    next_due = advance_on_completion(task_schedule(task), now.date())
    task.next_due_date = next_due
    task.last_completed_at = now
    task.updated_at = datetime.utcnow()
    db.add(task)
    db.flush()

    emit_audit_event(
        db, principal=principal, action="maintenance_task.complete", entity_type="maintenance_task",
        entity_id=task.id, before=before, after=task_snapshot(task),
    )
    emit_workflow_event(
        db, principal=principal, event_type="maintenance.task_completed", property_id=task.property_id,
        service_request_id=completion.related_request_id,
        payload={"task_id": task.id, "completion_id": completion.id, "source": source},
    )
    db.commit()
    db.refresh(completion)
    log.info(
        "maintenance_task_completed",
        extra={"user_id": principal.user_id, "task_id": task.id, "property_id": task.property_id},
    )
    return completion, next_due


def list_completions(db: Session, *, task: MaintenanceTask) -> list[TaskCompletion]:
    return list(
        db.scalars(
            select(TaskCompletion)
            .where(TaskCompletion.task_id == task.id)
            .order_by(TaskCompletion.completed_at.desc(), TaskCompletion.id.desc())
        ).all()
    )


# -----------------------------
# Service request from tasks
# -----------------------------
def create_request_from_tasks(
    db: Session,
    *,
    principal: Principal,
    property_id: int,
    task_ids: list[int],
    title: Optional[str] = None,
    description: Optional[str] = None,
    urgency: str = "normal",
) -> tuple[ServiceRequest, int]:
    if not task_ids:
        raise DomainValidationError("At least one task_id is required", field="task_ids")

    prop = must_get_property(db, principal=principal, property_id=property_id)
    wanted = list(dict.fromkeys(int(t) for t in task_ids))

    tasks = list(
        db.scalars(
            select(MaintenanceTask).where(
                MaintenanceTask.id.in_(wanted),
                MaintenanceTask.property_id == prop.id,
                MaintenanceTask.status == "active",
            )
        ).all()
    )
    found = {t.id for t in tasks}
    missing = [t for t in wanted if t not in found]
    if missing:
        raise DomainValidationError("Tasks not found on this property", field="task_ids", missing=missing)

    order = {tid: i for i, tid in enumerate(wanted)}
    tasks.sort(key=lambda t: order[t.id])

    # ties go to the category seen first in the caller's order
    primary_category = Counter(t.category for t in tasks).most_common(1)[0][0]

    if not title:
        title = tasks[0].title if len(tasks) == 1 else f"{tasks[0].title} (+{len(tasks) - 1} more)"
    if not description:
        lines = [f"- {t.title}{': ' + t.description if t.description else ''}" for t in tasks]
        description = "Maintenance tasks to be completed:\n\n" + "\n".join(lines)

    sr = ServiceRequest(
        property_id=prop.id,
        customer_user_id=principal.user_id,
        title=title,
        description=description,
        category=primary_category,
        urgency=urgency,
        status="submitted",
        created_at=datetime.utcnow(),
        updated_at=datetime.utcnow(),
    )
    db.add(sr)
    db.flush()

    for t in tasks:
        db.add(TaskRequestLink(task_id=t.id, service_request_id=sr.id, created_at=datetime.utcnow()))

    emit_workflow_event(
        db, principal=principal, event_type="service_request.created_from_tasks", property_id=prop.id,
        service_request_id=sr.id, payload={"task_ids": [t.id for t in tasks], "category": primary_category},
    )
    db.commit()
    db.refresh(sr)
    log.info(
        "service_request_created_from_tasks",
        extra={"user_id": principal.user_id, "service_request_id": sr.id, "property_id": prop.id},
    )
    return sr, len(tasks)
