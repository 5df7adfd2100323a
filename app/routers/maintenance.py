# backend/app/routers/maintenance.py
from __future__ import annotations

from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from ..auth import get_principal
from ..config import settings
from ..db import get_db
from ..domain.recurrence import (
    CalendarMonth,
    TaskSchedule,
    compute_next_due_date,
    format_due_date,
    frequency_label,
    get_task_status,
)
from ..models import MaintenanceTask
from ..schemas import (
    CalendarDayOut,
    CalendarEntryOut,
    CalendarOut,
    CalendarTaskRef,
    CreateRequestIn,
    CreateRequestOut,
    MaintenanceTaskCreate,
    MaintenanceTaskOut,
    MaintenanceTaskUpdate,
    NextDueDateIn,
    NextDueDateOut,
    TaskCompleteIn,
    TaskCompleteOut,
    TaskCompletionOut,
    TaskListOut,
)
from ..services import maintenance_service as svc
from ..services.ownership import must_get_task

router = APIRouter(prefix="/maintenance", tags=["maintenance"])


def _task_out(t: MaintenanceTask, today: date) -> MaintenanceTaskOut:
    return MaintenanceTaskOut(
        id=t.id,
        property_id=t.property_id,
        template_id=t.template_id,
        title=t.title,
        description=t.description,
        category=t.category,
        frequency_type=t.frequency_type,
        frequency_interval=t.frequency_interval,
        suggested_months=list(svc.parse_months(t.suggested_months_json)),
        next_due_date=t.next_due_date,
        last_completed_at=t.last_completed_at,
        status=t.status,
        is_custom=bool(t.is_custom),
        created_at=t.created_at,
        due_status=get_task_status(t.next_due_date, today, settings.task_due_soon_days),
        due_label=format_due_date(t.next_due_date, today),
        frequency_label=frequency_label(t.frequency_type, t.frequency_interval),
    )


def _ref(s: TaskSchedule) -> CalendarTaskRef:
    return CalendarTaskRef(
        task_id=s.task_id,
        property_id=s.property_id,
        title=s.title,
        category=s.category,
        next_due_date=s.next_due_date,
    )


def _calendar_out(cal: CalendarMonth) -> CalendarOut:
    return CalendarOut(
        year=cal.year,
        month=cal.month,
        overdue=[_ref(s) for s in cal.buckets.overdue],
        due_soon=[_ref(s) for s in cal.buckets.due_soon],
        upcoming=[_ref(s) for s in cal.buckets.upcoming],
        completed=[_ref(s) for s in cal.buckets.completed],
        days=[
            CalendarDayOut(
                date=d.date,
                due=[CalendarEntryOut(task_id=e.task_id, title=e.title, category=e.category, status=e.status) for e in d.due],
                completed_task_ids=list(d.completed_task_ids),
            )
            for d in cal.days
        ],
    )


# -------------------- Tasks --------------------

@router.get("/tasks", response_model=TaskListOut)
def list_tasks(
    property_id: Optional[list[int]] = Query(default=None),
    db: Session = Depends(get_db),
    p=Depends(get_principal),
):
    today = date.today()
    pids = list(property_id) if property_id else svc.owned_property_ids(db, p)
    buckets = svc.list_property_tasks(db, principal=p, property_ids=pids, today=today)
    return TaskListOut(**{k: [_task_out(t, today) for t in rows] for k, rows in buckets.items()})


@router.post("/tasks", response_model=MaintenanceTaskOut)
def create_task(payload: MaintenanceTaskCreate, db: Session = Depends(get_db), p=Depends(get_principal)):
    task = svc.create_task(
        db,
        principal=p,
        property_id=payload.property_id,
        title=payload.title,
        category=payload.category,
        frequency_type=payload.frequency_type,
        frequency_interval=payload.frequency_interval,
        suggested_months=payload.suggested_months,
        description=payload.description,
        next_due_date=payload.next_due_date,
    )
    return _task_out(task, date.today())


@router.get("/tasks/{task_id}", response_model=MaintenanceTaskOut)
def get_task(task_id: int, db: Session = Depends(get_db), p=Depends(get_principal)):
    return _task_out(must_get_task(db, principal=p, task_id=task_id), date.today())


@router.patch("/tasks/{task_id}", response_model=MaintenanceTaskOut)
def update_task(task_id: int, payload: MaintenanceTaskUpdate, db: Session = Depends(get_db), p=Depends(get_principal)):
    task = must_get_task(db, principal=p, task_id=task_id)
    task = svc.update_task(db, principal=p, task=task, changes=payload.model_dump(exclude_unset=True))
    return _task_out(task, date.today())


@router.delete("/tasks/{task_id}", response_model=MaintenanceTaskOut)
def archive_task(task_id: int, db: Session = Depends(get_db), p=Depends(get_principal)):
    task = must_get_task(db, principal=p, task_id=task_id)
    return _task_out(svc.archive_task(db, principal=p, task=task), date.today())


@router.post("/tasks/{task_id}/complete", response_model=TaskCompleteOut)
def complete_task(task_id: int, payload: TaskCompleteIn, db: Session = Depends(get_db), p=Depends(get_principal)):
    task = must_get_task(db, principal=p, task_id=task_id)
    completion, next_due = svc.mark_task_complete(
        db,
        principal=p,
        task=task,
        notes=payload.notes,
        cost_cents=payload.cost_cents,
        attachments=[a.model_dump(exclude_none=True) for a in payload.attachments],
        related_request_id=payload.related_request_id,
        completed_at=payload.completed_at,
    )
    return TaskCompleteOut(completion=TaskCompletionOut.model_validate(completion), next_due_date=next_due)


@router.get("/tasks/{task_id}/completions", response_model=list[TaskCompletionOut])
def list_completions(task_id: int, db: Session = Depends(get_db), p=Depends(get_principal)):
    task = must_get_task(db, principal=p, task_id=task_id)
    return [TaskCompletionOut.model_validate(c) for c in svc.list_completions(db, task=task)]


# -------------------- Calendar --------------------

@router.get("/calendar", response_model=CalendarOut)
def calendar(
    year: int = Query(..., ge=1970, le=9999),
    month: int = Query(..., ge=1, le=12),
    property_id: Optional[list[int]] = Query(default=None),
    db: Session = Depends(get_db),
    p=Depends(get_principal),
):
    cal = svc.calendar(db, principal=p, year=year, month=month, property_ids=property_id)
    return _calendar_out(cal)


# -------------------- Requests / helpers --------------------

@router.post("/create-request", response_model=CreateRequestOut)
def create_request(payload: CreateRequestIn, db: Session = Depends(get_db), p=Depends(get_principal)):
    sr, linked = svc.create_request_from_tasks(
        db,
        principal=p,
        property_id=payload.property_id,
        task_ids=payload.task_ids,
        title=payload.title,
        description=payload.description,
        urgency=payload.urgency,
    )
    return CreateRequestOut(service_request_id=sr.id, status=sr.status, category=sr.category, linked_count=linked)


@router.post("/next-due-date", response_model=NextDueDateOut)
def next_due_date(payload: NextDueDateIn, p=Depends(get_principal)):
    return NextDueDateOut(
        next_due_date=compute_next_due_date(
            payload.frequency_type,
            payload.frequency_interval,
            payload.suggested_months,
            payload.from_date,
        )
    )
