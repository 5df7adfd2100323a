# backend/app/domain/recurrence.py
from __future__ import annotations

import calendar
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from typing import Iterable, Optional, Sequence

from dateutil.relativedelta import relativedelta

from .errors import DomainValidationError

INTERVAL_TYPES = ("interval_days", "interval_weeks", "interval_months", "interval_years")
FREQUENCY_TYPES = INTERVAL_TYPES + ("seasonal_months", "one_time")

DEFAULT_DUE_SOON_DAYS = 7


@dataclass(frozen=True)
class TaskSchedule:
    task_id: int
    title: str
    category: str
    frequency_type: str
    frequency_interval: int
    suggested_months: tuple[int, ...]
    next_due_date: Optional[date]
    property_id: Optional[int] = None


@dataclass(frozen=True)
class CompletionRecord:
    task_id: int
    completed_at: datetime


@dataclass(frozen=True)
class TaskBuckets:
    overdue: list[TaskSchedule] = field(default_factory=list)
    due_soon: list[TaskSchedule] = field(default_factory=list)
    upcoming: list[TaskSchedule] = field(default_factory=list)
    completed: list[TaskSchedule] = field(default_factory=list)


@dataclass(frozen=True)
class CalendarEntry:
    task_id: int
    title: str
    category: str
    status: str


@dataclass(frozen=True)
class CalendarDay:
    date: date
    due: list[CalendarEntry]
    completed_task_ids: list[int]


@dataclass(frozen=True)
class CalendarMonth:
    year: int
    month: int
    buckets: TaskBuckets
    days: list[CalendarDay]


def normalize_months(months: Optional[Iterable[int]]) -> tuple[int, ...]:
    """
    Sorted, de-duplicated month numbers. Anything outside 1..12 is rejected
    rather than dropped, so a bad template never silently loses a season.
    """
    if not months:
        return ()
    out: set[int] = set()
    for m in months:
        try:
            v = int(m)
        except (TypeError, ValueError):
            raise DomainValidationError(f"Invalid month: {m!r}", field="suggested_months")
        if v < 1 or v > 12:
            raise DomainValidationError(f"Month out of range (1-12): {v}", field="suggested_months")
        out.add(v)
    return tuple(sorted(out))


def compute_next_due_date(
    frequency_type: str,
    interval: Optional[int],
    suggested_months: Optional[Iterable[int]],
    from_date: Optional[date] = None,
) -> Optional[date]:
    """
    Next occurrence of a frequency rule measured from `from_date` (default today).

    interval_* kinds add `interval` units; month and year steps keep the
    day-of-month and clamp to the last valid day (Jan 31 + 1 month -> Feb 28/29).
    seasonal_months picks the first suggested month strictly after the
    current one, wrapping to next year, always on the 1st.

    Returns None for one_time tasks and for a seasonal rule with no months.
    """
    ft = (frequency_type or "").strip().lower()
    if ft not in FREQUENCY_TYPES:
        raise DomainValidationError(f"Unknown frequency_type: {frequency_type!r}", field="frequency_type")

    base = from_date or date.today()
    if isinstance(base, datetime):
        base = base.date()

    if ft == "one_time":
        return None

    if ft == "seasonal_months":
        months = normalize_months(suggested_months)
        if not months:
            return None
        for m in months:
            if m > base.month:
                return date(base.year, m, 1)
        return date(base.year + 1, months[0], 1)

    try:
        n = int(interval)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        raise DomainValidationError("frequency_interval must be an integer", field="frequency_interval")
    if n <= 0:
        raise DomainValidationError("frequency_interval must be positive", field="frequency_interval")

    if ft == "interval_days":
        return base + timedelta(days=n)
    if ft == "interval_weeks":
        return base + timedelta(weeks=n)
    if ft == "interval_months":
        return base + relativedelta(months=n)
    return base + relativedelta(years=n)


def get_task_status(
    next_due_date: Optional[date],
    today: date,
    threshold_days: int = DEFAULT_DUE_SOON_DAYS,
) -> str:
    """overdue | due_soon | upcoming | unscheduled. Due today counts as due_soon."""
    if next_due_date is None:
        return "unscheduled"
    if next_due_date < today:
        return "overdue"
    if next_due_date <= today + timedelta(days=int(threshold_days)):
        return "due_soon"
    return "upcoming"


def advance_on_completion(schedule: TaskSchedule, completed_on: date) -> Optional[date]:
    # anchored at the completion date, not the previous due date
    return compute_next_due_date(
        schedule.frequency_type,
        schedule.frequency_interval,
        schedule.suggested_months,
        from_date=completed_on,
    )


def _sort_key(t: TaskSchedule) -> tuple:
    return (t.next_due_date is None, t.next_due_date or date.max, t.title, t.task_id)


def _completed_ids(
    completions: Iterable[CompletionRecord],
    window: Optional[tuple[date, date]],
) -> set[int]:
    ids: set[int] = set()
    for c in completions:
        d = c.completed_at.date() if isinstance(c.completed_at, datetime) else c.completed_at
        if window is None or window[0] <= d <= window[1]:
            ids.add(int(c.task_id))
    return ids


def bucket_tasks(
    tasks: Sequence[TaskSchedule],
    completions: Iterable[CompletionRecord],
    today: date,
    threshold_days: int = DEFAULT_DUE_SOON_DAYS,
    *,
    window: Optional[tuple[date, date]] = None,
) -> TaskBuckets:
    """
    Groups tasks for list and calendar views.

    With a window, any task completed inside it is listed under `completed`
    (it may also appear in its due bucket). Without one, only unscheduled
    tasks that were ever completed (finished one-time work) are `completed`;
    other unscheduled tasks sit at the end of `upcoming`.
    """
    done = _completed_ids(completions, window)
    out = TaskBuckets()

    for t in tasks:
        status = get_task_status(t.next_due_date, today, threshold_days)
        if status == "overdue":
            out.overdue.append(t)
        elif status == "due_soon":
            out.due_soon.append(t)
        elif status == "upcoming":
            out.upcoming.append(t)
        elif window is None and t.task_id in done:
            out.completed.append(t)
        else:
            out.upcoming.append(t)

        if window is not None and t.task_id in done:
            out.completed.append(t)

    for bucket in (out.overdue, out.due_soon, out.upcoming, out.completed):
        bucket.sort(key=_sort_key)
    return out


def month_window(year: int, month: int) -> tuple[date, date]:
    if month < 1 or month > 12:
        raise DomainValidationError(f"Month out of range (1-12): {month}", field="month")
    last_day = calendar.monthrange(year, month)[1]
    return date(year, month, 1), date(year, month, last_day)


def calendar_month(
    tasks: Sequence[TaskSchedule],
    completions: Iterable[CompletionRecord],
    year: int,
    month: int,
    today: date,
    threshold_days: int = DEFAULT_DUE_SOON_DAYS,
) -> CalendarMonth:
    start, end = month_window(year, month)
    completions = list(completions)

    in_month = [t for t in tasks if t.next_due_date is not None and start <= t.next_due_date <= end]
    completed_ids = _completed_ids(completions, (start, end))
    by_id = {t.task_id: t for t in tasks}

    buckets = bucket_tasks(in_month, [], today, threshold_days, window=(start, end))
    for tid in sorted(completed_ids):
        t = by_id.get(tid)
        if t is not None and t not in buckets.completed:
            buckets.completed.append(t)
    buckets.completed.sort(key=_sort_key)

    due_by_day: dict[date, list[CalendarEntry]] = {}
    for t in sorted(in_month, key=_sort_key):
        due_by_day.setdefault(t.next_due_date, []).append(
            CalendarEntry(
                task_id=t.task_id,
                title=t.title,
                category=t.category,
                status=get_task_status(t.next_due_date, today, threshold_days),
            )
        )

    done_by_day: dict[date, list[int]] = {}
    for c in completions:
        d = c.completed_at.date() if isinstance(c.completed_at, datetime) else c.completed_at
        if start <= d <= end:
            done_by_day.setdefault(d, []).append(int(c.task_id))

    days: list[CalendarDay] = []
    cur = start
    while cur <= end:
        days.append(
            CalendarDay(
                date=cur,
                due=due_by_day.get(cur, []),
                completed_task_ids=sorted(set(done_by_day.get(cur, []))),
            )
        )
        cur += timedelta(days=1)

    return CalendarMonth(year=year, month=month, buckets=buckets, days=days)


def frequency_label(frequency_type: str, interval: int) -> str:
    n = int(interval or 1)
    if frequency_type == "interval_days":
        return "Daily" if n == 1 else f"Every {n} days"
    if frequency_type == "interval_weeks":
        return "Weekly" if n == 1 else f"Every {n} weeks"
    if frequency_type == "interval_months":
        return "Monthly" if n == 1 else f"Every {n} months"
    if frequency_type == "interval_years":
        return "Annual" if n == 1 else f"Every {n} years"
    if frequency_type == "seasonal_months":
        return "Seasonal"
    if frequency_type == "one_time":
        return "One-time"
    return frequency_type


def format_due_date(next_due_date: Optional[date], today: date) -> str:
    if next_due_date is None:
        return "Not scheduled"

    diff = (next_due_date - today).days
    if diff < 0:
        n = -diff
        if n == 1:
            return "Yesterday"
        if n < 7:
            return f"{n} days overdue"
        if n < 30:
            return f"{n // 7} weeks overdue"
        return f"{n // 30} months overdue"

    if diff == 0:
        return "Today"
    if diff == 1:
        return "Tomorrow"
    if diff < 7:
        return f"In {diff} days"
    if diff < 30:
        return f"In {-(-diff // 7)} weeks"
    if diff < 365:
        return f"In {-(-diff // 30)} months"
    return f"{next_due_date:%b} {next_due_date.day}, {next_due_date.year}"
