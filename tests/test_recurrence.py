from __future__ import annotations

from datetime import date, datetime

import pytest

from app.domain.errors import DomainValidationError
from app.domain.recurrence import (
    CompletionRecord,
    TaskSchedule,
    advance_on_completion,
    bucket_tasks,
    calendar_month,
    compute_next_due_date,
    format_due_date,
    frequency_label,
    get_task_status,
    normalize_months,
)


def _sched(task_id: int, next_due, *, title: str = "Task", ft: str = "interval_months", n: int = 1, months=()):
    return TaskSchedule(
        task_id=task_id,
        title=title,
        category="hvac",
        frequency_type=ft,
        frequency_interval=n,
        suggested_months=tuple(months),
        next_due_date=next_due,
    )


@pytest.mark.parametrize(
    "ft,n,start,expected",
    [
        ("interval_days", 10, date(2024, 1, 1), date(2024, 1, 11)),
        ("interval_weeks", 2, date(2024, 12, 25), date(2025, 1, 8)),
        ("interval_months", 3, date(2024, 1, 15), date(2024, 4, 15)),
        ("interval_years", 1, date(2023, 6, 30), date(2024, 6, 30)),
    ],
)
def test_interval_rules_add_units(ft, n, start, expected):
    assert compute_next_due_date(ft, n, None, start) == expected


def test_month_steps_clamp_to_last_valid_day():
    assert compute_next_due_date("interval_months", 1, None, date(2024, 1, 31)) == date(2024, 2, 29)
    assert compute_next_due_date("interval_months", 1, None, date(2023, 1, 31)) == date(2023, 2, 28)
    assert compute_next_due_date("interval_years", 1, None, date(2024, 2, 29)) == date(2025, 2, 28)


def test_seasonal_picks_next_month_strictly_after_current():
    months = [10, 4]
    assert compute_next_due_date("seasonal_months", 1, months, date(2024, 3, 15)) == date(2024, 4, 1)
    # still April: next season is October, not today's month
    assert compute_next_due_date("seasonal_months", 1, months, date(2024, 4, 1)) == date(2024, 10, 1)
    assert compute_next_due_date("seasonal_months", 1, months, date(2024, 10, 20)) == date(2025, 4, 1)
    assert compute_next_due_date("seasonal_months", 1, months, date(2024, 12, 31)) == date(2025, 4, 1)


def test_one_time_and_empty_seasonal_are_unscheduled():
    assert compute_next_due_date("one_time", 1, None, date(2024, 5, 5)) is None
    assert compute_next_due_date("seasonal_months", 1, [], date(2024, 5, 5)) is None


def test_invalid_rules_are_rejected():
    with pytest.raises(DomainValidationError):
        compute_next_due_date("fortnightly", 1, None, date(2024, 1, 1))
    with pytest.raises(DomainValidationError):
        compute_next_due_date("interval_days", 0, None, date(2024, 1, 1))
    with pytest.raises(DomainValidationError):
        compute_next_due_date("interval_months", -2, None, date(2024, 1, 1))


def test_normalize_months_sorts_dedups_and_rejects_out_of_range():
    assert normalize_months([10, 4, 4]) == (4, 10)
    assert normalize_months(None) == ()
    with pytest.raises(DomainValidationError):
        normalize_months([0, 4])
    with pytest.raises(DomainValidationError):
        normalize_months([13])


def test_task_status_boundaries():
    today = date(2024, 6, 10)
    assert get_task_status(None, today) == "unscheduled"
    assert get_task_status(date(2024, 6, 9), today) == "overdue"
    assert get_task_status(today, today) == "due_soon"
    assert get_task_status(date(2024, 6, 17), today) == "due_soon"
    assert get_task_status(date(2024, 6, 18), today) == "upcoming"
    assert get_task_status(date(2024, 6, 12), today, threshold_days=1) == "upcoming"


def test_advance_is_anchored_at_completion_date():
    sched = _sched(1, date(2024, 1, 1), n=3)
    # completed late: next date counts from the completion, not the old due date
    assert advance_on_completion(sched, date(2024, 2, 20)) == date(2024, 5, 20)
    assert advance_on_completion(_sched(2, date(2024, 1, 1), ft="one_time"), date(2024, 1, 3)) is None


def test_bucket_tasks_groups_and_sorts():
    today = date(2024, 6, 10)
    tasks = [
        _sched(1, date(2024, 7, 30), title="Gutters"),
        _sched(2, date(2024, 6, 1), title="Filters"),
        _sched(3, date(2024, 6, 12), title="Detectors"),
        _sched(4, None, title="Paint shed", ft="one_time"),
        _sched(5, None, title="Install shelves", ft="one_time"),
        _sched(6, date(2024, 6, 11), title="Anode rod"),
    ]
    done = [CompletionRecord(task_id=4, completed_at=datetime(2024, 5, 2, 10, 0))]

    b = bucket_tasks(tasks, done, today)

    assert [t.task_id for t in b.overdue] == [2]
    assert [t.task_id for t in b.due_soon] == [6, 3]
    # unscheduled and never completed sorts after dated tasks
    assert [t.task_id for t in b.upcoming] == [1, 5]
    assert [t.task_id for t in b.completed] == [4]


def test_same_due_date_ties_break_on_title():
    due = date(2024, 7, 1)
    tasks = [_sched(1, due, title="gutters"), _sched(2, due, title="Smoke detectors"), _sched(3, due, title="Attic")]

    b = bucket_tasks(tasks, [], date(2024, 6, 10))

    # plain string order: capitals before lowercase
    assert [t.title for t in b.upcoming] == ["Attic", "Smoke detectors", "gutters"]


def test_calendar_month_lays_out_every_day():
    today = date(2024, 2, 10)
    tasks = [
        _sched(1, date(2024, 2, 5), title="Filters"),
        _sched(2, date(2024, 2, 14), title="Detectors"),
        _sched(3, date(2024, 3, 1), title="Gutters"),
    ]
    done = [
        CompletionRecord(task_id=3, completed_at=datetime(2024, 2, 3, 8, 0)),
        CompletionRecord(task_id=1, completed_at=datetime(2024, 1, 30, 8, 0)),
    ]

    cal = calendar_month(tasks, done, 2024, 2, today)

    assert len(cal.days) == 29
    assert cal.days[0].date == date(2024, 2, 1)
    assert [e.task_id for e in cal.days[4].due] == [1]
    assert cal.days[4].due[0].status == "overdue"
    assert [e.status for e in cal.days[13].due] == ["due_soon"]
    assert cal.days[2].completed_task_ids == [3]

    assert [t.task_id for t in cal.buckets.overdue] == [1]
    assert [t.task_id for t in cal.buckets.due_soon] == [2]
    # completed this month even though it is next due in March
    assert [t.task_id for t in cal.buckets.completed] == [3]


def test_calendar_rejects_bad_month():
    with pytest.raises(DomainValidationError):
        calendar_month([], [], 2024, 13, date(2024, 1, 1))


@pytest.mark.parametrize(
    "due,label",
    [
        (None, "Not scheduled"),
        (date(2024, 6, 10), "Today"),
        (date(2024, 6, 11), "Tomorrow"),
        (date(2024, 6, 13), "In 3 days"),
        (date(2024, 6, 20), "In 2 weeks"),
        (date(2024, 8, 1), "In 2 months"),
        (date(2025, 7, 4), "Jul 4, 2025"),
        (date(2024, 6, 9), "Yesterday"),
        (date(2024, 6, 7), "3 days overdue"),
        (date(2024, 5, 27), "2 weeks overdue"),
        (date(2024, 3, 1), "3 months overdue"),
    ],
)
def test_format_due_date(due, label):
    assert format_due_date(due, date(2024, 6, 10)) == label


def test_frequency_labels():
    assert frequency_label("interval_months", 1) == "Monthly"
    assert frequency_label("interval_months", 3) == "Every 3 months"
    assert frequency_label("interval_years", 1) == "Annual"
    assert frequency_label("interval_days", 1) == "Daily"
    assert frequency_label("interval_weeks", 2) == "Every 2 weeks"
    assert frequency_label("seasonal_months", 1) == "Seasonal"
    assert frequency_label("one_time", 1) == "One-time"
