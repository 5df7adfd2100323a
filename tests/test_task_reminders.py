from __future__ import annotations

from datetime import date, timedelta

from sqlalchemy import select

from app.models import MaintenanceTask, Notification
from app.services.reminder_service import digest_dedup_key, run_task_reminders

from conftest import FakeMailer, mk_property, mk_user

TODAY = date(2024, 6, 10)


def _task(db, prop, title: str, due, status: str = "active") -> MaintenanceTask:
    t = MaintenanceTask(
        property_id=prop.id,
        title=title,
        category="hvac",
        frequency_type="interval_months",
        frequency_interval=3,
        next_due_date=due,
        status=status,
    )
    db.add(t)
    db.commit()
    db.refresh(t)
    return t


def test_digest_per_owner_with_overdue_notifications(db):
    u = mk_user(db, "owner@example.com")
    prop = mk_property(db, u)
    overdue = _task(db, prop, "Replace HVAC filters", TODAY - timedelta(days=3))
    soon = _task(db, prop, "Test smoke detectors", TODAY + timedelta(days=2))
    later = _task(db, prop, "Clean gutters", TODAY + timedelta(days=30))
    _task(db, prop, "Old archived task", TODAY - timedelta(days=10), status="archived")

    mailer = FakeMailer()
    res = run_task_reminders(db, mailer=mailer, today=TODAY, days_ahead=7)

    assert res.users_processed == 1
    assert res.emails_sent == 1
    assert res.in_app_created == 1
    assert res.tasks_marked == 2

    msg = mailer.sent[0]
    assert msg["to"] == "owner@example.com"
    assert msg["subject"] == "Maintenance reminder: 1 overdue, 1 due soon"
    assert "Replace HVAC filters" in msg["text"] and "3 days overdue" in msg["text"]
    assert "Clean gutters" not in msg["text"]

    notes = db.scalars(select(Notification).where(Notification.user_id == u.id).order_by(Notification.id)).all()
    assert [n.kind for n in notes] == ["task_digest", "task_overdue"]
    assert notes[0].dedup_key == digest_dedup_key(u.id, TODAY)

    for t in (overdue, soon, later):
        db.refresh(t)
    assert overdue.last_notified_at is not None
    assert soon.last_notified_at is not None
    assert later.last_notified_at is None


def test_second_run_same_day_is_a_no_op(db):
    u = mk_user(db, "owner@example.com")
    prop = mk_property(db, u)
    _task(db, prop, "Replace HVAC filters", TODAY - timedelta(days=1))

    mailer = FakeMailer()
    run_task_reminders(db, mailer=mailer, today=TODAY)
    again = run_task_reminders(db, mailer=mailer, today=TODAY)

    assert again.skipped_already_sent == 1
    assert again.emails_sent == 0
    assert len(mailer.sent) == 1

    # next day is a fresh digest
    run_task_reminders(db, mailer=mailer, today=TODAY + timedelta(days=1))
    assert len(mailer.sent) == 2


def test_failed_email_is_counted_and_sweep_continues(db):
    a = mk_user(db, "a@example.com")
    b = mk_user(db, "b@example.com")
    _task(db, mk_property(db, a), "Replace HVAC filters", TODAY)
    _task(db, mk_property(db, b), "Flush water heater", TODAY + timedelta(days=1))

    mailer = FakeMailer(fail_for={"a@example.com"})
    res = run_task_reminders(db, mailer=mailer, today=TODAY)

    assert res.users_processed == 2
    assert res.emails_failed == 1
    assert res.emails_sent == 1
    assert len(res.errors) == 1
    assert [m["to"] for m in mailer.sent] == ["b@example.com"]
    # in-app digest still recorded for the failed user
    assert db.scalar(select(Notification.id).where(Notification.dedup_key == digest_dedup_key(a.id, TODAY)))


def test_nothing_due_sends_nothing(db):
    u = mk_user(db, "owner@example.com")
    _task(db, mk_property(db, u), "Clean gutters", TODAY + timedelta(days=40))

    mailer = FakeMailer()
    res = run_task_reminders(db, mailer=mailer, today=TODAY)
    assert res.users_processed == 0
    assert mailer.sent == []
