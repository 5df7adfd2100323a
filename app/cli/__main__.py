# backend/app/cli/__main__.py
from __future__ import annotations

import argparse
import json
from datetime import date

from app.db import SessionLocal
from app.domain.config_sections import SECTION_MODELS, section_to_stored
from app.models import AdminConfig
from app.seed.maintenance_templates import seed_templates


def _seed_config(overwrite: bool) -> dict:
    written: list[str] = []
    db = SessionLocal()
    try:
        for key, model in SECTION_MODELS.items():
            row = db.query(AdminConfig).filter(AdminConfig.key == key).one_or_none()
            if row is not None and not overwrite:
                continue
            if row is None:
                row = AdminConfig(key=key)
                db.add(row)
            row.value_json = json.dumps(section_to_stored(model()), sort_keys=True)
            written.append(key)
        db.commit()
    finally:
        db.close()
    return {"ok": True, "written": written}


def _run_reminders(today: str | None, days_ahead: int | None) -> dict:
    from app.clients.resend_email import ResendEmailClient
    from app.services.reminder_service import run_task_reminders

    db = SessionLocal()
    try:
        res = run_task_reminders(
            db,
            mailer=ResendEmailClient(),
            today=date.fromisoformat(today) if today else None,
            days_ahead=days_ahead,
        )
    finally:
        db.close()
    return {"ok": True, **res.as_dict()}


def main() -> None:
    p = argparse.ArgumentParser(prog="python -m app.cli")
    sub = p.add_subparsers(dest="cmd", required=True)

    sub.add_parser("seed-templates", help="upsert the default maintenance templates")

    sc = sub.add_parser("seed-config", help="write default admin config sections")
    sc.add_argument("--overwrite", action="store_true", help="replace sections that already exist")

    rr = sub.add_parser("send-reminders", help="run the task reminder sweep once, inline")
    rr.add_argument("--today", default=None, help="YYYY-MM-DD, defaults to the current date")
    rr.add_argument("--days-ahead", type=int, default=None)

    args = p.parse_args()

    if args.cmd == "seed-templates":
        db = SessionLocal()
        try:
            n = seed_templates(db)
        finally:
            db.close()
        print({"ok": True, "templates": n})
    elif args.cmd == "seed-config":
        print(_seed_config(args.overwrite))
    elif args.cmd == "send-reminders":
        print(_run_reminders(args.today, args.days_ahead))


if __name__ == "__main__":
    main()
