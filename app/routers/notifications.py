# backend/app/routers/notifications.py
from __future__ import annotations

from datetime import datetime

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy import select, desc
from sqlalchemy.orm import Session

from ..auth import get_principal
from ..db import get_db
from ..models import Notification
from ..schemas import NotificationOut

router = APIRouter(prefix="/notifications", tags=["notifications"])


@router.get("", response_model=list[NotificationOut])
def list_notifications(
    unread_only: bool = Query(default=False),
    limit: int = Query(default=50, ge=1, le=200),
    db: Session = Depends(get_db),
    p=Depends(get_principal),
):
    q = select(Notification).where(Notification.user_id == p.user_id)
    if unread_only:
        q = q.where(Notification.read_at.is_(None))
    return list(db.scalars(q.order_by(desc(Notification.id)).limit(limit)).all())


@router.post("/{notification_id}/read", response_model=NotificationOut)
def mark_read(notification_id: int, db: Session = Depends(get_db), p=Depends(get_principal)):
    row = db.scalar(select(Notification).where(Notification.id == notification_id, Notification.user_id == p.user_id))
    if not row:
        raise HTTPException(status_code=404, detail="notification not found")
    if row.read_at is None:
        row.read_at = datetime.utcnow()
        db.add(row)
        db.commit()
        db.refresh(row)
    return row
