# backend/app/routers/admin_config.py
from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from ..auth import require_admin
from ..db import get_db
from ..schemas import ConfigUpdateIn, ConfigUpdateOut
from ..services import admin_config as svc

router = APIRouter(prefix="/admin/config", tags=["admin"])


@router.get("", response_model=dict)
def get_all(db: Session = Depends(get_db), p=Depends(require_admin)):
    return svc.get_all_config(db)


@router.put("/{key}", response_model=ConfigUpdateOut)
def put_section(key: str, payload: ConfigUpdateIn, db: Session = Depends(get_db), p=Depends(require_admin)):
    return ConfigUpdateOut(key=key, value=svc.update_config(db, key, payload.value, p))
