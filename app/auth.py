# backend/app/auth.py
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Optional

import jwt  # PyJWT
from fastapi import Depends, Header, HTTPException, Request
from sqlalchemy import select
from sqlalchemy.orm import Session

from .config import settings
from .db import get_db
from .models import AppUser, Provider

ROLES = ("homeowner", "provider", "admin")


@dataclass(frozen=True)
class Principal:
    user_id: int
    email: str
    role: str  # homeowner | provider | admin
    provider_id: int | None = None

    @property
    def is_admin(self) -> bool:
        return self.role == "admin"


def _require_role(principal: Principal, *roles: str) -> None:
    if principal.role not in roles and not principal.is_admin:
        raise HTTPException(status_code=403, detail=f"Requires role in {sorted(roles)}")


# -------------------------
# JWT helpers
# -------------------------
def create_access_token(*, user_id: int, role: str, minutes: Optional[int] = None) -> str:
    now = datetime.utcnow()
    payload: dict[str, Any] = {
        "sub": str(int(user_id)),
        "role": str(role),
        "iat": int(now.timestamp()),
        "exp": int((now + timedelta(minutes=int(minutes or settings.jwt_exp_minutes))).timestamp()),
    }
    return jwt.encode(payload, settings.jwt_secret, algorithm="HS256")


def decode_access_token(token: str) -> dict[str, Any]:
    try:
        return jwt.decode(token, settings.jwt_secret, algorithms=["HS256"])
    except jwt.ExpiredSignatureError:
        raise HTTPException(status_code=401, detail="Token expired")
    except jwt.InvalidTokenError:
        raise HTTPException(status_code=401, detail="Invalid token")


# -------------------------
# User helpers
# -------------------------
def _get_user_by_email(db: Session, email: str) -> AppUser | None:
    return db.scalar(select(AppUser).where(AppUser.email == email))


def _provider_id_for(db: Session, user_id: int) -> int | None:
    pid = db.scalar(select(Provider.id).where(Provider.user_id == user_id))
    return int(pid) if pid is not None else None


def _principal_from_user(db: Session, user: AppUser) -> Principal:
    return Principal(
        user_id=int(user.id),
        email=str(user.email),
        role=str(user.role),
        provider_id=_provider_id_for(db, int(user.id)),
    )


def get_principal(
    request: Request,
    db: Session = Depends(get_db),
    authorization: Optional[str] = Header(default=None, alias="Authorization"),
) -> Principal:
    """
    Auth modes supported (in priority order):
      1) Authorization: Bearer <token>
      2) dev header spoofing (ONLY if settings.auth_mode == "dev")
    """
    token = None
    if authorization and str(authorization).lower().startswith("bearer "):
        token = str(authorization).split(" ", 1)[1].strip()

    if token:
        claims = decode_access_token(token)
        sub = str(claims.get("sub") or "")
        if not sub.isdigit():
            raise HTTPException(status_code=401, detail="Token missing sub")

        user = db.scalar(select(AppUser).where(AppUser.id == int(sub)))
        if user is None:
            raise HTTPException(status_code=401, detail="Unknown user")
        return _principal_from_user(db, user)

    if settings.auth_mode == "dev":
        email = (request.headers.get(settings.dev_header_user_email) or "").strip().lower()
        role_hint = (request.headers.get(settings.dev_header_user_role) or "homeowner").strip().lower()
        if not email:
            raise HTTPException(status_code=401, detail="Missing X-User-Email for dev auth")

        user = _get_user_by_email(db, email=email)
        if user is None and settings.dev_auto_provision:
            user = AppUser(
                email=email,
                display_name=email.split("@")[0],
                role=role_hint if role_hint in ROLES else "homeowner",
                created_at=datetime.utcnow(),
            )
            db.add(user)
            db.commit()
            db.refresh(user)

        if user is None:
            raise HTTPException(status_code=401, detail="Dev auth could not provision user")

        return _principal_from_user(db, user)

    raise HTTPException(status_code=401, detail="Not authenticated")


def require_admin(p: Principal = Depends(get_principal)) -> Principal:
    _require_role(p, "admin")
    return p


def require_provider(p: Principal = Depends(get_principal)) -> Principal:
    _require_role(p, "provider")
    if p.provider_id is None and not p.is_admin:
        raise HTTPException(status_code=403, detail="No provider profile for this user")
    return p
