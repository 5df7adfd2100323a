# backend/app/routers/auth.py
from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException

from ..auth import Principal, create_access_token, get_principal
from ..config import settings

router = APIRouter(prefix="/auth", tags=["auth"])


@router.get("/me", response_model=dict)
def me(p: Principal = Depends(get_principal)):
    return {
        "user_id": p.user_id,
        "email": p.email,
        "role": p.role,
        "provider_id": p.provider_id,
    }


@router.post("/token", response_model=dict)
def issue_token(p: Principal = Depends(get_principal)):
    """
    Dev only: trade the X-User-* headers for a bearer token so clients can
    exercise the jwt path locally. Real deployments mint tokens upstream.
    """
    if settings.auth_mode != "dev":
        raise HTTPException(status_code=404, detail="Not found")
    return {
        "access_token": create_access_token(user_id=p.user_id, role=p.role),
        "token_type": "bearer",
        "expires_in_minutes": settings.jwt_exp_minutes,
    }
