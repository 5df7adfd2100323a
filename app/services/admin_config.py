# backend/app/services/admin_config.py
from __future__ import annotations

import json
import logging
from datetime import datetime
from typing import Any, TypeVar

from fastapi import HTTPException
from pydantic import BaseModel, ValidationError
from sqlalchemy import select
from sqlalchemy.orm import Session

from ..auth import Principal
from ..domain.config_sections import (
    SECTION_MODELS,
    AfterHoursConfig,
    DiagnosticFeesConfig,
    HomeownerPlatformFeesConfig,
    MarketplacePaymentsConfig,
    ProviderFeesConfig,
    section_to_stored,
)
from ..domain.errors import DomainValidationError
from ..domain.events import emit_audit_event
from ..models import AdminConfig

log = logging.getLogger(__name__)

S = TypeVar("S", bound=BaseModel)


def _model_for(key: str) -> type[BaseModel]:
    model = SECTION_MODELS.get(key)
    if model is None:
        raise DomainValidationError(f"Unknown config key: {key!r}", field="key", allowed=sorted(SECTION_MODELS))
    return model


def _load(db: Session, key: str) -> Any:
    row = db.scalar(select(AdminConfig).where(AdminConfig.key == key))
    if row is None:
        return None
    try:
        return json.loads(row.value_json or "null")
    except json.JSONDecodeError:
        log.warning("admin_config_unparsable", extra={"config_key": key})
        return None


def get_config(db: Session, key: str) -> BaseModel:
    """
    Typed section for `key`, read fresh on every call.

    Missing row, bad JSON, or a document that fails validation all fall
    back to defaults; partial documents keep their valid fields.
    """
    model = _model_for(key)
    raw = _load(db, key)
    if not isinstance(raw, dict):
        return model()
    try:
        return model.model_validate(raw)
    except ValidationError:
        log.warning("admin_config_invalid_using_defaults", extra={"config_key": key})
        if model is DiagnosticFeesConfig:
            return model()
        merged = section_to_stored(model())
        for k, v in raw.items():
            if k not in merged:
                continue
            candidate = {**merged, k: v}
            try:
                model.model_validate(candidate)
            except ValidationError:
                continue
            merged = candidate
        return model.model_validate(merged)


def _typed(db: Session, key: str, model: type[S]) -> S:
    return model.model_validate(get_config(db, key))


def marketplace_payments(db: Session) -> MarketplacePaymentsConfig:
    return _typed(db, "marketplace_payments", MarketplacePaymentsConfig)


def homeowner_platform_fees(db: Session) -> HomeownerPlatformFeesConfig:
    return _typed(db, "homeowner_platform_fees", HomeownerPlatformFeesConfig)


def provider_fees(db: Session) -> ProviderFeesConfig:
    return _typed(db, "provider_fees", ProviderFeesConfig)


def diagnostic_fees(db: Session) -> DiagnosticFeesConfig:
    return _typed(db, "diagnostic_fees", DiagnosticFeesConfig)


def after_hours(db: Session) -> AfterHoursConfig:
    return _typed(db, "after_hours", AfterHoursConfig)


def get_all_config(db: Session) -> dict[str, dict[str, Any]]:
    return {key: section_to_stored(get_config(db, key)) for key in SECTION_MODELS}


def update_config(db: Session, key: str, value: Any, actor: Principal) -> dict[str, Any]:
    """Upsert one section (admin only). Stored value is the validated, normalized document."""
    if not actor.is_admin:
        raise HTTPException(status_code=403, detail="Admin access required")

    model = _model_for(key)
    if not isinstance(value, dict):
        raise DomainValidationError("Config value must be an object", field="value")
    try:
        section = model.model_validate(value)
    except ValidationError as e:
        raise DomainValidationError(
            f"Invalid value for {key}",
            field="value",
            errors=[{"loc": list(err["loc"]), "msg": err["msg"]} for err in e.errors()],
        )

    stored = section_to_stored(section)
    row = db.scalar(select(AdminConfig).where(AdminConfig.key == key))
    before = json.loads(row.value_json) if row is not None and row.value_json else None

    if row is None:
        row = AdminConfig(key=key)
        db.add(row)
    row.value_json = json.dumps(stored, sort_keys=True)
    row.updated_by_user_id = actor.user_id
    row.updated_at = datetime.utcnow()

    emit_audit_event(
        db,
        principal=actor,
        action="admin_config.update",
        entity_type="admin_config",
        entity_id=key,
        before=before,
        after=stored,
    )
    db.commit()
    log.info("admin_config_updated", extra={"user_id": actor.user_id, "config_key": key})
    return stored
