# events.py - workflow + audit event emission shared by the maintenance and payment services.
from __future__ import annotations

import json
from datetime import datetime
from typing import Any, Optional

from sqlalchemy.orm import Session

from app.auth import Principal
from app.models import AuditEvent, WorkflowEvent


def _dumps(v: Optional[dict[str, Any]]) -> Optional[str]:
    if v is None:
        return None
    return json.dumps(v, ensure_ascii=False, sort_keys=True, default=str)


def emit_workflow_event(
    db: Session,
    *,
    principal: Optional[Principal] = None,
    actor_user_id: Optional[int] = None,
    event_type: str,
    property_id: Optional[int] = None,
    service_request_id: Optional[int] = None,
    payload: Optional[dict[str, Any]] = None,
) -> WorkflowEvent:
    """
    Workflow event emitter.

        emit_workflow_event(db, principal=p, event_type="estimate.approved", service_request_id=..., payload={...})

    Workers without a principal pass actor_user_id (or nothing).

    NOTE:
    - Does NOT commit. Adds + flushes only.
    - Callers decide when to commit.
    """
    eff_actor = int(principal.user_id) if principal is not None else actor_user_id

    ev = WorkflowEvent(
        property_id=int(property_id) if property_id is not None else None,
        service_request_id=int(service_request_id) if service_request_id is not None else None,
        actor_user_id=eff_actor,
        event_type=str(event_type),
        payload_json=json.dumps(payload or {}, ensure_ascii=False, default=str),
        created_at=datetime.utcnow(),
    )
    db.add(ev)
    db.flush()
    return ev


def emit_audit_event(
    db: Session,
    *,
    principal: Optional[Principal] = None,
    actor_user_id: Optional[int] = None,
    action: str,
    entity_type: str,
    entity_id: Any,
    before: Optional[dict[str, Any]] = None,
    after: Optional[dict[str, Any]] = None,
) -> AuditEvent:
    """
    Audit row with before/after JSON.

    NOTE: flush-only, no commit.
    """
    eff_actor = int(principal.user_id) if principal is not None else actor_user_id

    ae = AuditEvent(
        actor_user_id=eff_actor,
        action=str(action),
        entity_type=str(entity_type),
        entity_id=str(entity_id),
        before_json=_dumps(before),
        after_json=_dumps(after),
        created_at=datetime.utcnow(),
    )
    db.add(ae)
    db.flush()
    return ae
