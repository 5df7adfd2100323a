# backend/app/services/transitions.py
from __future__ import annotations

from typing import Any, Iterable

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from ..domain.errors import StateConflictError


def transition_status(
    db: Session,
    model: Any,
    row_id: int,
    *,
    expected: Iterable[str],
    target: str,
    entity: str,
    values: dict[str, Any] | None = None,
) -> None:
    """
    Compare-and-swap status write:

        UPDATE <table> SET status=:target, ... WHERE id=:id AND status IN (:expected)

    Exactly one row must change. Otherwise a concurrent writer got there
    first and StateConflictError carries the status as it is now.
    Does NOT commit.
    """
    exp = list(expected)
    stmt = (
        update(model)
        .where(model.id == int(row_id), model.status.in_(exp))
        .values(status=target, **(values or {}))
        .execution_options(synchronize_session="fetch")
    )
    res = db.execute(stmt)
    if res.rowcount != 1:
        current = db.scalar(select(model.status).where(model.id == int(row_id)))
        raise StateConflictError(entity, current)


def claim_flag(
    db: Session,
    model: Any,
    row_id: int,
    *,
    flag: str,
    entity: str,
    claimed_status: str,
    values: dict[str, Any] | None = None,
) -> None:
    """Same compare-and-swap, for one-shot boolean flags (False -> True)."""
    col = getattr(model, flag)
    stmt = (
        update(model)
        .where(model.id == int(row_id), col.is_(False))
        .values({flag: True, **(values or {})})
        .execution_options(synchronize_session="fetch")
    )
    res = db.execute(stmt)
    if res.rowcount != 1:
        raise StateConflictError(entity, claimed_status)
