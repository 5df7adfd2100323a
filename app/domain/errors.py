# backend/app/domain/errors.py
from __future__ import annotations

from typing import Any, Optional


class DomainError(Exception):
    """Base for errors raised by the recurrence and payment engines and their services."""

    status_code = 400
    error = "domain_error"

    def __init__(self, message: str, **details: Any) -> None:
        super().__init__(message)
        self.message = message
        self.details = details

    def to_dict(self) -> dict[str, Any]:
        return {"error": self.error, "message": self.message, **self.details}


class DomainValidationError(DomainError):
    status_code = 400
    error = "validation_error"


class ChangeOrderNotRequired(DomainValidationError):
    """The increase fits inside the existing authorization buffer."""

    error = "change_order_not_required"

    def __init__(self, percentage_increase: float, threshold: float) -> None:
        super().__init__(
            f"Increase of {percentage_increase:.2f}% does not exceed the {threshold:g}% change order threshold",
            percentage_increase=round(float(percentage_increase), 4),
            threshold=float(threshold),
        )
        self.percentage_increase = float(percentage_increase)
        self.threshold = float(threshold)


class StateConflictError(DomainError):
    status_code = 409
    error = "state_conflict"

    def __init__(self, entity: str, current_status: Optional[str], message: Optional[str] = None) -> None:
        super().__init__(
            message or f"{entity} is in status '{current_status}'",
            entity=entity,
            current_status=current_status,
        )
        self.entity = entity
        self.current_status = current_status


class AuthorizationCeilingError(DomainError):
    status_code = 400
    error = "authorization_ceiling_exceeded"

    def __init__(self, total_cents: int, authorized_cents: int) -> None:
        super().__init__(
            f"Invoice total {total_cents} exceeds authorized amount {authorized_cents}",
            total_cents=int(total_cents),
            authorized_cents=int(authorized_cents),
        )
        self.total_cents = int(total_cents)
        self.authorized_cents = int(authorized_cents)


class PaymentProviderError(DomainError):
    """A payments platform call failed. Recovery is a manual follow-up."""

    status_code = 502
    error = "payment_provider_error"
