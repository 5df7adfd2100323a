from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Callable, Optional, Protocol

import stripe

from ..config import settings
from ..domain.errors import PaymentProviderError

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class PaymentIntentResult:
    payment_intent_id: str
    client_secret: Optional[str]
    amount_cents: int


@dataclass(frozen=True)
class CaptureResult:
    payment_intent_id: str
    charge_id: str
    amount_cents: int


@dataclass(frozen=True)
class TransferResult:
    transfer_id: str
    amount_cents: int


class PaymentGateway(Protocol):
    def create_diagnostic_fee_payment(
        self, *, customer_ref: Optional[str], service_request_id: int, amount_cents: int, category: str
    ) -> PaymentIntentResult: ...

    def authorize_estimate(
        self,
        *,
        customer_ref: Optional[str],
        estimate_id: int,
        service_request_id: int,
        amount_cents: int,
        buffer_cents: int,
    ) -> PaymentIntentResult: ...

    def update_authorization(
        self, *, payment_intent_id: str, amount_cents: int, change_order_id: int
    ) -> PaymentIntentResult: ...

    def capture_payment(self, *, payment_intent_id: str, amount_cents: int, invoice_id: int) -> CaptureResult: ...

    def transfer_to_provider(
        self, *, amount_cents: int, destination_account: str, charge_id: str, invoice_id: int, provider_id: int
    ) -> TransferResult: ...


class StripeGateway:
    """
    Thin wrapper over the stripe SDK. The key is passed per call, so nothing
    mutates the module-level `stripe.api_key`.

    Every SDK failure is logged with the ids needed for manual follow-up and
    re-raised as PaymentProviderError. No retries, no compensation.
    """

    def __init__(self, api_key: Optional[str] = None, currency: Optional[str] = None) -> None:
        self.api_key = api_key if api_key is not None else settings.stripe_secret_key
        self.currency = (currency or settings.stripe_currency).lower()

    def enabled(self) -> bool:
        return bool(self.api_key)

    def _call(self, op: str, fn: Callable[..., Any], *args: Any, ids: dict[str, Any], **kwargs: Any) -> Any:
        if not self.api_key:
            raise PaymentProviderError("Payments are not configured", operation=op)
        try:
            return fn(*args, api_key=self.api_key, **kwargs)
        except stripe.StripeError as e:
            log.error(
                "stripe_call_failed",
                extra={"event": "stripe_call_failed", "operation": op, "stripe_code": e.code, **ids},
            )
            raise PaymentProviderError(
                f"Payment provider call failed: {op}",
                operation=op,
                provider_message=e.user_message or str(e),
            ) from e

    def create_diagnostic_fee_payment(
        self, *, customer_ref: Optional[str], service_request_id: int, amount_cents: int, category: str
    ) -> PaymentIntentResult:
        params: dict[str, Any] = {
            "amount": int(amount_cents),
            "currency": self.currency,
            "capture_method": "automatic",
            "metadata": {
                "type": "diagnostic_fee",
                "service_request_id": str(service_request_id),
                "category": category,
            },
        }
        if customer_ref:
            params["customer"] = customer_ref
        pi = self._call(
            "create_diagnostic_fee_payment",
            stripe.PaymentIntent.create,
            ids={"service_request_id": service_request_id},
            **params,
        )
        return PaymentIntentResult(pi["id"], pi.get("client_secret"), int(pi["amount"]))

    def authorize_estimate(
        self,
        *,
        customer_ref: Optional[str],
        estimate_id: int,
        service_request_id: int,
        amount_cents: int,
        buffer_cents: int,
    ) -> PaymentIntentResult:
        params: dict[str, Any] = {
            "amount": int(amount_cents) + int(buffer_cents),
            "currency": self.currency,
            "capture_method": "manual",
            "metadata": {
                "type": "estimate_authorization",
                "estimate_id": str(estimate_id),
                "service_request_id": str(service_request_id),
                "original_amount": str(int(amount_cents)),
                "buffer_amount": str(int(buffer_cents)),
            },
        }
        if customer_ref:
            params["customer"] = customer_ref
        pi = self._call(
            "authorize_estimate",
            stripe.PaymentIntent.create,
            ids={"estimate_id": estimate_id, "service_request_id": service_request_id},
            **params,
        )
        return PaymentIntentResult(pi["id"], pi.get("client_secret"), int(pi["amount"]))

    def update_authorization(
        self, *, payment_intent_id: str, amount_cents: int, change_order_id: int
    ) -> PaymentIntentResult:
        pi = self._call(
            "update_authorization",
            stripe.PaymentIntent.modify,
            payment_intent_id,
            ids={"payment_intent_id": payment_intent_id, "change_order_id": change_order_id},
            amount=int(amount_cents),
            metadata={"change_order_id": str(change_order_id)},
        )
        return PaymentIntentResult(pi["id"], pi.get("client_secret"), int(pi["amount"]))

    def capture_payment(self, *, payment_intent_id: str, amount_cents: int, invoice_id: int) -> CaptureResult:
        pi = self._call(
            "capture_payment",
            stripe.PaymentIntent.capture,
            payment_intent_id,
            ids={"payment_intent_id": payment_intent_id, "invoice_id": invoice_id},
            amount_to_capture=int(amount_cents),
        )
        charge = pi.get("latest_charge")
        charge_id = charge if isinstance(charge, str) else (charge or {}).get("id")
        return CaptureResult(payment_intent_id=pi["id"], charge_id=str(charge_id), amount_cents=int(amount_cents))

    def transfer_to_provider(
        self, *, amount_cents: int, destination_account: str, charge_id: str, invoice_id: int, provider_id: int
    ) -> TransferResult:
        tr = self._call(
            "transfer_to_provider",
            stripe.Transfer.create,
            ids={"invoice_id": invoice_id, "provider_id": provider_id, "charge_id": charge_id},
            amount=int(amount_cents),
            currency=self.currency,
            destination=destination_account,
            source_transaction=charge_id,
            metadata={"invoice_id": str(invoice_id), "provider_id": str(provider_id)},
        )
        return TransferResult(transfer_id=tr["id"], amount_cents=int(amount_cents))
