# backend/app/routers/deps.py
from __future__ import annotations

from fastapi import Request

from ..clients.resend_email import Mailer
from ..clients.stripe_gateway import PaymentGateway


def get_gateway(request: Request) -> PaymentGateway:
    return request.app.state.payment_gateway


def get_mailer(request: Request) -> Mailer:
    return request.app.state.mailer
