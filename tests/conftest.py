# backend/tests/conftest.py
from __future__ import annotations

import os
import tempfile
from datetime import datetime
from typing import Optional

import pytest

_DB_FILE = os.path.join(tempfile.gettempdir(), "upkeep_pytest.db")
os.environ["DATABASE_URL"] = f"sqlite:///{_DB_FILE}"
os.environ["AUTH_MODE"] = "dev"
os.environ["APP_ENV"] = "local"
os.environ.pop("STRIPE_SECRET_KEY", None)
os.environ.pop("RESEND_API_KEY", None)

from fastapi.testclient import TestClient  # noqa: E402

from app.auth import Principal  # noqa: E402
from app.clients.resend_email import EmailResult  # noqa: E402
from app.clients.stripe_gateway import CaptureResult, PaymentIntentResult, TransferResult  # noqa: E402
from app.db import Base, SessionLocal, engine  # noqa: E402
from app.domain.errors import PaymentProviderError  # noqa: E402
from app import models  # noqa: E402,F401
from app.models import AppUser, Property, Provider  # noqa: E402


class FakeGateway:
    """In-memory PaymentGateway. `fail_on` names operations that raise."""

    def __init__(self) -> None:
        self.calls: list[tuple[str, dict]] = []
        self.fail_on: set[str] = set()
        self._n = 0

    def _next(self, prefix: str) -> str:
        self._n += 1
        return f"{prefix}_{self._n}"

    def _record(self, op: str, kw: dict) -> None:
        self.calls.append((op, kw))
        if op in self.fail_on:
            raise PaymentProviderError(f"Payment provider call failed: {op}", operation=op)

    def ops(self) -> list[str]:
        return [op for op, _ in self.calls]

    def create_diagnostic_fee_payment(self, **kw) -> PaymentIntentResult:
        self._record("create_diagnostic_fee_payment", kw)
        pid = self._next("pi")
        return PaymentIntentResult(pid, f"{pid}_secret", int(kw["amount_cents"]))

    def authorize_estimate(self, **kw) -> PaymentIntentResult:
        self._record("authorize_estimate", kw)
        pid = self._next("pi")
        return PaymentIntentResult(pid, f"{pid}_secret", int(kw["amount_cents"]) + int(kw["buffer_cents"]))

    def update_authorization(self, **kw) -> PaymentIntentResult:
        self._record("update_authorization", kw)
        return PaymentIntentResult(kw["payment_intent_id"], None, int(kw["amount_cents"]))

    def capture_payment(self, **kw) -> CaptureResult:
        self._record("capture_payment", kw)
        return CaptureResult(kw["payment_intent_id"], self._next("ch"), int(kw["amount_cents"]))

    def transfer_to_provider(self, **kw) -> TransferResult:
        self._record("transfer_to_provider", kw)
        return TransferResult(self._next("tr"), int(kw["amount_cents"]))


class FakeMailer:
    def __init__(self, fail_for: Optional[set[str]] = None) -> None:
        self.sent: list[dict] = []
        self.fail_for = fail_for or set()

    def send_email(self, *, to: str, subject: str, text: str, html: Optional[str] = None) -> EmailResult:
        if to in self.fail_for:
            return EmailResult(False, error="mailbox unavailable")
        self.sent.append({"to": to, "subject": subject, "text": text})
        return EmailResult(True, message_id=f"msg_{len(self.sent)}")


@pytest.fixture(autouse=True)
def _schema():
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    yield


@pytest.fixture
def db():
    s = SessionLocal()
    try:
        yield s
    finally:
        s.close()


@pytest.fixture
def gateway() -> FakeGateway:
    return FakeGateway()


@pytest.fixture
def mailer() -> FakeMailer:
    return FakeMailer()


@pytest.fixture
def client(gateway, mailer) -> TestClient:
    from app.main import create_app

    app = create_app()
    app.state.payment_gateway = gateway
    app.state.mailer = mailer
    return TestClient(app)


# -----------------------------
# Row helpers
# -----------------------------
def mk_user(db, email: str, role: str = "homeowner") -> AppUser:
    u = AppUser(email=email, display_name=email.split("@")[0], role=role, created_at=datetime.utcnow())
    db.add(u)
    db.commit()
    db.refresh(u)
    return u


def mk_property(db, owner: AppUser, timezone: str = "America/New_York") -> Property:
    p = Property(
        owner_user_id=owner.id,
        name="Main house",
        address="12 Elm St",
        city="Detroit",
        state="MI",
        zip="48201",
        timezone=timezone,
        created_at=datetime.utcnow(),
    )
    db.add(p)
    db.commit()
    db.refresh(p)
    return p


def mk_provider(db, user: AppUser, stripe_account_id: Optional[str] = "acct_test") -> Provider:
    pr = Provider(user_id=user.id, business_name="Fix-It Co", stripe_account_id=stripe_account_id)
    db.add(pr)
    db.commit()
    db.refresh(pr)
    return pr


def principal_for(user: AppUser, provider: Optional[Provider] = None) -> Principal:
    return Principal(
        user_id=user.id,
        email=user.email,
        role=user.role,
        provider_id=provider.id if provider is not None else None,
    )


def headers(email: str, role: str = "homeowner") -> dict[str, str]:
    return {"X-User-Email": email, "X-User-Role": role}


def approved_job(db, gateway, *, estimate_cents: int = 10000, stripe_account_id: Optional[str] = "acct_test"):
    """Homeowner + provider with an estimate approved and authorized. Returns (home, pro, service_request)."""
    from app.models import ServiceRequest
    from app.services import payment_service

    owner = mk_user(db, "owner@example.com")
    prop = mk_property(db, owner)
    pro_user = mk_user(db, "pro@example.com", role="provider")
    provider = mk_provider(db, pro_user, stripe_account_id=stripe_account_id)
    home = principal_for(owner)
    pro = principal_for(pro_user, provider)

    sr = ServiceRequest(
        property_id=prop.id,
        customer_user_id=owner.id,
        title="Kitchen sink leak",
        category="plumbing",
        status="submitted",
    )
    db.add(sr)
    db.commit()
    db.refresh(sr)

    est = payment_service.create_estimate(db, principal=pro, service_request_id=sr.id, total_cents=estimate_cents)
    payment_service.send_estimate(db, principal=pro, estimate_id=est.id)
    payment_service.approve_estimate(db, principal=home, gateway=gateway, estimate_id=est.id)
    db.refresh(sr)
    return home, pro, sr
