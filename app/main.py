# backend/app/main.py
from __future__ import annotations

import logging

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .clients.resend_email import ResendEmailClient
from .clients.stripe_gateway import StripeGateway
from .config import settings
from .domain.errors import DomainError
from .logging_config import configure_logging
from .middleware.request_id import RequestIDMiddleware
from .middleware.structured_logging import StructuredLoggingMiddleware

from .routers.health import router as health_router
from .routers.auth import router as auth_router
from .routers.properties import router as properties_router
from .routers.maintenance import router as maintenance_router
from .routers.templates import router as templates_router
from .routers.service_requests import router as service_requests_router
from .routers.payments import router as payments_router
from .routers.notifications import router as notifications_router
from .routers.admin_config import router as admin_config_router

API_PREFIX = "/api"

log = logging.getLogger(__name__)


def _cors_origins() -> list[str]:
    val = settings.cors_allow_origins
    if isinstance(val, str):
        v = val.strip()
        return ["*"] if v == "*" else [x.strip() for x in v.split(",") if x.strip()]
    if isinstance(val, list) and val:
        return val
    return ["*"]


async def domain_error_handler(request: Request, exc: DomainError) -> JSONResponse:
    if exc.status_code >= 500:
        log.error("domain_error", extra={"event": "domain_error", "error": exc.error, "path": request.url.path})
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


def create_app() -> FastAPI:
    configure_logging()

    app = FastAPI(title="Upkeep Marketplace API", version=settings.app_version)

    # Request-ID first so every later log line carries it
    app.add_middleware(RequestIDMiddleware)
    app.add_middleware(StructuredLoggingMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=_cors_origins(),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.add_exception_handler(DomainError, domain_error_handler)

    # outbound clients; tests swap these on app.state
    app.state.payment_gateway = StripeGateway()
    app.state.mailer = ResendEmailClient()

    # Core
    app.include_router(health_router, prefix=API_PREFIX)
    app.include_router(auth_router, prefix=API_PREFIX)

    # Homeowner side
    app.include_router(properties_router, prefix=API_PREFIX)
    app.include_router(maintenance_router, prefix=API_PREFIX)
    app.include_router(notifications_router, prefix=API_PREFIX)

    # Marketplace money flow
    app.include_router(service_requests_router, prefix=API_PREFIX)
    app.include_router(payments_router, prefix=API_PREFIX)

    # Admin
    app.include_router(templates_router, prefix=API_PREFIX)
    app.include_router(admin_config_router, prefix=API_PREFIX)

    return app


app = create_app()
