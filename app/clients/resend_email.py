from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Optional, Protocol

import httpx

from ..config import settings

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class EmailResult:
    success: bool
    message_id: Optional[str] = None
    error: Optional[str] = None


class Mailer(Protocol):
    def send_email(self, *, to: str, subject: str, text: str, html: Optional[str] = None) -> EmailResult: ...


class ResendEmailClient:
    def __init__(
        self,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        sender: Optional[str] = None,
        timeout: float = 15.0,
    ) -> None:
        self.api_key = api_key if api_key is not None else settings.resend_api_key
        self.base = (base_url or settings.resend_base_url).rstrip("/")
        self.sender = sender or settings.email_from
        self.timeout = timeout

    def enabled(self) -> bool:
        return bool(self.api_key)

    def _headers(self) -> dict[str, str]:
        return {"Authorization": f"Bearer {self.api_key}", "Content-Type": "application/json"}

    def send_email(self, *, to: str, subject: str, text: str, html: Optional[str] = None) -> EmailResult:
        """
        Sends one message. Delivery failures come back as a failed result
        (the caller counts them); they never raise.
        """
        if not self.api_key:
            log.warning("email_disabled_no_api_key", extra={"event": "email_skipped"})
            return EmailResult(False, error="resend_api_key not set")

        body: dict[str, Any] = {"from": self.sender, "to": [to], "subject": subject, "text": text}
        if html:
            body["html"] = html

        try:
            with httpx.Client(timeout=self.timeout) as client:
                r = client.post(f"{self.base}/emails", headers=self._headers(), json=body)
                r.raise_for_status()
                data = r.json()
        except httpx.HTTPError as e:
            log.error("email_send_failed", extra={"event": "email_failed", "error": str(e)})
            return EmailResult(False, error=str(e))

        return EmailResult(True, message_id=str(data.get("id")) if isinstance(data, dict) else None)
