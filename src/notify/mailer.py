from __future__ import annotations
import os
from dataclasses import dataclass
from typing import Optional
import httpx

RESEND_ENDPOINT = "https://api.resend.com/emails"


@dataclass
class MailResult:
    ok: bool
    reason: Optional[str] = None
    message_id: Optional[str] = None


class ResendMailSender:
    """Transactional email through the Resend HTTP API.

    Never raises for delivery problems; the reason comes back on the result.
    """

    def __init__(
        self,
        *,
        api_key: Optional[str] = None,
        sender: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        self._api_key = api_key
        self._sender = sender
        self._timeout = timeout
        self._transport = transport

    def _settings(self) -> tuple[Optional[str], str, float]:
        api_key = self._api_key or os.getenv("RESEND_API_KEY")
        sender = self._sender or os.getenv("MAIL_FROM", "Ministry Ops <noreply@ministry-ops.local>")
        timeout = self._timeout or float(os.getenv("MAIL_TIMEOUT", "10"))
        return api_key, sender, timeout

    def send(self, to: str, subject: str, html: str) -> MailResult:
        if not to or not subject or not html:
            return MailResult(ok=False, reason="missing_fields: to, subject and html are required")
        api_key, sender, timeout = self._settings()
        if not api_key:
            return MailResult(ok=False, reason="RESEND_API_KEY not set")
        payload = {"from": sender, "to": [to], "subject": subject, "html": html}
        try:
            with httpx.Client(timeout=timeout, transport=self._transport) as client:
                resp = client.post(
                    RESEND_ENDPOINT,
                    json=payload,
                    headers={"Authorization": f"Bearer {api_key}"},
                )
        except httpx.HTTPError as e:
            return MailResult(ok=False, reason=f"resend_call_failed:{e}")
        if resp.status_code >= 300:
            return MailResult(ok=False, reason=f"resend_http_{resp.status_code}:{resp.text[:120]}")
        try:
            data = resp.json()
        except ValueError:
            data = {}
        return MailResult(ok=True, message_id=data.get("id"))
