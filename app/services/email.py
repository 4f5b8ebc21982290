"""Verification email delivery through the Resend HTTP API.

Delivery is best-effort: failures come back as ``EmailResult(success=False)``
and are never raised, so signup keeps working during a provider outage.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass

import httpx

from app.config import Settings
from app.metrics import email_fail_total

logger = logging.getLogger(__name__)

_SUBJECT = "Verify your email address - AI Background Remover"

_HTML = """\
<!DOCTYPE html>
<html>
<body style="font-family: Arial, sans-serif; line-height: 1.6; color: #333; max-width: 600px; margin: 0 auto; padding: 20px;">
  <h2>Verify your email address</h2>
  <p>Thank you for signing up! Please click the button below to verify your email address and activate your account.</p>
  <p style="text-align: center; margin: 30px 0;">
    <a href="{url}" style="background: #667eea; color: white; padding: 15px 30px; text-decoration: none; border-radius: 8px; font-weight: bold;">Verify Email Address</a>
  </p>
  <p style="color: #666; font-size: 14px;">If the button doesn't work, copy and paste this link into your browser:</p>
  <p style="word-break: break-all; color: #667eea; font-size: 14px;">{url}</p>
  <p style="color: #666; font-size: 14px;">This verification link will expire in {ttl} hours.</p>
</body>
</html>
"""

_TEXT = """\
AI Background Remover - Verify your email address

Thank you for signing up! Please visit the following link to verify your email address:

{url}

If you didn't create an account with us, you can safely ignore this email.
This verification link will expire in {ttl} hours.
"""


@dataclass(frozen=True)
class EmailResult:
    success: bool
    mode: str  # "sent", "simulation" or "failed"
    verification_url: str
    error: str | None = None


class EmailSender:
    def __init__(
        self,
        settings: Settings,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self._api_key = settings.resend_api_key
        self._api_url = settings.resend_api_url.rstrip("/")
        self._sender = settings.email_from
        self._app_url = settings.app_url.rstrip("/")
        self._ttl_h = settings.verification_ttl_h
        self._owns_client = http_client is None
        self._http = http_client or httpx.AsyncClient(timeout=settings.http_timeout_s)

    def verification_url(self, token: str) -> str:
        return f"{self._app_url}/verify?token={token}"

    async def send_verification_email(self, email: str, token: str) -> EmailResult:
        url = self.verification_url(token)
        if not self._api_key:
            logger.info("Email simulation (no RESEND_API_KEY): to=%s url=%s", email, url)
            return EmailResult(success=True, mode="simulation", verification_url=url)

        body = {
            "from": self._sender,
            "to": [email],
            "subject": _SUBJECT,
            "html": _HTML.format(url=url, ttl=self._ttl_h),
            "text": _TEXT.format(url=url, ttl=self._ttl_h),
        }
        try:
            response = await self._http.post(
                f"{self._api_url}/emails",
                json=body,
                headers={"Authorization": f"Bearer {self._api_key}"},
            )
            response.raise_for_status()
        except httpx.HTTPError as exc:
            email_fail_total.inc()
            logger.warning("Failed to send verification email to %s: %s", email, exc)
            return EmailResult(
                success=False,
                mode="failed",
                verification_url=url,
                error=str(exc) or exc.__class__.__name__,
            )
        logger.info("Verification email sent to %s", email)
        return EmailResult(success=True, mode="sent", verification_url=url)

    async def aclose(self) -> None:
        if self._owns_client:
            await self._http.aclose()


__all__ = ["EmailResult", "EmailSender"]
