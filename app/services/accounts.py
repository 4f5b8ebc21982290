"""Signup and email verification flows."""

from __future__ import annotations

import asyncio
import logging
import re
import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable

from sqlalchemy.exc import IntegrityError

from app.config import Settings
from app.errors import ErrorKind, ServiceError
from app.services.credentials import hash_password
from app.services.email import EmailResult, EmailSender
from app.services.store import SqlStore

logger = logging.getLogger(__name__)

_EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")


def _now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class VerificationOutcome:
    email_sent: bool
    email_mode: str
    verification_url: str | None = None
    email_error: str | None = None
    user_id: int | None = None


class AccountService:
    def __init__(
        self,
        settings: Settings,
        store: SqlStore,
        mailer: EmailSender,
        *,
        clock: Callable[[], datetime] = _now,
    ) -> None:
        self._store = store
        self._mailer = mailer
        self._clock = clock
        self._rounds = settings.bcrypt_rounds
        self._expose_link = settings.is_development
        self._verification_ttl = timedelta(hours=settings.verification_ttl_h)

    def _outcome(self, result: EmailResult, user_id: int | None = None) -> VerificationOutcome:
        # the direct link is the fallback when delivery fails
        show_link = self._expose_link or not result.success
        return VerificationOutcome(
            email_sent=result.success,
            email_mode=result.mode,
            verification_url=result.verification_url if show_link else None,
            email_error=result.error,
            user_id=user_id,
        )

    async def signup(self, email: str, password: str, name: str) -> VerificationOutcome:
        if not email or not password or not name:
            raise ServiceError(ErrorKind.INVALID_INPUT, "All fields are required")
        if not _EMAIL_RE.match(email):
            raise ServiceError(ErrorKind.INVALID_INPUT, "Invalid email format")
        if await asyncio.to_thread(self._store.find_user_by_email, email):
            raise ServiceError(ErrorKind.INVALID_INPUT, "User already exists")

        password_hash = await asyncio.to_thread(hash_password, password, self._rounds)
        token = secrets.token_hex(32)
        try:
            user_id = await asyncio.to_thread(
                lambda: self._store.insert_user(
                    email=email,
                    password_hash=password_hash,
                    name=name,
                    verification_token=token,
                )
            )
        except IntegrityError as exc:
            # lost a race with a concurrent signup for the same address
            raise ServiceError(ErrorKind.INVALID_INPUT, "User already exists") from exc
        logger.info("Created user %s", user_id)

        result = await self._mailer.send_verification_email(email, token)
        return self._outcome(result, user_id=user_id)

    async def resend_verification(self, email: str) -> VerificationOutcome:
        if not email:
            raise ServiceError(ErrorKind.INVALID_INPUT, "Email is required")
        account = await asyncio.to_thread(self._store.find_user_by_email, email)
        if account is None:
            raise ServiceError(ErrorKind.NOT_FOUND, "User not found")
        if account.is_verified:
            raise ServiceError(ErrorKind.INVALID_INPUT, "Email is already verified")
        if account.created_at and self._clock() - account.created_at > self._verification_ttl:
            raise ServiceError(
                ErrorKind.INVALID_INPUT,
                "Verification link expired. Please create a new account.",
            )

        token = secrets.token_hex(32)
        await asyncio.to_thread(self._store.set_verification_token, email, token)
        result = await self._mailer.send_verification_email(email, token)
        return self._outcome(result, user_id=account.id)

    async def verify_email(self, token: str | None) -> int:
        if not token:
            raise ServiceError(ErrorKind.INVALID_INPUT, "No verification token provided")
        user_id = await asyncio.to_thread(self._store.mark_verified_by_token, token)
        if user_id is None:
            raise ServiceError(ErrorKind.INVALID_INPUT, "Invalid or expired verification token")
        logger.info("Verified email for user %s", user_id)
        return user_id


__all__ = ["AccountService", "VerificationOutcome"]
