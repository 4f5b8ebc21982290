"""Session-token lifecycle: issue, resolve and revoke logins."""

from __future__ import annotations

import asyncio
import logging
import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable

from app.config import Settings
from app.errors import ErrorKind, ServiceError
from app.metrics import session_lookup_errors_total
from app.services.credentials import verify_password
from app.services.store import SqlStore, UserRecord

logger = logging.getLogger(__name__)

# 32 random bytes, hex encoded
TOKEN_BYTES = 32


def _now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class AuthContext:
    """The only user facts authorization decisions may depend on."""

    user_id: int
    subscription_tier: str


@dataclass(frozen=True)
class UserProfile:
    id: int
    email: str
    name: str | None
    subscription_tier: str
    is_verified: bool

    @property
    def auth(self) -> AuthContext:
        return AuthContext(user_id=self.id, subscription_tier=self.subscription_tier)

    @classmethod
    def from_record(cls, record: UserRecord) -> "UserProfile":
        return cls(
            id=record.id,
            email=record.email,
            name=record.name,
            subscription_tier=record.subscription_status,
            is_verified=record.is_verified,
        )


@dataclass(frozen=True)
class IssuedSession:
    token: str
    expires_at: datetime


@dataclass(frozen=True)
class SessionResolution:
    user: UserProfile | None
    # the caller should delete the client-held cookie
    clear_cookie: bool = False


class SessionManager:
    def __init__(
        self,
        settings: Settings,
        store: SqlStore,
        *,
        clock: Callable[[], datetime] = _now,
    ) -> None:
        self._ttl = timedelta(days=settings.session_ttl_days)
        self._store = store
        self._clock = clock

    async def create_session(self, user_id: int) -> IssuedSession:
        token = secrets.token_hex(TOKEN_BYTES)
        now = self._clock()
        expires_at = now + self._ttl

        removed = await asyncio.to_thread(
            self._store.delete_sessions_expired_for, user_id, now
        )
        if removed:
            logger.info("Removed %s expired sessions for user %s", removed, user_id)
        await asyncio.to_thread(self._store.insert_session, user_id, token, expires_at)
        return IssuedSession(token=token, expires_at=expires_at)

    async def resolve_session(self, token: str | None) -> SessionResolution:
        """Look up the user behind ``token``.

        Never raises: storage failures are logged and treated as a logged-out
        caller.
        """
        if not token:
            return SessionResolution(user=None)
        try:
            record = await asyncio.to_thread(
                self._store.find_session_by_token, token, self._clock()
            )
        except Exception:
            session_lookup_errors_total.inc()
            logger.exception("Session lookup failed")
            return SessionResolution(user=None)
        if record is None:
            return SessionResolution(user=None, clear_cookie=True)
        return SessionResolution(user=UserProfile.from_record(record))

    async def destroy_session(self, token: str | None) -> SessionResolution:
        if token:
            try:
                await asyncio.to_thread(self._store.delete_session_by_token, token)
            except Exception:
                logger.exception("Session delete failed")
        return SessionResolution(user=None, clear_cookie=True)

    async def login(self, email: str, password: str) -> IssuedSession:
        account = await asyncio.to_thread(self._store.find_user_by_email, email)
        valid = account is not None and await asyncio.to_thread(
            verify_password, password, account.password_hash
        )
        if not valid:
            raise ServiceError(ErrorKind.UNAUTHENTICATED, "Invalid email or password")
        return await self.create_session(account.id)


__all__ = [
    "AuthContext",
    "UserProfile",
    "IssuedSession",
    "SessionResolution",
    "SessionManager",
]
