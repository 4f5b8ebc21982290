"""SQL persistence for users, sessions and usage logs.

Every method opens its own short-lived session and touches a single
statement's worth of rows, so callers never hold a transaction across
components. Methods are synchronous; async callers wrap them with
``asyncio.to_thread``.
"""
from __future__ import annotations

from datetime import datetime, timezone
from typing import NamedTuple

from sqlalchemy import delete, func, select, update

from app import db as db_module
from app.models import UsageLog, User, UserSession


class UserRecord(NamedTuple):
    """User row as seen by the session layer (never carries the hash)."""
    id: int
    email: str
    name: str | None
    subscription_status: str
    is_verified: bool


class AccountRecord(NamedTuple):
    id: int
    email: str
    password_hash: str
    is_verified: bool
    created_at: datetime | None


def _as_utc(value: datetime | str | None) -> datetime | None:
    if isinstance(value, str):
        value = datetime.fromisoformat(value)
    if value is not None and value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value


class SqlStore:
    def find_user_by_email(self, email: str) -> AccountRecord | None:
        with db_module.SessionLocal() as db:
            row = db.execute(
                select(
                    User.id,
                    User.email,
                    User.password_hash,
                    User.is_verified,
                    User.created_at,
                ).where(User.email == email)
            ).first()
        if not row:
            return None
        return AccountRecord(
            id=row[0],
            email=row[1],
            password_hash=row[2],
            is_verified=bool(row[3]),
            created_at=_as_utc(row[4]),
        )

    def get_user(self, user_id: int) -> UserRecord | None:
        with db_module.SessionLocal() as db:
            user = db.get(User, user_id)
            if user is None:
                return None
            return UserRecord(
                id=user.id,
                email=user.email,
                name=user.name,
                subscription_status=user.subscription_status,
                is_verified=bool(user.is_verified),
            )

    def insert_user(
        self,
        *,
        email: str,
        password_hash: str,
        name: str | None = None,
        verification_token: str | None = None,
        subscription_status: str = "free",
    ) -> int:
        with db_module.SessionLocal() as db:
            user = User(
                email=email,
                password_hash=password_hash,
                name=name,
                verification_token=verification_token,
                subscription_status=subscription_status,
            )
            db.add(user)
            db.commit()
            db.refresh(user)
            return user.id

    def set_verification_token(self, email: str, token: str) -> None:
        with db_module.SessionLocal() as db:
            db.execute(
                update(User)
                .where(User.email == email)
                .values(verification_token=token)
            )
            db.commit()

    def mark_verified_by_token(self, token: str) -> int | None:
        """Verify the user holding ``token``; returns its id or None."""
        with db_module.SessionLocal() as db:
            user = db.execute(
                select(User).where(User.verification_token == token)
            ).scalar_one_or_none()
            if user is None:
                return None
            user.is_verified = True
            user.verification_token = None
            db.commit()
            return user.id

    def find_session_by_token(self, token: str, now: datetime) -> UserRecord | None:
        with db_module.SessionLocal() as db:
            row = db.execute(
                select(
                    User.id,
                    User.email,
                    User.name,
                    User.subscription_status,
                    User.is_verified,
                )
                .join(UserSession, UserSession.user_id == User.id)
                .where(
                    UserSession.session_token == token,
                    UserSession.expires_at > now,
                )
            ).first()
        if not row:
            return None
        return UserRecord(
            id=row[0],
            email=row[1],
            name=row[2],
            subscription_status=row[3],
            is_verified=bool(row[4]),
        )

    def insert_session(self, user_id: int, token: str, expires_at: datetime) -> None:
        with db_module.SessionLocal() as db:
            db.add(
                UserSession(
                    user_id=user_id,
                    session_token=token,
                    expires_at=expires_at,
                )
            )
            db.commit()

    def delete_sessions_expired_for(self, user_id: int, now: datetime) -> int:
        with db_module.SessionLocal() as db:
            result = db.execute(
                delete(UserSession).where(
                    UserSession.user_id == user_id,
                    UserSession.expires_at <= now,
                )
            )
            db.commit()
            return result.rowcount or 0

    def delete_session_by_token(self, token: str) -> int:
        with db_module.SessionLocal() as db:
            result = db.execute(
                delete(UserSession).where(UserSession.session_token == token)
            )
            db.commit()
            return result.rowcount or 0

    def count_usage_events(
        self,
        user_id: int,
        action: str,
        since: datetime,
        until: datetime | None = None,
    ) -> int:
        stmt = select(func.count(UsageLog.id)).where(
            UsageLog.user_id == user_id,
            UsageLog.action == action,
            UsageLog.created_at >= since,
        )
        if until is not None:
            stmt = stmt.where(UsageLog.created_at < until)
        with db_module.SessionLocal() as db:
            return int(db.execute(stmt).scalar_one())

    def insert_usage_event(
        self, user_id: int, action: str, occurred_at: datetime | None = None
    ) -> None:
        with db_module.SessionLocal() as db:
            db.add(
                UsageLog(
                    user_id=user_id,
                    action=action,
                    created_at=occurred_at or datetime.now(timezone.utc),
                )
            )
            db.commit()


__all__ = ["SqlStore", "UserRecord", "AccountRecord"]
