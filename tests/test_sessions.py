from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import select

from app import db as db_module
from app.errors import ErrorKind, ServiceError
from app.models import UserSession
from app.services.sessions import AuthContext, SessionManager

NOW = datetime(2024, 3, 15, 12, 0, tzinfo=timezone.utc)


def _tokens_for(user_id: int) -> set[str]:
    with db_module.SessionLocal() as db:
        return set(
            db.execute(
                select(UserSession.session_token).where(UserSession.user_id == user_id)
            ).scalars()
        )


@pytest.fixture
def manager(settings, store):
    return SessionManager(settings, store, clock=lambda: NOW)


@pytest.mark.asyncio
async def test_create_session_issues_random_token(manager, make_user):
    user_id = make_user()

    first = await manager.create_session(user_id)
    second = await manager.create_session(user_id)

    assert len(first.token) == 64
    assert first.token != second.token
    assert first.expires_at == NOW + timedelta(days=30)
    assert _tokens_for(user_id) == {first.token, second.token}


@pytest.mark.asyncio
async def test_create_session_purges_only_own_expired_sessions(manager, store, make_user):
    alice = make_user("alice@example.com")
    bob = make_user("bob@example.com")
    store.insert_session(alice, "a" * 64, NOW - timedelta(days=1))
    store.insert_session(alice, "b" * 64, NOW + timedelta(days=1))
    store.insert_session(bob, "c" * 64, NOW - timedelta(days=1))

    issued = await manager.create_session(alice)

    assert _tokens_for(alice) == {"b" * 64, issued.token}
    assert _tokens_for(bob) == {"c" * 64}


@pytest.mark.asyncio
async def test_resolve_session_returns_profile(manager, make_user):
    user_id = make_user(tier="premium")
    issued = await manager.create_session(user_id)

    resolution = await manager.resolve_session(issued.token)

    assert resolution.clear_cookie is False
    assert resolution.user.id == user_id
    assert resolution.user.email == "user@example.com"
    assert resolution.user.is_verified is True
    assert resolution.user.auth == AuthContext(user_id=user_id, subscription_tier="premium")
    assert not hasattr(resolution.user, "password_hash")


@pytest.mark.asyncio
@pytest.mark.parametrize("token", [None, ""])
async def test_resolve_session_empty_token(manager, token):
    resolution = await manager.resolve_session(token)
    assert resolution.user is None
    assert resolution.clear_cookie is False


@pytest.mark.asyncio
async def test_resolve_session_unknown_token_clears_cookie(manager):
    resolution = await manager.resolve_session("missing")
    assert resolution.user is None
    assert resolution.clear_cookie is True


@pytest.mark.asyncio
async def test_resolve_session_rejects_expired(settings, store, make_user):
    user_id = make_user()
    store.insert_session(user_id, "e" * 64, NOW)
    manager = SessionManager(settings, store, clock=lambda: NOW)

    # expires_at == now is already expired
    resolution = await manager.resolve_session("e" * 64)
    assert resolution.user is None
    assert resolution.clear_cookie is True

    earlier = SessionManager(settings, store, clock=lambda: NOW - timedelta(seconds=1))
    assert (await earlier.resolve_session("e" * 64)).user is not None


@pytest.mark.asyncio
async def test_resolve_session_fails_closed_on_storage_error(settings, caplog):
    class _BrokenStore:
        def find_session_by_token(self, token, now):
            raise RuntimeError("db down")

    manager = SessionManager(settings, _BrokenStore())
    with caplog.at_level(logging.ERROR):
        resolution = await manager.resolve_session("token")

    assert resolution.user is None
    assert "Session lookup failed" in caplog.text


@pytest.mark.asyncio
async def test_destroy_session_is_idempotent(manager, make_user):
    user_id = make_user()
    issued = await manager.create_session(user_id)

    first = await manager.destroy_session(issued.token)
    second = await manager.destroy_session(issued.token)
    third = await manager.destroy_session(None)

    assert first.clear_cookie and second.clear_cookie and third.clear_cookie
    assert _tokens_for(user_id) == set()
    assert (await manager.resolve_session(issued.token)).user is None


@pytest.mark.asyncio
async def test_login_checks_password(manager, make_user):
    user_id = make_user(password="correct horse")

    issued = await manager.login("user@example.com", "correct horse")
    assert (await manager.resolve_session(issued.token)).user.id == user_id

    with pytest.raises(ServiceError) as exc:
        await manager.login("user@example.com", "wrong")
    assert exc.value.kind is ErrorKind.UNAUTHENTICATED

    with pytest.raises(ServiceError):
        await manager.login("nobody@example.com", "correct horse")


@pytest.mark.asyncio
async def test_destroy_session_clears_cookie_on_storage_error(settings, caplog):
    class _BrokenStore:
        def delete_session_by_token(self, token):
            raise RuntimeError("db down")

    manager = SessionManager(settings, _BrokenStore())
    with caplog.at_level(logging.ERROR):
        resolution = await manager.destroy_session("token")

    assert resolution.user is None
    assert resolution.clear_cookie is True
    assert "Session delete failed" in caplog.text
