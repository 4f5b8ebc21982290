import os
from contextlib import redirect_stderr, redirect_stdout
from io import StringIO
from pathlib import Path

import pytest
from alembic import command
from alembic.config import Config

# Ensure tests run against SQLite when DATABASE_URL is not defined
os.environ.setdefault("DATABASE_URL", "sqlite:////tmp/bgremover_test.db")
os.environ.setdefault("NODE_ENV", "test")

from fastapi.testclient import TestClient
from sqlalchemy import delete

from app import db as db_module
from app.main import app
from app.config import Settings
from app.db import init_db
from app.dependencies import Services
from app.models import UsageLog, User, UserSession
from app.services.credentials import hash_password
from app.services.store import SqlStore
from tests.utils.fakes import FakePredictionClient


@pytest.fixture(scope="session", autouse=True)
def apply_migrations():
    """Apply Alembic migrations before running tests."""
    cfg_path = Path(__file__).resolve().parent.parent / "alembic.ini"
    config = Config(str(cfg_path))
    stdout_buf, stderr_buf = StringIO(), StringIO()
    try:
        with redirect_stdout(stdout_buf), redirect_stderr(stderr_buf):
            command.upgrade(config, "head")
    except Exception as exc:
        print("Alembic upgrade failed:", exc)
        print("stdout:\n", stdout_buf.getvalue())
        print("stderr:\n", stderr_buf.getvalue())
        raise
    init_db(Settings())


@pytest.fixture(scope="session", autouse=True)
def remove_test_db():
    """Remove temporary SQLite database after tests finish."""
    yield
    db_url = os.environ.get("DATABASE_URL")
    if db_url and db_url.startswith("sqlite:///"):
        db_path = Path(db_url.replace("sqlite:///", ""))
        if db_path.exists():
            db_path.unlink()


@pytest.fixture(autouse=True)
def clean_tables(apply_migrations):
    yield
    with db_module.SessionLocal() as db:
        db.execute(delete(UsageLog))
        db.execute(delete(UserSession))
        db.execute(delete(User))
        db.commit()


@pytest.fixture
def settings():
    return Settings(
        environment="test",
        replicate_api_token="r8_test",
        bcrypt_rounds=4,
        poll_interval_s=0.0,
    )


@pytest.fixture
def store():
    return SqlStore()


@pytest.fixture
def make_user(store, settings):
    def _make(
        email: str = "user@example.com",
        *,
        password: str = "secret-pass",
        tier: str = "free",
        verified: bool = True,
    ) -> int:
        user_id = store.insert_user(
            email=email,
            password_hash=hash_password(password, settings.bcrypt_rounds),
            name="Test User",
            subscription_status=tier,
        )
        if verified:
            with db_module.SessionLocal() as db:
                db.get(User, user_id).is_verified = True
                db.commit()
        return user_id

    return _make


@pytest.fixture
def fake_prediction():
    return FakePredictionClient()


@pytest.fixture
def client(settings, store, fake_prediction):
    """Yields a TestClient wired to the fake prediction service."""
    app.state.services = Services.build(
        settings, store=store, prediction=fake_prediction
    )
    try:
        with TestClient(app) as client:
            yield client
    finally:
        del app.state.services
