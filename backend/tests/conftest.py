import os
import shutil
import warnings

import pytest
from sqlalchemy import create_engine

# Set environment variables BEFORE importing app modules
os.environ["RATE_LIMIT_ENABLED"] = "false"
os.environ["POSTGRES_DSN"] = "sqlite+aiosqlite:///file:giftcircle_tests?mode=memory&cache=shared&uri=true"
os.environ["JWT_SECRET_KEY"] = "test-secret-key-32-chars-minimum!!"
os.environ["MEDIA_ROOT"] = "uploads-test"
os.environ["ENVIRONMENT"] = "local"

warnings.filterwarnings("ignore", category=DeprecationWarning)

from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine

from giftcircle.api.routes import ws as ws_routes
from giftcircle.core.config import settings
from giftcircle.core.rate_limit import limiter
from giftcircle.core.security import create_access_token
from giftcircle.db.session import Base, enable_sqlite_foreign_keys, get_db
from giftcircle.main import app
from giftcircle.models import models as models_module
from giftcircle.models.models import Profile
from giftcircle.realtime.manager import manager


def pytest_configure(config):
    warnings.filterwarnings("ignore", category=DeprecationWarning)


def pytest_sessionfinish(session, exitstatus):
    shutil.rmtree(os.path.join(os.path.dirname(__file__), "..", "uploads-test"), ignore_errors=True)


@pytest.fixture(scope="session", autouse=True)
def disable_rate_limiting():
    """Disable rate limiting for all tests."""
    original = settings.rate_limit_enabled
    settings.rate_limit_enabled = False
    yield
    settings.rate_limit_enabled = original


@pytest.fixture(autouse=True)
def clean_realtime_and_limits():
    limiter.reset()
    manager._connections.clear()
    yield
    limiter.reset()
    manager._connections.clear()


def _sqlite_file(tmp_path, name: str) -> str:
    db_path = tmp_path / name
    _ = models_module
    sync_engine = create_engine(f"sqlite:///{db_path}")
    Base.metadata.create_all(sync_engine)
    sync_engine.dispose()
    return f"sqlite+aiosqlite:///{db_path}"


@pytest.fixture(autouse=True)
def sync_db_override(tmp_path, monkeypatch):
    engine = create_async_engine(_sqlite_file(tmp_path, "api-test.db"))
    enable_sqlite_foreign_keys(engine)
    async_session = async_sessionmaker(bind=engine, expire_on_commit=False, autoflush=False)

    async def override_get_db():
        async with async_session() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    monkeypatch.setattr(ws_routes, "async_session_factory", async_session)
    yield
    app.dependency_overrides.clear()
    engine.sync_engine.dispose()


@pytest.fixture
async def db_session(tmp_path):
    """Session on a private sqlite file for service-level tests."""
    engine = create_async_engine(_sqlite_file(tmp_path, "service-test.db"))
    enable_sqlite_foreign_keys(engine)
    async_session = async_sessionmaker(bind=engine, expire_on_commit=False, autoflush=False)
    async with async_session() as session:
        yield session
    await engine.dispose()


@pytest.fixture
def make_profile(db_session):
    """Factory inserting a profile row; returns its user_id."""
    counter = {"n": 0}

    async def _make(user_id: str | None = None, username: str | None = None, **fields) -> str:
        counter["n"] += 1
        user_id = user_id or f"acct-{counter['n']}"
        db_session.add(
            Profile(
                user_id=user_id,
                username=username or f"user{counter['n']:03d}",
                display_name=fields.pop("display_name", f"User {counter['n']}"),
                **fields,
            )
        )
        await db_session.commit()
        return user_id

    return _make


@pytest.fixture
def auth_headers():
    """Bearer headers as issued by the identity provider for an account id."""

    def _headers(user_id: str) -> dict[str, str]:
        return {"Authorization": f"Bearer {create_access_token(user_id)}"}

    return _headers


@pytest.fixture
def test_client():
    from fastapi.testclient import TestClient

    with TestClient(app) as client:
        yield client
