"""Shared pytest fixtures for the affiliate API tests.

Settings are read once at import time, so the test environment is set up
here before anything under ``app`` is imported. Every test that touches the
store gets its own temporary SQLite database.
"""

import os
import tempfile

_TEST_DIR = tempfile.mkdtemp(prefix="examprep-tests-")

os.environ["ENVIRONMENT"] = "test"
os.environ.setdefault("DATABASE_URL", f"sqlite:///{_TEST_DIR}/app.db")
os.environ.setdefault("SECRET_KEY", "test-secret-key-not-for-production")
os.environ.setdefault("PAYMENT_WEBHOOK_SECRET", "test-webhook-secret")
os.environ["ALLOWED_HOSTS"] = '["testserver", "localhost", "127.0.0.1"]'
os.environ["RATE_LIMIT_STORAGE"] = "memory"

from typing import Dict, Optional

import httpx
import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

from app.core.config import settings
from app.core.database import get_db
from app.core.rate_limit import RateLimiterRegistry
from app.core.security import SecurityUtils
from app.models import Base


class FakeClock:
    """Controllable epoch-millisecond clock."""

    def __init__(self, now: int = 1_700_000_000_000):
        self.now = now

    def __call__(self) -> int:
        return self.now

    def advance(self, ms: int) -> None:
        self.now += ms


@pytest.fixture
def clock() -> FakeClock:
    """Provide a fake clock starting at a fixed instant."""
    return FakeClock()


@pytest_asyncio.fixture
async def engine():
    """Create a temporary SQLite database with all tables.

    The database file is removed after the test completes.
    """
    fd, db_path = tempfile.mkstemp(suffix=".db", dir=_TEST_DIR)
    os.close(fd)

    engine = create_async_engine(f"sqlite+aiosqlite:///{db_path}", poolclass=NullPool)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    try:
        yield engine
    finally:
        await engine.dispose()
        if os.path.exists(db_path):
            os.unlink(db_path)


@pytest.fixture
def session_factory(engine):
    """Session factory bound to the temporary database."""
    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


@pytest_asyncio.fixture
async def db_session(session_factory):
    """Provide a real session on the temporary database."""
    async with session_factory() as session:
        yield session


@pytest.fixture
def app(session_factory):
    """FastAPI app wired to the temporary database and a fresh rate limiter."""
    from app.main import app as fastapi_app

    async def override_get_db():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    fastapi_app.dependency_overrides[get_db] = override_get_db
    fastapi_app.state.rate_limiters = RateLimiterRegistry.from_settings(settings)

    yield fastapi_app

    fastapi_app.dependency_overrides.clear()


@pytest_asyncio.fixture
async def client(app):
    """HTTP client talking to the app in-process."""
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://testserver") as http_client:
        yield http_client


def make_token(user_id: str, role: Optional[str] = None) -> str:
    """Issue an access token for a test user."""
    claims = {"sub": user_id}
    if role:
        claims["role"] = role
    return SecurityUtils.create_access_token(claims)


def auth_headers(user_id: str, role: Optional[str] = None) -> Dict[str, str]:
    """Authorization header for a test user.

    Each user gets their own User-Agent so distinct test users do not
    share a device fingerprint.
    """
    return {
        "Authorization": f"Bearer {make_token(user_id, role)}",
        "User-Agent": f"examprep-tests/{user_id}",
    }
