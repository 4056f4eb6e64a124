"""Shared test fixtures for all test groups.

Settings are read once and cached, so the test environment is pinned here
before anything imports showup.
"""

import os

os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("JWT_SECRET", "test-jwt-secret-not-for-production")
os.environ.setdefault("BCRYPT_ROUNDS", "4")
os.environ.setdefault("SKIP_BLOCKCHAIN_IN_TEST", "true")
os.environ["ANTHROPIC_API_KEY"] = ""
os.environ["STRIPE_WEBHOOK_SECRET"] = ""
os.environ["STRIPE_WEBHOOK_INSECURE"] = "false"

from contextlib import asynccontextmanager

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from showup.db.base import Base


@pytest.fixture
def db_url(tmp_path) -> str:
    """Test database URL. SQLite file per test unless TEST_DATABASE_URL is set."""
    return os.getenv("TEST_DATABASE_URL", f"sqlite+aiosqlite:///{tmp_path / 'showup_test.db'}")


@pytest.fixture
async def engine(db_url) -> AsyncEngine:
    """Create the test engine with a fresh schema.

    Also sets the global session factory in the pytest-asyncio event loop so
    services constructed with get_session_factory() work in async tests.
    TestClient tests (api_client) reset the global in their own loop.
    """
    import showup.db.base as db_mod
    import showup.db.models  # noqa: F401

    engine = create_async_engine(db_url, echo=False)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)

    db_mod._engine = engine
    db_mod._session_factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    db_mod._engine = None
    db_mod._session_factory = None
    await engine.dispose()


@pytest.fixture
async def session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Session factory bound to the pytest-asyncio loop's engine."""
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


# ── API client ──────────────────────────────────────────────────────

DEFAULT_PASSWORD = "Valid1Pass"


@pytest.fixture
def fake_escrow():
    from showup.integrations.escrow import FakeEscrowClient

    return FakeEscrowClient()


@pytest.fixture
def api_client(engine, db_url, fake_escrow):
    """FastAPI test client with test database.

    Initializes the global database via init_db inside the TestClient's
    own event loop so route handlers can use get_session_factory().
    The engine fixture ensures tables exist before this runs.
    """
    from fastapi.middleware.cors import CORSMiddleware

    from showup.api.routes import api_router
    from showup.core.config import get_settings
    from showup.db import close_db, init_db
    from showup.integrations.escrow import get_escrow_client
    from showup.main import register_exception_handlers
    from showup.middleware.correlation import setup_correlation_middleware

    @asynccontextmanager
    async def test_lifespan(app: FastAPI):
        """Test lifespan - initialize DB in TestClient's event loop."""
        import showup.db.base as db_mod

        db_mod._engine = None
        db_mod._session_factory = None
        await init_db(db_url)
        yield
        await close_db()

    settings = get_settings()

    app = FastAPI(title=settings.app_name, description="Showup - Test Client", lifespan=test_lifespan)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["http://localhost:3000"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    setup_correlation_middleware(app)
    register_exception_handlers(app)
    app.include_router(api_router, prefix="/api")
    app.dependency_overrides[get_escrow_client] = lambda: fake_escrow

    with TestClient(app) as client:
        yield client


def bearer(body: dict) -> dict:
    return {"Authorization": f"Bearer {body['access_token']}"}


@pytest.fixture
def register_user(api_client: TestClient):
    """Factory: register a user through the API, return (auth body, headers)."""

    def _register(email: str = "founder@example.com", password: str = DEFAULT_PASSWORD) -> tuple[dict, dict]:
        response = api_client.post("/api/auth/register", json={"email": email, "password": password})
        assert response.status_code == 201, response.text
        body = response.json()
        return body, bearer(body)

    return _register


@pytest.fixture
def auth_headers(register_user) -> dict:
    """Authorization headers for a freshly registered user."""
    _, headers = register_user()
    return headers


@pytest.fixture
def onboarding_session(api_client: TestClient, auth_headers: dict) -> dict:
    """The registered user's active onboarding session."""
    response = api_client.get("/api/onboarding/session", headers=auth_headers)
    assert response.status_code == 200, response.text
    return response.json()["session"]
