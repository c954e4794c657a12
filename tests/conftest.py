"""
Shared pytest fixtures: per-test SQLite database, in-memory Redis and an
ASGI client wired to both through dependency overrides.
"""

import os
import sys

# Add the project root to Python path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

# Settings are read at import time, so the test environment goes first
os.environ.update({
    'APP_ENV': 'testing',
    'DATABASE_URL': 'sqlite+aiosqlite:///:memory:',
    'REDIS_URL': '',
    'GOOGLE_CALENDAR_ENABLED': 'false',
    'AUTOMATION_API_KEY': 'test-automation-key',
    'RATE_LIMIT_PER_MINUTE': '100',
    'BOOKING_RETRY_BASE_DELAY': '0',
})

import httpx
import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import create_async_engine
from sqlalchemy.pool import NullPool

from booking_engine.api.deps import get_hold_store, get_oracle, get_rate_limiter
from booking_engine.db.base import init_db
from booking_engine.db.session import engine_options, get_session, get_session_factory, make_session_factory
from booking_engine.main import app
from booking_engine.services.holds import HoldStore
from booking_engine.services.rate_limit import RateLimiter
from booking_engine.services.redis_client import set_redis_client
from tests.factories import seed_org
from tests.mocks.external_services import OracleMock, RedisMock


@pytest_asyncio.fixture
async def engine(tmp_path):
    """File-backed SQLite so concurrent sessions see each other's commits."""
    # NullPool: no connection outlives the event loop that opened it
    url = f"sqlite+aiosqlite:///{tmp_path / 'booking.db'}"
    eng = create_async_engine(url, poolclass=NullPool, **engine_options(url))
    await init_db(bind=eng)
    yield eng
    await eng.dispose()


@pytest.fixture
def session_factory(engine):
    return make_session_factory(engine)


@pytest.fixture(autouse=True)
def redis_mock():
    """Install the in-memory Redis as the shared client for every test."""
    mock = RedisMock()
    set_redis_client(mock)
    yield mock
    set_redis_client(None)


@pytest.fixture
def oracle():
    return OracleMock()


@pytest.fixture
def hold_store(redis_mock):
    return HoldStore(client_factory=lambda: redis_mock)


@pytest_asyncio.fixture
async def org(session_factory):
    """Auckland clinic, Mondays 09:00-17:00, staff-alex, 30 min svc-consult."""
    return await seed_org(session_factory)


@pytest_asyncio.fixture
async def client(session_factory, oracle, hold_store, redis_mock):
    async def _session():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_session_factory] = lambda: session_factory
    app.dependency_overrides[get_session] = _session
    app.dependency_overrides[get_oracle] = lambda: oracle
    app.dependency_overrides[get_hold_store] = lambda: hold_store
    app.dependency_overrides[get_rate_limiter] = lambda: RateLimiter(limit=100, client_factory=lambda: redis_mock)

    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://testserver") as ac:
        yield ac

    app.dependency_overrides.clear()


# Pytest configuration hooks
def pytest_configure(config):
    """Configure pytest with custom markers"""
    config.addinivalue_line("markers", "unit: Pure unit tests with no external dependencies")
    config.addinivalue_line("markers", "integration: Tests that run against the SQLite database")
    config.addinivalue_line("markers", "slow: Long-running tests (> 5 seconds each)")
