"""Root conftest: shared settings, store, cache, framework and HTTP client fixtures.

Invariants:
    - Every test gets a fresh in-memory SQLite store (StaticPool: one shared connection)
    - The cache is a FakeRedis injected through CacheClient, never a real server
    - The Framework is injected into create_app, so the lifespan never connects
    - Rate-limit windows follow a FakeClock, never wall time
"""

import os
from pathlib import Path

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy import text
from sqlalchemy.ext.asyncio import create_async_engine
from sqlalchemy.pool import StaticPool

os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite://")
os.environ.setdefault("CACHE_ENABLED", "false")
os.environ.setdefault("JWT_SECRET", "test-secret-key-with-at-least-32-bytes")

from autoregistry.config import Settings  # noqa: E402
from autoregistry.framework import Framework  # noqa: E402
from autoregistry.infrastructure.cache import CacheClient  # noqa: E402
from autoregistry.infrastructure.database import DataAccess  # noqa: E402
from autoregistry.main import create_app  # noqa: E402
from tests.fakes import FakeClock, FakeRedis  # noqa: E402

FIXTURE_MODULES = Path(__file__).parent / "fixtures" / "modules"

PRODUCTS_DDL = """
CREATE TABLE products (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    sku TEXT NOT NULL UNIQUE,
    name TEXT NOT NULL,
    price REAL DEFAULT 0,
    owner_id INTEGER,
    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
    updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
)
"""


@pytest.fixture
def settings():
    return Settings(
        environment="test",
        database_url="sqlite+aiosqlite://",
        cache_enabled=True,
        jwt_secret="test-secret-key-with-at-least-32-bytes",
        modules_path=str(FIXTURE_MODULES),
        error_warning_threshold=3,
        error_critical_threshold=5,
    )


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def fake_redis():
    return FakeRedis()


@pytest.fixture
def cache(fake_redis):
    return CacheClient(fake_redis, namespace="api")


@pytest.fixture
async def engine():
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.execute(text(PRODUCTS_DDL))
    yield engine
    await engine.dispose()


@pytest.fixture
async def data_access(engine, cache):
    return DataAccess(engine, cache, default_ttl=300, expose_details=True)


@pytest.fixture
async def seed_products(data_access):
    """Two products owned by principal 1 and 2."""
    first = await data_access.insert("products", {"sku": "SKU-1", "name": "Lamp", "price": 10, "owner_id": 1})
    second = await data_access.insert("products", {"sku": "SKU-2", "name": "Desk", "price": 99, "owner_id": 2})
    return [first, second]


@pytest.fixture
def framework(settings, data_access, clock):
    fw = Framework.build(settings, data_access, clock=clock)
    fw.discover_modules()
    return fw


@pytest.fixture
def make_token(framework):
    def _make(user_id=1, roles=(), permissions=(), **kwargs):
        claims = {"id": user_id, "roles": list(roles), "permissions": list(permissions)}
        return framework.verifier.issue(claims, **kwargs)
    return _make


@pytest.fixture
def auth_header(make_token):
    def _header(user_id=1, roles=(), **kwargs):
        return {"Authorization": f"Bearer {make_token(user_id, roles, **kwargs)}"}
    return _header


@pytest.fixture
async def client(settings, framework):
    """HTTP client over the ASGI app, with the test Framework injected."""
    app = create_app(settings, framework)
    async with AsyncClient(
        transport=ASGITransport(app=app), base_url="http://test",
    ) as c:
        yield c
