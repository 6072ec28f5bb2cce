import uuid
from datetime import datetime, timedelta, timezone

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from statuspage.core.database import ApiKey, Base, StatusApp, StatusComponent, StatusPlatform
from statuspage.services.auth import display_prefix, generate_api_key, hash_api_key


class FakeClock:
    """Settable time source for services that take a ``clock``."""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now


@pytest.fixture
def clock():
    return FakeClock(datetime(2026, 3, 15, 12, 0, tzinfo=timezone.utc))


@pytest_asyncio.fixture
async def db_engine():
    """In-memory SQLite engine for tests."""
    engine = create_async_engine("sqlite+aiosqlite://", echo=False)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest_asyncio.fixture
async def file_engine(tmp_path):
    """File-backed SQLite engine; sessions get separate connections, unlike in-memory."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'status.db'}", echo=False)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    return async_sessionmaker(db_engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def db_session(session_factory):
    """Async session bound to the in-memory engine."""
    async with session_factory() as session:
        yield session


@pytest.fixture
def make_entity(session_factory):
    """Insert a platform, app or component row and return it."""

    async def _make(model, **fields):
        fields.setdefault("id", str(uuid.uuid4()))
        fields.setdefault("name", f"{model.__name__.removeprefix('Status').lower()}-{fields['id'][:8]}")
        row = model(**fields)
        async with session_factory() as session:
            session.add(row)
            await session.commit()
        return row

    return _make


@pytest_asyncio.fixture
async def sample_tree(make_entity):
    """Platform P with app A, which has components C1 and C2."""
    platform = await make_entity(StatusPlatform, id="p1", name="Platform")
    app = await make_entity(StatusApp, id="a1", name="Checkout", platform_id=platform.id)
    c1 = await make_entity(StatusComponent, id="c1", name="API", app_id=app.id, check_inherit_from_app=False)
    c2 = await make_entity(StatusComponent, id="c2", name="Worker", app_id=app.id, check_inherit_from_app=False)
    return platform, app, c1, c2


async def _create_key(session_factory, scope: str, label: str) -> str:
    raw_key = generate_api_key()
    async with session_factory() as session:
        session.add(
            ApiKey(
                key_hash=hash_api_key(raw_key),
                key_prefix=display_prefix(raw_key),
                label=label,
                scope=scope,
                is_active=True,
            )
        )
        await session.commit()
    return raw_key


@pytest_asyncio.fixture
async def test_api_key(db_session):
    """Create a test API key and return (raw_key, key_row)."""
    raw_key = generate_api_key()
    key_row = ApiKey(
        key_hash=hash_api_key(raw_key),
        key_prefix=display_prefix(raw_key),
        label="test-key",
        scope="admin",
        is_active=True,
    )
    db_session.add(key_row)
    await db_session.commit()
    await db_session.refresh(key_row)
    return raw_key, key_row


@pytest_asyncio.fixture
async def upstream_client():
    """HTTP client routed in-process to the fake monitored service."""
    from tests.mocks.fake_upstream import app as upstream_app
    from tests.mocks.fake_upstream import state

    state["healthy"] = True
    client = AsyncClient(transport=ASGITransport(app=upstream_app), base_url="http://upstream")
    yield client
    await client.aclose()


@pytest_asyncio.fixture
async def app_with_db(db_engine, upstream_client):
    """FastAPI app wired to the in-memory test database and the fake upstream."""
    import statuspage.core.database as db_module
    import statuspage.core.middleware as mw_module
    from statuspage.services.health.aggregator import StatusAggregator
    from statuspage.services.health.probe import ProbeExecutor
    from statuspage.services.health.scheduler import HealthCheckScheduler
    from statuspage.services.incidents import AutomatedIncidentNotifier
    from statuspage.services.uptime_recorder import UptimeRecorder

    original_engine = db_module.engine
    original_session = db_module.async_session
    original_mw_session = mw_module.async_session

    test_session_factory = async_sessionmaker(db_engine, class_=AsyncSession, expire_on_commit=False)
    db_module.engine = db_engine
    db_module.async_session = test_session_factory
    mw_module.async_session = test_session_factory

    from statuspage.main import app

    # Lifespan does not run under ASGITransport, so wire state by hand
    scheduler = HealthCheckScheduler(
        executor=ProbeExecutor(http_client=upstream_client),
        aggregator=StatusAggregator(notifier=AutomatedIncidentNotifier()),
    )
    app.state.scheduler = scheduler
    app.state.uptime_recorder = UptimeRecorder(policy="fixed", public_only=True)

    yield app

    await scheduler.wait_idle()
    db_module.engine = original_engine
    db_module.async_session = original_session
    mw_module.async_session = original_mw_session


@pytest_asyncio.fixture
async def auth_client(app_with_db, session_factory):
    """Async HTTP client authenticated with an admin key."""
    raw_key = await _create_key(session_factory, "admin", "integration-admin")
    transport = ASGITransport(app=app_with_db)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        client.headers["Authorization"] = f"Bearer {raw_key}"
        yield client


@pytest_asyncio.fixture
async def user_client(app_with_db, session_factory):
    """Async HTTP client authenticated with a user-scope key."""
    raw_key = await _create_key(session_factory, "user", "integration-user")
    transport = ASGITransport(app=app_with_db)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        client.headers["Authorization"] = f"Bearer {raw_key}"
        yield client


@pytest_asyncio.fixture
async def anon_client(app_with_db):
    """Unauthenticated async HTTP client."""
    transport = ASGITransport(app=app_with_db)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client
