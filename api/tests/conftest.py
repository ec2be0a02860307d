"""Shared fixtures for TenantDesk API tests.

Every test gets its own pair of file-backed SQLite databases in ``tmp_path``:
one for the service state and one for the local identity store, mirroring
the production split.  Router tests drive the real application through
httpx's ``ASGITransport``; the lifespan is not run, so the fixtures install
the engine, identity store and event bus directly.
"""

from __future__ import annotations

from collections.abc import AsyncGenerator
from pathlib import Path
from typing import Any

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker
from tenantdesk_core.state.sqlite_adapter import create_local_tables, get_local_engine
from tenantdesk_core.state.tables import IdentityBase

from tenantdesk_api import dependencies
from tenantdesk_api.config import APISettings
from tenantdesk_api.identity import LocalIdentityStore
from tenantdesk_api.main import create_app
from tenantdesk_api.services import event_bus as event_bus_module
from tenantdesk_api.services.event_bus import EventBus

_TEST_SECRET = "test-secret-key-for-tenantdesk-tests"

# ---------------------------------------------------------------------------
# Settings and storage
# ---------------------------------------------------------------------------


@pytest.fixture()
def test_settings(tmp_path: Path) -> APISettings:
    """Return a settings object suitable for testing."""
    return APISettings(
        debug=True,
        database_url=f"sqlite+aiosqlite:///{tmp_path / 'state.db'}",
        identity_database_url=f"sqlite+aiosqlite:///{tmp_path / 'identity.db'}",
        platform_env="dev",
        session_secret=_TEST_SECRET,
        session_bootstrap_timeout=2.0,
        identity_max_retries=1,
        identity_retry_base_delay=0.01,
        identity_retry_max_delay=0.02,
        cors_origins=["http://localhost:3000"],
    )


@pytest_asyncio.fixture()
async def engine(tmp_path: Path) -> AsyncGenerator[AsyncEngine, None]:
    eng = get_local_engine(tmp_path / "state.db")
    await create_local_tables(eng)
    yield eng
    await eng.dispose()


@pytest.fixture()
def session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine, expire_on_commit=False)


@pytest_asyncio.fixture()
async def session(session_factory: async_sessionmaker[AsyncSession]) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as s:
        yield s
        await s.rollback()


@pytest.fixture()
def bus() -> EventBus:
    """A fresh event bus installed as the process-wide instance."""
    fresh = EventBus()
    event_bus_module._event_bus = fresh
    return fresh


@pytest_asyncio.fixture()
async def identity_store(tmp_path: Path, bus: EventBus) -> AsyncGenerator[LocalIdentityStore, None]:
    eng = get_local_engine(tmp_path / "identity.db")
    await create_local_tables(eng, IdentityBase.metadata)
    store = LocalIdentityStore(eng, secret=_TEST_SECRET, session_ttl_seconds=3600, event_bus=bus)
    yield store
    await eng.dispose()


# ---------------------------------------------------------------------------
# Application client
# ---------------------------------------------------------------------------


@pytest_asyncio.fixture()
async def app(
    test_settings: APISettings,
    engine: AsyncEngine,
    identity_store: LocalIdentityStore,
    bus: EventBus,
) -> AsyncGenerator[Any, None]:
    application = create_app(test_settings)
    dependencies.use_engine(engine)
    dependencies.use_identity_store(identity_store)
    yield application
    await dependencies.dispose_identity_store()
    await dependencies.dispose_engine()


@pytest_asyncio.fixture()
async def client(app: Any) -> AsyncGenerator[AsyncClient, None]:
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

