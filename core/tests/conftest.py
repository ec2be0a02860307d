"""Shared fixtures for TenantDesk core tests.

Repository tests run against a file-backed SQLite database in ``tmp_path``
so that separate sessions see each other's committed writes.
"""

from __future__ import annotations

from collections.abc import AsyncGenerator
from pathlib import Path

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker
from tenantdesk_core.state.sqlite_adapter import create_local_tables, get_local_engine
from tenantdesk_core.state.tables import IdentityBase


@pytest_asyncio.fixture()
async def engine(tmp_path: Path) -> AsyncGenerator[AsyncEngine, None]:
    eng = get_local_engine(tmp_path / "state.db")
    await create_local_tables(eng)
    await create_local_tables(eng, IdentityBase.metadata)
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
