"""SQLite adapter for local TenantDesk operation and tests.

Provides an async SQLAlchemy engine backed by ``aiosqlite`` that uses the
same ORM table definitions as the production PostgreSQL backend.

Key differences from the PostgreSQL backend:

* Advisory locks are no-ops; SQLite serialises writers with a single
  database-level lock, which is what makes the conditional inserts atomic.
* Tables are created on startup.
* JSONB columns fall back to SQLite's JSON (stored as TEXT).
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

from sqlalchemy import MetaData, event
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine

logger = logging.getLogger(__name__)

# Seconds a writer waits on the database lock before failing.
_BUSY_TIMEOUT_SECONDS = 15.0


def get_local_engine(
    db_path: Path | str = ".tenantdesk/state.db",
) -> AsyncEngine:
    """Create an async SQLAlchemy engine backed by SQLite via aiosqlite.

    Parameters
    ----------
    db_path:
        Path to the SQLite database file.  Parent directories are
        created automatically.  Use ``:memory:`` for ephemeral
        in-memory databases.
    """
    db_path = Path(db_path) if db_path != ":memory:" else db_path

    if isinstance(db_path, Path):
        db_path.parent.mkdir(parents=True, exist_ok=True)
        url = f"sqlite+aiosqlite:///{db_path}"
    else:
        url = "sqlite+aiosqlite:///:memory:"

    engine = create_async_engine(
        url,
        echo=False,
        connect_args={"check_same_thread": False, "timeout": _BUSY_TIMEOUT_SECONDS},
    )

    # Hand transaction control to SQLAlchemy (the driver otherwise defers BEGIN
    # until the first DML statement, which breaks SAVEPOINT) and enable WAL
    # mode and foreign keys for every connection.
    @event.listens_for(engine.sync_engine, "connect")
    def _set_sqlite_pragmas(dbapi_conn: object, _: object) -> None:
        dbapi_conn.isolation_level = None  # type: ignore[attr-defined]
        cursor = dbapi_conn.cursor()  # type: ignore[attr-defined]
        cursor.execute("PRAGMA journal_mode=WAL")
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.execute("PRAGMA synchronous=NORMAL")
        cursor.close()

    # Take the write lock up front so concurrent transactions queue on the
    # busy timeout instead of failing on a stale read snapshot.
    @event.listens_for(engine.sync_engine, "begin")
    def _begin_immediate(conn: Any) -> None:
        conn.exec_driver_sql("BEGIN IMMEDIATE")

    logger.info("Created SQLite engine: %s", url)
    return engine


async def create_local_tables(engine: AsyncEngine, metadata: MetaData | None = None) -> None:
    """Create ORM tables; idempotent and safe to call on every startup.

    Defaults to the authorization tables.  Pass ``IdentityBase.metadata`` to
    create the local identity store tables.
    """
    from tenantdesk_core.state.tables import Base

    target = metadata if metadata is not None else Base.metadata
    async with engine.begin() as conn:
        await conn.run_sync(target.create_all)

    logger.info("SQLite tables created/verified")
