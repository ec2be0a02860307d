"""Async SQLAlchemy engine factory and transaction-scoped advisory locks.

Supports both PostgreSQL (production) and SQLite (local dev and tests).
Engine type is determined by the database URL scheme:
  - ``postgresql+asyncpg://`` → connection-pooled PostgreSQL engine
  - ``sqlite+aiosqlite://``   → SQLite engine with WAL and foreign keys
"""

from __future__ import annotations

import hashlib
import logging

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, create_async_engine

logger = logging.getLogger(__name__)


def get_engine(
    database_url: str,
    pool_size: int = 10,
    max_overflow: int = 20,
    statement_timeout_ms: int = 30_000,
) -> AsyncEngine:
    """Create an async SQLAlchemy engine.

    Parameters
    ----------
    database_url:
        Connection string (PostgreSQL or SQLite scheme).
    pool_size:
        Number of persistent connections for PostgreSQL (ignored for SQLite).
    max_overflow:
        Maximum overflow connections for PostgreSQL (ignored for SQLite).
    statement_timeout_ms:
        Server-side statement timeout for PostgreSQL so no query blocks
        indefinitely.

    Returns
    -------
    AsyncEngine
        A configured async engine ready for session creation.
    """
    if database_url.startswith("sqlite"):
        from tenantdesk_core.state.sqlite_adapter import get_local_engine

        # Extract path from URL: sqlite+aiosqlite:///path/to/db
        db_path = database_url.split("///", 1)[-1] if "///" in database_url else ":memory:"
        return get_local_engine(db_path if db_path else ":memory:")

    engine = create_async_engine(
        database_url,
        pool_size=pool_size,
        max_overflow=max_overflow,
        pool_pre_ping=True,
        pool_recycle=3600,
        pool_timeout=10,
        echo=False,
        connect_args={
            "server_settings": {
                "statement_timeout": str(statement_timeout_ms),
                "lock_timeout": "10000",  # 10 s
            }
        },
    )
    logger.info(
        "Created async engine pool_size=%d max_overflow=%d",
        pool_size,
        max_overflow,
    )
    return engine


def dialect_name(session: AsyncSession) -> str:
    """Return the dialect name (``postgresql``, ``sqlite``) bound to *session*."""
    bind = session.get_bind()
    return str(getattr(getattr(bind, "dialect", None), "name", ""))


def advisory_lock_id(key: str) -> int:
    """Map *key* to a stable signed 32-bit lock id.

    Uses SHA-256 rather than ``hash()`` so every worker process derives the
    same id for the same key.
    """
    digest = hashlib.sha256(key.encode("utf-8")).digest()
    return int.from_bytes(digest[:4], "big") & 0x7FFFFFFF


async def acquire_advisory_lock(session: AsyncSession, key: str) -> None:
    """Acquire a PostgreSQL transaction-scoped advisory lock on *key*.

    Concurrent transactions locking the same key are serialised until the
    holder commits or rolls back.  On SQLite this is a no-op: writers are
    already serialised by the database-level write lock.
    """
    if "postgresql" in dialect_name(session):
        await session.execute(
            text("SELECT pg_advisory_xact_lock(:id)"),
            {"id": advisory_lock_id(key)},
        )


