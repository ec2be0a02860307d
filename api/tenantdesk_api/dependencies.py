"""FastAPI dependency injection for settings, database sessions, the identity
store, and the per-request caller context."""

from __future__ import annotations

import logging
from collections.abc import AsyncGenerator
from typing import Annotated

from fastapi import Depends, Request
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker
from tenantdesk_core.errors import AuthenticationError
from tenantdesk_core.retry import RetryConfig
from tenantdesk_core.state.database import get_engine

from tenantdesk_api.config import APISettings, load_api_settings
from tenantdesk_api.identity import IdentityStore, LocalIdentityStore
from tenantdesk_api.middleware.rbac import RequestContext
from tenantdesk_api.services.event_bus import EventBus, discard_deferred, get_event_bus, publish_deferred
from tenantdesk_api.services.profile_service import resolve_session

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Settings
# ---------------------------------------------------------------------------

_settings_cache: APISettings | None = None


def get_settings() -> APISettings:
    """Return the cached :class:`APISettings` singleton."""
    global _settings_cache  # noqa: PLW0603
    if _settings_cache is None:
        _settings_cache = load_api_settings()
    return _settings_cache


def use_settings(settings: APISettings) -> None:
    """Install *settings* as the process-wide singleton."""
    global _settings_cache  # noqa: PLW0603
    _settings_cache = settings


SettingsDep = Annotated[APISettings, Depends(get_settings)]


def identity_retry_config(settings: APISettings) -> RetryConfig:
    """Build the identity store retry policy from *settings*."""
    return RetryConfig(
        max_retries=settings.identity_max_retries,
        base_delay=settings.identity_retry_base_delay,
        max_delay=settings.identity_retry_max_delay,
    )


# ---------------------------------------------------------------------------
# Database session
# ---------------------------------------------------------------------------

_engine: AsyncEngine | None = None
_session_factory: async_sessionmaker[AsyncSession] | None = None


def init_engine(settings: APISettings) -> AsyncEngine:
    """Create and cache the global async engine."""
    global _engine, _session_factory  # noqa: PLW0603
    _engine = get_engine(settings.database_url)
    _session_factory = async_sessionmaker(_engine, expire_on_commit=False)
    return _engine


def use_engine(engine: AsyncEngine) -> None:
    """Install an already-built engine (tests, embedding)."""
    global _engine, _session_factory  # noqa: PLW0603
    _engine = engine
    _session_factory = async_sessionmaker(engine, expire_on_commit=False)


async def dispose_engine() -> None:
    """Dispose the global engine pool (call during shutdown)."""
    global _engine, _session_factory  # noqa: PLW0603
    if _engine is not None:
        await _engine.dispose()
        _engine = None
        _session_factory = None


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    """Return the global async session factory."""
    if _session_factory is None:
        raise RuntimeError(
            "Database engine has not been initialised. Ensure init_engine() is called during application startup."
        )
    return _session_factory


def get_bus() -> EventBus:
    return get_event_bus()


EventBusDep = Annotated[EventBus, Depends(get_bus)]


async def get_db_session(bus: EventBusDep) -> AsyncGenerator[AsyncSession, None]:
    """Yield the request's ``AsyncSession``.

    One session serves the whole request.  It commits on clean exit and
    rolls back on exception; events deferred on the session are published
    only after a successful commit.
    """
    session = get_session_factory()()
    try:
        yield session
        await session.commit()
    except Exception:
        await session.rollback()
        discard_deferred(session)
        raise
    else:
        await publish_deferred(session, bus)
    finally:
        await session.close()


SessionDep = Annotated[AsyncSession, Depends(get_db_session)]

# ---------------------------------------------------------------------------
# Identity store
# ---------------------------------------------------------------------------

_identity_store: IdentityStore | None = None
_identity_engine: AsyncEngine | None = None


def init_identity_store(settings: APISettings, bus: EventBus | None = None) -> IdentityStore:
    """Create the local identity store on its own engine and cache it."""
    global _identity_store, _identity_engine  # noqa: PLW0603
    _identity_engine = get_engine(settings.identity_database_url or settings.database_url)
    _identity_store = LocalIdentityStore(
        _identity_engine,
        secret=settings.session_secret.get_secret_value(),
        algorithm=settings.session_algorithm,
        session_ttl_seconds=settings.session_ttl_seconds,
        event_bus=bus,
    )
    return _identity_store


def use_identity_store(store: IdentityStore) -> None:
    """Install an identity store implementation (tests, external providers)."""
    global _identity_store  # noqa: PLW0603
    _identity_store = store


async def dispose_identity_store() -> None:
    global _identity_store, _identity_engine  # noqa: PLW0603
    if _identity_engine is not None:
        await _identity_engine.dispose()
    _identity_engine = None
    _identity_store = None


def get_identity_store() -> IdentityStore:
    """Return the configured identity store."""
    if _identity_store is None:
        raise RuntimeError(
            "Identity store has not been initialised. Ensure init_identity_store() is called during startup."
        )
    return _identity_store


IdentityStoreDep = Annotated[IdentityStore, Depends(get_identity_store)]

# ---------------------------------------------------------------------------
# Request context
# ---------------------------------------------------------------------------


async def get_request_context(
    request: Request,
    session: SessionDep,
    store: IdentityStoreDep,
    settings: SettingsDep,
) -> RequestContext:
    """Resolve the caller's session token into a :class:`RequestContext`.

    Bounded by ``session_bootstrap_timeout``; see
    :func:`~tenantdesk_api.services.profile_service.resolve_session` for the
    fail-closed behaviour.
    """
    token: str | None = getattr(request.state, "session_token", None)
    if token is None:
        raise AuthenticationError("Authentication required")
    context = await resolve_session(
        session,
        store,
        token,
        timeout=settings.session_bootstrap_timeout,
        retry=identity_retry_config(settings),
        session_id=getattr(request.state, "session_id", None),
    )
    request.state.profile_id = context.profile_id
    request.state.tenant_id = context.tenant_id
    return context


ContextDep = Annotated[RequestContext, Depends(get_request_context)]
