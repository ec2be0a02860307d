"""FastAPI application entry-point for the TenantDesk API."""

from __future__ import annotations

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError
from tenantdesk_core.errors import AuthenticationError, TenantDeskError
from tenantdesk_core.state.tables import Base, IdentityBase

from tenantdesk_api import __version__, dependencies
from tenantdesk_api.config import APISettings, load_api_settings
from tenantdesk_api.identity import LocalIdentityStore, SessionTokenSigner
from tenantdesk_api.middleware.auth import AuthenticationMiddleware
from tenantdesk_api.middleware.json_formatter import enable_json_logging
from tenantdesk_api.middleware.logging import RequestLoggingMiddleware
from tenantdesk_api.routers import (
    activity,
    auth,
    health,
    invitations,
    notes,
    profiles,
    subscriptions,
    tenants,
)
from tenantdesk_api.services.event_bus import init_event_bus

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application startup / shutdown lifecycle.

    On startup:
    - Initialise the event bus and the async database engine.
    - Create tables if configured (dev convenience; production should use
      migrations).
    - Initialise the local identity store on its own engine, unless one was
      installed beforehand.

    On shutdown:
    - Dispose the identity store and database engine pools.
    """
    settings: APISettings = app.state.settings

    if settings.structured_logging:
        enable_json_logging()
        logger.info("Structured JSON logging enabled")

    event_bus = init_event_bus()

    engine = dependencies.init_engine(settings)
    is_local = settings.database_url.startswith("sqlite")
    logger.info(
        "Database engine initialised (%s, %s)",
        settings.database_url[:40] + "...",
        "local" if is_local else "postgres",
    )
    if settings.auto_create_tables:
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        logger.info("Database tables ensured")

    owns_identity_store = False
    try:
        dependencies.get_identity_store()
    except RuntimeError:
        store = dependencies.init_identity_store(settings, event_bus)
        owns_identity_store = True
        if settings.auto_create_tables and isinstance(store, LocalIdentityStore):
            async with store.engine.begin() as conn:
                await conn.run_sync(IdentityBase.metadata.create_all)
        logger.info("Local identity store initialised")

    yield

    if owns_identity_store:
        await dependencies.dispose_identity_store()
    await dependencies.dispose_engine()
    logger.info("Application shutdown complete")


# ---------------------------------------------------------------------------
# Application factory
# ---------------------------------------------------------------------------


def create_app(settings: APISettings | None = None) -> FastAPI:
    """Construct and configure the FastAPI application."""
    settings = settings or load_api_settings()
    dependencies.use_settings(settings)

    app = FastAPI(
        title="TenantDesk API",
        description="Multi-tenant company workspaces with invitations, notes and subscription tiers.",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.settings = settings

    # -- Middleware (outermost last) -----------------------------------------

    app.add_middleware(
        AuthenticationMiddleware,
        signer=SessionTokenSigner(
            settings.session_secret.get_secret_value(),
            algorithm=settings.session_algorithm,
        ),
    )
    app.add_middleware(RequestLoggingMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=settings.cors_allow_credentials,
        allow_methods=["GET", "POST", "PATCH", "DELETE", "OPTIONS"],
        allow_headers=["Authorization", "Content-Type", "X-Correlation-ID", "Accept"],
    )

    # -- Routers -------------------------------------------------------------

    for module in (health, auth, tenants, profiles, invitations, notes, subscriptions, activity):
        app.include_router(module.router, prefix="/api/v1")
    app.include_router(health.readiness_router)

    # -- Exception handlers --------------------------------------------------

    @app.exception_handler(TenantDeskError)
    async def tenantdesk_error_handler(request: Request, exc: TenantDeskError) -> JSONResponse:
        if exc.status_code >= 500:
            logger.error("%s on %s: %s", type(exc).__name__, request.url.path, exc.message)
        else:
            logger.info("%s on %s: %s", type(exc).__name__, request.url.path, exc.message)
        headers = {"WWW-Authenticate": "Bearer"} if isinstance(exc, AuthenticationError) else None
        return JSONResponse(status_code=exc.status_code, content=exc.to_dict(), headers=headers)

    @app.exception_handler(SQLAlchemyError)
    async def sqlalchemy_error_handler(request: Request, exc: SQLAlchemyError) -> JSONResponse:
        logger.error("Database error on %s: %s", request.url.path, exc, exc_info=True)
        return JSONResponse(
            status_code=500,
            content={"detail": "Internal database error", "code": "internal_error"},
        )

    return app


# Module-level application instance used by ``uvicorn tenantdesk_api.main:app``.
app = create_app()


def run() -> None:
    """Serve the API with uvicorn using the configured host and port."""
    import uvicorn

    settings = load_api_settings()
    config = uvicorn.Config(
        "tenantdesk_api.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
        log_level="debug" if settings.debug else "info",
        access_log=False,
    )
    uvicorn.Server(config).run()
