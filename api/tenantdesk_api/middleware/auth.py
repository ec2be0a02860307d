"""Authentication middleware that extracts and verifies session tokens.

Extracts ``Authorization: Bearer <token>`` from every request, verifies the
JWT's signature and expiry via :class:`SessionTokenSigner`, and
populates ``request.state`` with ``session_token``, ``session_id`` and
``identity_id``.

The middleware is stateless: revocation and profile resolution happen in the
request-context dependency, which owns the database session and the
bootstrap timeout.  Endpoints listed in ``_PUBLIC_PATHS`` bypass
authentication.
"""

from __future__ import annotations

import logging
from typing import Any

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import JSONResponse, Response
from tenantdesk_core.errors import AuthenticationError

from tenantdesk_api.identity import SessionTokenSigner

logger = logging.getLogger(__name__)

# Paths that do not require authentication.
_PUBLIC_PATHS: frozenset[str] = frozenset(
    {
        "/api/v1/health",
        "/ready",
        "/docs",
        "/openapi.json",
        "/redoc",
        "/favicon.ico",
        "/api/v1/auth/signup/company",
        "/api/v1/auth/signup/member",
        "/api/v1/auth/signup/independent",
        "/api/v1/auth/login",
        "/api/v1/tenants/joinable",
    }
)

# Prefixes that skip auth (e.g. static docs assets).
_PUBLIC_PREFIXES: tuple[str, ...] = (
    "/docs",
    "/redoc",
)


def _is_public_path(path: str) -> bool:
    """Return ``True`` if the path should bypass authentication."""
    if path in _PUBLIC_PATHS:
        return True
    return any(path.startswith(prefix) for prefix in _PUBLIC_PREFIXES)


def _unauthorized(detail: str) -> JSONResponse:
    return JSONResponse(
        status_code=401,
        content={"detail": detail, "code": AuthenticationError.code},
        headers={"WWW-Authenticate": "Bearer"},
    )


class AuthenticationMiddleware(BaseHTTPMiddleware):
    """Starlette middleware that enforces Bearer token authentication.

    On each request the middleware:

    1. Checks whether the path is public (health, docs, signup, login) and
       skips auth.
    2. Extracts the ``Authorization: Bearer <token>`` header.
    3. Verifies the token signature and expiry.
    4. Stores the token and its claims on ``request.state``.
    5. Returns a 401 JSON response on failure.
    """

    def __init__(self, app: Any, *, signer: SessionTokenSigner) -> None:
        super().__init__(app)
        self._signer = signer
        logger.info("AuthenticationMiddleware initialised")

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        path = request.url.path

        if _is_public_path(path) or request.method == "OPTIONS":
            return await call_next(request)

        auth_header = request.headers.get("authorization")
        if not auth_header:
            return _unauthorized("Missing Authorization header")

        parts = auth_header.split(None, 1)
        if len(parts) != 2 or parts[0].lower() != "bearer":
            return _unauthorized("Authorization header must use Bearer scheme")

        token = parts[1].strip()
        try:
            claims = self._signer.verify(token)
        except AuthenticationError as exc:
            return _unauthorized(exc.message)

        request.state.session_token = token
        request.state.session_id = claims.session_id
        request.state.identity_id = claims.identity_id

        return await call_next(request)
