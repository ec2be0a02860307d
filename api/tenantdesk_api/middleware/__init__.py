"""Middleware components for the TenantDesk API."""

from __future__ import annotations

from tenantdesk_api.middleware.auth import AuthenticationMiddleware
from tenantdesk_api.middleware.logging import RequestLoggingMiddleware
from tenantdesk_api.middleware.rbac import (
    ROLE_CAPABILITIES,
    Capability,
    RequestContext,
    authorize,
    require_capability,
)

__all__ = [
    "AuthenticationMiddleware",
    "Capability",
    "ROLE_CAPABILITIES",
    "RequestContext",
    "RequestLoggingMiddleware",
    "authorize",
    "require_capability",
]
