"""API router modules for the TenantDesk service."""

from __future__ import annotations

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

__all__ = [
    "activity",
    "auth",
    "health",
    "invitations",
    "notes",
    "profiles",
    "subscriptions",
    "tenants",
]
