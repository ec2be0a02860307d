"""Shared Pydantic response models for API endpoints.

These schemas ensure that endpoint responses are validated and documented
in the OpenAPI schema.  Request bodies live next to the router that
accepts them; routers import response models from here to avoid duplication.
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field

# ---------------------------------------------------------------------------
# Profiles and tenants
# ---------------------------------------------------------------------------


class ProfileResponse(BaseModel):
    """A user profile."""

    id: str
    email: str
    display_name: str
    phone: str | None = None
    role: str
    tenant_id: str | None = None
    subscription_tier: str
    is_active: bool = True
    created_at: str | None = None
    last_login_at: str | None = None


class TenantResponse(BaseModel):
    """A company tenant."""

    id: str
    company_name: str
    company_email: str | None = None
    company_phone: str | None = None
    created_by: str | None = None
    subscription_plan: str
    max_users: int
    created_at: str | None = None


class JoinableTenantResponse(BaseModel):
    """Public summary of a tenant shown on the member signup form."""

    id: str
    company_name: str
    created_at: str | None = None


class TenantStatsResponse(BaseModel):
    """Dashboard counters for the caller's tenant."""

    tenant_id: str
    company_name: str
    member_count: int
    max_users: int
    seats_available: int
    pending_invitations: int
    subscription_plan: str
    created_at: str | None = None


class AccountResponse(BaseModel):
    """A profile together with the tenant it belongs to, if any."""

    profile: ProfileResponse
    tenant: TenantResponse | None = None


# ---------------------------------------------------------------------------
# Invitations
# ---------------------------------------------------------------------------


class InvitationResponse(BaseModel):
    """An invitation with its effective (read-time) status."""

    id: str
    tenant_id: str
    invited_by: str
    invited_email: str
    invited_user_id: str | None = None
    role: str
    status: str
    message: str | None = None
    created_at: str
    expires_at: str
    responded_at: str | None = None
    company_name: str | None = None
    token: str | None = None


# ---------------------------------------------------------------------------
# Notes
# ---------------------------------------------------------------------------


class NoteResponse(BaseModel):
    """A note.  ``deleted_at`` is set for soft-deleted notes."""

    id: str
    owner_id: str
    title: str
    content: str
    tags: list[str] = Field(default_factory=list)
    is_favorite: bool = False
    deleted_at: str | None = None
    created_at: str | None = None
    updated_at: str | None = None


class NoteStatsResponse(BaseModel):
    total_notes: int
    favorite_notes: int
    max_notes: int = Field(..., description="-1 when the tier is unlimited.")
    can_create_more: bool
    subscription_type: str


# ---------------------------------------------------------------------------
# Subscriptions and activity
# ---------------------------------------------------------------------------


class SubscriptionChangeResponse(BaseModel):
    """Result of an upgrade or downgrade."""

    profile_id: str
    previous_tier: str
    subscription_tier: str
    changed_at: str


class SubscriptionHistoryItem(BaseModel):
    id: str
    profile_id: str
    display_name: str
    email: str
    changed_by: str | None = None
    previous_tier: str
    new_tier: str
    created_at: str


class ActivityEntryResponse(BaseModel):
    """One append-only activity log entry."""

    id: str
    actor_id: str | None = None
    actor_name: str | None = None
    actor_email: str | None = None
    tenant_id: str | None = None
    action: str
    resource_type: str | None = None
    resource_id: str | None = None
    description: str
    metadata: dict[str, Any] = Field(default_factory=dict)
    created_at: str | None = None


class ErrorResponse(BaseModel):
    """Body returned for every typed service failure."""

    detail: str
    code: str
    context: dict[str, Any] | None = None
    outcome: str | None = None
