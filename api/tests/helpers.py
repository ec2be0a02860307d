"""Factories shared by the API test modules."""

from __future__ import annotations

from typing import Any

from httpx import AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession
from tenantdesk_core.models import Role, SubscriptionTier
from tenantdesk_core.state.repository import ProfileRepository

from tenantdesk_api.middleware.rbac import RequestContext
from tenantdesk_api.services.profile_service import context_from_profile
from tenantdesk_api.services.tenant_service import TenantService


async def signup_and_login(
    client: AsyncClient,
    kind: str,
    email: str,
    *,
    password: str = "correct-horse",
    display_name: str = "Test User",
    **extra: Any,
) -> dict[str, str]:
    """Sign up through the API and return Bearer headers for the new account."""
    body = {"email": email, "password": password, "display_name": display_name, **extra}
    resp = await client.post(f"/api/v1/auth/signup/{kind}", json=body)
    assert resp.status_code == 201, resp.text
    resp = await client.post("/api/v1/auth/login", json={"email": email, "password": password})
    assert resp.status_code == 200, resp.text
    return {"Authorization": f"Bearer {resp.json()['access_token']}"}


async def make_profile(
    session: AsyncSession,
    profile_id: str,
    *,
    role: Role = Role.COMPANY_MEMBER,
    tenant_id: str | None = None,
    tier: SubscriptionTier = SubscriptionTier.STANDARD,
    email: str | None = None,
) -> RequestContext:
    """Insert a profile and return the matching request context."""
    profile = await ProfileRepository(session).create(
        profile_id=profile_id,
        email=email or f"{profile_id}@example.com",
        display_name=profile_id.title(),
        role=role.value,
        tenant_id=tenant_id,
        subscription_tier=tier.value,
    )
    return context_from_profile(profile)


async def make_company(
    session: AsyncSession,
    founder_id: str = "founder",
    *,
    company_name: str = "Acme",
) -> tuple[RequestContext, str]:
    """Create a founder profile and their tenant; return the admin context and tenant id."""
    await make_profile(session, founder_id)
    tenant = await TenantService(session).create_tenant(company_name=company_name, founder_id=founder_id)
    profile = await ProfileRepository(session).get_by_id(founder_id)
    assert profile is not None
    await session.refresh(profile)
    return context_from_profile(profile), tenant["id"]
