"""Profile and role resolution.

Turns an authenticated identity into exactly one profile (rebuilding it
from the identity's signup metadata on first sight) and a session token
into a :class:`RequestContext`.  Any failure other than a clean "not found"
during resolution invalidates the session and surfaces as an error; a
half-initialised context is never returned.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from tenantdesk_core.errors import (
    AuthenticationError,
    DependencyError,
    NotFoundError,
    TenantDeskError,
    ValidationError,
)
from tenantdesk_core.models import Role, SubscriptionTier
from tenantdesk_core.retry import RetryConfig, retry_async
from tenantdesk_core.state.repository import ProfileRepository, TenantRepository
from tenantdesk_core.state.tables import ProfileTable

from tenantdesk_api.identity import Identity, IdentityStore
from tenantdesk_api.middleware.rbac import Capability, RequestContext, authorize
from tenantdesk_api.services.tenant_service import TenantService

logger = logging.getLogger(__name__)


def profile_to_dict(profile: ProfileTable) -> dict[str, Any]:
    return {
        "id": profile.id,
        "email": profile.email,
        "display_name": profile.display_name,
        "phone": profile.phone,
        "role": profile.role,
        "tenant_id": profile.tenant_id,
        "subscription_tier": profile.subscription_tier,
        "is_active": profile.is_active,
        "created_at": profile.created_at.isoformat() if profile.created_at else None,
        "last_login_at": profile.last_login_at.isoformat() if profile.last_login_at else None,
    }


def context_from_profile(profile: ProfileTable, *, session_id: str | None = None) -> RequestContext:
    return RequestContext(
        profile_id=profile.id,
        email=profile.email,
        display_name=profile.display_name,
        role=Role(profile.role),
        tenant_id=profile.tenant_id,
        subscription_tier=SubscriptionTier(profile.subscription_tier),
        session_id=session_id,
    )


class ProfileService:
    """Profile lookup, bootstrap and self-service updates."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session
        self._repo = ProfileRepository(session)

    async def resolve(self, identity: Identity, *, max_users: int = 10) -> ProfileTable:
        """Return the profile for *identity*, creating it if absent.

        A missing profile is rebuilt from the signup recorded in the
        identity's metadata: independent users get ``independent_user``,
        company founders get their company back (with *max_users* seats),
        and direct member signups rejoin their tenant if it still exists.
        Identities without signup metadata get a ``company_member`` without
        a tenant.  Every bootstrapped profile is on the ``standard`` tier.
        A concurrent bootstrap of the same identity is tolerated: the loser
        re-reads the winner's row.
        """
        profile = await self._repo.get_by_id(identity.id)
        if profile is not None:
            return profile

        signup = identity.metadata
        role = Role.COMPANY_MEMBER
        tenant_id: str | None = None
        company_name = str(signup.get("company_name") or "").strip()
        if signup.get("user_type") == "independent":
            role = Role.INDEPENDENT_USER
            company_name = ""
        elif not company_name and signup.get("tenant_id"):
            tenant = await TenantRepository(self._session).get(str(signup["tenant_id"]))
            if tenant is not None:
                tenant_id = tenant.id

        try:
            async with self._session.begin_nested():
                profile = await self._repo.create(
                    profile_id=identity.id,
                    email=identity.email,
                    display_name=identity.display_name,
                    role=role.value,
                    tenant_id=tenant_id,
                    subscription_tier=SubscriptionTier.STANDARD.value,
                )
                if company_name:
                    await TenantService(self._session).create_tenant(
                        company_name=company_name,
                        founder_id=profile.id,
                        company_email=identity.email,
                        max_users=max_users,
                    )
                    await self._session.refresh(profile)
        except IntegrityError:
            profile = await self._repo.get_by_id(identity.id)
            if profile is None:
                raise
        else:
            logger.info(
                "Bootstrapped profile %s for %s as %s",
                profile.id,
                profile.email,
                profile.role,
                extra={"operation": "resolve_profile", "profile_id": profile.id},
            )
        return profile

    async def get_me(self, context: RequestContext) -> dict[str, Any]:
        profile = await self._repo.get_by_id(context.profile_id)
        if profile is None:
            raise NotFoundError("Profile not found", profile_id=context.profile_id)
        return profile_to_dict(profile)

    async def update_me(
        self,
        context: RequestContext,
        *,
        display_name: str | None = None,
        phone: str | None = None,
    ) -> dict[str, Any]:
        """Update the caller's own display name and/or phone."""
        values: dict[str, Any] = {}
        if display_name is not None:
            if not display_name.strip():
                raise ValidationError("Display name must not be empty")
            values["display_name"] = display_name.strip()
        if phone is not None:
            values["phone"] = phone.strip() or None
        profile = await self._repo.update_fields(context.profile_id, **values)
        if profile is None:
            raise NotFoundError("Profile not found", profile_id=context.profile_id)
        return profile_to_dict(profile)

    async def list_tenant_members(self, context: RequestContext) -> list[dict[str, Any]]:
        """Return the members of the caller's tenant ordered by display name."""
        authorize(context, Capability.VIEW_TENANT_MEMBERS)
        assert context.tenant_id is not None  # noqa: S101
        return [profile_to_dict(p) for p in await self._repo.list_by_tenant(context.tenant_id)]

    async def list_independent_users(self, context: RequestContext) -> list[dict[str, Any]]:
        """Return independent users an admin could invite, newest first."""
        authorize(context, Capability.VIEW_JOINABLE_USERS)
        return [profile_to_dict(p) for p in await self._repo.list_independent()]


# ---------------------------------------------------------------------------
# Session bootstrap
# ---------------------------------------------------------------------------


async def validate_with_retry(store: IdentityStore, token: str, retry: RetryConfig) -> Any:
    """Validate *token*, retrying identity store dependency failures."""
    return await retry_async(
        lambda: store.validate(token),
        retry,
        (DependencyError,),
        operation="identity validate",
    )


async def resolve_session(
    session: AsyncSession,
    store: IdentityStore,
    token: str,
    *,
    timeout: float,
    retry: RetryConfig | None = None,
    session_id: str | None = None,
) -> RequestContext:
    """Resolve *token* into a request context within *timeout* seconds.

    Authentication failures propagate unchanged.  Any other failure
    (timeout, storage error, identity store outage) invalidates the session
    and raises :class:`DependencyError`.

    *session_id* may carry the id already read from the token so that a
    timeout before validation completes can still revoke the session.
    """
    retry = retry or RetryConfig(max_retries=0)

    async def _resolve() -> RequestContext:
        nonlocal session_id
        issued = await validate_with_retry(store, token, retry)
        session_id = issued.session_id
        profile = await ProfileService(session).resolve(issued.identity)
        if not profile.is_active:
            raise AuthenticationError("Profile is deactivated")
        return context_from_profile(profile, session_id=issued.session_id)

    try:
        return await asyncio.wait_for(_resolve(), timeout)
    except TenantDeskError as exc:
        if isinstance(exc, AuthenticationError):
            raise
        await _fail_closed(store, session_id, reason="bootstrap_failed")
        raise
    except TimeoutError as exc:
        logger.error("Session bootstrap exceeded %.1fs", timeout)
        await _fail_closed(store, session_id, reason="bootstrap_timeout")
        raise DependencyError("Session bootstrap timed out", timeout_seconds=timeout) from exc
    except SQLAlchemyError as exc:
        logger.error("Profile lookup failed during session bootstrap", exc_info=True)
        await _fail_closed(store, session_id, reason="profile_lookup_failed")
        raise DependencyError("Profile lookup failed") from exc


async def _fail_closed(store: IdentityStore, session_id: str | None, *, reason: str) -> None:
    if session_id is None:
        return
    try:
        await store.invalidate_session(session_id, reason=reason)
    except TenantDeskError:
        logger.error("Could not invalidate session %s after bootstrap failure", session_id, exc_info=True)
