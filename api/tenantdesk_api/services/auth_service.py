"""Authentication flows: signup variants, login, logout, and ``me``.

Identity registration happens in the external identity store; profile and
tenant rows live in the service database.  The two cannot share a
transaction, so once registration has succeeded any failure writing the
profile (or tenant) is reported as an indeterminate outcome and logged for
reconciliation.  The signup intent is stored in the identity metadata, so
the next login replays it through profile bootstrap and the orphaned
identity gets its profile (and company) back.

Every identity store call is bounded by a timeout that covers its retries;
running out of time surfaces as :class:`DependencyError`.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import Any, TypeVar

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from tenantdesk_core.errors import (
    AuthenticationError,
    ConflictError,
    ConsistencyError,
    DependencyError,
    NotFoundError,
    TenantDeskError,
    ValidationError,
)
from tenantdesk_core.models import ActivityVerb, ResourceType, Role, SubscriptionTier
from tenantdesk_core.retry import RetryConfig, retry_async
from tenantdesk_core.state.repository import ProfileRepository, TenantRepository

from tenantdesk_api.identity import Identity, IdentitySession, IdentityStore
from tenantdesk_api.middleware.rbac import RequestContext
from tenantdesk_api.services.activity_service import ActivityService
from tenantdesk_api.services.profile_service import ProfileService, profile_to_dict
from tenantdesk_api.services.tenant_service import TenantService, tenant_to_dict

logger = logging.getLogger(__name__)

MIN_PASSWORD_LENGTH = 8

T = TypeVar("T")


def _session_to_dict(issued: IdentitySession) -> dict[str, Any]:
    return {
        "access_token": issued.token,
        "token_type": "bearer",
        "expires_at": issued.expires_at.isoformat(),
    }


class AuthService:
    """High-level authentication operations.

    Parameters
    ----------
    session:
        The request's database session (caller manages the transaction).
    store:
        The identity store that owns credentials and sessions.
    retry:
        Retry policy applied to identity store dependency failures.
    timeout:
        Seconds allowed for each identity store call, retries included.
        ``None`` disables the bound.
    """

    def __init__(
        self,
        session: AsyncSession,
        store: IdentityStore,
        *,
        retry: RetryConfig | None = None,
        default_max_users: int = 10,
        timeout: float | None = None,
    ) -> None:
        self._session = session
        self._store = store
        self._retry = retry or RetryConfig(max_retries=0)
        self._default_max_users = default_max_users
        self._timeout = timeout

    async def _call_store(self, fn: Callable[[], Awaitable[T]], *, operation: str) -> T:
        """Run an identity store call with retry, bounded by the call timeout."""
        try:
            return await asyncio.wait_for(
                retry_async(fn, self._retry, (DependencyError,), operation=operation),
                self._timeout,
            )
        except TimeoutError as exc:
            logger.error("Identity store call %s exceeded %ss", operation, self._timeout)
            raise DependencyError(
                "Identity store timed out",
                operation=operation,
                timeout_seconds=self._timeout,
            ) from exc

    # ------------------------------------------------------------------
    # Signup
    # ------------------------------------------------------------------

    @staticmethod
    def _validate_credentials(email: str, password: str, display_name: str) -> str:
        email = email.lower().strip()
        if not email or "@" not in email:
            raise ValidationError("A valid email address is required.")
        if len(password) < MIN_PASSWORD_LENGTH:
            raise ValidationError(f"Password must be at least {MIN_PASSWORD_LENGTH} characters.")
        if not display_name.strip():
            raise ValidationError("Display name is required.")
        return email

    async def _register(self, email: str, password: str, metadata: dict[str, Any]) -> Identity:
        if await ProfileRepository(self._session).get_by_email(email) is not None:
            raise ConflictError("An account with this email already exists. Please log in instead.", email=email)
        return await self._call_store(
            lambda: self._store.register(email, password, metadata),
            operation="identity register",
        )

    async def _complete_signup(
        self,
        identity: Identity,
        *,
        operation: str,
        role: Role,
        phone: str | None,
        company_name: str | None = None,
        tenant_id: str | None = None,
    ) -> dict[str, Any]:
        """Write the profile (and tenant) for a freshly registered identity."""
        try:
            async with self._session.begin_nested():
                profile = await ProfileRepository(self._session).create(
                    profile_id=identity.id,
                    email=identity.email,
                    display_name=identity.display_name,
                    phone=phone,
                    role=role.value,
                    tenant_id=tenant_id,
                    subscription_tier=SubscriptionTier.STANDARD.value,
                )
                tenant: dict[str, Any] | None = None
                if company_name is not None:
                    tenant = await TenantService(self._session).create_tenant(
                        company_name=company_name,
                        founder_id=profile.id,
                        company_email=identity.email,
                        company_phone=phone,
                        max_users=self._default_max_users,
                    )
                    await self._session.refresh(profile)
        except (SQLAlchemyError, TenantDeskError) as exc:
            logger.error(
                "Signup for identity %s registered but profile setup failed",
                identity.id,
                exc_info=True,
                extra={"operation": operation, "profile_id": identity.id},
            )
            raise ConsistencyError(
                "Account was created but setup did not complete; sign in to finish or contact support.",
                operation=operation,
                identity_id=identity.id,
            ) from exc

        if tenant_id is not None:
            await ActivityService(self._session).record(
                actor_id=profile.id,
                verb=ActivityVerb.CREATE,
                tenant_id=tenant_id,
                resource_type=ResourceType.PROFILE,
                resource_id=profile.id,
                description=f"{profile.email} joined the company",
            )
        return {"profile": profile_to_dict(profile), "tenant": tenant}

    async def signup_company(
        self,
        *,
        email: str,
        password: str,
        display_name: str,
        company_name: str,
        phone: str | None = None,
    ) -> dict[str, Any]:
        """Register a founder and create their company with them as admin."""
        email = self._validate_credentials(email, password, display_name)
        if not company_name.strip():
            raise ValidationError("Company name is required.")
        identity = await self._register(
            email,
            password,
            {"display_name": display_name.strip(), "user_type": "company", "company_name": company_name.strip()},
        )
        result = await self._complete_signup(
            identity,
            operation="signup_company",
            role=Role.COMPANY_MEMBER,
            phone=phone,
            company_name=company_name,
        )
        logger.info("Company signup complete for %s", identity.id)
        return result

    async def signup_member(
        self,
        *,
        email: str,
        password: str,
        display_name: str,
        tenant_id: str,
        phone: str | None = None,
    ) -> dict[str, Any]:
        """Register a user directly into an existing company as a member."""
        email = self._validate_credentials(email, password, display_name)
        if await TenantRepository(self._session).get(tenant_id) is None:
            raise NotFoundError("Selected company does not exist", tenant_id=tenant_id)
        identity = await self._register(
            email,
            password,
            {"display_name": display_name.strip(), "user_type": "company", "tenant_id": tenant_id},
        )
        return await self._complete_signup(
            identity,
            operation="signup_member",
            role=Role.COMPANY_MEMBER,
            phone=phone,
            tenant_id=tenant_id,
        )

    async def signup_independent(
        self,
        *,
        email: str,
        password: str,
        display_name: str,
        phone: str | None = None,
    ) -> dict[str, Any]:
        """Register a user without a company."""
        email = self._validate_credentials(email, password, display_name)
        identity = await self._register(
            email,
            password,
            {"display_name": display_name.strip(), "user_type": "independent"},
        )
        return await self._complete_signup(
            identity,
            operation="signup_independent",
            role=Role.INDEPENDENT_USER,
            phone=phone,
        )

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------

    async def login(self, email: str, password: str) -> dict[str, Any]:
        """Authenticate, resolve the profile, and record the login."""
        issued = await self._call_store(
            lambda: self._store.authenticate(email.lower().strip(), password),
            operation="identity authenticate",
        )
        profile = await ProfileService(self._session).resolve(issued.identity, max_users=self._default_max_users)
        if not profile.is_active:
            await self._call_store(
                lambda: self._store.invalidate_session(issued.session_id, reason="profile_inactive"),
                operation="identity invalidate",
            )
            raise AuthenticationError("Account is deactivated")

        profiles = ProfileRepository(self._session)
        await profiles.update_last_login(profile.id)
        await self._session.refresh(profile)
        if profile.tenant_id is not None:
            await ActivityService(self._session).record(
                actor_id=profile.id,
                verb=ActivityVerb.LOGIN,
                tenant_id=profile.tenant_id,
                resource_type=ResourceType.PROFILE,
                resource_id=profile.id,
                description=f"{profile.email} signed in",
            )
        logger.info("Login for profile %s", profile.id)
        return {**_session_to_dict(issued), "profile": profile_to_dict(profile)}

    async def logout(self, context: RequestContext) -> None:
        """Revoke the caller's session and record the logout."""
        session_id = context.session_id
        if session_id is not None:
            await self._call_store(
                lambda: self._store.invalidate_session(session_id, reason="signed_out"),
                operation="identity invalidate",
            )
        if context.tenant_id is not None:
            await ActivityService(self._session).record(
                actor_id=context.profile_id,
                verb=ActivityVerb.LOGOUT,
                tenant_id=context.tenant_id,
                resource_type=ResourceType.PROFILE,
                resource_id=context.profile_id,
                description=f"{context.email} signed out",
            )

    async def me(self, context: RequestContext) -> dict[str, Any]:
        """Return the caller's profile and, when they have one, their tenant."""
        profile = await ProfileService(self._session).get_me(context)
        tenant = None
        if context.tenant_id is not None:
            row = await TenantRepository(self._session).get(context.tenant_id)
            tenant = tenant_to_dict(row) if row is not None else None
        return {"profile": profile, "tenant": tenant}
