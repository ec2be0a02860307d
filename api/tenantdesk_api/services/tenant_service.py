"""Tenant registry: creation, joinable listing, and dashboard statistics.

Creating a tenant and linking its founder as ``company_admin`` happen in one
savepoint of the request transaction, so a failure after the tenant insert
leaves neither row behind.  Founders whose link was lost outside that path
are picked up by :meth:`TenantService.reconcile_founder_links`.
"""

from __future__ import annotations

import logging
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession
from tenantdesk_core.errors import AlreadyMemberError, NotFoundError, ValidationError
from tenantdesk_core.models import ActivityVerb, ResourceType, Role
from tenantdesk_core.state.repository import InvitationRepository, ProfileRepository, TenantRepository
from tenantdesk_core.state.tables import TenantTable

from tenantdesk_api.middleware.rbac import Capability, RequestContext, authorize
from tenantdesk_api.services.activity_service import ActivityService
from tenantdesk_api.services.event_bus import EventType, defer_event

logger = logging.getLogger(__name__)


def tenant_to_dict(tenant: TenantTable) -> dict[str, Any]:
    return {
        "id": tenant.id,
        "company_name": tenant.company_name,
        "company_email": tenant.company_email,
        "company_phone": tenant.company_phone,
        "created_by": tenant.created_by,
        "subscription_plan": tenant.subscription_plan,
        "max_users": tenant.max_users,
        "created_at": tenant.created_at.isoformat() if tenant.created_at else None,
    }


class TenantService:
    """Tenant creation and read operations.

    Parameters
    ----------
    session:
        The request's database session.  All writes join its transaction.
    """

    def __init__(self, session: AsyncSession) -> None:
        self._session = session
        self._tenants = TenantRepository(session)
        self._profiles = ProfileRepository(session)

    async def create_tenant(
        self,
        *,
        company_name: str,
        founder_id: str,
        company_email: str | None = None,
        company_phone: str | None = None,
        max_users: int = 10,
    ) -> dict[str, Any]:
        """Create a tenant and make *founder_id* its ``company_admin``.

        Raises
        ------
        ValidationError
            Empty company name.
        NotFoundError
            The founder has no profile.
        AlreadyMemberError
            The founder already belongs to a tenant.
        """
        company_name = company_name.strip()
        if not company_name:
            raise ValidationError("Company name is required")

        founder = await self._profiles.get_by_id(founder_id, for_update=True)
        if founder is None:
            raise NotFoundError("Founder profile not found", profile_id=founder_id)
        if founder.tenant_id is not None:
            raise AlreadyMemberError("Founder already belongs to a tenant", tenant_id=founder.tenant_id)

        async with self._session.begin_nested():
            tenant = await self._tenants.create(
                company_name=company_name,
                company_email=company_email or founder.email,
                company_phone=company_phone,
                created_by=founder_id,
                max_users=max_users,
            )
            if not await self._profiles.link_tenant(founder_id, tenant.id, Role.COMPANY_ADMIN.value):
                # Raising inside the savepoint discards the tenant row as well.
                current = await self._profiles.get_by_id(founder_id, for_update=True)
                logger.warning(
                    "Founder %s could not be linked to new tenant %s",
                    founder_id,
                    tenant.id,
                    extra={"operation": "create_tenant", "profile_id": founder_id},
                )
                if current is not None and current.tenant_id is not None:
                    raise AlreadyMemberError("Founder already belongs to a tenant", tenant_id=current.tenant_id)
                raise NotFoundError("Founder profile could not be linked", profile_id=founder_id)

        await ActivityService(self._session).record(
            actor_id=founder_id,
            verb=ActivityVerb.CREATE,
            tenant_id=tenant.id,
            resource_type=ResourceType.TENANT,
            resource_id=tenant.id,
            description=f"Created company {company_name}",
        )
        defer_event(self._session, EventType.TENANT_CREATED, tenant_id=tenant.id, data={"founder_id": founder_id})
        logger.info("Created tenant %s (%s) founded by %s", tenant.id, company_name, founder_id)
        return tenant_to_dict(tenant)

    async def list_joinable(self) -> list[dict[str, Any]]:
        """Return every tenant ordered by company name.

        Membership is not capacity or approval gated.
        """
        return [
            {"id": t.id, "company_name": t.company_name, "created_at": t.created_at.isoformat()}
            for t in await self._tenants.list_by_name()
        ]

    async def get(self, context: RequestContext, tenant_id: str | None = None) -> dict[str, Any]:
        """Return the caller's tenant (or *tenant_id*, which must be theirs)."""
        target = tenant_id or context.tenant_id
        if target is None:
            raise NotFoundError("You do not belong to a tenant")
        if target != context.tenant_id:
            raise NotFoundError("Tenant not found", tenant_id=target)
        tenant = await self._tenants.get(target)
        if tenant is None:
            raise NotFoundError("Tenant not found", tenant_id=target)
        return tenant_to_dict(tenant)

    async def dashboard_stats(self, context: RequestContext) -> dict[str, Any]:
        """Return seat usage and invitation counts for the admin dashboard."""
        authorize(context, Capability.VIEW_TENANT_DASHBOARD)
        assert context.tenant_id is not None  # noqa: S101
        tenant = await self._tenants.get(context.tenant_id)
        if tenant is None:
            raise NotFoundError("Tenant not found", tenant_id=context.tenant_id)
        members = await self._profiles.count_by_tenant(tenant.id)
        pending = await InvitationRepository(self._session).count_live_for_tenant(tenant.id)
        return {
            "tenant_id": tenant.id,
            "company_name": tenant.company_name,
            "member_count": members,
            "max_users": tenant.max_users,
            "seats_available": max(tenant.max_users - members, 0),
            "pending_invitations": pending,
            "subscription_plan": tenant.subscription_plan,
            "created_at": tenant.created_at.isoformat(),
        }

    async def reconcile_founder_links(self, *, founder_id: str | None = None) -> dict[str, Any]:
        """Re-link tenant creators whose profile lost (or never got) its tenant.

        Idempotent.  With *founder_id* only that founder is considered.
        Founders that have since joined another tenant, or that became
        independent users, are skipped.
        """
        relinked: list[str] = []
        handled: set[str] = set()
        skipped = 0
        for tenant, profile in await self._tenants.list_unlinked_founders():
            if founder_id is not None and profile.id != founder_id:
                continue
            # Oldest tenant wins when one founder created several.
            if profile.id in handled:
                continue
            handled.add(profile.id)
            if not Role(profile.role).is_tenant_scoped:
                skipped += 1
                continue
            if await self._profiles.link_tenant(profile.id, tenant.id, Role.COMPANY_ADMIN.value):
                relinked.append(tenant.id)
                logger.warning(
                    "Reconciled founder %s into tenant %s",
                    profile.id,
                    tenant.id,
                    extra={"operation": "reconcile_founder_links", "tenant_id": tenant.id},
                )
        return {"relinked_tenants": relinked, "skipped": skipped}
