"""Per-profile subscription tier changes managed by tenant admins."""

from __future__ import annotations

import logging
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession
from tenantdesk_core.errors import NotFoundError, ValidationError
from tenantdesk_core.models import ActivityVerb, ResourceType, SubscriptionTier
from tenantdesk_core.state.repository import ProfileRepository, SubscriptionChangeRepository
from tenantdesk_core.state.tables import ProfileTable

from tenantdesk_api.middleware.rbac import Capability, RequestContext, authorize
from tenantdesk_api.services.activity_service import ActivityService
from tenantdesk_api.services.event_bus import EventType, defer_event
from tenantdesk_api.services.quota_service import QuotaService

logger = logging.getLogger(__name__)


class SubscriptionService:
    """Upgrade, downgrade and history for profiles of the caller's tenant."""

    def __init__(self, session: AsyncSession, context: RequestContext) -> None:
        self._session = session
        self._context = context
        self._profiles = ProfileRepository(session)
        self._changes = SubscriptionChangeRepository(session)

    async def _target(self, profile_id: str) -> ProfileTable:
        authorize(self._context, Capability.MANAGE_SUBSCRIPTIONS)
        target = await self._profiles.get_by_id(profile_id)
        if target is None or target.tenant_id != self._context.tenant_id:
            raise NotFoundError("Profile not found in your tenant", profile_id=profile_id)
        authorize(self._context, Capability.MANAGE_SUBSCRIPTIONS, tenant_id=target.tenant_id)
        return target

    async def upgrade(self, profile_id: str) -> dict[str, Any]:
        """Move *profile_id* to premium."""
        target = await self._target(profile_id)
        previous = await QuotaService(self._session, profile_id).upgrade()
        if previous == SubscriptionTier.PREMIUM.value:
            raise ValidationError("Profile is already on the premium tier", profile_id=profile_id)
        return await self._finish(target, previous, SubscriptionTier.PREMIUM)

    async def downgrade(self, profile_id: str) -> dict[str, Any]:
        """Move *profile_id* to standard; refused while above the standard ceiling."""
        target = await self._target(profile_id)
        previous = await QuotaService(self._session, profile_id).downgrade()
        if previous == SubscriptionTier.STANDARD.value:
            raise ValidationError("Profile is already on the standard tier", profile_id=profile_id)
        return await self._finish(target, previous, SubscriptionTier.STANDARD)

    async def _finish(self, target: ProfileTable, previous: str, new_tier: SubscriptionTier) -> dict[str, Any]:
        change = await self._changes.record(
            profile_id=target.id,
            tenant_id=target.tenant_id,
            changed_by=self._context.profile_id,
            previous_tier=previous,
            new_tier=new_tier.value,
        )
        await ActivityService(self._session).record(
            actor_id=self._context.profile_id,
            verb=ActivityVerb.UPDATE,
            tenant_id=target.tenant_id,
            resource_type=ResourceType.SUBSCRIPTION,
            resource_id=target.id,
            description=f"Changed {target.display_name} from {previous} to {new_tier.value}",
            previous_tier=previous,
            new_tier=new_tier.value,
        )
        defer_event(
            self._session,
            EventType.SUBSCRIPTION_CHANGED,
            tenant_id=target.tenant_id,
            data={"profile_id": target.id, "previous_tier": previous, "new_tier": new_tier.value},
        )
        logger.info("Subscription change %s: %s %s -> %s", change.id, target.id, previous, new_tier.value)
        return {
            "profile_id": target.id,
            "previous_tier": previous,
            "subscription_tier": new_tier.value,
            "changed_at": change.created_at.isoformat(),
        }

    async def history(self, *, limit: int = 100) -> list[dict[str, Any]]:
        """Return the tenant's tier changes, newest first."""
        authorize(self._context, Capability.MANAGE_SUBSCRIPTIONS)
        assert self._context.tenant_id is not None  # noqa: S101
        rows = await self._changes.list_for_tenant(self._context.tenant_id, limit=limit)
        return [
            {
                "id": change.id,
                "profile_id": change.profile_id,
                "display_name": profile.display_name,
                "email": profile.email,
                "changed_by": change.changed_by,
                "previous_tier": change.previous_tier,
                "new_tier": change.new_tier,
                "created_at": change.created_at.isoformat(),
            }
            for change, profile in rows
        ]
