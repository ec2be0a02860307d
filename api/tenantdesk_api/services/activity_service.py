"""Append-only activity log.

Every privileged action is funnelled through :meth:`ActivityService.record`.
Recording runs inside a savepoint and never raises: a failed write is rolled
back to the savepoint, reported as a WARNING, and the triggering operation
carries on.  Successful entries are published to the event bus after the
surrounding transaction commits, which feeds the activity stream.
"""

from __future__ import annotations

import logging
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession
from tenantdesk_core.models import ActivityVerb, ResourceType
from tenantdesk_core.state.repository import ActivityRepository
from tenantdesk_core.state.tables import ActivityLogTable, ProfileTable

from tenantdesk_api.middleware.rbac import Capability, RequestContext, authorize
from tenantdesk_api.services.event_bus import EventType, defer_event

logger = logging.getLogger(__name__)


def entry_to_dict(entry: ActivityLogTable, actor: ProfileTable | None = None) -> dict[str, Any]:
    return {
        "id": entry.id,
        "actor_id": entry.actor_id,
        "actor_name": actor.display_name if actor is not None else None,
        "actor_email": actor.email if actor is not None else None,
        "tenant_id": entry.tenant_id,
        "action": entry.action,
        "resource_type": entry.resource_type,
        "resource_id": entry.resource_id,
        "description": entry.description,
        "metadata": entry.metadata_json or {},
        "created_at": entry.created_at.isoformat() if entry.created_at else None,
    }


class ActivityService:
    """Record and read activity entries within the request session."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session
        self._repo = ActivityRepository(session)

    async def record(
        self,
        *,
        actor_id: str,
        verb: ActivityVerb,
        tenant_id: str | None = None,
        resource_type: ResourceType | None = None,
        resource_id: str | None = None,
        description: str = "",
        **metadata: Any,
    ) -> str | None:
        """Append one entry.  Returns its id, or ``None`` if the write failed."""
        try:
            async with self._session.begin_nested():
                entry = await self._repo.append(
                    actor_id=actor_id,
                    action=verb.value,
                    tenant_id=tenant_id,
                    resource_type=resource_type.value if resource_type else None,
                    resource_id=resource_id,
                    description=description,
                    metadata=metadata or None,
                )
        except Exception:
            logger.warning(
                "Failed to record activity %s by %s on %s/%s",
                verb.value,
                actor_id,
                resource_type.value if resource_type else "-",
                resource_id,
                exc_info=True,
            )
            return None

        defer_event(
            self._session,
            EventType.ACTIVITY_RECORDED,
            tenant_id=tenant_id,
            data=entry_to_dict(entry),
        )
        return entry.id

    async def list_for_tenant(self, context: RequestContext, *, limit: int = 50) -> list[dict[str, Any]]:
        """Return the newest entries of the caller's tenant with actor details."""
        authorize(context, Capability.VIEW_ACTIVITY_LOG)
        assert context.tenant_id is not None  # noqa: S101
        rows = await self._repo.list_for_tenant(context.tenant_id, limit=max(1, min(limit, 500)))
        return [entry_to_dict(entry, actor) for entry, actor in rows]
