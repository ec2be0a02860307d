"""Activity log endpoints: the recent list and a server-sent events stream."""

from __future__ import annotations

import json
import logging
from collections.abc import AsyncIterator
from typing import Any

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import StreamingResponse

from tenantdesk_api.dependencies import EventBusDep, SessionDep, SettingsDep
from tenantdesk_api.middleware.rbac import Capability, RequestContext, require_capability
from tenantdesk_api.schemas import ActivityEntryResponse
from tenantdesk_api.services.activity_service import ActivityService
from tenantdesk_api.services.event_bus import EventBus, EventType, Subscription

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/activity", tags=["activity"])

# Seconds between keep-alive comments on an idle stream.
_HEARTBEAT_INTERVAL = 15.0


@router.get("", response_model=list[ActivityEntryResponse])
async def list_activity(
    session: SessionDep,
    settings: SettingsDep,
    context: RequestContext = Depends(require_capability(Capability.VIEW_ACTIVITY_LOG)),
    limit: int | None = Query(default=None, ge=1, le=500),
) -> list[dict[str, Any]]:
    """Newest activity entries of the caller's company."""
    return await ActivityService(session).list_for_tenant(context, limit=limit or settings.activity_list_limit)


async def _event_stream(request: Request, bus: EventBus, subscription: Subscription) -> AsyncIterator[str]:
    try:
        while not await request.is_disconnected():
            payload = await subscription.get(timeout=_HEARTBEAT_INTERVAL)
            if payload is None:
                yield ": keep-alive\n\n"
                continue
            body = json.dumps(payload.data, default=str)
            yield f"id: {payload.correlation_id}\nevent: {payload.event_type.value}\ndata: {body}\n\n"
    finally:
        bus.unsubscribe(subscription)


@router.get("/stream")
async def stream_activity(
    request: Request,
    session: SessionDep,
    bus: EventBusDep,
    context: RequestContext = Depends(require_capability(Capability.VIEW_ACTIVITY_LOG)),
) -> StreamingResponse:
    """Stream new activity entries of the caller's company as server-sent events."""
    # The stream never touches the database; end the request transaction now.
    await session.commit()
    subscription = bus.subscribe(event_types={EventType.ACTIVITY_RECORDED}, tenant_id=context.tenant_id)
    logger.info("Activity stream opened for profile %s tenant %s", context.profile_id, context.tenant_id)
    return StreamingResponse(
        _event_stream(request, bus, subscription),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
    )
