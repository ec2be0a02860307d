"""Subscription tier management for profiles of the caller's company."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, Query

from tenantdesk_api.dependencies import SessionDep
from tenantdesk_api.middleware.rbac import Capability, RequestContext, require_capability
from tenantdesk_api.schemas import SubscriptionChangeResponse, SubscriptionHistoryItem
from tenantdesk_api.services.subscription_service import SubscriptionService

router = APIRouter(prefix="/subscriptions", tags=["subscriptions"])

_AdminGuard = Depends(require_capability(Capability.MANAGE_SUBSCRIPTIONS))


@router.get("/history", response_model=list[SubscriptionHistoryItem])
async def subscription_history(
    session: SessionDep,
    context: RequestContext = _AdminGuard,
    limit: int = Query(default=100, ge=1, le=500),
) -> list[dict[str, Any]]:
    """Tier changes in the caller's company, newest first."""
    return await SubscriptionService(session, context).history(limit=limit)


@router.post("/{profile_id}/upgrade", response_model=SubscriptionChangeResponse)
async def upgrade(
    profile_id: str,
    session: SessionDep,
    context: RequestContext = _AdminGuard,
) -> dict[str, Any]:
    """Move a member to the premium tier."""
    return await SubscriptionService(session, context).upgrade(profile_id)


@router.post("/{profile_id}/downgrade", response_model=SubscriptionChangeResponse)
async def downgrade(
    profile_id: str,
    session: SessionDep,
    context: RequestContext = _AdminGuard,
) -> dict[str, Any]:
    """Move a member to the standard tier.

    Refused with ``quota_exceeded`` while the member holds more active notes
    than the standard tier allows.
    """
    return await SubscriptionService(session, context).downgrade(profile_id)
