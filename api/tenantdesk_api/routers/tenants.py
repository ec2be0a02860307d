"""Tenant endpoints: public joinable list, the caller's company, and its dashboard."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from tenantdesk_api.dependencies import ContextDep, SessionDep
from tenantdesk_api.middleware.rbac import Capability, RequestContext, require_capability
from tenantdesk_api.schemas import JoinableTenantResponse, TenantResponse, TenantStatsResponse
from tenantdesk_api.services.tenant_service import TenantService

router = APIRouter(prefix="/tenants", tags=["tenants"])


class ReconcileResponse(BaseModel):
    relinked_tenants: list[str]
    skipped: int


@router.get("/joinable", response_model=list[JoinableTenantResponse])
async def list_joinable(session: SessionDep) -> list[dict[str, Any]]:
    """Companies a new member may choose at signup.  Public."""
    return await TenantService(session).list_joinable()


@router.get("/current", response_model=TenantResponse)
async def current_tenant(context: ContextDep, session: SessionDep) -> dict[str, Any]:
    """Return the caller's company (404 for independent users)."""
    return await TenantService(session).get(context)


@router.get("/stats", response_model=TenantStatsResponse)
async def tenant_stats(
    session: SessionDep,
    context: RequestContext = Depends(require_capability(Capability.VIEW_TENANT_DASHBOARD)),
) -> dict[str, Any]:
    """Seat usage and pending invitations for the caller's company."""
    return await TenantService(session).dashboard_stats(context)


@router.post("/reconcile", response_model=ReconcileResponse)
async def reconcile(context: ContextDep, session: SessionDep) -> dict[str, Any]:
    """Re-link the caller to the company they founded if the link was lost."""
    return await TenantService(session).reconcile_founder_links(founder_id=context.profile_id)
