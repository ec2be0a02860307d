"""Profile endpoints: the caller's own profile, tenant members, and independent users."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from tenantdesk_api.dependencies import ContextDep, SessionDep
from tenantdesk_api.middleware.rbac import Capability, RequestContext, require_capability
from tenantdesk_api.schemas import ProfileResponse
from tenantdesk_api.services.profile_service import ProfileService

router = APIRouter(prefix="/profiles", tags=["profiles"])


class UpdateProfileRequest(BaseModel):
    """Fields a user may change on their own profile.  Omitted fields are kept."""

    display_name: str | None = Field(default=None, min_length=1, max_length=256)
    phone: str | None = Field(default=None, max_length=64)


@router.get("/me", response_model=ProfileResponse)
async def get_me(context: ContextDep, session: SessionDep) -> dict[str, Any]:
    return await ProfileService(session).get_me(context)


@router.patch("/me", response_model=ProfileResponse)
async def update_me(body: UpdateProfileRequest, context: ContextDep, session: SessionDep) -> dict[str, Any]:
    """Update the caller's display name and/or phone."""
    return await ProfileService(session).update_me(context, display_name=body.display_name, phone=body.phone)


@router.get("/members", response_model=list[ProfileResponse])
async def list_members(
    session: SessionDep,
    context: RequestContext = Depends(require_capability(Capability.VIEW_TENANT_MEMBERS)),
) -> list[dict[str, Any]]:
    """List the members of the caller's company."""
    return await ProfileService(session).list_tenant_members(context)


@router.get("/independent", response_model=list[ProfileResponse])
async def list_independent(
    session: SessionDep,
    context: RequestContext = Depends(require_capability(Capability.VIEW_JOINABLE_USERS)),
) -> list[dict[str, Any]]:
    """List independent users a company admin may invite."""
    return await ProfileService(session).list_independent_users(context)
