"""Invitation endpoints.

Admins create and list their company's invitations.  Any signed-in user
lists the invitations addressed to their email and accepts or declines them
by token.  ``expired`` is always derived at read time.
"""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, status
from pydantic import BaseModel, EmailStr, Field
from tenantdesk_core.models import Role

from tenantdesk_api.dependencies import ContextDep, SessionDep
from tenantdesk_api.middleware.rbac import Capability, RequestContext, require_capability
from tenantdesk_api.schemas import InvitationResponse, TenantResponse
from tenantdesk_api.services.invitation_service import InvitationService

router = APIRouter(prefix="/invitations", tags=["invitations"])


class InviteRequest(BaseModel):
    """Request body for inviting someone into the caller's company."""

    email: EmailStr
    role: str = Field(default=Role.COMPANY_MEMBER.value, description="Role granted on acceptance.")
    message: str | None = Field(default=None, max_length=2000)


@router.post("", response_model=InvitationResponse, status_code=status.HTTP_201_CREATED)
async def create_invitation(
    body: InviteRequest,
    session: SessionDep,
    context: RequestContext = Depends(require_capability(Capability.INVITE_MEMBERS)),
) -> dict[str, Any]:
    """Invite an email address; refused while a live invitation exists for it."""
    return await InvitationService(session, context).invite(email=body.email, role=body.role, message=body.message)


@router.get("", response_model=list[InvitationResponse])
async def list_tenant_invitations(
    session: SessionDep,
    context: RequestContext = Depends(require_capability(Capability.VIEW_TENANT_INVITATIONS)),
) -> list[dict[str, Any]]:
    return await InvitationService(session, context).list_for_tenant()


@router.get("/mine", response_model=list[InvitationResponse])
async def list_my_invitations(context: ContextDep, session: SessionDep) -> list[dict[str, Any]]:
    """Pending, unexpired invitations addressed to the caller."""
    return await InvitationService(session, context).list_mine()


@router.post("/{token}/accept", response_model=TenantResponse)
async def accept_invitation(token: str, context: ContextDep, session: SessionDep) -> dict[str, Any]:
    """Accept an invitation and join the inviting company."""
    return await InvitationService(session, context).accept(token)


@router.post("/{token}/decline", status_code=status.HTTP_204_NO_CONTENT)
async def decline_invitation(token: str, context: ContextDep, session: SessionDep) -> None:
    await InvitationService(session, context).decline(token)
