"""Invitation lifecycle: create, accept, decline, and list.

States move only ``pending -> accepted`` or ``pending -> declined``.
``expired`` is never stored; every read derives it from ``expires_at``.

* Creation is a conditional insert that refuses to add a second live
  (pending, unexpired) invitation for the same tenant and email.
* Accept and decline are a compare-and-swap on ``status = 'pending'``;
  exactly one concurrent caller wins, the rest see ``AlreadyResolved``.
* Accepting links the actor's profile to the tenant with the invited role
  in the same savepoint as the status change.  The link only applies to a
  profile that has no tenant yet, so two invitations accepted at once
  cannot both move the same profile.
"""

from __future__ import annotations

import logging
from datetime import UTC, datetime
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession
from tenantdesk_core.errors import (
    AlreadyMemberError,
    AlreadyResolvedError,
    AuthorizationError,
    DuplicateInvitationError,
    InvalidTokenError,
    InvitationExpiredError,
    NotFoundError,
    ValidationError,
)
from tenantdesk_core.models import (
    GRANTABLE_ROLES,
    ActivityVerb,
    InvitationStatus,
    ResourceType,
    Role,
    effective_status,
    parse_role,
)
from tenantdesk_core.state.repository import InvitationRepository, ProfileRepository, TenantRepository
from tenantdesk_core.state.tables import InvitationTable, TenantTable

from tenantdesk_api.middleware.rbac import Capability, RequestContext, authorize
from tenantdesk_api.services.activity_service import ActivityService
from tenantdesk_api.services.event_bus import EventType, defer_event
from tenantdesk_api.services.tenant_service import tenant_to_dict

logger = logging.getLogger(__name__)


def invitation_to_dict(
    invitation: InvitationTable,
    *,
    tenant: TenantTable | None = None,
    include_token: bool = False,
    now: datetime | None = None,
) -> dict[str, Any]:
    """Render an invitation with its read-time effective status."""
    body: dict[str, Any] = {
        "id": invitation.id,
        "tenant_id": invitation.tenant_id,
        "invited_by": invitation.invited_by,
        "invited_email": invitation.invited_email,
        "invited_user_id": invitation.invited_user_id,
        "role": invitation.role,
        "status": effective_status(invitation.status, invitation.expires_at, now=now).value,
        "message": invitation.message,
        "created_at": invitation.created_at.isoformat(),
        "expires_at": invitation.expires_at.isoformat(),
        "responded_at": invitation.responded_at.isoformat() if invitation.responded_at else None,
    }
    if tenant is not None:
        body["company_name"] = tenant.company_name
    if include_token:
        body["token"] = invitation.token
    return body


class InvitationService:
    """Invitation operations on behalf of the calling profile."""

    def __init__(self, session: AsyncSession, context: RequestContext) -> None:
        self._session = session
        self._context = context
        self._invitations = InvitationRepository(session)
        self._profiles = ProfileRepository(session)
        self._activity = ActivityService(session)

    async def invite(
        self,
        *,
        email: str,
        role: str = Role.COMPANY_MEMBER.value,
        message: str | None = None,
    ) -> dict[str, Any]:
        """Invite *email* into the caller's tenant.

        Raises
        ------
        AuthorizationError
            The caller is not a company admin of a tenant.
        ValidationError
            Unknown or non-grantable role, or an empty email.
        AlreadyMemberError
            The email's profile already belongs to the tenant.
        DuplicateInvitationError
            A pending, unexpired invitation for the email already exists.
        """
        authorize(self._context, Capability.INVITE_MEMBERS)
        tenant_id = self._context.tenant_id
        assert tenant_id is not None  # noqa: S101

        email = email.strip().lower()
        if not email:
            raise ValidationError("Email is required")
        try:
            grant = parse_role(role)
        except ValueError as exc:
            raise ValidationError(str(exc)) from exc
        if grant not in GRANTABLE_ROLES:
            raise ValidationError(f"Role '{grant.value}' cannot be granted by invitation")

        existing = await self._profiles.get_by_email(email)
        if existing is not None and existing.tenant_id == tenant_id:
            raise AlreadyMemberError(f"{email} is already a member of this company", email=email)

        invitation = await self._invitations.create_if_no_live(
            tenant_id=tenant_id,
            invited_by=self._context.profile_id,
            invited_email=email,
            role=grant.value,
            invited_user_id=existing.id if existing is not None else None,
            message=(message or "").strip() or None,
        )
        if invitation is None:
            raise DuplicateInvitationError(
                f"A pending invitation for {email} already exists",
                email=email,
            )

        await self._activity.record(
            actor_id=self._context.profile_id,
            verb=ActivityVerb.CREATE,
            tenant_id=tenant_id,
            resource_type=ResourceType.INVITATION,
            resource_id=invitation.id,
            description=f"Invited {email} as {grant.value}",
        )
        defer_event(
            self._session,
            EventType.INVITATION_CREATED,
            tenant_id=tenant_id,
            data={"invitation_id": invitation.id, "invited_email": email},
        )
        logger.info("Invitation %s created for %s in tenant %s", invitation.id, email, tenant_id)
        return invitation_to_dict(invitation, include_token=True)

    async def _load_for_response(self, token: str) -> InvitationTable:
        """Fetch the invitation behind *token* and check the caller may answer it."""
        authorize(self._context, Capability.RESPOND_TO_INVITATIONS)
        invitation = await self._invitations.get_by_token(token)
        if invitation is None:
            raise InvalidTokenError("Invitation not found")
        if invitation.invited_email != self._context.email.lower():
            logger.info(
                "Profile %s tried to answer invitation %s addressed to another email",
                self._context.profile_id,
                invitation.id,
            )
            raise AuthorizationError("This invitation is addressed to a different email")
        self._raise_if_not_pending(invitation)
        return invitation

    @staticmethod
    def _raise_if_not_pending(invitation: InvitationTable, *, now: datetime | None = None) -> None:
        status = effective_status(invitation.status, invitation.expires_at, now=now)
        if status is InvitationStatus.EXPIRED:
            raise InvitationExpiredError("Invitation has expired", invitation_id=invitation.id)
        if status.is_terminal:
            raise AlreadyResolvedError(f"Invitation was already {status.value}", invitation_id=invitation.id)

    async def _swap(self, invitation: InvitationTable, new_status: InvitationStatus) -> None:
        """Compare-and-swap the status; explain the failure if another caller won."""
        now = datetime.now(UTC)
        won = await self._invitations.resolve(invitation.token, new_status.value, now=now)
        await self._session.refresh(invitation)
        if won:
            return
        self._raise_if_not_pending(invitation, now=now)
        raise AlreadyResolvedError("Invitation was already resolved", invitation_id=invitation.id)

    async def accept(self, token: str) -> dict[str, Any]:
        """Accept an invitation and join its tenant.  Returns the tenant."""
        invitation = await self._load_for_response(token)
        if self._context.tenant_id is not None:
            raise AlreadyMemberError(
                "You already belong to a company",
                tenant_id=self._context.tenant_id,
            )
        tenant = await TenantRepository(self._session).get(invitation.tenant_id)
        if tenant is None:
            raise InvalidTokenError("Invitation not found")

        async with self._session.begin_nested():
            await self._swap(invitation, InvitationStatus.ACCEPTED)
            if not await self._profiles.link_tenant(self._context.profile_id, tenant.id, invitation.role):
                # The context may predate a join that committed since.
                current = await self._profiles.get_by_id(self._context.profile_id, for_update=True)
                if current is None:
                    raise NotFoundError("Profile not found", profile_id=self._context.profile_id)
                raise AlreadyMemberError("You already belong to a company", tenant_id=current.tenant_id)

        await self._activity.record(
            actor_id=self._context.profile_id,
            verb=ActivityVerb.UPDATE,
            tenant_id=tenant.id,
            resource_type=ResourceType.INVITATION,
            resource_id=invitation.id,
            description=f"{self._context.email} accepted the invitation and joined as {invitation.role}",
        )
        defer_event(
            self._session,
            EventType.INVITATION_RESOLVED,
            tenant_id=tenant.id,
            data={"invitation_id": invitation.id, "status": InvitationStatus.ACCEPTED.value},
        )
        logger.info("Invitation %s accepted by %s", invitation.id, self._context.profile_id)
        return tenant_to_dict(tenant)

    async def decline(self, token: str) -> None:
        """Decline an invitation.  The profile is not touched."""
        invitation = await self._load_for_response(token)
        await self._swap(invitation, InvitationStatus.DECLINED)
        await self._activity.record(
            actor_id=self._context.profile_id,
            verb=ActivityVerb.UPDATE,
            tenant_id=invitation.tenant_id,
            resource_type=ResourceType.INVITATION,
            resource_id=invitation.id,
            description=f"{self._context.email} declined the invitation",
        )
        defer_event(
            self._session,
            EventType.INVITATION_RESOLVED,
            tenant_id=invitation.tenant_id,
            data={"invitation_id": invitation.id, "status": InvitationStatus.DECLINED.value},
        )

    async def list_for_tenant(self) -> list[dict[str, Any]]:
        """Return the tenant's invitations, newest first, with effective status."""
        authorize(self._context, Capability.VIEW_TENANT_INVITATIONS)
        assert self._context.tenant_id is not None  # noqa: S101
        now = datetime.now(UTC)
        return [
            invitation_to_dict(inv, include_token=True, now=now)
            for inv in await self._invitations.list_for_tenant(self._context.tenant_id)
        ]

    async def list_mine(self) -> list[dict[str, Any]]:
        """Return live invitations addressed to the caller's email."""
        rows = await self._invitations.list_live_for_email(self._context.email)
        return [invitation_to_dict(inv, tenant=tenant, include_token=True) for inv, tenant in rows]
