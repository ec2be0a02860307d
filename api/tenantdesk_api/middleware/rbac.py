"""Role-based capability checks.

Every authorization decision in the service goes through :func:`authorize`,
which consults the closed role set of :class:`~tenantdesk_core.models.Role`
and the static :data:`ROLE_CAPABILITIES` table.  Capabilities marked as
tenant-scoped additionally require the caller's tenant to equal the target
tenant.

Usage in routers::

    from tenantdesk_api.middleware.rbac import Capability, require_capability

    @router.get("/members")
    async def list_members(
        context: RequestContext = Depends(require_capability(Capability.VIEW_TENANT_MEMBERS)),
    ) -> ...:
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum

from fastapi import Depends
from tenantdesk_core.errors import AuthorizationError
from tenantdesk_core.models import Role, SubscriptionTier

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Request context
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class RequestContext:
    """Who is calling: resolved once per request from the session token."""

    profile_id: str
    email: str
    display_name: str
    role: Role
    tenant_id: str | None
    subscription_tier: SubscriptionTier
    session_id: str | None = None

    @property
    def is_admin(self) -> bool:
        return self.role is Role.COMPANY_ADMIN


# ---------------------------------------------------------------------------
# Capabilities
# ---------------------------------------------------------------------------


class Capability(str, Enum):
    """Fine-grained capability tokens checked by :func:`authorize`."""

    MANAGE_OWN_NOTES = "manage:own_notes"
    RESPOND_TO_INVITATIONS = "respond:invitations"
    VIEW_TENANT_MEMBERS = "view:tenant_members"
    INVITE_MEMBERS = "invite:members"
    VIEW_TENANT_INVITATIONS = "view:tenant_invitations"
    VIEW_JOINABLE_USERS = "view:joinable_users"
    MANAGE_SUBSCRIPTIONS = "manage:subscriptions"
    VIEW_MEMBER_NOTES = "view:member_notes"
    VIEW_ACTIVITY_LOG = "view:activity_log"
    VIEW_TENANT_DASHBOARD = "view:tenant_dashboard"


# Capabilities that only make sense against the caller's own tenant.
TENANT_SCOPED: frozenset[Capability] = frozenset(
    {
        Capability.VIEW_TENANT_MEMBERS,
        Capability.INVITE_MEMBERS,
        Capability.VIEW_TENANT_INVITATIONS,
        Capability.MANAGE_SUBSCRIPTIONS,
        Capability.VIEW_MEMBER_NOTES,
        Capability.VIEW_ACTIVITY_LOG,
        Capability.VIEW_TENANT_DASHBOARD,
    }
)

_SELF_SERVICE: frozenset[Capability] = frozenset(
    {
        Capability.MANAGE_OWN_NOTES,
        Capability.RESPOND_TO_INVITATIONS,
    }
)

_MEMBER_CAPS: frozenset[Capability] = _SELF_SERVICE | frozenset({Capability.VIEW_TENANT_MEMBERS})

_ADMIN_CAPS: frozenset[Capability] = _MEMBER_CAPS | frozenset(
    {
        Capability.INVITE_MEMBERS,
        Capability.VIEW_TENANT_INVITATIONS,
        Capability.VIEW_JOINABLE_USERS,
        Capability.MANAGE_SUBSCRIPTIONS,
        Capability.VIEW_MEMBER_NOTES,
        Capability.VIEW_ACTIVITY_LOG,
        Capability.VIEW_TENANT_DASHBOARD,
    }
)

ROLE_CAPABILITIES: dict[Role, frozenset[Capability]] = {
    Role.COMPANY_ADMIN: _ADMIN_CAPS,
    Role.COMPANY_MEMBER: _MEMBER_CAPS,
    Role.INDEPENDENT_USER: _SELF_SERVICE,
}


def role_has_capability(role: Role, capability: Capability) -> bool:
    """Return ``True`` if *role* grants *capability*."""
    return capability in ROLE_CAPABILITIES.get(role, frozenset())


def authorize(context: RequestContext, capability: Capability, tenant_id: str | None = None) -> None:
    """Raise :class:`AuthorizationError` unless *context* may use *capability*.

    For tenant-scoped capabilities the caller must belong to a tenant, and
    when *tenant_id* is given it must be the caller's tenant.
    """
    if not role_has_capability(context.role, capability):
        logger.info(
            "Capability denied: profile=%s role=%s requires %s",
            context.profile_id,
            context.role.value,
            capability.value,
        )
        raise AuthorizationError(
            f"Role '{context.role.value}' does not have '{capability.value}'",
            capability=capability.value,
        )
    if capability in TENANT_SCOPED:
        if context.tenant_id is None:
            raise AuthorizationError("This action requires tenant membership", capability=capability.value)
        if tenant_id is not None and tenant_id != context.tenant_id:
            logger.info(
                "Cross-tenant access denied: profile=%s tenant=%s target=%s",
                context.profile_id,
                context.tenant_id,
                tenant_id,
            )
            raise AuthorizationError("Resource belongs to another tenant", capability=capability.value)


# ---------------------------------------------------------------------------
# FastAPI dependency
# ---------------------------------------------------------------------------


def require_capability(capability: Capability) -> Callable[..., RequestContext]:
    """Return a FastAPI dependency that enforces *capability*.

    The resolved :class:`RequestContext` is returned so handlers can use it
    directly.
    """
    from tenantdesk_api.dependencies import get_request_context

    def _guard(context: RequestContext = Depends(get_request_context)) -> RequestContext:
        authorize(context, capability)
        return context

    return _guard
