"""Domain vocabulary for TenantDesk."""

from tenantdesk_core.models.activity import ActivityVerb, ResourceType
from tenantdesk_core.models.invitation import (
    INVITATION_TTL,
    InvitationStatus,
    effective_status,
    is_expired,
)
from tenantdesk_core.models.note import NOTE_LIMITS, NoteStats, normalize_tags, note_limit_for
from tenantdesk_core.models.profile import (
    GRANTABLE_ROLES,
    Role,
    SubscriptionTier,
    parse_role,
)

__all__ = [
    "ActivityVerb",
    "GRANTABLE_ROLES",
    "INVITATION_TTL",
    "InvitationStatus",
    "NOTE_LIMITS",
    "NoteStats",
    "ResourceType",
    "Role",
    "SubscriptionTier",
    "effective_status",
    "is_expired",
    "normalize_tags",
    "note_limit_for",
    "parse_role",
]
