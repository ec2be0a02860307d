"""State persistence layer (PostgreSQL in production, SQLite locally)."""

from tenantdesk_core.state.database import acquire_advisory_lock, get_engine
from tenantdesk_core.state.repository import (
    ActivityRepository,
    IdentityRepository,
    IdentitySessionRepository,
    InvitationRepository,
    NoteRepository,
    ProfileRepository,
    SubscriptionChangeRepository,
    TenantRepository,
)

__all__ = [
    "ActivityRepository",
    "IdentityRepository",
    "IdentitySessionRepository",
    "InvitationRepository",
    "NoteRepository",
    "ProfileRepository",
    "SubscriptionChangeRepository",
    "TenantRepository",
    "acquire_advisory_lock",
    "get_engine",
]
