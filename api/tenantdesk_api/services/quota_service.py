"""Subscription-tier note quota enforcement.

Limits come from :data:`tenantdesk_core.models.NOTE_LIMITS`: standard owners
may hold at most three non-deleted notes, premium owners are unbounded.

Every quota-affecting write for a profile (note insert, tier downgrade)
first takes a transaction-scoped advisory lock keyed on that profile, then
performs a single conditional statement:

* note insert: ``INSERT ... SELECT ... WHERE (active count) < limit``
* downgrade: ``UPDATE profiles ... WHERE (active count) <= new limit``

The affected row count says whether the write happened, so no interleaving
of concurrent callers can push an owner past the ceiling.  On SQLite the lock
is a no-op and the database-level write lock serialises the statements.
"""

from __future__ import annotations

import logging

from sqlalchemy.ext.asyncio import AsyncSession
from tenantdesk_core.errors import NotFoundError, QuotaExceededError
from tenantdesk_core.models import NoteStats, SubscriptionTier, note_limit_for
from tenantdesk_core.state.database import acquire_advisory_lock
from tenantdesk_core.state.repository import NoteRepository, ProfileRepository
from tenantdesk_core.state.tables import NoteTable, ProfileTable

logger = logging.getLogger(__name__)


def _lock_key(profile_id: str) -> str:
    return f"note_quota_{profile_id}"


class QuotaService:
    """Per-profile note quota checks and guarded writes.

    Parameters
    ----------
    session:
        The request's database session.
    profile_id:
        The profile whose quota is being enforced.
    """

    def __init__(self, session: AsyncSession, profile_id: str) -> None:
        self._session = session
        self._profile_id = profile_id
        self._profiles = ProfileRepository(session)
        self._notes = NoteRepository(session, owner_id=profile_id)

    async def _load_profile(self, *, lock: bool = False) -> ProfileTable:
        profile = await self._profiles.get_by_id(self._profile_id, for_update=lock)
        if profile is None:
            raise NotFoundError("Profile not found", profile_id=self._profile_id)
        return profile

    async def _acquire_lock(self) -> None:
        await acquire_advisory_lock(self._session, _lock_key(self._profile_id))

    async def can_create(self) -> bool:
        """Return ``True`` if the owner may create one more note right now.

        Advisory only; :meth:`create_note` re-checks atomically.
        """
        profile = await self._load_profile()
        limit = note_limit_for(SubscriptionTier(profile.subscription_tier))
        if limit is None:
            return True
        return await self._notes.count_active() < limit

    async def create_note(
        self,
        *,
        title: str,
        content: str,
        tags: list[str],
        is_favorite: bool = False,
    ) -> NoteTable:
        """Insert a note if and only if the owner is below their ceiling.

        Raises :class:`QuotaExceededError` when the ceiling blocks the insert.
        """
        await self._acquire_lock()
        profile = await self._load_profile(lock=True)
        tier = SubscriptionTier(profile.subscription_tier)
        limit = note_limit_for(tier)
        note = await self._notes.insert_within_limit(
            title=title,
            content=content,
            tags=tags,
            is_favorite=is_favorite,
            limit=limit,
        )
        if note is None:
            logger.warning("Quota exceeded: profile=%s tier=%s limit=%s", self._profile_id, tier.value, limit)
            raise QuotaExceededError(
                f"Note limit reached for the {tier.value} tier ({limit} notes). Upgrade to premium for unlimited notes.",
                limit=limit,
                subscription_tier=tier.value,
            )
        return note

    async def downgrade(self) -> str:
        """Move the owner to ``standard`` unless they hold too many notes.

        Returns the previous tier.  Raises :class:`QuotaExceededError` and
        leaves the tier unchanged when the active note count exceeds the
        standard ceiling.
        """
        await self._acquire_lock()
        profile = await self._load_profile(lock=True)
        previous = profile.subscription_tier
        ceiling = note_limit_for(SubscriptionTier.STANDARD)
        updated = await self._profiles.set_tier(
            self._profile_id,
            SubscriptionTier.STANDARD.value,
            max_active_notes=ceiling,
        )
        if not updated:
            active = await self._notes.count_active()
            logger.warning("Downgrade blocked: profile=%s active_notes=%d ceiling=%s", self._profile_id, active, ceiling)
            raise QuotaExceededError(
                f"Cannot downgrade: {active} active notes exceed the standard limit of {ceiling}. "
                "Delete notes first.",
                active_notes=active,
                limit=ceiling,
            )
        await self._session.refresh(profile)
        return previous

    async def upgrade(self) -> str:
        """Move the owner to ``premium``.  Returns the previous tier."""
        await self._acquire_lock()
        profile = await self._load_profile(lock=True)
        previous = profile.subscription_tier
        await self._profiles.set_tier(self._profile_id, SubscriptionTier.PREMIUM.value)
        await self._session.refresh(profile)
        return previous

    async def note_stats(self) -> NoteStats:
        """Summarise the owner's notes against their tier ceiling."""
        profile = await self._load_profile()
        tier = SubscriptionTier(profile.subscription_tier)
        limit = note_limit_for(tier)
        total = await self._notes.count_active()
        return NoteStats(
            total_notes=total,
            favorite_notes=await self._notes.count_favorites(),
            max_notes=-1 if limit is None else limit,
            can_create_more=limit is None or total < limit,
            subscription_type=tier,
        )
