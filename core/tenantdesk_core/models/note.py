"""Note quota ceilings and tag normalisation."""

from __future__ import annotations

from collections.abc import Iterable

from pydantic import BaseModel, Field

from tenantdesk_core.models.profile import SubscriptionTier

# ``None`` means unlimited.
NOTE_LIMITS: dict[SubscriptionTier, int | None] = {
    SubscriptionTier.STANDARD: 3,
    SubscriptionTier.PREMIUM: None,
}

MAX_TAGS = 20
MAX_TAG_LENGTH = 64


def note_limit_for(tier: SubscriptionTier | str) -> int | None:
    """Return the non-deleted note ceiling for *tier* (``None`` = unlimited)."""
    return NOTE_LIMITS[SubscriptionTier(tier)]


def normalize_tags(raw: Iterable[str] | None) -> list[str]:
    """Trim, drop empties, and de-duplicate tags preserving first occurrence."""
    seen: set[str] = set()
    tags: list[str] = []
    for tag in raw or ():
        cleaned = tag.strip()
        if not cleaned or cleaned in seen:
            continue
        if len(cleaned) > MAX_TAG_LENGTH:
            raise ValueError(f"Tag '{cleaned[:16]}...' exceeds {MAX_TAG_LENGTH} characters")
        seen.add(cleaned)
        tags.append(cleaned)
    if len(tags) > MAX_TAGS:
        raise ValueError(f"A note may carry at most {MAX_TAGS} tags")
    return tags


class NoteStats(BaseModel):
    """Per-profile note usage shown next to the notes list."""

    total_notes: int = Field(..., ge=0, description="Non-deleted notes owned by the profile.")
    favorite_notes: int = Field(..., ge=0)
    max_notes: int = Field(..., description="Ceiling for the profile's tier, -1 when unlimited.")
    can_create_more: bool
    subscription_type: SubscriptionTier
