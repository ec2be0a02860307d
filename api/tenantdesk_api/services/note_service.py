"""Notes: the quota-gated, owner-scoped resource.

Only the owner may create or mutate a note.  Company admins may read the
notes and note statistics of members of their own tenant.  Deletion is soft:
the row keeps its data and stays readable by id, but leaves listings and
quota counts.
"""

from __future__ import annotations

import logging
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession
from tenantdesk_core.errors import AuthorizationError, NotFoundError, ValidationError
from tenantdesk_core.models import ActivityVerb, ResourceType, normalize_tags
from tenantdesk_core.state.repository import NoteRepository, ProfileRepository
from tenantdesk_core.state.tables import NoteTable

from tenantdesk_api.middleware.rbac import Capability, RequestContext, authorize
from tenantdesk_api.services.activity_service import ActivityService
from tenantdesk_api.services.quota_service import QuotaService

logger = logging.getLogger(__name__)

MAX_TITLE_LENGTH = 512


def note_to_dict(note: NoteTable) -> dict[str, Any]:
    return {
        "id": note.id,
        "owner_id": note.owner_id,
        "title": note.title,
        "content": note.content,
        "tags": list(note.tags or []),
        "is_favorite": note.is_favorite,
        "deleted_at": note.deleted_at.isoformat() if note.deleted_at else None,
        "created_at": note.created_at.isoformat() if note.created_at else None,
        "updated_at": note.updated_at.isoformat() if note.updated_at else None,
    }


def _clean_title(title: str) -> str:
    cleaned = title.strip()
    if not cleaned:
        raise ValidationError("Title is required")
    if len(cleaned) > MAX_TITLE_LENGTH:
        raise ValidationError(f"Title exceeds {MAX_TITLE_LENGTH} characters")
    return cleaned


def _clean_tags(tags: list[str] | None) -> list[str]:
    try:
        return normalize_tags(tags)
    except ValueError as exc:
        raise ValidationError(str(exc)) from exc


class NoteService:
    """Note operations on behalf of the calling profile."""

    def __init__(self, session: AsyncSession, context: RequestContext) -> None:
        self._session = session
        self._context = context
        self._notes = NoteRepository(session, owner_id=context.profile_id)
        self._activity = ActivityService(session)

    async def _record(self, verb: ActivityVerb, note_id: str, description: str) -> None:
        await self._activity.record(
            actor_id=self._context.profile_id,
            verb=verb,
            tenant_id=self._context.tenant_id,
            resource_type=ResourceType.NOTE,
            resource_id=note_id,
            description=description,
        )

    async def _owned(self, note_id: str) -> NoteTable:
        note = await self._notes.get_by_id(note_id)
        if note is None or note.owner_id != self._context.profile_id:
            raise NotFoundError("Note not found", note_id=note_id)
        if note.deleted_at is not None:
            raise NotFoundError("Note has been deleted", note_id=note_id)
        return note

    async def _check_member_access(self, owner_id: str) -> None:
        """Allow access to *owner_id*'s notes for the owner or their tenant admin."""
        if owner_id == self._context.profile_id:
            return
        authorize(self._context, Capability.VIEW_MEMBER_NOTES)
        owner = await ProfileRepository(self._session).get_by_id(owner_id)
        if owner is None:
            raise NotFoundError("Profile not found", profile_id=owner_id)
        authorize(self._context, Capability.VIEW_MEMBER_NOTES, tenant_id=owner.tenant_id or "")

    async def create(
        self,
        *,
        title: str,
        content: str = "",
        tags: list[str] | None = None,
        is_favorite: bool = False,
    ) -> dict[str, Any]:
        """Create a note for the caller, subject to their tier's quota."""
        authorize(self._context, Capability.MANAGE_OWN_NOTES)
        note = await QuotaService(self._session, self._context.profile_id).create_note(
            title=_clean_title(title),
            content=content,
            tags=_clean_tags(tags),
            is_favorite=is_favorite,
        )
        await self._record(ActivityVerb.CREATE, note.id, f"Created note {note.title}")
        logger.info("Created note %s for %s", note.id, self._context.profile_id)
        return note_to_dict(note)

    async def list_notes(self, owner_id: str | None = None) -> list[dict[str, Any]]:
        """Return non-deleted notes, most recently updated first."""
        owner_id = owner_id or self._context.profile_id
        await self._check_member_access(owner_id)
        notes = await NoteRepository(self._session, owner_id=owner_id).list_active()
        return [note_to_dict(n) for n in notes]

    async def get(self, note_id: str) -> dict[str, Any]:
        """Return a note by id, including soft-deleted ones."""
        note = await self._notes.get_by_id(note_id)
        if note is None:
            raise NotFoundError("Note not found", note_id=note_id)
        try:
            await self._check_member_access(note.owner_id)
        except AuthorizationError:
            # Do not reveal that the id exists.
            raise NotFoundError("Note not found", note_id=note_id) from None
        return note_to_dict(note)

    async def update(
        self,
        note_id: str,
        *,
        title: str | None = None,
        content: str | None = None,
        tags: list[str] | None = None,
        is_favorite: bool | None = None,
    ) -> dict[str, Any]:
        """Apply the given fields to one of the caller's live notes."""
        await self._owned(note_id)
        values: dict[str, Any] = {}
        if title is not None:
            values["title"] = _clean_title(title)
        if content is not None:
            values["content"] = content
        if tags is not None:
            values["tags"] = _clean_tags(tags)
        if is_favorite is not None:
            values["is_favorite"] = is_favorite
        if not values:
            raise ValidationError("No fields to update")
        note = await self._notes.update(note_id, **values)
        if note is None:
            raise NotFoundError("Note not found", note_id=note_id)
        await self._record(ActivityVerb.UPDATE, note_id, f"Updated note {note.title}")
        return note_to_dict(note)

    async def toggle_favorite(self, note_id: str) -> dict[str, Any]:
        note = await self._owned(note_id)
        updated = await self._notes.update(note_id, is_favorite=not note.is_favorite)
        if updated is None:
            raise NotFoundError("Note not found", note_id=note_id)
        state = "Favorited" if updated.is_favorite else "Unfavorited"
        await self._record(ActivityVerb.UPDATE, note_id, f"{state} note {updated.title}")
        return note_to_dict(updated)

    async def delete(self, note_id: str) -> None:
        """Soft-delete one of the caller's notes."""
        note = await self._owned(note_id)
        if not await self._notes.soft_delete(note_id):
            raise NotFoundError("Note not found", note_id=note_id)
        await self._record(ActivityVerb.DELETE, note_id, f"Deleted note {note.title}")

    async def stats(self, owner_id: str | None = None) -> dict[str, Any]:
        """Return note usage for the caller (or a member, for tenant admins)."""
        owner_id = owner_id or self._context.profile_id
        await self._check_member_access(owner_id)
        stats = await QuotaService(self._session, owner_id).note_stats()
        return stats.model_dump(mode="json")
