"""Note endpoints for the caller's own notes plus admin views of member notes.

Creation is quota-guarded: standard-tier owners are refused with
``quota_exceeded`` once they hold three non-deleted notes.  Deleting is soft;
a deleted note disappears from lists but stays retrievable by id.
"""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, status
from pydantic import BaseModel, Field

from tenantdesk_api.dependencies import ContextDep, SessionDep
from tenantdesk_api.middleware.rbac import Capability, RequestContext, require_capability
from tenantdesk_api.schemas import NoteResponse, NoteStatsResponse
from tenantdesk_api.services.note_service import MAX_TITLE_LENGTH, NoteService

router = APIRouter(prefix="/notes", tags=["notes"])


class NoteCreateRequest(BaseModel):
    title: str = Field(..., min_length=1, max_length=MAX_TITLE_LENGTH)
    content: str = ""
    tags: list[str] = Field(default_factory=list)
    is_favorite: bool = False


class NoteUpdateRequest(BaseModel):
    """Partial update; omitted fields are left unchanged."""

    title: str | None = Field(default=None, min_length=1, max_length=MAX_TITLE_LENGTH)
    content: str | None = None
    tags: list[str] | None = None
    is_favorite: bool | None = None


# ---------------------------------------------------------------------------
# Own notes
# ---------------------------------------------------------------------------


@router.get("", response_model=list[NoteResponse])
async def list_notes(context: ContextDep, session: SessionDep) -> list[dict[str, Any]]:
    """Non-deleted notes, most recently updated first."""
    return await NoteService(session, context).list_notes()


@router.post("", response_model=NoteResponse, status_code=status.HTTP_201_CREATED)
async def create_note(body: NoteCreateRequest, context: ContextDep, session: SessionDep) -> dict[str, Any]:
    return await NoteService(session, context).create(
        title=body.title,
        content=body.content,
        tags=body.tags,
        is_favorite=body.is_favorite,
    )


@router.get("/stats", response_model=NoteStatsResponse)
async def note_stats(context: ContextDep, session: SessionDep) -> dict[str, Any]:
    """Note count, favourites and remaining quota for the caller."""
    return await NoteService(session, context).stats()


# ---------------------------------------------------------------------------
# Member views (company admins)
# ---------------------------------------------------------------------------


@router.get("/members/{owner_id}", response_model=list[NoteResponse])
async def list_member_notes(
    owner_id: str,
    session: SessionDep,
    context: RequestContext = Depends(require_capability(Capability.VIEW_MEMBER_NOTES)),
) -> list[dict[str, Any]]:
    return await NoteService(session, context).list_notes(owner_id)


@router.get("/members/{owner_id}/stats", response_model=NoteStatsResponse)
async def member_note_stats(
    owner_id: str,
    session: SessionDep,
    context: RequestContext = Depends(require_capability(Capability.VIEW_MEMBER_NOTES)),
) -> dict[str, Any]:
    return await NoteService(session, context).stats(owner_id)


# ---------------------------------------------------------------------------
# Single note
# ---------------------------------------------------------------------------


@router.get("/{note_id}", response_model=NoteResponse)
async def get_note(note_id: str, context: ContextDep, session: SessionDep) -> dict[str, Any]:
    """Fetch a note by id, including soft-deleted notes."""
    return await NoteService(session, context).get(note_id)


@router.patch("/{note_id}", response_model=NoteResponse)
async def update_note(
    note_id: str,
    body: NoteUpdateRequest,
    context: ContextDep,
    session: SessionDep,
) -> dict[str, Any]:
    return await NoteService(session, context).update(
        note_id,
        title=body.title,
        content=body.content,
        tags=body.tags,
        is_favorite=body.is_favorite,
    )


@router.post("/{note_id}/favorite", response_model=NoteResponse)
async def toggle_favorite(note_id: str, context: ContextDep, session: SessionDep) -> dict[str, Any]:
    return await NoteService(session, context).toggle_favorite(note_id)


@router.delete("/{note_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_note(note_id: str, context: ContextDep, session: SessionDep) -> None:
    """Soft-delete a note."""
    await NoteService(session, context).delete(note_id)
