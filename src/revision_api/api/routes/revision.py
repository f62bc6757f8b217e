from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, HTTPException, Query, status

from revision_api.api.dependencies import (
    CurrentUserIdDependency,
    NoteRevisionServiceDependency,
    RevisionServiceDependency,
)
from revision_api.domain.enums import ContextType
from revision_api.domain.schemas.revision import (
    NoteLookupResponse,
    RefreshNoteRequest,
    RefreshNoteResponse,
    RevisionCard,
    StaleSweepResult,
)

router = APIRouter(prefix="/revision", tags=["Revision"])


@router.get("/cards", response_model=list[RevisionCard])
async def get_ranked_revision_cards(
    service: RevisionServiceDependency,
    user_id: CurrentUserIdDependency,
) -> list[RevisionCard]:
    """Rank the caller's revision topics from weakest to strongest."""
    return await service.get_ranked_cards(user_id)


@router.get("/notes", response_model=NoteLookupResponse)
async def get_revision_note(
    service: NoteRevisionServiceDependency,
    user_id: CurrentUserIdDependency,
    context_type: Annotated[ContextType, Query()],
    context_id: Annotated[str, Query(min_length=1, max_length=400)],
    force_refresh: Annotated[bool, Query()] = False,
) -> NoteLookupResponse:
    """Serve the cached note for a context, generating it on a miss."""
    try:
        return await service.get_note(
            user_id, context_type, context_id, force_refresh=force_refresh
        )
    except KeyError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc


@router.post("/notes/refresh", response_model=RefreshNoteResponse)
async def refresh_revision_note(
    payload: RefreshNoteRequest,
    service: NoteRevisionServiceDependency,
    user_id: CurrentUserIdDependency,
) -> RefreshNoteResponse:
    """Regenerate the note for a scope, replacing any cached copy."""
    return await service.refresh_note(user_id, payload)


@router.post("/notes/mark-stale", response_model=StaleSweepResult)
async def mark_revision_notes_stale(
    service: RevisionServiceDependency,
    user_id: CurrentUserIdDependency,
) -> StaleSweepResult:
    """Flag the caller's notes that are due for regeneration."""
    return await service.mark_due_notes_stale(user_id)
