"""Interfaces the revision engine consumes from its collaborators."""

from __future__ import annotations

from typing import Protocol

from revision_api.domain.enums import ItemType
from revision_api.domain.schemas.revision import (
    AttemptRecord,
    CategoryStat,
    NoteEvidence,
    RevisionNote,
    RevisionScope,
)


class AttemptSource(Protocol):
    async def list_attempts(
        self, *, user_id: str, item_type: ItemType, limit: int
    ) -> list[AttemptRecord]: ...


class FallbackStatsSource(Protocol):
    async def list_category_stats(self, *, user_id: str) -> list[CategoryStat]: ...


class NoteGenerator(Protocol):
    """Produces a structured revision note for a scope."""

    async def generate(
        self, scope: RevisionScope, *, evidence: NoteEvidence | None = None
    ) -> RevisionNote: ...


__all__ = ["AttemptSource", "FallbackStatsSource", "NoteGenerator"]
