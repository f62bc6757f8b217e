from __future__ import annotations

from collections.abc import Sequence
from datetime import datetime

from sqlalchemy import Select, delete, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from revision_api.db.models import RevisionNoteEvidence, RevisionNoteRecord, as_utc
from revision_api.db.upsert import dialect_insert
from revision_api.domain.enums import EvidenceSource, ItemType
from revision_api.domain.schemas.revision import (
    EvidenceItem,
    NoteCacheEntry,
    PerformanceSnapshot,
    RevisionNote,
    RevisionScope,
)

WEAK_EVIDENCE_WEIGHT = 3
DEFAULT_EVIDENCE_WEIGHT = 1


class RevisionNoteRepository:
    """Per-user note cache keyed by ``(user_id, scope_key)``."""

    def __init__(self, session: AsyncSession):
        self._session = session

    async def get(self, *, user_id: str, scope: RevisionScope) -> RevisionNoteRecord | None:
        stmt: Select[tuple[RevisionNoteRecord]] = select(RevisionNoteRecord).where(
            RevisionNoteRecord.user_id == user_id,
            RevisionNoteRecord.scope_key == scope.scope_key,
        )
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def get_entry(self, *, user_id: str, scope: RevisionScope) -> NoteCacheEntry | None:
        record = await self.get(user_id=user_id, scope=scope)
        if record is None:
            return None
        return self.to_entry(record, scope=scope)

    async def note_states(self, *, user_id: str) -> dict[str, datetime | None]:
        """Map every cached scope key of the user to its ``stale_at`` marker.

        Only the key and marker columns are selected so rankings stay cheap.
        """
        stmt = select(RevisionNoteRecord.scope_key, RevisionNoteRecord.stale_at).where(
            RevisionNoteRecord.user_id == user_id
        )
        result = await self._session.execute(stmt)
        return {
            scope_key: as_utc(stale_at) if stale_at is not None else None
            for scope_key, stale_at in result.all()
        }

    async def upsert(
        self,
        *,
        user_id: str,
        scope: RevisionScope,
        note: RevisionNote,
        snapshot: PerformanceSnapshot,
        source_version: str,
        generated_at: datetime,
    ) -> int:
        """Insert or wholly replace the note for the scope, clearing ``stale_at``."""
        values = {
            "user_id": user_id,
            "scope_key": scope.scope_key,
            "domain": scope.domain,
            "difficulty_level": scope.difficulty.value if scope.difficulty else None,
            "cluster_key": scope.cluster_key,
            "title": note.title,
            "summary": note.summary,
            "key_concepts": list(note.key_concepts),
            "common_mistakes": list(note.common_mistakes),
            "rapid_checklist": list(note.rapid_checklist),
            "practice_plan": list(note.practice_plan),
            "source_version": source_version,
            "performance_snapshot": snapshot.model_dump(mode="json"),
            "stale_at": None,
            "last_generated_at": generated_at,
            "last_served_at": generated_at,
            "created_at": generated_at,
            "updated_at": generated_at,
        }
        stmt = dialect_insert(self._session, RevisionNoteRecord).values(**values)
        replaced = {
            key: getattr(stmt.excluded, key)
            for key in values
            if key not in {"user_id", "scope_key", "created_at"}
        }
        stmt = stmt.on_conflict_do_update(
            index_elements=[RevisionNoteRecord.user_id, RevisionNoteRecord.scope_key],
            set_=replaced,
        ).returning(RevisionNoteRecord.id)
        result = await self._session.execute(stmt)
        note_id = int(result.scalar_one())
        self._session.expire_all()
        return note_id

    async def replace_evidence(self, note_id: int, items: Sequence[EvidenceItem]) -> None:
        await self._session.execute(
            delete(RevisionNoteEvidence).where(RevisionNoteEvidence.note_id == note_id)
        )
        rows = [
            RevisionNoteEvidence(
                note_id=note_id,
                source_type=(
                    EvidenceSource.CASE_ATTEMPT.value
                    if item.item_type is ItemType.CASE
                    else EvidenceSource.EXAM_ATTEMPT.value
                ),
                source_id=item.attempt_id if item.attempt_id is not None else item.item_id,
                weight=WEAK_EVIDENCE_WEIGHT if item.is_weak else DEFAULT_EVIDENCE_WEIGHT,
            )
            for item in items
        ]
        if rows:
            self._session.add_all(rows)
            await self._session.flush()

    async def list_unflagged(self, *, user_id: str | None = None) -> list[RevisionNoteRecord]:
        """Notes without a ``stale_at`` marker, oldest generation first."""
        stmt: Select[tuple[RevisionNoteRecord]] = (
            select(RevisionNoteRecord)
            .where(RevisionNoteRecord.stale_at.is_(None))
            .order_by(RevisionNoteRecord.last_generated_at.asc(), RevisionNoteRecord.id.asc())
        )
        if user_id is not None:
            stmt = stmt.where(RevisionNoteRecord.user_id == user_id)
        result = await self._session.execute(stmt)
        return list(result.scalars().all())

    async def touch_served(
        self, *, user_id: str, scope: RevisionScope, served_at: datetime
    ) -> None:
        await self._session.execute(
            update(RevisionNoteRecord)
            .where(
                RevisionNoteRecord.user_id == user_id,
                RevisionNoteRecord.scope_key == scope.scope_key,
            )
            .values(last_served_at=served_at)
        )

    async def set_stale_at(
        self, *, user_id: str, scope: RevisionScope, stale_at: datetime | None
    ) -> int:
        result = await self._session.execute(
            update(RevisionNoteRecord)
            .where(
                RevisionNoteRecord.user_id == user_id,
                RevisionNoteRecord.scope_key == scope.scope_key,
            )
            .values(stale_at=stale_at)
        )
        return int(result.rowcount or 0)

    async def mark_generated_before(
        self,
        *,
        cutoff: datetime,
        stale_at: datetime,
        user_id: str | None = None,
    ) -> int:
        """Flag notes generated at or before ``cutoff`` that are not stale yet."""
        stmt = (
            update(RevisionNoteRecord)
            .where(
                RevisionNoteRecord.last_generated_at <= cutoff,
                RevisionNoteRecord.stale_at.is_(None),
            )
            .values(stale_at=stale_at)
        )
        if user_id is not None:
            stmt = stmt.where(RevisionNoteRecord.user_id == user_id)
        result = await self._session.execute(stmt)
        return int(result.rowcount or 0)

    @staticmethod
    def to_entry(record: RevisionNoteRecord, *, scope: RevisionScope) -> NoteCacheEntry:
        note = RevisionNote(
            title=record.title,
            summary=record.summary,
            key_concepts=list(record.key_concepts),
            common_mistakes=list(record.common_mistakes),
            rapid_checklist=list(record.rapid_checklist),
            practice_plan=list(record.practice_plan),
        )
        return NoteCacheEntry(
            scope=scope,
            note=note,
            stale_at=as_utc(record.stale_at) if record.stale_at is not None else None,
            last_generated_at=as_utc(record.last_generated_at),
            source_version=record.source_version,
        )


__all__ = ["RevisionNoteRepository"]
