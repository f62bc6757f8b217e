"""Per-user cache of generated revision notes."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy.ext.asyncio import AsyncSession

from revision_api.db.models import utcnow
from revision_api.db.repositories.notes import RevisionNoteRepository
from revision_api.domain.enums import CacheStatus
from revision_api.domain.errors import GenerationFailure
from revision_api.domain.schemas.revision import (
    NoteCacheEntry,
    NoteEvidence,
    PerformanceSnapshot,
    RevisionNote,
    RevisionScope,
)
from revision_api.services.revision.evidence import EvidenceCollector
from revision_api.services.revision.sources import NoteGenerator

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class NoteLookup:
    """A served note, how it was obtained, and the cache entry behind it."""

    note: RevisionNote
    cache_status: CacheStatus
    entry: NoteCacheEntry


class NoteCacheManager:
    """Serve cached notes and regenerate them on a miss or on request.

    Cached notes are served exactly as stored, stale or not; only an explicit
    refresh replaces a stale note. A write happens only after the generator has
    returned a complete note, so a failed generation leaves the cache as it was.
    Without a generator the manager still serves hits and stale hits; only a
    miss or a refresh fails.
    """

    def __init__(
        self,
        session: AsyncSession,
        *,
        generator: NoteGenerator | None = None,
        source_version: str,
        generation_timeout: float,
        evidence_collector: EvidenceCollector | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._session = session
        self._notes = RevisionNoteRepository(session)
        self._generator = generator
        self._source_version = source_version
        self._generation_timeout = generation_timeout
        self._evidence_collector = evidence_collector
        self._clock = clock

    async def lookup(
        self, user_id: str, scope: RevisionScope, *, force_refresh: bool = False
    ) -> NoteLookup:
        """Return the note for ``scope`` with its cache status."""
        if not force_refresh:
            entry = await self._notes.get_entry(user_id=user_id, scope=scope)
            if entry is not None:
                now = self._clock()
                await self._notes.touch_served(user_id=user_id, scope=scope, served_at=now)
                await self._session.commit()
                status = CacheStatus.STALE_HIT if entry.is_stale(now) else CacheStatus.HIT
                logger.debug(
                    "Serving cached revision note",
                    extra={"scope_key": scope.scope_key, "cache_status": status.value},
                )
                return NoteLookup(note=entry.note, cache_status=status, entry=entry)

        entry = await self._regenerate(user_id, scope)
        return NoteLookup(note=entry.note, cache_status=CacheStatus.MISS, entry=entry)

    async def refresh(self, user_id: str, scope: RevisionScope) -> NoteCacheEntry:
        """Generate a new note and overwrite whatever is cached for ``scope``."""
        return await self._regenerate(user_id, scope)

    async def _regenerate(self, user_id: str, scope: RevisionScope) -> NoteCacheEntry:
        if self._generator is None:
            raise GenerationFailure(
                "Revision note generation is not configured.", scope_key=scope.scope_key
            )
        evidence = await self._collect_evidence(user_id, scope)
        note = await self._generate(self._generator, scope, evidence)

        generated_at = self._clock()
        snapshot = PerformanceSnapshot(
            average_score=evidence.average_score if evidence else 0,
            total_attempts=evidence.total_attempts if evidence else 0,
            captured_at=generated_at,
        )
        note_id = await self._notes.upsert(
            user_id=user_id,
            scope=scope,
            note=note,
            snapshot=snapshot,
            source_version=self._source_version,
            generated_at=generated_at,
        )
        await self._notes.replace_evidence(note_id, evidence.items if evidence else [])
        await self._session.commit()

        logger.info(
            "Revision note generated",
            extra={
                "scope_key": scope.scope_key,
                "evidence_items": len(evidence.items) if evidence else 0,
                "source_version": self._source_version,
            },
        )
        return NoteCacheEntry(
            scope=scope,
            note=note,
            stale_at=None,
            last_generated_at=generated_at,
            source_version=self._source_version,
        )

    async def _collect_evidence(
        self, user_id: str, scope: RevisionScope
    ) -> NoteEvidence | None:
        if self._evidence_collector is None:
            return None
        return await self._evidence_collector.collect(user_id=user_id, scope=scope)

    async def _generate(
        self, generator: NoteGenerator, scope: RevisionScope, evidence: NoteEvidence | None
    ) -> RevisionNote:
        try:
            return await asyncio.wait_for(
                generator.generate(scope, evidence=evidence),
                timeout=self._generation_timeout,
            )
        except asyncio.TimeoutError as exc:
            logger.warning(
                "Revision note generation timed out",
                extra={"scope_key": scope.scope_key, "timeout": self._generation_timeout},
            )
            raise GenerationFailure(
                f"Note generation for {scope.scope_key} timed out after "
                f"{self._generation_timeout:g}s",
                scope_key=scope.scope_key,
            ) from exc
        except GenerationFailure:
            raise
        except Exception as exc:
            logger.warning(
                "Revision note generation failed",
                extra={"scope_key": scope.scope_key, "reason": str(exc)},
            )
            raise GenerationFailure(
                f"Note generation for {scope.scope_key} failed: {exc}",
                scope_key=scope.scope_key,
            ) from exc


__all__ = ["NoteCacheManager", "NoteLookup"]
