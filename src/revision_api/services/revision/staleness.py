"""Staleness marking for cached revision notes."""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime, timedelta

from pydantic import ValidationError
from sqlalchemy.ext.asyncio import AsyncSession

from revision_api.db.models import RevisionNoteRecord, utcnow
from revision_api.db.repositories.notes import RevisionNoteRepository
from revision_api.domain.schemas.revision import NoteEvidence, PerformanceSnapshot, RevisionScope
from revision_api.services.revision.evidence import EvidenceCollector

logger = logging.getLogger(__name__)

DEFAULT_SCORE_SHIFT = 10
DEFAULT_ATTEMPT_GROWTH = 5


def performance_shifted(
    snapshot: PerformanceSnapshot,
    current: NoteEvidence,
    *,
    score_shift: int = DEFAULT_SCORE_SHIFT,
    attempt_growth: int = DEFAULT_ATTEMPT_GROWTH,
) -> bool:
    """Whether performance in a scope moved far enough from ``snapshot`` to redo its note."""
    score_delta = abs(current.average_score - snapshot.average_score)
    new_attempts = max(0, current.total_attempts - snapshot.total_attempts)
    return score_delta >= score_shift or new_attempts >= attempt_growth


class StalenessPolicy:
    """Flags notes so the next read reports ``stale_hit``.

    A note is due once it is ``stale_after`` old, or, when an evidence collector
    is given, once the learner's average score in the scope moved by
    ``score_shift`` points or ``attempt_growth`` attempts were added since the
    note was generated. The cache itself never decides staleness; it only
    honours the ``stale_at`` marker set here.
    """

    def __init__(
        self,
        session: AsyncSession,
        *,
        stale_after: timedelta,
        evidence_collector: EvidenceCollector | None = None,
        score_shift: int = DEFAULT_SCORE_SHIFT,
        attempt_growth: int = DEFAULT_ATTEMPT_GROWTH,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._session = session
        self._notes = RevisionNoteRepository(session)
        self._stale_after = stale_after
        self._evidence_collector = evidence_collector
        self._score_shift = score_shift
        self._attempt_growth = attempt_growth
        self._clock = clock

    async def mark_due(self, *, user_id: str | None = None) -> int:
        """Mark every due note that is not flagged yet; returns how many changed."""
        now = self._clock()
        marked = await self._notes.mark_generated_before(
            cutoff=now - self._stale_after,
            stale_at=now,
            user_id=user_id,
        )
        if self._evidence_collector is not None:
            marked += await self._mark_shifted(self._evidence_collector, now, user_id=user_id)
        await self._session.commit()
        return marked

    async def _mark_shifted(
        self, collector: EvidenceCollector, now: datetime, *, user_id: str | None
    ) -> int:
        marked = 0
        for record in await self._notes.list_unflagged(user_id=user_id):
            scope = RevisionScope.build(record.domain, record.difficulty_level, record.cluster_key)
            current = await collector.collect(user_id=record.user_id, scope=scope)
            snapshot = _snapshot_of(record)
            if performance_shifted(
                snapshot,
                current,
                score_shift=self._score_shift,
                attempt_growth=self._attempt_growth,
            ):
                logger.debug(
                    "Revision note performance shifted",
                    extra={
                        "scope_key": scope.scope_key,
                        "snapshot_score": snapshot.average_score,
                        "current_score": current.average_score,
                    },
                )
                marked += await self._notes.set_stale_at(
                    user_id=record.user_id, scope=scope, stale_at=now
                )
        return marked


def _snapshot_of(record: RevisionNoteRecord) -> PerformanceSnapshot:
    try:
        return PerformanceSnapshot.model_validate(record.performance_snapshot or {})
    except ValidationError:
        return PerformanceSnapshot(captured_at=record.last_generated_at)


__all__ = ["StalenessPolicy", "performance_shifted"]
