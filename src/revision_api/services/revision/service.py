"""Orchestration behind the revision endpoints and the staleness sweep."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from datetime import datetime, timedelta
from typing import TypeVar

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from revision_api.config.settings import Settings
from revision_api.core.logging import get_logger, log_context
from revision_api.db.models import utcnow
from revision_api.db.repositories.attempts import AttemptRepository
from revision_api.db.repositories.category_stats import CategoryStatsRepository
from revision_api.db.repositories.cluster_assignments import ClusterAssignmentRepository
from revision_api.db.repositories.notes import RevisionNoteRepository
from revision_api.db.repositories.taxonomy import TaxonomyRepository
from revision_api.domain.enums import ContextType, ItemType
from revision_api.domain.errors import LookupFailure, ValidationFailure
from revision_api.domain.schemas.revision import (
    AttemptRecord,
    CategoryStat,
    NoteLookupResponse,
    RefreshNoteRequest,
    RefreshNoteResponse,
    RevisionCard,
    RevisionScope,
    StaleSweepResult,
)
from revision_api.services.revision.aggregation import aggregate_attempts, fallback_aggregates
from revision_api.services.revision.clusters import resolve_item_cluster
from revision_api.services.revision.evidence import AttemptEvidenceCollector
from revision_api.services.revision.notes import NoteCacheManager
from revision_api.services.revision.ranking import rank_aggregates
from revision_api.services.revision.sources import NoteGenerator
from revision_api.services.revision.staleness import StalenessPolicy

T = TypeVar("T")

logger = get_logger(__name__)


class RevisionService:
    """Ranks revision topics for a learner and serves their cached notes.

    Ranking reads from several stores at once, so the service holds a session
    factory rather than a session and opens one session per concurrent read.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        *,
        settings: Settings,
        generator: NoteGenerator | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._session_factory = session_factory
        self._settings = settings
        self._generator = generator
        self._clock = clock

    async def get_ranked_cards(self, user_id: str) -> list[RevisionCard]:
        """Return the learner's revision topics, weakest first."""
        with log_context(user_id=user_id):
            return await self._rank_cards(user_id)

    async def _rank_cards(self, user_id: str) -> list[RevisionCard]:
        limit = self._settings.attempt_history_limit
        case_result, exam_result, stats_result = await asyncio.gather(
            self._run(
                lambda session: AttemptRepository(session).list_attempts(
                    user_id=user_id, item_type=ItemType.CASE, limit=limit
                )
            ),
            self._run(
                lambda session: AttemptRepository(session).list_attempts(
                    user_id=user_id, item_type=ItemType.EXAM_QUESTION, limit=limit
                )
            ),
            self._run(
                lambda session: CategoryStatsRepository(session).list_category_stats(
                    user_id=user_id
                )
            ),
            return_exceptions=True,
        )

        attempts: list[AttemptRecord] = []
        failed_sources: list[str] = []
        sourced = ((ItemType.CASE, case_result), (ItemType.EXAM_QUESTION, exam_result))
        for item_type, result in sourced:
            if isinstance(result, BaseException):
                _reraise_if_fatal(result)
                logger.warning(
                    "attempt_source_failed", item_type=item_type.value, error=str(result)
                )
                failed_sources.append(item_type.value)
                continue
            attempts.extend(result)

        if len(failed_sources) == len(ItemType):
            raise LookupFailure(
                f"Attempt history for user {user_id} is unavailable",
                context={"user_id": user_id, "sources": failed_sources},
            )

        stats: list[CategoryStat] = []
        if isinstance(stats_result, BaseException):
            _reraise_if_fatal(stats_result)
            logger.warning("fallback_stats_failed", error=str(stats_result))
        else:
            stats = stats_result

        domains = {attempt.domain for attempt in attempts}
        if not attempts:
            domains = {stat.domain for stat in stats}
        case_ids = [a.item_id for a in attempts if a.item_type is ItemType.CASE]
        exam_ids = [a.item_id for a in attempts if a.item_type is ItemType.EXAM_QUESTION]

        lookups = await asyncio.gather(
            self._run(lambda session: TaxonomyRepository(session).entries_for_domains(domains)),
            self._run(
                lambda session: ClusterAssignmentRepository(session).assignments_for(
                    ItemType.CASE, case_ids
                )
            ),
            self._run(
                lambda session: ClusterAssignmentRepository(session).assignments_for(
                    ItemType.EXAM_QUESTION, exam_ids
                )
            ),
            self._run(lambda session: RevisionNoteRepository(session).note_states(user_id=user_id)),
            return_exceptions=True,
        )
        # Every lookup settles before the first failure is raised.
        for result in lookups:
            if isinstance(result, BaseException):
                raise result
        taxonomy, case_assignments, exam_assignments, note_states = lookups

        if attempts:
            aggregates = aggregate_attempts(
                attempts,
                taxonomy=taxonomy,
                assignments={
                    ItemType.CASE: case_assignments,
                    ItemType.EXAM_QUESTION: exam_assignments,
                },
            )
        else:
            aggregates = fallback_aggregates(stats, taxonomy=taxonomy)

        cards = rank_aggregates(aggregates, note_states=note_states, now=self._clock())
        logger.info(
            "revision_cards_ranked",
            attempts=len(attempts),
            cards=len(cards),
            fallback=not attempts,
        )
        return cards

    async def resolve_context(self, context_type: ContextType, context_id: str) -> RevisionScope:
        """Map a note context onto the scope whose note should be served."""
        if context_type is ContextType.CATEGORY:
            return RevisionScope.from_context_id(context_id)

        item_type = context_type.item_type
        assert item_type is not None
        item_id = _parse_item_id(context_type, context_id)

        async with self._session_factory() as session:
            item = await AttemptRepository(session).get_content_item(item_type, item_id)
            if item is None:
                raise KeyError(f"{context_type.value} {item_id} not found")

            assignments = ClusterAssignmentRepository(session)
            taxonomy = await TaxonomyRepository(session).entries_for_domain(item.domain)
            cached = await assignments.get(item_type, item_id)
            cluster_key, matched_by = resolve_item_cluster(
                item, taxonomy=taxonomy, cached_cluster_key=cached
            )
            if cluster_key is not None and matched_by is not None:
                await assignments.upsert(
                    item_type=item_type,
                    item_id=item_id,
                    domain=item.domain,
                    difficulty=item.difficulty,
                    cluster_key=cluster_key,
                    matched_by=matched_by,
                )
                await session.commit()

        return RevisionScope.build(item.domain, item.difficulty, cluster_key)

    async def get_note(
        self,
        user_id: str,
        context_type: ContextType,
        context_id: str,
        *,
        force_refresh: bool = False,
    ) -> NoteLookupResponse:
        with log_context(user_id=user_id):
            scope = await self.resolve_context(context_type, context_id)
            with log_context(scope_key=scope.scope_key):
                async with self._session_factory() as session:
                    lookup = await self._note_cache(session).lookup(
                        user_id, scope, force_refresh=force_refresh
                    )
                logger.info("revision_note_served", cache_status=lookup.cache_status.value)
        return NoteLookupResponse(note=lookup.note, cache_status=lookup.cache_status, scope=scope)

    async def refresh_note(self, user_id: str, payload: RefreshNoteRequest) -> RefreshNoteResponse:
        scope = RevisionScope.build(payload.domain, payload.difficulty, payload.cluster_key)
        with log_context(user_id=user_id, scope_key=scope.scope_key):
            async with self._session_factory() as session:
                entry = await self._note_cache(session).refresh(user_id, scope)
            logger.info("revision_note_refreshed", source_version=entry.source_version)
        return RefreshNoteResponse(
            note=entry.note,
            scope=scope,
            refreshed_at=entry.last_generated_at,
        )

    async def mark_due_notes_stale(self, user_id: str | None = None) -> StaleSweepResult:
        """Flag notes that are old or whose scope performance moved, for one learner or all."""
        with log_context(user_id=user_id):
            async with self._session_factory() as session:
                policy = StalenessPolicy(
                    session,
                    stale_after=timedelta(days=self._settings.note_stale_after_days),
                    evidence_collector=self._evidence_collector(session),
                    score_shift=self._settings.note_stale_score_shift,
                    attempt_growth=self._settings.note_stale_attempt_growth,
                    clock=self._clock,
                )
                marked = await policy.mark_due(user_id=user_id)
            logger.info("revision_notes_marked_stale", marked=marked)
        return StaleSweepResult(marked=marked)

    def _evidence_collector(self, session: AsyncSession) -> AttemptEvidenceCollector:
        return AttemptEvidenceCollector(
            attempts=AttemptRepository(session),
            taxonomy=TaxonomyRepository(session),
            assignments=ClusterAssignmentRepository(session),
            history_limit=self._settings.attempt_history_limit,
            per_type_limit=self._settings.note_evidence_limit,
        )

    def _note_cache(self, session: AsyncSession) -> NoteCacheManager:
        return NoteCacheManager(
            session,
            generator=self._generator,
            source_version=self._settings.note_source_version,
            generation_timeout=self._settings.note_generation_timeout_seconds,
            evidence_collector=self._evidence_collector(session),
            clock=self._clock,
        )

    async def _run(self, operation: Callable[[AsyncSession], Awaitable[T]]) -> T:
        async with self._session_factory() as session:
            return await operation(session)


def _parse_item_id(context_type: ContextType, context_id: str) -> int:
    raw = (context_id or "").strip()
    if not (raw.isascii() and raw.isdigit()) or int(raw) <= 0:
        raise ValidationFailure(
            f"{context_type.value} context id must be a positive integer: {context_id!r}"
        )
    return int(raw)


def _reraise_if_fatal(error: BaseException) -> None:
    if not isinstance(error, Exception):
        raise error


__all__ = ["RevisionService"]
