"""Collect the learner's recent attempts inside a scope for note generation."""

from __future__ import annotations

from collections.abc import Iterable, Mapping, Sequence
from typing import Protocol

from sqlalchemy.exc import SQLAlchemyError

from revision_api.db.repositories.cluster_assignments import ClusterAssignmentRepository
from revision_api.db.repositories.taxonomy import TaxonomyRepository
from revision_api.domain.enums import ItemType
from revision_api.domain.errors import LookupFailure
from revision_api.domain.schemas.revision import (
    AttemptRecord,
    EvidenceItem,
    NoteEvidence,
    RevisionScope,
    TaxonomyEntry,
)
from revision_api.services.revision.aggregation import scope_for_attempt
from revision_api.services.revision.sources import AttemptSource


class EvidenceCollector(Protocol):
    async def collect(self, *, user_id: str, scope: RevisionScope) -> NoteEvidence: ...


def attempt_in_scope(
    attempt: AttemptRecord,
    scope: RevisionScope,
    *,
    taxonomy: Mapping[str, Sequence[TaxonomyEntry]],
    assignments: Mapping[ItemType, Mapping[int, str]],
) -> bool:
    """Whether an attempt belongs to ``scope``; an unset difficulty or cluster matches any."""
    if attempt.domain != scope.domain:
        return False
    if scope.difficulty is not None and attempt.difficulty is not scope.difficulty:
        return False
    if scope.cluster_key is None:
        return True
    resolved = scope_for_attempt(attempt, taxonomy=taxonomy, assignments=assignments)
    return resolved.cluster_key == scope.cluster_key


def build_evidence(attempts: Iterable[AttemptRecord], *, per_type_limit: int) -> NoteEvidence:
    """Summarise in-scope attempts, newest first, keeping ``per_type_limit`` of each type."""
    matching = list(attempts)
    total = len(matching)
    average = 0
    if total:
        score_sum = sum(attempt.outcome_score for attempt in matching)
        average = (2 * score_sum + total) // (2 * total)

    def _items(item_type: ItemType) -> list[EvidenceItem]:
        selected = [attempt for attempt in matching if attempt.item_type is item_type]
        selected.sort(key=lambda attempt: attempt.completed_at, reverse=True)
        return [
            EvidenceItem(
                item_type=attempt.item_type,
                attempt_id=attempt.attempt_id,
                item_id=attempt.item_id,
                score=attempt.outcome_score,
                title=attempt.title,
                detail=attempt.detail,
            )
            for attempt in selected[:per_type_limit]
        ]

    return NoteEvidence(
        case_items=_items(ItemType.CASE),
        exam_items=_items(ItemType.EXAM_QUESTION),
        average_score=average,
        total_attempts=total,
    )


class AttemptEvidenceCollector:
    """Evidence collector reading attempts, taxonomy, and assignments from one session."""

    def __init__(
        self,
        *,
        attempts: AttemptSource,
        taxonomy: TaxonomyRepository,
        assignments: ClusterAssignmentRepository,
        history_limit: int,
        per_type_limit: int,
    ) -> None:
        self._attempts = attempts
        self._taxonomy = taxonomy
        self._assignments = assignments
        self._history_limit = history_limit
        self._per_type_limit = per_type_limit

    async def collect(self, *, user_id: str, scope: RevisionScope) -> NoteEvidence:
        history: list[AttemptRecord] = []
        for item_type in ItemType:
            try:
                attempts = await self._attempts.list_attempts(
                    user_id=user_id, item_type=item_type, limit=self._history_limit
                )
            except SQLAlchemyError as exc:
                raise LookupFailure(
                    f"Attempt history for {scope.scope_key} is unavailable",
                    context={"scope_key": scope.scope_key, "item_type": item_type.value},
                ) from exc
            history.extend(attempts)
        candidates = [attempt for attempt in history if attempt.domain == scope.domain]

        taxonomy: dict[str, list[TaxonomyEntry]] = {}
        assignments: dict[ItemType, dict[int, str]] = {}
        if scope.cluster_key is not None and candidates:
            taxonomy = {scope.domain: await self._taxonomy.entries_for_domain(scope.domain)}
            for item_type in ItemType:
                item_ids = [
                    attempt.item_id for attempt in candidates if attempt.item_type is item_type
                ]
                assignments[item_type] = await self._assignments.assignments_for(
                    item_type, item_ids
                )

        matching = [
            attempt
            for attempt in candidates
            if attempt_in_scope(attempt, scope, taxonomy=taxonomy, assignments=assignments)
        ]
        return build_evidence(matching, per_type_limit=self._per_type_limit)


__all__ = [
    "AttemptEvidenceCollector",
    "EvidenceCollector",
    "attempt_in_scope",
    "build_evidence",
]
