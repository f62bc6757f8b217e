"""Fuse case and exam-question attempts into per-scope aggregates."""

from __future__ import annotations

import math
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass

from revision_api.domain.enums import ItemType
from revision_api.domain.schemas.revision import (
    AttemptRecord,
    CategoryStat,
    RevisionAggregate,
    RevisionScope,
    TaxonomyEntry,
)
from revision_api.services.revision.clusters import fallback_cluster_key, resolve_cluster_key
from revision_api.services.revision.ranking import priority_score

Assignments = Mapping[ItemType, Mapping[int, str]]
Taxonomy = Mapping[str, Sequence[TaxonomyEntry]]


def round_half_up(value: float) -> int:
    """Round to the nearest integer with halves going up (``60.5 -> 61``)."""
    return int(math.floor(value + 0.5))


def clamp_score(value: float) -> int:
    return max(0, min(100, round_half_up(value)))


@dataclass(slots=True)
class _RunningAggregate:
    total_attempts: int = 0
    case_attempts: int = 0
    exam_attempts: int = 0
    score_sum: int = 0

    def add(self, attempt: AttemptRecord) -> None:
        self.total_attempts += 1
        self.score_sum += attempt.outcome_score
        if attempt.item_type is ItemType.CASE:
            self.case_attempts += 1
        else:
            self.exam_attempts += 1

    @property
    def average_score(self) -> int:
        # Integer arithmetic keeps halves exact: floor(sum / total + 1/2).
        return (2 * self.score_sum + self.total_attempts) // (2 * self.total_attempts)


def scope_for_attempt(
    attempt: AttemptRecord,
    *,
    taxonomy: Taxonomy,
    assignments: Assignments,
) -> RevisionScope:
    """Resolve the scope an attempt counts towards."""
    cached = assignments.get(attempt.item_type, {}).get(attempt.item_id)
    cluster_key = resolve_cluster_key(
        explicit_cluster_key=attempt.explicit_cluster_key,
        cached_cluster_key=cached,
        taxonomy=taxonomy.get(attempt.domain, ()),
    )
    return RevisionScope(
        domain=attempt.domain,
        difficulty=attempt.difficulty,
        cluster_key=cluster_key,
    )


def aggregate_attempts(
    attempts: Iterable[AttemptRecord],
    *,
    taxonomy: Taxonomy,
    assignments: Assignments,
) -> list[RevisionAggregate]:
    """Group attempts by scope in first-seen order and summarise each group.

    The function performs no I/O; taxonomy and cached assignments are passed in
    already loaded so repeated calls over the same inputs agree exactly.
    """
    groups: dict[RevisionScope, _RunningAggregate] = {}
    for attempt in attempts:
        scope = scope_for_attempt(attempt, taxonomy=taxonomy, assignments=assignments)
        groups.setdefault(scope, _RunningAggregate()).add(attempt)

    aggregates: list[RevisionAggregate] = []
    for scope, running in groups.items():
        average = running.average_score
        aggregates.append(
            RevisionAggregate(
                domain=scope.domain,
                difficulty=scope.difficulty,
                cluster_key=scope.cluster_key,
                total_attempts=running.total_attempts,
                case_attempts=running.case_attempts,
                exam_attempts=running.exam_attempts,
                average_score=average,
                priority_score=priority_score(average, running.total_attempts),
            )
        )
    return aggregates


def fallback_aggregates(
    stats: Iterable[CategoryStat],
    *,
    taxonomy: Taxonomy,
) -> list[RevisionAggregate]:
    """Seed aggregates from per-domain statistics for learners with no attempts.

    Fallback rows rank purely on weakness, without the frequency bonus.
    """
    aggregates: list[RevisionAggregate] = []
    for stat in stats:
        average = clamp_score(stat.average_score)
        aggregates.append(
            RevisionAggregate(
                domain=stat.domain,
                difficulty=None,
                cluster_key=fallback_cluster_key(taxonomy.get(stat.domain, ())),
                total_attempts=stat.total_attempts,
                case_attempts=stat.total_attempts,
                exam_attempts=0,
                average_score=average,
                priority_score=100 - average,
                is_fallback=True,
            )
        )
    return aggregates


__all__ = [
    "aggregate_attempts",
    "clamp_score",
    "fallback_aggregates",
    "round_half_up",
    "scope_for_attempt",
]
