"""Priority scoring and dense ranking of revision aggregates."""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from datetime import datetime

from revision_api.domain.schemas.revision import RevisionAggregate, RevisionCard

MAX_FREQUENCY_BONUS = 25
FREQUENCY_BONUS_PER_ATTEMPT = 2


def priority_score(average_score: int, total_attempts: int) -> int:
    """Weakness plus a capped bonus for how often the topic was practised."""
    weakness = max(0, 100 - average_score)
    frequency_bonus = min(MAX_FREQUENCY_BONUS, total_attempts * FREQUENCY_BONUS_PER_ATTEMPT)
    return weakness + frequency_bonus


def rank_aggregates(
    aggregates: Sequence[RevisionAggregate],
    *,
    note_states: Mapping[str, datetime | None],
    now: datetime,
) -> list[RevisionCard]:
    """Order aggregates by descending priority and attach note metadata.

    ``note_states`` maps the scope keys with a cached note to their
    ``stale_at`` marker. Equal priorities keep their input order.
    """
    ordered = sorted(aggregates, key=lambda aggregate: aggregate.priority_score, reverse=True)
    cards: list[RevisionCard] = []
    for rank, aggregate in enumerate(ordered, start=1):
        scope = aggregate.scope
        scope_key = scope.scope_key
        note_exists = scope_key in note_states
        stale_at = note_states.get(scope_key)
        cards.append(
            RevisionCard(
                **aggregate.model_dump(),
                rank=rank,
                scope_key=scope_key,
                context_id=scope.context_id,
                note_exists=note_exists,
                is_stale=note_exists and stale_at is not None and stale_at <= now,
            )
        )
    return cards


__all__ = ["priority_score", "rank_aggregates"]
