"""Topic cluster resolution for cases and exam questions."""

from __future__ import annotations

from collections.abc import Mapping, Sequence

from revision_api.domain.enums import ClusterMatch
from revision_api.domain.schemas.revision import ContentItem, TaxonomyEntry


def fallback_cluster_key(taxonomy: Sequence[TaxonomyEntry]) -> str | None:
    """First entry of a domain's taxonomy, or ``None`` when the domain has none."""
    if not taxonomy:
        return None
    return taxonomy[0].cluster_key


def resolve_cluster_key(
    *,
    explicit_cluster_key: str | None,
    cached_cluster_key: str | None,
    taxonomy: Sequence[TaxonomyEntry],
) -> str | None:
    """Pick the cluster used while aggregating attempts.

    Explicit metadata wins, then a cached assignment, then the domain's first
    taxonomy entry. ``None`` means the attempt counts towards the domain as a
    whole.
    """
    if explicit_cluster_key:
        return explicit_cluster_key
    if cached_cluster_key:
        return cached_cluster_key
    return fallback_cluster_key(taxonomy)


def keyword_score(text: str, keywords: Sequence[str]) -> int:
    """Count the keywords that occur in ``text``, case-insensitively."""
    if not text or not keywords:
        return 0
    haystack = text.lower()
    score = 0
    for keyword in keywords:
        needle = keyword.strip().lower()
        if needle and needle in haystack:
            score += 1
    return score


def match_keywords(text: str, taxonomy: Sequence[TaxonomyEntry]) -> str | None:
    """Return the cluster whose keywords best match ``text``.

    Ties go to the earlier entry, so the taxonomy order decides. Returns
    ``None`` when no keyword matches at all.
    """
    best_key: str | None = None
    best_score = 0
    for entry in taxonomy:
        score = keyword_score(text, entry.keywords)
        if score > best_score:
            best_key, best_score = entry.cluster_key, score
    return best_key


def resolve_item_cluster(
    item: ContentItem,
    *,
    taxonomy: Sequence[TaxonomyEntry],
    cached_cluster_key: str | None,
) -> tuple[str | None, ClusterMatch | None]:
    """Resolve the cluster of a single item opened as a note context.

    Returns the cluster key together with how it was matched. The match is
    ``None`` when the key came from the assignment cache (nothing new to
    persist) or when the domain has no taxonomy.
    """
    known: Mapping[str, TaxonomyEntry] = {entry.cluster_key: entry for entry in taxonomy}
    if item.explicit_cluster_key and item.explicit_cluster_key in known:
        return item.explicit_cluster_key, ClusterMatch.METADATA
    if cached_cluster_key:
        return cached_cluster_key, None
    matched = match_keywords(item.text, taxonomy)
    if matched is not None:
        return matched, ClusterMatch.HEURISTIC
    fallback = fallback_cluster_key(taxonomy)
    if fallback is not None:
        return fallback, ClusterMatch.HEURISTIC
    return None, None


__all__ = [
    "fallback_cluster_key",
    "keyword_score",
    "match_keywords",
    "resolve_cluster_key",
    "resolve_item_cluster",
]
