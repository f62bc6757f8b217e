from __future__ import annotations

from enum import Enum


class ItemType(str, Enum):
    CASE = "case"
    EXAM_QUESTION = "exam_question"


class ContextType(str, Enum):
    CASE = "case"
    EXAM_QUESTION = "exam_question"
    CATEGORY = "category"

    @property
    def item_type(self) -> ItemType | None:
        """Item type backing this context, or ``None`` for category contexts."""
        if self is ContextType.CATEGORY:
            return None
        return ItemType(self.value)


class Difficulty(str, Enum):
    FOUNDATION = "Foundation"
    CORE = "Core"
    ADVANCED = "Advanced"

    @classmethod
    def parse(cls, value: str | None) -> "Difficulty | None":
        """Map a stored or wire value to a difficulty; unknown values become ``None``."""
        if value is None:
            return None
        try:
            return cls(value.strip())
        except ValueError:
            return None


class CacheStatus(str, Enum):
    HIT = "hit"
    STALE_HIT = "stale_hit"
    MISS = "miss"


class ClusterMatch(str, Enum):
    METADATA = "metadata"
    HEURISTIC = "heuristic"


class EvidenceSource(str, Enum):
    CASE_ATTEMPT = "case_attempt"
    EXAM_ATTEMPT = "exam_attempt"


__all__ = [
    "CacheStatus",
    "ClusterMatch",
    "ContextType",
    "Difficulty",
    "EvidenceSource",
    "ItemType",
]
