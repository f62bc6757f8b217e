"""Value types shared by the aggregation, ranking, and note caching layers."""

from __future__ import annotations

from datetime import datetime
from typing import Annotated

from pydantic import Field, StringConstraints, ValidationError, computed_field

from revision_api.domain.enums import CacheStatus, ContextType, Difficulty, ItemType
from revision_api.domain.errors import ValidationFailure
from revision_api.domain.schemas.base import BaseSchema

ANY_TOKEN = "any"
SCOPE_KEY_SEPARATOR = "::"
CONTEXT_ID_SEPARATOR = "|"

NonEmptyStr = Annotated[str, StringConstraints(strip_whitespace=True, min_length=1)]
NoteLine = Annotated[str, StringConstraints(strip_whitespace=True, min_length=3, max_length=240)]


class RevisionScope(BaseSchema):
    """Composite identity of a revision topic: domain, difficulty, and cluster.

    ``None`` for difficulty or cluster means "any" and is a value of its own, so
    ``(Cardiology, None, None)`` and ``(Cardiology, Core, None)`` are distinct
    scopes. Equality and hashing cover the three fields only.
    """

    domain: NonEmptyStr
    difficulty: Difficulty | None = None
    cluster_key: NonEmptyStr | None = None

    @computed_field  # type: ignore[prop-decorator]
    @property
    def scope_key(self) -> str:
        """Cache key used by the note store."""
        return SCOPE_KEY_SEPARATOR.join(self._parts())

    @computed_field  # type: ignore[prop-decorator]
    @property
    def context_id(self) -> str:
        """Natural key handed to clients as a ``category`` context id."""
        return CONTEXT_ID_SEPARATOR.join(self._parts())

    def _parts(self) -> tuple[str, str, str]:
        difficulty = self.difficulty.value if self.difficulty is not None else ANY_TOKEN
        return (self.domain, difficulty, self.cluster_key or ANY_TOKEN)

    @classmethod
    def build(
        cls,
        domain: str,
        difficulty: Difficulty | str | None = None,
        cluster_key: str | None = None,
    ) -> "RevisionScope":
        """Validate caller supplied scope fields, raising :class:`ValidationFailure`."""
        domain = (domain or "").strip()
        if not domain:
            raise ValidationFailure("Scope domain must not be empty.")
        for separator in (SCOPE_KEY_SEPARATOR, CONTEXT_ID_SEPARATOR):
            if separator in domain:
                raise ValidationFailure(f"Scope domain may not contain {separator!r}: {domain}")

        parsed_difficulty: Difficulty | None
        if isinstance(difficulty, Difficulty) or difficulty is None:
            parsed_difficulty = difficulty
        elif difficulty.strip().lower() == ANY_TOKEN or not difficulty.strip():
            parsed_difficulty = None
        else:
            parsed_difficulty = Difficulty.parse(difficulty)
            if parsed_difficulty is None:
                raise ValidationFailure(f"Unknown difficulty level: {difficulty}")

        cluster = (cluster_key or "").strip() or None
        if cluster is not None:
            if cluster.lower() == ANY_TOKEN:
                cluster = None
            elif SCOPE_KEY_SEPARATOR in cluster or CONTEXT_ID_SEPARATOR in cluster:
                raise ValidationFailure(f"Cluster key contains a reserved separator: {cluster}")

        try:
            return cls(domain=domain, difficulty=parsed_difficulty, cluster_key=cluster)
        except ValidationError as exc:  # pragma: no cover - guarded above
            raise ValidationFailure(str(exc)) from exc

    @classmethod
    def from_context_id(cls, context_id: str) -> "RevisionScope":
        """Parse ``domain|difficulty|cluster`` (missing parts default to ``any``)."""
        parts = (context_id or "").split(CONTEXT_ID_SEPARATOR)
        if len(parts) > 3:
            raise ValidationFailure(f"Malformed category context id: {context_id}")
        parts.extend([ANY_TOKEN] * (3 - len(parts)))
        domain, difficulty, cluster = parts
        return cls.build(domain, difficulty, cluster)


class AttemptRecord(BaseSchema):
    """One graded attempt at a case or an exam question."""

    item_type: ItemType
    item_id: int
    domain: NonEmptyStr
    difficulty: Difficulty | None = None
    explicit_cluster_key: str | None = None
    outcome_score: int = Field(..., ge=0, le=100)
    completed_at: datetime
    attempt_id: int | None = None
    title: str = ""
    detail: str = ""

    @classmethod
    def from_exam_answer(
        cls,
        *,
        item_id: int,
        domain: str,
        difficulty: Difficulty | None,
        explicit_cluster_key: str | None,
        is_correct: bool,
        completed_at: datetime,
        attempt_id: int | None = None,
        title: str = "",
        detail: str = "",
    ) -> "AttemptRecord":
        """Exam questions are graded all-or-nothing: 100 when correct, else 0."""
        return cls(
            item_type=ItemType.EXAM_QUESTION,
            item_id=item_id,
            domain=domain,
            difficulty=difficulty,
            explicit_cluster_key=explicit_cluster_key,
            outcome_score=100 if is_correct else 0,
            completed_at=completed_at,
            attempt_id=attempt_id,
            title=title,
            detail=detail,
        )


class ContentItem(BaseSchema):
    """A case or exam question as seen by cluster resolution."""

    item_type: ItemType
    item_id: int
    domain: NonEmptyStr
    difficulty: Difficulty | None = None
    explicit_cluster_key: str | None = None
    text: str = ""


class TaxonomyEntry(BaseSchema):
    domain: str
    cluster_key: str
    label: str = ""
    keywords: list[str] = Field(default_factory=list)


class CategoryStat(BaseSchema):
    """Precomputed per-domain history used to seed rankings for new learners."""

    domain: NonEmptyStr
    average_score: float
    total_attempts: int = Field(..., ge=0)


class RevisionAggregate(BaseSchema):
    domain: str
    difficulty: Difficulty | None = None
    cluster_key: str | None = None
    total_attempts: int = Field(..., ge=0)
    case_attempts: int = Field(..., ge=0)
    exam_attempts: int = Field(..., ge=0)
    average_score: int = Field(..., ge=0, le=100)
    priority_score: int = Field(..., ge=0)
    is_fallback: bool = False

    @property
    def scope(self) -> RevisionScope:
        return RevisionScope(
            domain=self.domain,
            difficulty=self.difficulty,
            cluster_key=self.cluster_key,
        )


class RevisionCard(RevisionAggregate):
    """A ranked aggregate plus cheap note-cache metadata for display."""

    rank: int = Field(..., ge=1)
    scope_key: str
    context_type: ContextType = ContextType.CATEGORY
    context_id: str
    note_exists: bool = False
    is_stale: bool = False


class RevisionNote(BaseSchema):
    title: Annotated[str, StringConstraints(strip_whitespace=True, min_length=5, max_length=200)]
    summary: Annotated[
        str, StringConstraints(strip_whitespace=True, min_length=20, max_length=2000)
    ]
    key_concepts: list[NoteLine] = Field(..., min_length=3, max_length=8)
    common_mistakes: list[NoteLine] = Field(..., min_length=2, max_length=8)
    rapid_checklist: list[NoteLine] = Field(..., min_length=3, max_length=10)
    practice_plan: list[NoteLine] = Field(..., min_length=3, max_length=8)


class PerformanceSnapshot(BaseSchema):
    average_score: int = Field(0, ge=0, le=100)
    total_attempts: int = Field(0, ge=0)
    captured_at: datetime


class EvidenceItem(BaseSchema):
    """A recent attempt inside a scope, shared with the note generator."""

    item_type: ItemType
    attempt_id: int | None = None
    item_id: int
    score: int = Field(..., ge=0, le=100)
    title: str = ""
    detail: str = ""

    @property
    def is_weak(self) -> bool:
        return self.score < 70


class NoteEvidence(BaseSchema):
    case_items: list[EvidenceItem] = Field(default_factory=list)
    exam_items: list[EvidenceItem] = Field(default_factory=list)
    average_score: int = Field(0, ge=0, le=100)
    total_attempts: int = Field(0, ge=0)

    @property
    def items(self) -> list[EvidenceItem]:
        return [*self.case_items, *self.exam_items]


class NoteCacheEntry(BaseSchema):
    scope: RevisionScope
    note: RevisionNote
    stale_at: datetime | None = None
    last_generated_at: datetime
    source_version: str = ""

    def is_stale(self, now: datetime) -> bool:
        """An entry is stale once ``stale_at`` is set and has passed."""
        return self.stale_at is not None and self.stale_at <= now


class NoteLookupResponse(BaseSchema):
    note: RevisionNote
    cache_status: CacheStatus
    scope: RevisionScope


class RefreshNoteRequest(BaseSchema):
    domain: Annotated[str, StringConstraints(strip_whitespace=True, min_length=2, max_length=80)]
    difficulty: Difficulty | None = None
    cluster_key: (
        Annotated[str, StringConstraints(strip_whitespace=True, min_length=2, max_length=120)]
        | None
    ) = None


class RefreshNoteResponse(BaseSchema):
    note: RevisionNote
    scope: RevisionScope
    refreshed_at: datetime


class StaleSweepResult(BaseSchema):
    marked: int = Field(..., ge=0)


__all__ = [
    "ANY_TOKEN",
    "AttemptRecord",
    "CategoryStat",
    "ContentItem",
    "EvidenceItem",
    "NoteCacheEntry",
    "NoteEvidence",
    "NoteLookupResponse",
    "PerformanceSnapshot",
    "RefreshNoteRequest",
    "RefreshNoteResponse",
    "RevisionAggregate",
    "RevisionCard",
    "RevisionNote",
    "RevisionScope",
    "StaleSweepResult",
    "TaxonomyEntry",
]
