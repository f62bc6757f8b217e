from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from revision_api.db.models import (
    CaseAttempt,
    CategoryStat,
    ClinicalCase,
    ExamQuestion,
    ExamQuestionAttempt,
    RevisionNoteEvidence,
    RevisionTaxonomy,
)
from revision_api.domain.enums import Difficulty, ItemType
from revision_api.domain.schemas.revision import (
    AttemptRecord,
    NoteEvidence,
    RevisionNote,
    RevisionScope,
)

BASE_TIME = datetime(2025, 3, 1, 9, 0, tzinfo=timezone.utc)
LEARNER_ID = "learner-1"


def sample_note(title: str = "Heart failure essentials") -> RevisionNote:
    return RevisionNote(
        title=title,
        summary="Recent attempts show gaps in acute heart failure management.",
        key_concepts=[
            "Loop diuretics relieve congestion",
            "Check potassium after diuresis",
            "Echo guides long-term therapy",
        ],
        common_mistakes=[
            "Giving fluids to a congested patient",
            "Missing new atrial fibrillation",
        ],
        rapid_checklist=["Airway and oxygen", "Daily weights", "Renal function"],
        practice_plan=[
            "Redo the two failed cases",
            "Read the acute HF guideline",
            "Self-test on diuretic dosing",
        ],
    )


@dataclass
class StubNoteGenerator:
    """Note generator double recording every call."""

    notes: list[RevisionNote | Exception] = field(default_factory=list)
    delay: float = 0.0
    calls: list[tuple[RevisionScope, NoteEvidence | None]] = field(default_factory=list)

    async def generate(
        self, scope: RevisionScope, *, evidence: NoteEvidence | None = None
    ) -> RevisionNote:
        self.calls.append((scope, evidence))
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.notes:
            outcome = self.notes.pop(0)
            if isinstance(outcome, Exception):
                raise outcome
            return outcome
        return sample_note(f"Revision note {len(self.calls)}")


def make_attempt(
    *,
    item_type: ItemType = ItemType.CASE,
    item_id: int = 1,
    domain: str = "Cardiology",
    difficulty: Difficulty | None = Difficulty.CORE,
    cluster: str | None = None,
    score: int = 50,
    minutes_ago: int = 0,
) -> AttemptRecord:
    return AttemptRecord(
        item_type=item_type,
        item_id=item_id,
        domain=domain,
        difficulty=difficulty,
        explicit_cluster_key=cluster,
        outcome_score=score,
        completed_at=BASE_TIME - timedelta(minutes=minutes_ago),
    )


async def add_case(
    session: AsyncSession,
    *,
    domain: str = "Cardiology",
    difficulty: str | None = "Core",
    cluster: str | None = None,
    title: str = "Breathless on exertion",
    description: str = "",
) -> ClinicalCase:
    case = ClinicalCase(
        title=title,
        description=description,
        clinical_domain=domain,
        difficulty_level=difficulty,
        revision_cluster_key=cluster,
    )
    session.add(case)
    await session.flush()
    return case


async def add_question(
    session: AsyncSession,
    *,
    category: str = "Cardiology",
    difficulty: str | None = "Core",
    cluster: str | None = None,
    stem: str = "Which drug relieves congestion fastest?",
    explanation: str = "",
) -> ExamQuestion:
    question = ExamQuestion(
        stem=stem,
        explanation=explanation,
        category=category,
        difficulty_level=difficulty,
        revision_cluster_key=cluster,
    )
    session.add(question)
    await session.flush()
    return question


async def add_case_attempt(
    session: AsyncSession,
    case: ClinicalCase,
    *,
    user_id: str,
    score: int,
    minutes_ago: int = 0,
) -> CaseAttempt:
    attempt = CaseAttempt(
        user_id=user_id,
        case_id=case.id,
        score=score,
        completed_at=BASE_TIME - timedelta(minutes=minutes_ago),
    )
    session.add(attempt)
    await session.flush()
    return attempt


async def add_question_attempt(
    session: AsyncSession,
    question: ExamQuestion,
    *,
    user_id: str,
    is_correct: bool,
    minutes_ago: int = 0,
) -> ExamQuestionAttempt:
    attempt = ExamQuestionAttempt(
        user_id=user_id,
        question_id=question.id,
        is_correct=is_correct,
        completed_at=BASE_TIME - timedelta(minutes=minutes_ago),
    )
    session.add(attempt)
    await session.flush()
    return attempt


async def add_taxonomy(
    session: AsyncSession,
    *,
    domain: str,
    cluster_key: str,
    keywords: list[str] | None = None,
    active: bool = True,
) -> RevisionTaxonomy:
    entry = RevisionTaxonomy(
        domain=domain,
        cluster_key=cluster_key,
        cluster_label=cluster_key.replace("-", " ").title(),
        keywords=keywords or [],
        active=active,
    )
    session.add(entry)
    await session.flush()
    return entry


async def add_category_stat(
    session: AsyncSession,
    *,
    user_id: str,
    domain: str,
    average_score: int,
    total_attempts: int = 0,
) -> CategoryStat:
    stat = CategoryStat(
        user_id=user_id,
        clinical_domain=domain,
        average_score=average_score,
        total_attempts=total_attempts,
    )
    session.add(stat)
    await session.flush()
    return stat


async def list_note_evidence(session: AsyncSession, note_id: int) -> list[RevisionNoteEvidence]:
    result = await session.execute(
        select(RevisionNoteEvidence)
        .where(RevisionNoteEvidence.note_id == note_id)
        .order_by(RevisionNoteEvidence.id.asc())
    )
    return list(result.scalars().all())


__all__ = [
    "BASE_TIME",
    "LEARNER_ID",
    "StubNoteGenerator",
    "add_case",
    "add_case_attempt",
    "add_category_stat",
    "add_question",
    "add_question_attempt",
    "add_taxonomy",
    "list_note_evidence",
    "make_attempt",
    "sample_note",
]
