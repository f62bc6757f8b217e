from __future__ import annotations

from datetime import datetime

from sqlalchemy import Select, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import joinedload

from revision_api.db.models import (
    CaseAttempt,
    ClinicalCase,
    ExamQuestion,
    ExamQuestionAttempt,
    as_utc,
)
from revision_api.domain.enums import Difficulty, ItemType
from revision_api.domain.schemas.revision import AttemptRecord, ContentItem


class AttemptRepository:
    """Reads graded case and exam-question attempts plus the content behind them."""

    def __init__(self, session: AsyncSession):
        self._session = session

    async def list_attempts(
        self, *, user_id: str, item_type: ItemType, limit: int
    ) -> list[AttemptRecord]:
        """Return the user's most recent attempts of one item type, newest first."""
        if item_type is ItemType.CASE:
            return await self._list_case_attempts(user_id=user_id, limit=limit)
        return await self._list_exam_attempts(user_id=user_id, limit=limit)

    async def _list_case_attempts(self, *, user_id: str, limit: int) -> list[AttemptRecord]:
        stmt: Select[tuple[CaseAttempt]] = (
            select(CaseAttempt)
            .options(joinedload(CaseAttempt.case))
            .where(CaseAttempt.user_id == user_id)
            .order_by(CaseAttempt.completed_at.desc(), CaseAttempt.id.desc())
            .limit(limit)
        )
        result = await self._session.execute(stmt)
        records: list[AttemptRecord] = []
        for attempt in result.scalars().all():
            case = attempt.case
            records.append(
                AttemptRecord(
                    item_type=ItemType.CASE,
                    item_id=case.id,
                    domain=case.clinical_domain,
                    difficulty=Difficulty.parse(case.difficulty_level),
                    explicit_cluster_key=case.revision_cluster_key or None,
                    outcome_score=max(0, min(100, attempt.score)),
                    completed_at=as_utc(attempt.completed_at),
                    attempt_id=attempt.id,
                    title=case.title,
                    detail=case.description,
                )
            )
        return records

    async def _list_exam_attempts(self, *, user_id: str, limit: int) -> list[AttemptRecord]:
        stmt: Select[tuple[ExamQuestionAttempt]] = (
            select(ExamQuestionAttempt)
            .options(joinedload(ExamQuestionAttempt.question))
            .where(ExamQuestionAttempt.user_id == user_id)
            .order_by(ExamQuestionAttempt.completed_at.desc(), ExamQuestionAttempt.id.desc())
            .limit(limit)
        )
        result = await self._session.execute(stmt)
        return [
            AttemptRecord.from_exam_answer(
                item_id=attempt.question.id,
                domain=attempt.question.category,
                difficulty=Difficulty.parse(attempt.question.difficulty_level),
                explicit_cluster_key=attempt.question.revision_cluster_key or None,
                is_correct=attempt.is_correct,
                completed_at=as_utc(attempt.completed_at),
                attempt_id=attempt.id,
                title=attempt.question.stem,
                detail=attempt.question.explanation,
            )
            for attempt in result.scalars().all()
        ]

    async def get_content_item(self, item_type: ItemType, item_id: int) -> ContentItem | None:
        """Load the case or exam question behind a note context."""
        if item_type is ItemType.CASE:
            case = await self._session.get(ClinicalCase, item_id)
            if case is None:
                return None
            return ContentItem(
                item_type=item_type,
                item_id=case.id,
                domain=case.clinical_domain,
                difficulty=Difficulty.parse(case.difficulty_level),
                explicit_cluster_key=case.revision_cluster_key or None,
                text=f"{case.title}\n{case.description}",
            )

        question = await self._session.get(ExamQuestion, item_id)
        if question is None:
            return None
        return ContentItem(
            item_type=item_type,
            item_id=question.id,
            domain=question.category,
            difficulty=Difficulty.parse(question.difficulty_level),
            explicit_cluster_key=question.revision_cluster_key or None,
            text=f"{question.stem}\n{question.explanation}",
        )


__all__ = ["AttemptRepository"]
