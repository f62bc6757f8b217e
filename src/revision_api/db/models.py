from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


def utcnow() -> datetime:
    return datetime.now(tz=timezone.utc)


def as_utc(value: datetime) -> datetime:
    """SQLite hands back naive timestamps; treat them as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class Base(DeclarativeBase):
    pass


class ClinicalCase(Base):
    __tablename__ = "clinical_cases"
    __table_args__ = (Index("ix_clinical_cases_domain", "clinical_domain"),)

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    title: Mapped[str] = mapped_column(String(255))
    description: Mapped[str] = mapped_column(Text, default="", nullable=False)
    clinical_domain: Mapped[str] = mapped_column(String(80), nullable=False)
    difficulty_level: Mapped[str | None] = mapped_column(String(20))
    revision_cluster_key: Mapped[str | None] = mapped_column(String(120))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, onupdate=utcnow
    )

    attempts: Mapped[list["CaseAttempt"]] = relationship(
        back_populates="case", cascade="all, delete-orphan"
    )


class ExamQuestion(Base):
    __tablename__ = "exam_questions"
    __table_args__ = (Index("ix_exam_questions_category", "category"),)

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    stem: Mapped[str] = mapped_column(Text, nullable=False)
    explanation: Mapped[str] = mapped_column(Text, default="", nullable=False)
    category: Mapped[str] = mapped_column(String(80), nullable=False)
    difficulty_level: Mapped[str | None] = mapped_column(String(20))
    revision_cluster_key: Mapped[str | None] = mapped_column(String(120))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, onupdate=utcnow
    )

    attempts: Mapped[list["ExamQuestionAttempt"]] = relationship(
        back_populates="question", cascade="all, delete-orphan"
    )


class CaseAttempt(Base):
    __tablename__ = "case_attempts"
    __table_args__ = (Index("ix_case_attempts_user_completed", "user_id", "completed_at"),)

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False)
    case_id: Mapped[int] = mapped_column(
        ForeignKey("clinical_cases.id", ondelete="CASCADE"), nullable=False
    )
    score: Mapped[int] = mapped_column(Integer, nullable=False)
    completed_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)

    case: Mapped[ClinicalCase] = relationship(back_populates="attempts")


class ExamQuestionAttempt(Base):
    __tablename__ = "exam_question_attempts"
    __table_args__ = (
        Index("ix_exam_question_attempts_user_completed", "user_id", "completed_at"),
    )

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False)
    question_id: Mapped[int] = mapped_column(
        ForeignKey("exam_questions.id", ondelete="CASCADE"), nullable=False
    )
    is_correct: Mapped[bool] = mapped_column(Boolean, nullable=False)
    completed_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)

    question: Mapped[ExamQuestion] = relationship(back_populates="attempts")


class CategoryStat(Base):
    __tablename__ = "category_stats"
    __table_args__ = (
        UniqueConstraint("user_id", "clinical_domain", name="uq_category_stats_user_domain"),
    )

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False)
    clinical_domain: Mapped[str] = mapped_column(String(80), nullable=False)
    average_score: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    total_attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, onupdate=utcnow
    )


class RevisionTaxonomy(Base):
    __tablename__ = "revision_taxonomy"
    __table_args__ = (
        UniqueConstraint("domain", "cluster_key", name="uq_revision_taxonomy_domain_cluster"),
        Index("ix_revision_taxonomy_domain", "domain"),
    )

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    domain: Mapped[str] = mapped_column(String(80), nullable=False)
    cluster_key: Mapped[str] = mapped_column(String(120), nullable=False)
    cluster_label: Mapped[str] = mapped_column(String(255), nullable=False)
    keywords: Mapped[list[str]] = mapped_column(
        JSONB().with_variant(JSON(), "sqlite"), nullable=False, default=list
    )
    active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, onupdate=utcnow
    )


class ContextCluster(Base):
    __tablename__ = "context_clusters"
    __table_args__ = (
        UniqueConstraint("context_type", "context_id", name="uq_context_clusters_context"),
        Index("ix_context_clusters_domain", "domain"),
    )

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    context_type: Mapped[str] = mapped_column(String(32), nullable=False)
    context_id: Mapped[str] = mapped_column(String(64), nullable=False)
    domain: Mapped[str] = mapped_column(String(80), nullable=False)
    difficulty_level: Mapped[str | None] = mapped_column(String(20))
    cluster_key: Mapped[str] = mapped_column(String(120), nullable=False)
    matched_by: Mapped[str] = mapped_column(String(32), nullable=False, default="heuristic")
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, onupdate=utcnow
    )


class RevisionNoteRecord(Base):
    __tablename__ = "revision_notes"
    __table_args__ = (
        UniqueConstraint("user_id", "scope_key", name="uq_revision_notes_user_scope"),
        Index("ix_revision_notes_user_id", "user_id"),
        Index("ix_revision_notes_domain", "domain"),
        Index("ix_revision_notes_stale_at", "stale_at"),
    )

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False)
    scope_key: Mapped[str] = mapped_column(String(320), nullable=False)
    domain: Mapped[str] = mapped_column(String(80), nullable=False)
    difficulty_level: Mapped[str | None] = mapped_column(String(20))
    cluster_key: Mapped[str | None] = mapped_column(String(120))
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    summary: Mapped[str] = mapped_column(Text, nullable=False)
    key_concepts: Mapped[list[str]] = mapped_column(
        JSONB().with_variant(JSON(), "sqlite"), nullable=False
    )
    common_mistakes: Mapped[list[str]] = mapped_column(
        JSONB().with_variant(JSON(), "sqlite"), nullable=False
    )
    rapid_checklist: Mapped[list[str]] = mapped_column(
        JSONB().with_variant(JSON(), "sqlite"), nullable=False
    )
    practice_plan: Mapped[list[str]] = mapped_column(
        JSONB().with_variant(JSON(), "sqlite"), nullable=False
    )
    source_version: Mapped[str] = mapped_column(String(120), nullable=False)
    performance_snapshot: Mapped[dict[str, Any]] = mapped_column(
        JSONB().with_variant(JSON(), "sqlite"), nullable=False
    )
    stale_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    last_generated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    last_served_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, onupdate=utcnow
    )

    evidence: Mapped[list["RevisionNoteEvidence"]] = relationship(
        back_populates="note", cascade="all, delete-orphan"
    )


class RevisionNoteEvidence(Base):
    __tablename__ = "revision_note_evidence"
    __table_args__ = (Index("ix_revision_note_evidence_note_id", "note_id"),)

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    note_id: Mapped[int] = mapped_column(
        ForeignKey("revision_notes.id", ondelete="CASCADE"), nullable=False
    )
    source_type: Mapped[str] = mapped_column(String(32), nullable=False)
    source_id: Mapped[int] = mapped_column(Integer, nullable=False)
    weight: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)

    note: Mapped[RevisionNoteRecord] = relationship(back_populates="evidence")


__all__ = [
    "Base",
    "CaseAttempt",
    "CategoryStat",
    "ClinicalCase",
    "ContextCluster",
    "ExamQuestion",
    "ExamQuestionAttempt",
    "RevisionNoteEvidence",
    "RevisionNoteRecord",
    "RevisionTaxonomy",
    "as_utc",
    "utcnow",
]
