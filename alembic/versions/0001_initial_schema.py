"""Initial schema

Revision ID: 0001_initial_schema
Revises: None
Create Date: 2025-01-01 00:00:00
"""

from __future__ import annotations

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision = "0001_initial_schema"
down_revision = None
branch_labels = None
depends_on = None


def _json() -> sa.types.TypeEngine:
    return postgresql.JSONB().with_variant(sa.JSON(), "sqlite")


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column(
            "created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()
        ),
        sa.Column(
            "updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()
        ),
    ]


def upgrade() -> None:
    op.create_table(
        "clinical_cases",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("title", sa.String(length=255), nullable=False),
        sa.Column("description", sa.Text(), nullable=False, server_default=""),
        sa.Column("clinical_domain", sa.String(length=80), nullable=False),
        sa.Column("difficulty_level", sa.String(length=20), nullable=True),
        sa.Column("revision_cluster_key", sa.String(length=120), nullable=True),
        *_timestamps(),
    )
    op.create_index("ix_clinical_cases_domain", "clinical_cases", ["clinical_domain"])

    op.create_table(
        "exam_questions",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("stem", sa.Text(), nullable=False),
        sa.Column("explanation", sa.Text(), nullable=False, server_default=""),
        sa.Column("category", sa.String(length=80), nullable=False),
        sa.Column("difficulty_level", sa.String(length=20), nullable=True),
        sa.Column("revision_cluster_key", sa.String(length=120), nullable=True),
        *_timestamps(),
    )
    op.create_index("ix_exam_questions_category", "exam_questions", ["category"])

    op.create_table(
        "case_attempts",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.String(length=64), nullable=False),
        sa.Column(
            "case_id",
            sa.Integer(),
            sa.ForeignKey("clinical_cases.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("score", sa.Integer(), nullable=False),
        sa.Column(
            "completed_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
    )
    op.create_index(
        "ix_case_attempts_user_completed", "case_attempts", ["user_id", "completed_at"]
    )

    op.create_table(
        "exam_question_attempts",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.String(length=64), nullable=False),
        sa.Column(
            "question_id",
            sa.Integer(),
            sa.ForeignKey("exam_questions.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("is_correct", sa.Boolean(), nullable=False),
        sa.Column(
            "completed_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
    )
    op.create_index(
        "ix_exam_question_attempts_user_completed",
        "exam_question_attempts",
        ["user_id", "completed_at"],
    )

    op.create_table(
        "category_stats",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.String(length=64), nullable=False),
        sa.Column("clinical_domain", sa.String(length=80), nullable=False),
        sa.Column("average_score", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("total_attempts", sa.Integer(), nullable=False, server_default="0"),
        sa.Column(
            "updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()
        ),
        sa.UniqueConstraint("user_id", "clinical_domain", name="uq_category_stats_user_domain"),
    )

    op.create_table(
        "revision_taxonomy",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("domain", sa.String(length=80), nullable=False),
        sa.Column("cluster_key", sa.String(length=120), nullable=False),
        sa.Column("cluster_label", sa.String(length=255), nullable=False),
        sa.Column("keywords", _json(), nullable=False),
        sa.Column("active", sa.Boolean(), nullable=False, server_default=sa.true()),
        *_timestamps(),
        sa.UniqueConstraint("domain", "cluster_key", name="uq_revision_taxonomy_domain_cluster"),
    )
    op.create_index("ix_revision_taxonomy_domain", "revision_taxonomy", ["domain"])

    op.create_table(
        "context_clusters",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("context_type", sa.String(length=32), nullable=False),
        sa.Column("context_id", sa.String(length=64), nullable=False),
        sa.Column("domain", sa.String(length=80), nullable=False),
        sa.Column("difficulty_level", sa.String(length=20), nullable=True),
        sa.Column("cluster_key", sa.String(length=120), nullable=False),
        sa.Column("matched_by", sa.String(length=32), nullable=False, server_default="heuristic"),
        *_timestamps(),
        sa.UniqueConstraint("context_type", "context_id", name="uq_context_clusters_context"),
    )
    op.create_index("ix_context_clusters_domain", "context_clusters", ["domain"])

    op.create_table(
        "revision_notes",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.String(length=64), nullable=False),
        sa.Column("scope_key", sa.String(length=320), nullable=False),
        sa.Column("domain", sa.String(length=80), nullable=False),
        sa.Column("difficulty_level", sa.String(length=20), nullable=True),
        sa.Column("cluster_key", sa.String(length=120), nullable=True),
        sa.Column("title", sa.String(length=200), nullable=False),
        sa.Column("summary", sa.Text(), nullable=False),
        sa.Column("key_concepts", _json(), nullable=False),
        sa.Column("common_mistakes", _json(), nullable=False),
        sa.Column("rapid_checklist", _json(), nullable=False),
        sa.Column("practice_plan", _json(), nullable=False),
        sa.Column("source_version", sa.String(length=120), nullable=False),
        sa.Column("performance_snapshot", _json(), nullable=False),
        sa.Column("stale_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column(
            "last_generated_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.Column(
            "last_served_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        *_timestamps(),
        sa.UniqueConstraint("user_id", "scope_key", name="uq_revision_notes_user_scope"),
    )
    op.create_index("ix_revision_notes_user_id", "revision_notes", ["user_id"])
    op.create_index("ix_revision_notes_domain", "revision_notes", ["domain"])
    op.create_index("ix_revision_notes_stale_at", "revision_notes", ["stale_at"])

    op.create_table(
        "revision_note_evidence",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "note_id",
            sa.Integer(),
            sa.ForeignKey("revision_notes.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("source_type", sa.String(length=32), nullable=False),
        sa.Column("source_id", sa.Integer(), nullable=False),
        sa.Column("weight", sa.Integer(), nullable=False, server_default="1"),
        sa.Column(
            "created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()
        ),
    )
    op.create_index(
        "ix_revision_note_evidence_note_id", "revision_note_evidence", ["note_id"]
    )


def downgrade() -> None:
    op.drop_index("ix_revision_note_evidence_note_id", table_name="revision_note_evidence")
    op.drop_table("revision_note_evidence")
    op.drop_index("ix_revision_notes_stale_at", table_name="revision_notes")
    op.drop_index("ix_revision_notes_domain", table_name="revision_notes")
    op.drop_index("ix_revision_notes_user_id", table_name="revision_notes")
    op.drop_table("revision_notes")
    op.drop_index("ix_context_clusters_domain", table_name="context_clusters")
    op.drop_table("context_clusters")
    op.drop_index("ix_revision_taxonomy_domain", table_name="revision_taxonomy")
    op.drop_table("revision_taxonomy")
    op.drop_table("category_stats")
    op.drop_index(
        "ix_exam_question_attempts_user_completed", table_name="exam_question_attempts"
    )
    op.drop_table("exam_question_attempts")
    op.drop_index("ix_case_attempts_user_completed", table_name="case_attempts")
    op.drop_table("case_attempts")
    op.drop_index("ix_exam_questions_category", table_name="exam_questions")
    op.drop_table("exam_questions")
    op.drop_index("ix_clinical_cases_domain", table_name="clinical_cases")
    op.drop_table("clinical_cases")
