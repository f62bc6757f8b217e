from __future__ import annotations

import pytest
from sqlalchemy.exc import SQLAlchemyError

from revision_api.db.repositories.attempts import AttemptRepository
from revision_api.db.repositories.cluster_assignments import ClusterAssignmentRepository
from revision_api.db.repositories.taxonomy import TaxonomyRepository
from revision_api.domain.enums import ClusterMatch, Difficulty, ItemType
from revision_api.domain.errors import LookupFailure
from revision_api.domain.schemas.revision import RevisionScope, TaxonomyEntry
from revision_api.services.revision.evidence import (
    AttemptEvidenceCollector,
    attempt_in_scope,
    build_evidence,
)
from tests.utils import (
    LEARNER_ID,
    add_case,
    add_case_attempt,
    add_question,
    add_question_attempt,
    add_taxonomy,
    make_attempt,
)

TAXONOMY = {
    "Cardiology": [
        TaxonomyEntry(domain="Cardiology", cluster_key="acs"),
        TaxonomyEntry(domain="Cardiology", cluster_key="heart-failure"),
    ]
}


def test_open_scope_matches_every_attempt_in_domain() -> None:
    scope = RevisionScope(domain="Cardiology")

    assert attempt_in_scope(make_attempt(), scope, taxonomy=TAXONOMY, assignments={})
    assert attempt_in_scope(
        make_attempt(difficulty=None), scope, taxonomy=TAXONOMY, assignments={}
    )
    assert not attempt_in_scope(
        make_attempt(domain="Renal"), scope, taxonomy=TAXONOMY, assignments={}
    )


def test_scope_difficulty_must_match_exactly() -> None:
    scope = RevisionScope(domain="Cardiology", difficulty=Difficulty.ADVANCED)

    assert not attempt_in_scope(make_attempt(), scope, taxonomy=TAXONOMY, assignments={})
    assert not attempt_in_scope(
        make_attempt(difficulty=None), scope, taxonomy=TAXONOMY, assignments={}
    )


def test_scope_cluster_uses_the_aggregation_cluster_rules() -> None:
    scope = RevisionScope(domain="Cardiology", cluster_key="heart-failure")
    assignments = {ItemType.CASE: {2: "heart-failure"}}

    assert attempt_in_scope(
        make_attempt(item_id=1, cluster="heart-failure"),
        scope,
        taxonomy=TAXONOMY,
        assignments=assignments,
    )
    assert attempt_in_scope(
        make_attempt(item_id=2), scope, taxonomy=TAXONOMY, assignments=assignments
    )
    assert not attempt_in_scope(
        make_attempt(item_id=3), scope, taxonomy=TAXONOMY, assignments=assignments
    )


def test_build_evidence_orders_newest_first_and_limits_per_type() -> None:
    attempts = [
        make_attempt(item_id=1, score=90, minutes_ago=50),
        make_attempt(item_id=2, score=30, minutes_ago=5),
        make_attempt(item_id=3, score=50, minutes_ago=20),
        make_attempt(item_type=ItemType.EXAM_QUESTION, item_id=4, score=0, minutes_ago=1),
    ]

    evidence = build_evidence(attempts, per_type_limit=2)

    assert [item.item_id for item in evidence.case_items] == [2, 3]
    assert [item.item_id for item in evidence.exam_items] == [4]
    assert evidence.total_attempts == 4
    assert evidence.average_score == 43
    assert [item.is_weak for item in evidence.items] == [True, True, True]


def test_build_evidence_without_attempts_is_empty() -> None:
    evidence = build_evidence([], per_type_limit=5)

    assert evidence.items == []
    assert evidence.average_score == 0
    assert evidence.total_attempts == 0


@pytest.mark.asyncio
async def test_collector_reads_attempts_inside_a_cluster_scope(session_maker) -> None:
    async with session_maker() as session:
        await add_taxonomy(session, domain="Cardiology", cluster_key="acs")
        await add_taxonomy(session, domain="Cardiology", cluster_key="heart-failure")
        failing = await add_case(session, title="Congested and hypoxic")
        unassigned = await add_case(session, title="Crushing chest pain")
        question = await add_question(session, cluster="heart-failure")
        other_domain = await add_question(session, category="Renal")
        await ClusterAssignmentRepository(session).upsert(
            item_type=ItemType.CASE,
            item_id=failing.id,
            domain="Cardiology",
            difficulty=Difficulty.CORE,
            cluster_key="heart-failure",
            matched_by=ClusterMatch.HEURISTIC,
        )
        case_attempt = await add_case_attempt(
            session, failing, user_id=LEARNER_ID, score=35, minutes_ago=10
        )
        await add_case_attempt(session, unassigned, user_id=LEARNER_ID, score=20)
        exam_attempt = await add_question_attempt(
            session, question, user_id=LEARNER_ID, is_correct=True, minutes_ago=3
        )
        await add_question_attempt(session, other_domain, user_id=LEARNER_ID, is_correct=False)
        await session.commit()

        collector = AttemptEvidenceCollector(
            attempts=AttemptRepository(session),
            taxonomy=TaxonomyRepository(session),
            assignments=ClusterAssignmentRepository(session),
            history_limit=50,
            per_type_limit=5,
        )
        evidence = await collector.collect(
            user_id=LEARNER_ID,
            scope=RevisionScope(
                domain="Cardiology", difficulty=Difficulty.CORE, cluster_key="heart-failure"
            ),
        )

    assert [(item.attempt_id, item.title) for item in evidence.case_items] == [
        (case_attempt.id, "Congested and hypoxic")
    ]
    assert [item.attempt_id for item in evidence.exam_items] == [exam_attempt.id]
    assert evidence.total_attempts == 2
    assert evidence.average_score == 68


@pytest.mark.asyncio
async def test_collector_reports_attempt_store_errors_as_lookup_failure(
    session_maker, monkeypatch
) -> None:
    async def offline(self, *, user_id, item_type, limit):
        raise SQLAlchemyError("attempt store offline")

    monkeypatch.setattr(AttemptRepository, "list_attempts", offline)

    async with session_maker() as session:
        collector = AttemptEvidenceCollector(
            attempts=AttemptRepository(session),
            taxonomy=TaxonomyRepository(session),
            assignments=ClusterAssignmentRepository(session),
            history_limit=50,
            per_type_limit=5,
        )
        with pytest.raises(LookupFailure) as excinfo:
            await collector.collect(
                user_id=LEARNER_ID,
                scope=RevisionScope(domain="Renal", difficulty=Difficulty.CORE),
            )

    assert "Renal::Core::any" in str(excinfo.value)
    assert excinfo.value.context == {"scope_key": "Renal::Core::any", "item_type": "case"}
    assert isinstance(excinfo.value.__cause__, SQLAlchemyError)
