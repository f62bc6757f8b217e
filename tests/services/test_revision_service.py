from __future__ import annotations

from datetime import timedelta

import pytest
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from revision_api.db.repositories.attempts import AttemptRepository
from revision_api.db.repositories.cluster_assignments import ClusterAssignmentRepository
from revision_api.domain.enums import (
    CacheStatus,
    ClusterMatch,
    ContextType,
    Difficulty,
    ItemType,
)
from revision_api.domain.errors import GenerationFailure, LookupFailure, ValidationFailure
from revision_api.domain.schemas.revision import RefreshNoteRequest, RevisionScope
from revision_api.services.revision.service import RevisionService
from tests.utils import (
    BASE_TIME,
    StubNoteGenerator,
    add_case,
    add_case_attempt,
    add_category_stat,
    add_question,
    add_question_attempt,
    add_taxonomy,
)

pytestmark = pytest.mark.asyncio

USER = "learner-1"


def _service(session_maker, settings, generator=None, *, now=BASE_TIME) -> RevisionService:
    return RevisionService(
        session_maker, settings=settings, generator=generator, clock=lambda: now
    )


async def _seed_history(session_maker) -> None:
    async with session_maker() as session:
        case = await add_case(session, domain="Cardiology", difficulty="Core")
        for minutes_ago, score in ((30, 80), (20, 60), (10, 40)):
            await add_case_attempt(
                session, case, user_id=USER, score=score, minutes_ago=minutes_ago
            )
        question = await add_question(session, category="Renal", difficulty="Core")
        await add_question_attempt(session, question, user_id=USER, is_correct=False)
        await session.commit()


async def test_cards_rank_weakest_scope_first(session_maker, settings) -> None:
    await _seed_history(session_maker)

    cards = await _service(session_maker, settings).get_ranked_cards(USER)

    assert [(c.rank, c.domain, c.average_score, c.priority_score) for c in cards] == [
        (1, "Renal", 0, 102),
        (2, "Cardiology", 60, 46),
    ]
    cardiology = cards[1]
    assert cardiology.case_attempts == 3
    assert cardiology.exam_attempts == 0
    assert cardiology.context_id == "Cardiology|Core|any"
    assert cardiology.is_fallback is False
    assert cardiology.note_exists is False


async def test_cards_use_taxonomy_fallback_cluster(session_maker, settings) -> None:
    await _seed_history(session_maker)
    async with session_maker() as session:
        await add_taxonomy(session, domain="Cardiology", cluster_key="heart-failure")
        await add_taxonomy(session, domain="Cardiology", cluster_key="acs")
        await add_taxonomy(session, domain="Cardiology", cluster_key="valves", active=False)
        await session.commit()

    cards = await _service(session_maker, settings).get_ranked_cards(USER)

    assert {c.domain: c.cluster_key for c in cards} == {"Renal": None, "Cardiology": "acs"}


async def test_cards_for_other_learners_are_empty(session_maker, settings) -> None:
    await _seed_history(session_maker)

    assert await _service(session_maker, settings).get_ranked_cards("someone-else") == []


async def test_new_learner_gets_fallback_cards_from_category_stats(
    session_maker, settings
) -> None:
    async with session_maker() as session:
        await add_category_stat(session, user_id=USER, domain="Renal", average_score=30)
        await add_category_stat(session, user_id=USER, domain="Neurology", average_score=75)
        await add_taxonomy(session, domain="Renal", cluster_key="aki")
        await session.commit()

    cards = await _service(session_maker, settings).get_ranked_cards(USER)

    assert [(c.domain, c.cluster_key, c.priority_score, c.is_fallback) for c in cards] == [
        ("Renal", "aki", 70, True),
        ("Neurology", None, 25, True),
    ]
    assert all(card.difficulty is None for card in cards)


async def test_one_failing_attempt_source_still_ranks_the_other(
    session_maker, settings, monkeypatch
) -> None:
    await _seed_history(session_maker)
    original = AttemptRepository.list_attempts

    async def flaky(self, *, user_id, item_type, limit):
        if item_type is ItemType.EXAM_QUESTION:
            raise SQLAlchemyError("exam attempt store offline")
        return await original(self, user_id=user_id, item_type=item_type, limit=limit)

    monkeypatch.setattr(AttemptRepository, "list_attempts", flaky)

    cards = await _service(session_maker, settings).get_ranked_cards(USER)

    assert [card.domain for card in cards] == ["Cardiology"]


async def test_all_attempt_sources_failing_raises_lookup_failure(
    session_maker, settings, monkeypatch
) -> None:
    async def broken(self, *, user_id, item_type, limit):
        raise SQLAlchemyError(f"{item_type.value} store offline")

    monkeypatch.setattr(AttemptRepository, "list_attempts", broken)

    with pytest.raises(LookupFailure) as excinfo:
        await _service(session_maker, settings).get_ranked_cards(USER)

    assert excinfo.value.context["user_id"] == USER
    assert set(excinfo.value.context["sources"]) == {"case", "exam_question"}


async def test_resolving_a_case_context_persists_heuristic_cluster(
    session_maker, settings
) -> None:
    async with session_maker() as session:
        await add_taxonomy(
            session, domain="Cardiology", cluster_key="acs", keywords=["troponin"]
        )
        await add_taxonomy(
            session, domain="Cardiology", cluster_key="heart-failure", keywords=["diuretic"]
        )
        case = await add_case(
            session, difficulty="Advanced", description="Escalate the loop diuretic dose."
        )
        await session.commit()
        case_id = case.id

    scope = await _service(session_maker, settings).resolve_context(
        ContextType.CASE, str(case_id)
    )

    assert scope == RevisionScope(
        domain="Cardiology", difficulty=Difficulty.ADVANCED, cluster_key="heart-failure"
    )
    async with session_maker() as session:
        cached = await ClusterAssignmentRepository(session).get(ItemType.CASE, case_id)
    assert cached == "heart-failure"


async def test_cached_assignment_is_reused_for_exam_question_context(
    session_maker, settings
) -> None:
    async with session_maker() as session:
        await add_taxonomy(session, domain="Renal", cluster_key="aki", keywords=["creatinine"])
        await add_taxonomy(session, domain="Renal", cluster_key="ckd", keywords=["dialysis"])
        question = await add_question(session, category="Renal", stem="Rising creatinine?")
        await ClusterAssignmentRepository(session).upsert(
            item_type=ItemType.EXAM_QUESTION,
            item_id=question.id,
            domain="Renal",
            difficulty=Difficulty.CORE,
            cluster_key="ckd",
            matched_by=ClusterMatch.HEURISTIC,
        )
        await session.commit()
        question_id = question.id

    scope = await _service(session_maker, settings).resolve_context(
        ContextType.EXAM_QUESTION, str(question_id)
    )

    assert scope.cluster_key == "ckd"


@pytest.mark.parametrize("context_id", ["abc", "0", "-4", "1.5", ""])
async def test_item_context_ids_must_be_positive_integers(
    session_maker, settings, context_id: str
) -> None:
    with pytest.raises(ValidationFailure):
        await _service(session_maker, settings).resolve_context(ContextType.CASE, context_id)


async def test_unknown_item_context_raises_key_error(session_maker, settings) -> None:
    with pytest.raises(KeyError):
        await _service(session_maker, settings).resolve_context(ContextType.EXAM_QUESTION, "999")


async def test_category_note_lookup_caches_and_marks_card(session_maker, settings) -> None:
    await _seed_history(session_maker)
    generator = StubNoteGenerator()
    service = _service(session_maker, settings, generator)

    first = await service.get_note(USER, ContextType.CATEGORY, "Cardiology|Core|any")
    second = await service.get_note(USER, ContextType.CATEGORY, "Cardiology|Core|any")
    cards = await service.get_ranked_cards(USER)

    assert first.cache_status is CacheStatus.MISS
    assert second.cache_status is CacheStatus.HIT
    assert len(generator.calls) == 1
    evidence = generator.calls[0][1]
    assert evidence is not None
    assert evidence.total_attempts == 3
    assert evidence.average_score == 60
    assert [item.score for item in evidence.case_items] == [40, 60, 80]
    flags = {card.domain: card.note_exists for card in cards}
    assert flags == {"Renal": False, "Cardiology": True}


async def test_refresh_and_staleness_sweep(session_maker, settings) -> None:
    generator = StubNoteGenerator()
    service = _service(session_maker, settings, generator)
    payload = RefreshNoteRequest(domain="Renal", difficulty=Difficulty.CORE)

    refreshed = await service.refresh_note(USER, payload)
    assert refreshed.refreshed_at == BASE_TIME
    assert refreshed.scope.scope_key == "Renal::Core::any"

    later = _service(session_maker, settings, generator, now=BASE_TIME + timedelta(days=31))
    sweep = await later.mark_due_notes_stale()
    assert sweep.marked == 1

    served = await later.get_note(USER, ContextType.CATEGORY, "Renal|Core")
    assert served.cache_status is CacheStatus.STALE_HIT
    assert served.note == refreshed.note
    assert len(generator.calls) == 1


async def test_cached_note_is_served_without_a_generator(session_maker, settings) -> None:
    payload = RefreshNoteRequest(domain="Cardiology")
    refreshed = await _service(session_maker, settings, StubNoteGenerator()).refresh_note(
        USER, payload
    )
    cache_only = _service(session_maker, settings)

    served = await cache_only.get_note(USER, ContextType.CATEGORY, "Cardiology")
    with pytest.raises(GenerationFailure) as excinfo:
        await cache_only.get_note(USER, ContextType.CATEGORY, "Renal|Core")

    assert served.cache_status is CacheStatus.HIT
    assert served.note == refreshed.note
    assert excinfo.value.scope_key == "Renal::Core::any"


async def test_sweep_flags_note_after_scope_score_moves(session_maker, settings) -> None:
    generator = StubNoteGenerator()
    service = _service(session_maker, settings, generator)
    await service.refresh_note(USER, RefreshNoteRequest(domain="Cardiology"))

    await _seed_history(session_maker)
    sweep = await service.mark_due_notes_stale(USER)
    served = await service.get_note(USER, ContextType.CATEGORY, "Cardiology")

    assert sweep.marked == 1
    assert served.cache_status is CacheStatus.STALE_HIT
    assert len(generator.calls) == 1


@pytest.mark.parametrize(
    ("table", "message"),
    [
        ("revision_taxonomy", "Revision taxonomy is unavailable"),
        ("context_clusters", "Cluster assignment store is unavailable"),
    ],
)
async def test_unavailable_cluster_stores_abort_ranking(
    session_maker, settings, engine, table: str, message: str
) -> None:
    await _seed_history(session_maker)
    async with engine.begin() as conn:
        await conn.execute(text(f"DROP TABLE {table}"))

    with pytest.raises(LookupFailure, match=message):
        await _service(session_maker, settings).get_ranked_cards(USER)
