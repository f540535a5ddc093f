from __future__ import annotations

from uuid import uuid4

import pytest

from app.evaluate.bank_query import BankQueryEngine
from app.evaluate.constants import MATCH_MODE_EXACT, MATCH_MODE_SOFT
from app.evaluate.types import SelectionCriteria
from tests.evaluate.fakes import InMemorySelectionStore, RecordingEmitter, make_item

CRITERIA = SelectionCriteria(
    difficulty="Easy",
    coding_mode=False,
    preferred_topic="React Hooks",
    preferred_subtopic="useState",
    bloom_level="Understand",
)


def _criteria(subtopic: str | None) -> SelectionCriteria:
    return SelectionCriteria(
        difficulty=CRITERIA.difficulty,
        coding_mode=CRITERIA.coding_mode,
        preferred_topic=CRITERIA.preferred_topic,
        preferred_subtopic=subtopic,
        bloom_level=CRITERIA.bloom_level,
    )


@pytest.mark.asyncio
async def test_candidates_are_flagged_when_seen_in_recent_attempts() -> None:
    store = InMemorySelectionStore()
    seen = store.add_item(make_item("What does useState return?"))
    fresh = store.add_item(make_item("When does useState read its initializer?"))
    store.recent_ids_by_user["user-1"] = {seen.item_id}
    events = RecordingEmitter()
    engine = BankQueryEngine(store, events=events)

    candidates = await engine.find_candidates(
        attempt_id=uuid4(),
        user_id="user-1",
        criteria=CRITERIA,
        asked_ids=[],
        overrepresented_topics=[],
    )

    assert {candidate.item.item_id: candidate.seen_recently for candidate in candidates} == {
        seen.item_id: True,
        fresh.item_id: False,
    }
    [pool] = events.named("candidate_pool_primary")
    assert pool["candidates"] == 2
    assert pool["seen_recently"] == 1


@pytest.mark.asyncio
async def test_exact_mode_matches_subtopic_or_its_absence_exactly() -> None:
    store = InMemorySelectionStore()
    tagged = store.add_item(make_item("What does useState return?"))
    untagged = store.add_item(make_item("What is a hook?", subtopic=None))
    engine = BankQueryEngine(store, events=RecordingEmitter())

    with_subtopic = await engine.find_candidates(
        attempt_id=uuid4(),
        user_id="user-1",
        criteria=_criteria("useState"),
        asked_ids=[],
        overrepresented_topics=[],
    )
    without_subtopic = await engine.find_candidates(
        attempt_id=uuid4(),
        user_id="user-1",
        criteria=_criteria(None),
        asked_ids=[],
        overrepresented_topics=[],
    )

    assert [candidate.item.item_id for candidate in with_subtopic] == [tagged.item_id]
    assert [candidate.item.item_id for candidate in without_subtopic] == [untagged.item_id]


@pytest.mark.asyncio
async def test_only_soft_mode_passes_overrepresented_topics_to_the_query() -> None:
    store = InMemorySelectionStore()
    store.add_item(make_item("What does useState return?"))
    exact = BankQueryEngine(store, events=RecordingEmitter(), match_mode=MATCH_MODE_EXACT)
    soft = BankQueryEngine(store, events=RecordingEmitter(), match_mode=MATCH_MODE_SOFT)

    for engine in (exact, soft):
        await engine.find_candidates(
            attempt_id=uuid4(),
            user_id="user-1",
            criteria=CRITERIA,
            asked_ids=[],
            overrepresented_topics=["React Hooks"],
        )

    assert [query["exclude_topics"] for query in store.bank_queries] == [[], ["React Hooks"]]


@pytest.mark.asyncio
async def test_empty_pool_skips_recent_lookup() -> None:
    store = InMemorySelectionStore()
    events = RecordingEmitter()
    engine = BankQueryEngine(store, events=events)

    candidates = await engine.find_candidates(
        attempt_id=uuid4(),
        user_id="user-1",
        criteria=CRITERIA,
        asked_ids=[],
        overrepresented_topics=[],
    )

    assert candidates == []
    assert events.named("candidate_pool_primary")[0]["candidates"] == 0


def test_unknown_match_mode_is_rejected() -> None:
    with pytest.raises(ValueError, match="unknown match mode"):
        BankQueryEngine(InMemorySelectionStore(), events=RecordingEmitter(), match_mode="fuzzy")
