from __future__ import annotations

import random
from uuid import uuid4

import pytest

from app.evaluate.constants import SelectionConfig
from app.evaluate.content import build_embedding_text
from app.evaluate.errors import GeneratedItemInvalidError
from app.evaluate.generation import (
    Accepted,
    Exhausted,
    GenerationFallback,
    build_query_text,
    relaxed_avoid_topics,
)
from app.evaluate.similarity import SimilarityGate
from app.evaluate.types import AskedQuestion, AssignmentView, Distributions, SelectionCriteria
from tests.evaluate.fakes import (
    FakeEmbedder,
    FakeGenerator,
    InMemorySelectionStore,
    RecordingEmitter,
    make_attempt,
    make_draft,
    make_item,
)

CRITERIA = SelectionCriteria(
    difficulty="Easy",
    coding_mode=False,
    preferred_topic="React Hooks",
    preferred_subtopic="useState",
    bloom_level="Understand",
)


class OneHotEmbedder:
    """Every distinct text gets its own axis, so unrelated texts never look similar."""

    def __init__(self, dims: int = 64) -> None:
        self._dims = dims
        self._axes: dict[str, int] = {}

    async def embed(self, texts):  # noqa: ANN001
        vectors = []
        for text in texts:
            axis = self._axes.setdefault(text, len(self._axes) % self._dims)
            vector = [0.0] * self._dims
            vector[axis] = 1.0
            vectors.append(vector)
        return vectors


class FailingGenerator:
    def __init__(self) -> None:
        self.calls = 0

    async def generate_item(self, request):  # noqa: ANN001
        self.calls += 1
        raise GeneratedItemInvalidError("expected exactly 4 options")


def _asked(store: InMemorySelectionStore, attempt_id, *questions: str) -> list[AskedQuestion]:  # noqa: ANN001
    asked = []
    for order, question in enumerate(questions, start=1):
        item = store.add_item(make_item(question, embedding=[]))
        row = AssignmentView(attempt_id=attempt_id, question_id=item.item_id, question_order=order)
        store.assignments.append(row)
        asked.append(AskedQuestion(assignment=row, item=item))
    return asked


def _fallback(store, generator, events, *, embedder=None, config=None) -> GenerationFallback:  # noqa: ANN001
    kwargs = {"config": config} if config is not None else {}
    return GenerationFallback(
        store,
        embedder=embedder or OneHotEmbedder(),
        generator=generator,
        gate=SimilarityGate(store, events=events),
        rng=random.Random(5),
        events=events,
        **kwargs,
    )


def test_relaxed_avoid_topics_drops_one_more_per_attempt() -> None:
    topics = ["Testing", "Forms", "Performance"]

    assert relaxed_avoid_topics(topics, 1) == ["Testing", "Forms", "Performance"]
    assert relaxed_avoid_topics(topics, 2) == ["Testing", "Forms"]
    assert relaxed_avoid_topics(topics, 3) == ["Testing"]
    assert relaxed_avoid_topics(topics, 5) == []


def test_build_query_text_depends_on_coding_mode() -> None:
    assert build_query_text("React Hooks", "useState", True) == "useState code example implementation"
    assert build_query_text("React Hooks", None, False) == "React Hooks fundamentals explanation concepts"


@pytest.mark.asyncio
async def test_generate_persists_new_item() -> None:
    store = InMemorySelectionStore()
    attempt = store.add_attempt(make_attempt())
    asked = _asked(store, attempt.attempt_id, "What is JSX?")
    generator = FakeGenerator(make_draft("Why does calling setState not update the value immediately?"))
    events = RecordingEmitter()

    outcome = await _fallback(store, generator, events).generate(
        attempt=attempt,
        criteria=CRITERIA,
        asked=asked,
        distributions=Distributions(),
        overrepresented_topics=["Testing"],
    )

    assert isinstance(outcome, Accepted)
    assert outcome.duplicate is False
    stored = store.items[outcome.item_id]
    assert stored.question == outcome.draft.question
    assert stored.embedding
    request = generator.requests[0]
    assert request.topic == "React Hooks"
    assert request.subtopic == "useState"
    assert request.negative_examples == ("What is JSX?",)
    assert request.avoid_topics == ("Testing",)
    assert request.context_items
    assert store.retrievals[0]["subtopic"] == "useState"
    assert store.retrievals[0]["user_id"] == attempt.user_id


@pytest.mark.asyncio
async def test_generate_retries_after_gate_hit_with_negative_example_and_new_subtopic() -> None:
    store = InMemorySelectionStore()
    attempt = store.add_attempt(make_attempt())
    asked = _asked(store, attempt.attempt_id, "What does useState return?")
    generator = FakeGenerator(
        make_draft("What does useState return?"),
        make_draft("Which argument lets useState compute its initial value lazily?"),
    )
    events = RecordingEmitter()

    outcome = await _fallback(store, generator, events).generate(
        attempt=attempt,
        criteria=CRITERIA,
        asked=asked,
        distributions=Distributions(),
        overrepresented_topics=[],
    )

    assert isinstance(outcome, Accepted)
    assert outcome.draft.question.startswith("Which argument")
    hits = events.named("generation_similarity_gate_hit")
    assert [hit["reason"] for hit in hits] == ["content_key"]
    assert hits[0]["accepted_anyway"] is False

    retry = generator.requests[1]
    assert retry.negative_examples == ("What does useState return?", "What does useState return?")
    assert retry.avoid_subtopics == ("useState",)
    assert retry.subtopic not in (None, "useState")
    assert [call["subtopic"] for call in store.retrievals] == ["useState", retry.subtopic]


@pytest.mark.asyncio
async def test_generate_accepts_on_final_attempt_even_if_gate_hits() -> None:
    store = InMemorySelectionStore()
    attempt = store.add_attempt(make_attempt())
    asked = _asked(store, attempt.attempt_id, "What does useState return?")
    generator = FakeGenerator(make_draft("What does useState return?"))
    events = RecordingEmitter()

    outcome = await _fallback(store, generator, events).generate(
        attempt=attempt,
        criteria=CRITERIA,
        asked=asked,
        distributions=Distributions(),
        overrepresented_topics=[],
    )

    assert isinstance(outcome, Accepted)
    # same content key as the asked item, so the stored row is reused
    assert outcome.duplicate is True
    assert outcome.item_id == asked[0].item.item_id
    hits = events.named("generation_similarity_gate_hit")
    assert [hit["accepted_anyway"] for hit in hits] == [False, False, True]
    assert len(generator.requests) == 3


@pytest.mark.asyncio
async def test_generate_reuses_bank_item_on_content_key_conflict() -> None:
    store = InMemorySelectionStore()
    attempt = store.add_attempt(make_attempt())
    existing = store.add_item(make_item("How do you mock a module in Jest?", topic="Testing", subtopic="Mocking"))
    generator = FakeGenerator(make_draft("How do you mock a module in Jest?"))
    events = RecordingEmitter()

    outcome = await _fallback(store, generator, events).generate(
        attempt=attempt,
        criteria=CRITERIA,
        asked=[],
        distributions=Distributions(),
        overrepresented_topics=[],
    )

    assert isinstance(outcome, Accepted)
    assert outcome.duplicate is True
    assert outcome.item_id == existing.item_id
    assert events.named("question_generated_duplicate")[0]["existing_question_id"] == str(existing.item_id)
    assert len(store.items) == 1


@pytest.mark.asyncio
async def test_generate_rejects_draft_close_to_attempt_embedding() -> None:
    store = InMemorySelectionStore()
    attempt = store.add_attempt(make_attempt())
    embedder = FakeEmbedder()
    first = make_draft("Explain the dependency array of useEffect in detail")
    second = make_draft("Name a hook", topic="Testing", subtopic="Mocking")
    [first_embedding] = await embedder.embed(
        [
            build_embedding_text(
                topic=first.topic,
                subtopic=first.subtopic,
                difficulty=first.difficulty,
                bloom_level=first.bloom_level,
                question=first.question,
                options=first.options,
            )
        ]
    )
    asked_item = make_item("unrelated wording", topic="Forms", subtopic="Validation", embedding=first_embedding)
    row = AssignmentView(attempt_id=attempt.attempt_id, question_id=asked_item.item_id, question_order=1)
    asked = [AskedQuestion(assignment=row, item=asked_item)]
    generator = FakeGenerator(first, second)
    events = RecordingEmitter()

    outcome = await _fallback(store, generator, events, embedder=embedder).generate(
        attempt=attempt,
        criteria=CRITERIA,
        asked=asked,
        distributions=Distributions(),
        overrepresented_topics=[],
    )

    assert isinstance(outcome, Accepted)
    assert events.named("generation_similarity_gate_hit")[0]["reason"] == "attempt_embedding"


@pytest.mark.asyncio
async def test_generate_exhausts_when_generator_keeps_failing() -> None:
    store = InMemorySelectionStore()
    attempt = store.add_attempt(make_attempt())
    generator = FailingGenerator()
    events = RecordingEmitter()

    outcome = await _fallback(store, generator, events).generate(
        attempt=attempt,
        criteria=CRITERIA,
        asked=[],
        distributions=Distributions(),
        overrepresented_topics=[],
    )

    assert outcome == Exhausted(reason="GeneratedItemInvalidError", attempts=3)
    assert generator.calls == 3
    assert len(events.named("generation_attempt_failed")) == 3


@pytest.mark.asyncio
async def test_generate_exhausts_without_context() -> None:
    store = InMemorySelectionStore(context_items=[])
    attempt = store.add_attempt(make_attempt())
    generator = FakeGenerator(make_draft("never generated"))

    outcome = await _fallback(store, generator, RecordingEmitter()).generate(
        attempt=attempt,
        criteria=CRITERIA,
        asked=[],
        distributions=Distributions(),
        overrepresented_topics=[],
    )

    assert isinstance(outcome, Exhausted)
    assert outcome.reason == "NoViableContextError"
    assert generator.requests == []


@pytest.mark.asyncio
async def test_store_error_during_retrieval_aborts_the_attempt() -> None:
    store = InMemorySelectionStore(fail_retrieval=True)
    attempt = store.add_attempt(make_attempt())
    generator = FakeGenerator(make_draft("never generated"))
    events = RecordingEmitter()

    outcome = await _fallback(store, generator, events).generate(
        attempt=attempt,
        criteria=CRITERIA,
        asked=[],
        distributions=Distributions(),
        overrepresented_topics=[],
    )

    assert outcome == Exhausted(reason="OperationalError", attempts=3)
    assert generator.requests == []
    assert len(store.retrievals) == 3
    failures = events.named("generation_attempt_failed")
    assert [failure["error_type"] for failure in failures] == ["OperationalError"] * 3


@pytest.mark.asyncio
async def test_negative_examples_are_capped() -> None:
    store = InMemorySelectionStore()
    attempt = store.add_attempt(make_attempt())
    questions = [f"asked question number {index} {uuid4().hex}" for index in range(30)]
    asked = _asked(store, attempt.attempt_id, *questions)
    generator = FakeGenerator(make_draft("A brand new question about lazy initial state"))
    config = SelectionConfig(negative_examples_seed=30, negative_examples_cap=25)

    outcome = await _fallback(store, generator, RecordingEmitter(), config=config).generate(
        attempt=attempt,
        criteria=CRITERIA,
        asked=asked,
        distributions=Distributions(),
        overrepresented_topics=[],
    )

    assert isinstance(outcome, Accepted)
    assert generator.requests[0].negative_examples == tuple(questions[-25:])


@pytest.mark.asyncio
async def test_default_seed_uses_last_twenty_asked_questions() -> None:
    store = InMemorySelectionStore()
    attempt = store.add_attempt(make_attempt())
    questions = [f"asked question number {index} {uuid4().hex}" for index in range(30)]
    asked = _asked(store, attempt.attempt_id, *questions)
    generator = FakeGenerator(make_draft("A brand new question about lazy initial state"))

    await _fallback(store, generator, RecordingEmitter()).generate(
        attempt=attempt,
        criteria=CRITERIA,
        asked=asked,
        distributions=Distributions(),
        overrepresented_topics=[],
    )

    assert generator.requests[0].negative_examples == tuple(questions[-20:])
