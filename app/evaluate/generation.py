from __future__ import annotations

import random
from dataclasses import dataclass, field
from typing import Protocol, Sequence, Union
from uuid import UUID

from sqlalchemy.exc import SQLAlchemyError

from app.evaluate import ontology
from app.evaluate.constants import DEFAULT_SELECTION_CONFIG, SelectionConfig
from app.evaluate.content import build_embedding_text, content_key
from app.evaluate.errors import (
    ExternalServiceError,
    GeneratedItemInvalidError,
    NoViableContextError,
)
from app.evaluate.events import EventEmitter
from app.evaluate.similarity import (
    GATE_ATTEMPT_EMBEDDING,
    GATE_CONTENT_KEY,
    GATE_NEIGHBOR,
    SIMILARITY_HIGH,
    SimilarityGate,
    text_similarity_reason,
)
from app.evaluate.store import SelectionStore
from app.evaluate.types import (
    AskedQuestion,
    AttemptView,
    ContextItem,
    Distributions,
    GeneratedItemDraft,
    GenerationRequest,
    NewBankItem,
    SelectionCriteria,
)
from app.evaluate.vectors import weighted_random_choice


class Embedder(Protocol):
    async def embed(self, texts: Sequence[str]) -> list[list[float]]: ...


class ItemGenerator(Protocol):
    async def generate_item(self, request: GenerationRequest) -> GeneratedItemDraft: ...


@dataclass(frozen=True, slots=True)
class Accepted:
    item_id: UUID
    draft: GeneratedItemDraft
    duplicate: bool


@dataclass(frozen=True, slots=True)
class RetryWith:
    reason: str
    rejected_question: str | None = None
    perturb_subtopic: bool = False


@dataclass(frozen=True, slots=True)
class Exhausted:
    reason: str
    attempts: int


GenerationOutcome = Union[Accepted, RetryWith, Exhausted]


@dataclass(slots=True)
class _GenerationState:
    topic: str
    subtopic: str | None
    negative_examples: list[str]
    avoid_subtopics: list[str] = field(default_factory=list)
    last_reason: str = "not_started"


def relaxed_avoid_topics(overrepresented: Sequence[str], attempt_number: int) -> list[str]:
    """Each attempt after the first drops one more avoided topic from the tail."""
    drop = max(0, attempt_number - 1)
    if drop == 0:
        return list(overrepresented)
    return list(overrepresented[: max(0, len(overrepresented) - drop)])


def build_query_text(topic: str, subtopic: str | None, coding_mode: bool) -> str:
    base = subtopic or f"{topic} fundamentals"
    return base + (" code example implementation" if coding_mode else " explanation concepts")


class GenerationFallback:
    def __init__(
        self,
        store: SelectionStore,
        *,
        embedder: Embedder,
        generator: ItemGenerator,
        gate: SimilarityGate,
        rng: random.Random,
        events: EventEmitter,
        config: SelectionConfig = DEFAULT_SELECTION_CONFIG,
    ) -> None:
        self._store = store
        self._embedder = embedder
        self._generator = generator
        self._gate = gate
        self._rng = rng
        self._events = events
        self._config = config

    def _initial_topic(self, criteria: SelectionCriteria, distributions: Distributions) -> str:
        if criteria.preferred_topic:
            return criteria.preferred_topic
        topics = ontology.topic_names()
        weights = ontology.topic_pick_weights(distributions.topics, topics)
        return weighted_random_choice(topics, weights, self._rng)

    def _random_subtopic(self, topic: str, avoid: Sequence[str], current: str | None) -> str | None:
        options = [
            name for name in ontology.subtopics_for(topic) if name not in avoid and name != current
        ]
        if not options:
            return None
        return self._rng.choice(options)

    def _initial_subtopic(self, topic: str, preferred: str | None) -> str | None:
        matched = ontology.match_subtopic(topic, preferred)
        if matched is not None:
            return matched
        if preferred and not ontology.subtopics_for(topic):
            return preferred
        return self._random_subtopic(topic, (), None)

    def _adjust(self, state: _GenerationState, outcome: RetryWith) -> None:
        state.last_reason = outcome.reason
        if outcome.rejected_question:
            state.negative_examples.append(outcome.rejected_question)
            del state.negative_examples[: -self._config.negative_examples_cap]
        if outcome.perturb_subtopic:
            if state.subtopic and state.subtopic not in state.avoid_subtopics:
                state.avoid_subtopics.append(state.subtopic)
            state.subtopic = self._random_subtopic(state.topic, state.avoid_subtopics, state.subtopic)

    async def _retrieve_context(
        self,
        *,
        attempt: AttemptView,
        state: _GenerationState,
        coding_mode: bool,
    ) -> list[ContextItem]:
        query_text = build_query_text(state.topic, state.subtopic, coding_mode)
        [query_embedding] = await self._embedder.embed([query_text])
        items = await self._store.hybrid_retrieve(
            user_id=attempt.user_id,
            topic=state.topic,
            subtopic=state.subtopic,
            query_text=query_text,
            query_embedding=query_embedding,
            k=self._config.retrieval_k,
            alpha=self._config.retrieval_alpha,
        )
        if not items:
            raise NoViableContextError(f"no context for topic {state.topic!r} / {state.subtopic!r}")
        return items

    async def _gate_hit(
        self,
        *,
        draft: GeneratedItemDraft,
        draft_key: str,
        embedding: Sequence[float] | None,
        asked: Sequence[AskedQuestion],
    ) -> str | None:
        if draft_key in {entry.item.content_key for entry in asked if entry.item.content_key}:
            return GATE_CONTENT_KEY

        if embedding:
            neighbor = await self._gate.neighbor_similarity(
                embedding=embedding,
                topic=draft.topic,
                subtopic=draft.subtopic,
                k=self._config.generation_neighbor_k,
            )
            if neighbor.level == SIMILARITY_HIGH:
                return GATE_NEIGHBOR

            verdict = self._gate.attempt_similarity(embedding, [entry.item.embedding for entry in asked])
            if verdict.level is not None:
                return GATE_ATTEMPT_EMBEDDING

        return text_similarity_reason(
            question=draft.question,
            topic=draft.topic,
            subtopic=draft.subtopic,
            asked=asked,
            config=self._config,
        )

    async def _persist(
        self,
        *,
        attempt: AttemptView,
        draft: GeneratedItemDraft,
        draft_key: str,
        embedding: Sequence[float] | None,
    ) -> tuple[UUID, bool] | None:
        item_id = await self._store.insert_bank_item(
            NewBankItem(
                draft=draft,
                content_key=draft_key,
                embedding=tuple(embedding) if embedding else None,
                owner_user_id=attempt.user_id,
            )
        )
        if item_id is not None:
            return item_id, False

        existing_id = await self._store.bank_item_by_content_key(draft_key)
        if existing_id is None:
            return None
        self._events.info(
            "question_generated_duplicate",
            attempt_id=str(attempt.attempt_id),
            content_key=draft_key,
            existing_question_id=str(existing_id),
        )
        return existing_id, True

    async def _run_attempt(
        self,
        *,
        attempt_number: int,
        attempt: AttemptView,
        criteria: SelectionCriteria,
        state: _GenerationState,
        asked: Sequence[AskedQuestion],
        overrepresented_topics: Sequence[str],
    ) -> GenerationOutcome:
        is_final = attempt_number >= self._config.generation_max_attempts
        try:
            context_items = await self._retrieve_context(
                attempt=attempt,
                state=state,
                coding_mode=criteria.coding_mode,
            )
            draft = await self._generator.generate_item(
                GenerationRequest(
                    topic=state.topic,
                    subtopic=state.subtopic,
                    difficulty=criteria.difficulty,
                    bloom_level=criteria.bloom_level,
                    coding_mode=criteria.coding_mode,
                    context_items=tuple(context_items),
                    negative_examples=tuple(state.negative_examples),
                    avoid_topics=tuple(relaxed_avoid_topics(overrepresented_topics, attempt_number)),
                    avoid_subtopics=tuple(state.avoid_subtopics),
                )
            )
            [embedding] = await self._embedder.embed(
                [
                    build_embedding_text(
                        topic=draft.topic,
                        subtopic=draft.subtopic,
                        difficulty=draft.difficulty,
                        bloom_level=draft.bloom_level,
                        question=draft.question,
                        options=draft.options,
                    )
                ]
            )
        except (
            NoViableContextError,
            GeneratedItemInvalidError,
            ExternalServiceError,
            SQLAlchemyError,
        ) as exc:
            self._events.warning(
                "generation_attempt_failed",
                attempt_id=str(attempt.attempt_id),
                generation_attempt=attempt_number,
                error_type=type(exc).__name__,
                error=str(exc),
            )
            if is_final:
                return Exhausted(reason=type(exc).__name__, attempts=attempt_number)
            return RetryWith(reason=type(exc).__name__)

        draft_key = content_key(draft.question)
        reason = await self._gate_hit(draft=draft, draft_key=draft_key, embedding=embedding, asked=asked)
        if reason is not None:
            self._events.warning(
                "generation_similarity_gate_hit",
                attempt_id=str(attempt.attempt_id),
                generation_attempt=attempt_number,
                reason=reason,
                accepted_anyway=is_final,
            )
            if not is_final:
                return RetryWith(reason=reason, rejected_question=draft.question, perturb_subtopic=True)

        persisted = await self._persist(
            attempt=attempt,
            draft=draft,
            draft_key=draft_key,
            embedding=embedding,
        )
        if persisted is None:
            if is_final:
                return Exhausted(reason="persist_failed", attempts=attempt_number)
            return RetryWith(reason="persist_failed")
        item_id, duplicate = persisted
        return Accepted(item_id=item_id, draft=draft, duplicate=duplicate)

    async def generate(
        self,
        *,
        attempt: AttemptView,
        criteria: SelectionCriteria,
        asked: Sequence[AskedQuestion],
        distributions: Distributions,
        overrepresented_topics: Sequence[str],
    ) -> Accepted | Exhausted:
        topic = self._initial_topic(criteria, distributions)
        seed = [entry.item.question for entry in asked][-self._config.negative_examples_seed :]
        state = _GenerationState(
            topic=topic,
            subtopic=self._initial_subtopic(topic, criteria.preferred_subtopic),
            negative_examples=seed[-self._config.negative_examples_cap :],
        )

        max_attempts = max(1, self._config.generation_max_attempts)
        for attempt_number in range(1, max_attempts + 1):
            outcome = await self._run_attempt(
                attempt_number=attempt_number,
                attempt=attempt,
                criteria=criteria,
                state=state,
                asked=asked,
                overrepresented_topics=overrepresented_topics,
            )
            if isinstance(outcome, (Accepted, Exhausted)):
                return outcome
            self._adjust(state, outcome)
        return Exhausted(reason=state.last_reason, attempts=max_attempts)
