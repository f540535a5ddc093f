from __future__ import annotations

from dataclasses import dataclass
from typing import Sequence
from uuid import UUID

from sqlalchemy.exc import SQLAlchemyError

from app.evaluate.constants import DEFAULT_SELECTION_CONFIG, SelectionConfig
from app.evaluate.content import jaccard_similarity, normalize_question_text
from app.evaluate.events import EventEmitter
from app.evaluate.store import SelectionStore
from app.evaluate.types import AskedQuestion, BankItemView
from app.evaluate.vectors import max_cosine_similarity

SIMILARITY_HIGH = "high"
SIMILARITY_MEDIUM = "medium"

GATE_CONTENT_KEY = "content_key"
GATE_NEIGHBOR = "neighbor"
GATE_ATTEMPT_EMBEDDING = "attempt_embedding"
GATE_ATTEMPT_EXACT = "attempt_exact"
GATE_ATTEMPT_TEXT = "attempt_text"


@dataclass(frozen=True, slots=True)
class SimilarityVerdict:
    score: float
    level: str | None

    @property
    def is_high(self) -> bool:
        return self.level == SIMILARITY_HIGH


def classify_similarity(score: float, config: SelectionConfig = DEFAULT_SELECTION_CONFIG) -> str | None:
    if score >= config.similarity_high:
        return SIMILARITY_HIGH
    if score >= config.similarity_medium:
        return SIMILARITY_MEDIUM
    return None


def text_similarity_reason(
    *,
    question: str,
    topic: str,
    subtopic: str | None,
    asked: Sequence[AskedQuestion],
    config: SelectionConfig = DEFAULT_SELECTION_CONFIG,
) -> str | None:
    normalized = normalize_question_text(question)
    for entry in asked:
        if normalize_question_text(entry.item.question) == normalized:
            return GATE_ATTEMPT_EXACT
    for entry in asked:
        item = entry.item
        if item.topic != topic or (item.subtopic or None) != (subtopic or None):
            continue
        if jaccard_similarity(question, item.question) > config.text_jaccard_threshold:
            return GATE_ATTEMPT_TEXT
    return None


class SimilarityGate:
    def __init__(
        self,
        store: SelectionStore,
        *,
        events: EventEmitter,
        config: SelectionConfig = DEFAULT_SELECTION_CONFIG,
    ) -> None:
        self._store = store
        self._events = events
        self._config = config

    def attempt_similarity(
        self,
        embedding: Sequence[float] | None,
        asked_embeddings: Sequence[Sequence[float] | None],
    ) -> SimilarityVerdict:
        score = max_cosine_similarity(embedding, asked_embeddings)
        return SimilarityVerdict(score=score, level=classify_similarity(score, self._config))

    async def neighbor_similarity(
        self,
        *,
        embedding: Sequence[float],
        topic: str,
        subtopic: str | None,
        k: int,
        exclude_ids: Sequence[UUID] = (),
        candidate_id: UUID | None = None,
    ) -> SimilarityVerdict:
        try:
            neighbors = await self._store.nearest_neighbors(
                embedding=embedding,
                topic=topic,
                subtopic=subtopic,
                k=k,
                exclude_ids=exclude_ids,
            )
        except SQLAlchemyError as exc:
            self._events.warning(
                "bank_neighbor_similarity_check_failed",
                candidate_id=str(candidate_id) if candidate_id is not None else None,
                error=str(exc),
            )
            return SimilarityVerdict(score=0.0, level=None)

        top_score = max((neighbor.score for neighbor in neighbors), default=0.0)
        return SimilarityVerdict(score=top_score, level=classify_similarity(top_score, self._config))

    async def bank_penalty(
        self,
        item: BankItemView,
        asked_embeddings: Sequence[Sequence[float] | None],
    ) -> float:
        if not item.embedding:
            return 0.0

        penalty = 0.0
        attempt_verdict = self.attempt_similarity(item.embedding, asked_embeddings)
        if attempt_verdict.level == SIMILARITY_HIGH:
            penalty += self._config.attempt_penalty_high
        elif attempt_verdict.level == SIMILARITY_MEDIUM:
            penalty += self._config.attempt_penalty_medium

        neighbor_verdict = await self.neighbor_similarity(
            embedding=item.embedding,
            topic=item.topic,
            subtopic=item.subtopic,
            k=self._config.bank_neighbor_k,
            exclude_ids=[item.item_id],
            candidate_id=item.item_id,
        )
        if neighbor_verdict.level == SIMILARITY_HIGH:
            penalty += self._config.neighbor_penalty_high
        elif neighbor_verdict.level == SIMILARITY_MEDIUM:
            penalty += self._config.neighbor_penalty_medium
        return penalty
