from __future__ import annotations

import random
from typing import Sequence

from app.evaluate.constants import DEFAULT_SELECTION_CONFIG, MATCH_MODE_SOFT, SelectionConfig
from app.evaluate.distributions import topic_stage_penalty
from app.evaluate.similarity import SimilarityGate
from app.evaluate.types import Distributions, ScoredCandidate, SelectionCriteria
from app.evaluate.vectors import weighted_random_index


def preference_bonus(
    candidate: ScoredCandidate,
    criteria: SelectionCriteria,
    config: SelectionConfig = DEFAULT_SELECTION_CONFIG,
) -> float:
    item = candidate.item
    bonus = 0.0
    if criteria.preferred_topic == item.topic:
        bonus += config.topic_bonus
    if criteria.preferred_subtopic and criteria.preferred_subtopic == item.subtopic:
        bonus += config.subtopic_bonus
    if criteria.bloom_level == item.bloom_level:
        bonus += config.bloom_bonus
    if criteria.coding_mode and item.has_code:
        bonus += config.coding_bonus
    return bonus


def order_for_assignment(
    ranked: Sequence[ScoredCandidate],
    *,
    rng: random.Random,
    top_k: int,
) -> list[ScoredCandidate]:
    """Weighted draw inside the top-K; the pick goes first, then the rest in rank order."""
    if not ranked:
        return []
    k = min(top_k, len(ranked))
    head = list(ranked[:k])
    chosen_index = weighted_random_index([max(1.0, candidate.score) for candidate in head], rng)
    return [head[chosen_index], *head[:chosen_index], *head[chosen_index + 1 :], *ranked[k:]]


class CandidateScorer:
    def __init__(
        self,
        gate: SimilarityGate,
        *,
        rng: random.Random,
        match_mode: str,
        config: SelectionConfig = DEFAULT_SELECTION_CONFIG,
    ) -> None:
        self._gate = gate
        self._rng = rng
        self._match_mode = match_mode
        self._config = config

    async def score(
        self,
        candidates: Sequence[ScoredCandidate],
        *,
        criteria: SelectionCriteria,
        distributions: Distributions,
        questions_answered: int,
        asked_embeddings: Sequence[Sequence[float] | None],
    ) -> list[ScoredCandidate]:
        scored: list[ScoredCandidate] = []
        for candidate in candidates:
            candidate.similarity_penalty = await self._gate.bank_penalty(candidate.item, asked_embeddings)
            score = self._config.base_score - candidate.similarity_penalty
            if candidate.seen_recently:
                score -= self._config.freshness_penalty
            if self._match_mode == MATCH_MODE_SOFT:
                score += preference_bonus(candidate, criteria, self._config)
                score -= topic_stage_penalty(
                    candidate.item.topic,
                    distributions,
                    questions_answered,
                    self._config,
                )
            candidate.score = score
            scored.append(candidate)

        # sorted() is stable, so ties keep the bank query order
        return sorted(scored, key=lambda candidate: candidate.score, reverse=True)

    def assignment_order(self, ranked: Sequence[ScoredCandidate]) -> list[ScoredCandidate]:
        return order_for_assignment(ranked, rng=self._rng, top_k=self._config.top_k)
