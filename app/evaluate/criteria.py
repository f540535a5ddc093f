from __future__ import annotations

import random
from typing import Any, Literal, Mapping, Protocol

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from app.evaluate import ontology
from app.evaluate.constants import BLOOM_LEVELS, DIFFICULTIES
from app.evaluate.errors import ExternalServiceError, InvalidSelectionCriteriaError
from app.evaluate.events import EventEmitter
from app.evaluate.types import SelectionContext, SelectionCriteria
from app.evaluate.vectors import coverage_weights, weighted_random_choice


class CriteriaSource(Protocol):
    async def select_criteria(self, context: SelectionContext) -> Mapping[str, Any]: ...


class CriteriaPayload(BaseModel):
    model_config = ConfigDict(extra="ignore")

    difficulty: Literal["Easy", "Medium", "Hard"]
    coding_mode: bool
    preferred_topic: str = Field(min_length=1)
    preferred_subtopic: str | None
    preferred_bloom_level: Literal["Remember", "Understand", "Apply", "Analyze", "Evaluate", "Create"]
    reasoning: str | None = None

    @field_validator("preferred_topic")
    @classmethod
    def _strip_topic(cls, value: str) -> str:
        stripped = value.strip()
        if not stripped:
            raise ValueError("preferred_topic must not be blank")
        return stripped

    @field_validator("preferred_subtopic")
    @classmethod
    def _blank_subtopic_is_none(cls, value: str | None) -> str | None:
        if value is None:
            return None
        stripped = value.strip()
        return stripped or None


def parse_criteria(raw: Mapping[str, Any]) -> SelectionCriteria:
    try:
        payload = CriteriaPayload.model_validate(dict(raw))
    except ValidationError as exc:
        raise InvalidSelectionCriteriaError(str(exc)) from exc
    return SelectionCriteria(
        difficulty=payload.difficulty,
        coding_mode=payload.coding_mode,
        preferred_topic=payload.preferred_topic,
        preferred_subtopic=payload.preferred_subtopic,
        bloom_level=payload.preferred_bloom_level,
        reasoning=payload.reasoning,
    )


def _pick_difficulty(context: SelectionContext, rng: random.Random) -> str:
    weights = [float(context.difficulty_remaining.get(level, 0)) for level in DIFFICULTIES]
    return weighted_random_choice(DIFFICULTIES, weights, rng)


def _pick_coding_mode(context: SelectionContext, rng: random.Random) -> bool:
    if context.coding_needed <= 0:
        return False
    if context.coding_needed >= context.remaining_slots:
        return True
    return rng.random() < context.coding_needed / max(1, context.remaining_slots)


def _pick_topic(context: SelectionContext, rng: random.Random) -> str:
    topics = ontology.topic_names()
    excluded = set(context.overrepresented_topics)
    candidates = [topic for topic in topics if topic not in excluded] or topics
    weights = ontology.topic_pick_weights(context.distributions.topics, candidates)
    return weighted_random_choice(candidates, weights, rng)


def _pick_subtopic(topic: str, context: SelectionContext, rng: random.Random) -> str | None:
    subtopics = ontology.subtopics_for(topic)
    if not subtopics:
        return None
    weights = [1.0 / (context.distributions.subtopics.get(name, 0) + 1) for name in subtopics]
    return weighted_random_choice(subtopics, weights, rng)


def _pick_bloom_level(context: SelectionContext, rng: random.Random) -> str:
    weights = coverage_weights(context.distributions.bloom_levels, BLOOM_LEVELS)
    return weighted_random_choice(BLOOM_LEVELS, [weights[level] for level in BLOOM_LEVELS], rng)


def rule_based_criteria(context: SelectionContext, *, rng: random.Random) -> SelectionCriteria:
    """Coverage-aware criteria used when the criteria service cannot be reached.

    Difficulty follows the remaining quota, coding is forced once the remaining
    slots can no longer absorb the coding deficit, and topic/subtopic/bloom are
    drawn with inverse-coverage weights.
    """
    topic = _pick_topic(context, rng)
    return SelectionCriteria(
        difficulty=_pick_difficulty(context, rng),
        coding_mode=_pick_coding_mode(context, rng),
        preferred_topic=topic,
        preferred_subtopic=_pick_subtopic(topic, context, rng),
        bloom_level=_pick_bloom_level(context, rng),
        reasoning="rule_based_fallback",
    )


class CriteriaSelector:
    def __init__(
        self,
        source: CriteriaSource,
        *,
        rng: random.Random,
        events: EventEmitter,
    ) -> None:
        self._source = source
        self._rng = rng
        self._events = events

    async def select(self, context: SelectionContext) -> SelectionCriteria:
        try:
            raw = await self._source.select_criteria(context)
        except ExternalServiceError as exc:
            self._events.warning(
                "criteria_fallback_used",
                attempt_id=str(context.attempt_id),
                error=str(exc),
            )
            criteria = rule_based_criteria(context, rng=self._rng)
        else:
            criteria = parse_criteria(raw)

        self._events.info(
            "criteria_selected",
            attempt_id=str(context.attempt_id),
            difficulty=criteria.difficulty,
            coding_mode=criteria.coding_mode,
            topic=criteria.preferred_topic,
            subtopic=criteria.preferred_subtopic,
            bloom_level=criteria.bloom_level,
        )
        return criteria
