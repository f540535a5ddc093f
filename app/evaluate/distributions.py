from __future__ import annotations

from typing import Iterable, Sequence
from uuid import UUID

from app.evaluate.constants import (
    DEFAULT_SELECTION_CONFIG,
    DIFFICULTY_EASY,
    DIFFICULTY_HARD,
    DIFFICULTY_MEDIUM,
    SelectionConfig,
)
from app.evaluate.types import AskedQuestion, Distributions, SelectionContext


def calculate_distributions(asked: Iterable[AskedQuestion]) -> Distributions:
    distributions = Distributions()
    for entry in asked:
        item = entry.item
        if item.difficulty == DIFFICULTY_EASY:
            distributions.easy += 1
        elif item.difficulty == DIFFICULTY_MEDIUM:
            distributions.medium += 1
        elif item.difficulty == DIFFICULTY_HARD:
            distributions.hard += 1

        if item.has_code:
            distributions.coding += 1

        if item.topic:
            distributions.topics[item.topic] = distributions.topics.get(item.topic, 0) + 1
        if item.subtopic:
            distributions.subtopics[item.subtopic] = distributions.subtopics.get(item.subtopic, 0) + 1
        if item.bloom_level:
            distributions.bloom_levels[item.bloom_level] = (
                distributions.bloom_levels.get(item.bloom_level, 0) + 1
            )
    return distributions


def topic_cap_for_stage(answered: int, config: SelectionConfig = DEFAULT_SELECTION_CONFIG) -> int:
    if answered <= config.early_stage_answered:
        return config.early_stage_topic_cap
    if answered <= config.mid_stage_answered:
        return config.mid_stage_topic_cap
    return config.topic_ceiling


def identify_overrepresented_topics(
    distributions: Distributions,
    answered: int,
    config: SelectionConfig = DEFAULT_SELECTION_CONFIG,
) -> list[str]:
    cap = topic_cap_for_stage(answered, config)
    return [topic for topic, count in distributions.topics.items() if count >= cap]


def topic_stage_penalty(
    topic: str,
    distributions: Distributions,
    answered: int,
    config: SelectionConfig = DEFAULT_SELECTION_CONFIG,
) -> float:
    count = distributions.topics.get(topic, 0)
    if answered <= config.early_stage_answered:
        return config.early_stage_topic_penalty if count >= config.early_stage_topic_cap else 0.0
    if answered <= config.mid_stage_answered:
        return config.mid_stage_topic_penalty if count >= config.mid_stage_topic_cap else 0.0
    return 0.0


def build_selection_context(
    attempt_id: UUID,
    *,
    questions_answered: int,
    total_questions: int,
    distributions: Distributions,
    config: SelectionConfig = DEFAULT_SELECTION_CONFIG,
) -> SelectionContext:
    targets = config.difficulty_targets()
    current = distributions.difficulty_counts()
    remaining_slots = max(0, total_questions - questions_answered)
    recent_subtopics: Sequence[str] = list(distributions.subtopics.keys())[: config.recent_subtopics_limit]
    return SelectionContext(
        attempt_id=attempt_id,
        questions_answered=questions_answered,
        total_questions=total_questions,
        distributions=distributions,
        recent_subtopics=list(recent_subtopics),
        overrepresented_topics=identify_overrepresented_topics(
            distributions, questions_answered, config
        ),
        difficulty_remaining={
            level: max(0, target - current.get(level, 0)) for level, target in targets.items()
        },
        coding_needed=max(0, config.min_coding_questions - distributions.coding),
        remaining_slots=remaining_slots,
    )
