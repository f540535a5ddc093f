from __future__ import annotations

import json
from typing import Any, Callable

import openai
import structlog
from openai import AsyncOpenAI

from app.core.config import get_settings
from app.evaluate import ontology
from app.evaluate.constants import BLOOM_LEVELS, DIFFICULTIES
from app.evaluate.errors import ExternalServiceError, InvalidSelectionCriteriaError
from app.evaluate.types import SelectionContext
from app.services.openai_client import get_openai_client

logger = structlog.get_logger("app.services.question_selector")

SYSTEM_PROMPT = (
    "You plan the next question of a 60-question adaptive multiple-choice assessment. "
    "Balance difficulty against the remaining quotas, keep enough coding questions, "
    "spread coverage across topics, subtopics and Bloom levels, and never pick a topic "
    "listed as over-represented. Reply with one JSON object with the keys "
    '"difficulty", "coding_mode", "preferred_topic", "preferred_subtopic", '
    '"preferred_bloom_level" and "reasoning".'
)


def _format_counts(counts: dict[str, int]) -> str:
    if not counts:
        return "none"
    return ", ".join(f"{key}: {value}" for key, value in sorted(counts.items()))


def build_selector_prompt(context: SelectionContext) -> str:
    distributions = context.distributions
    topic_lines = "\n".join(
        f"- {topic.name} (weight {topic.weight}): {', '.join(topic.subtopics)}"
        for topic in ontology.STATIC_ONTOLOGY
    )
    return "\n".join(
        [
            f"Questions answered: {context.questions_answered} of {context.total_questions}",
            f"Remaining slots: {context.remaining_slots}",
            f"Difficulty so far: {_format_counts(distributions.difficulty_counts())}",
            f"Difficulty remaining: {_format_counts(context.difficulty_remaining)}",
            f"Coding questions so far: {distributions.coding}; still needed: {context.coding_needed}",
            f"Topics so far: {_format_counts(distributions.topics)}",
            f"Subtopics so far: {_format_counts(distributions.subtopics)}",
            f"Bloom levels so far: {_format_counts(distributions.bloom_levels)}",
            f"Recent subtopics: {', '.join(context.recent_subtopics) or 'none'}",
            f"Over-represented topics (avoid): {', '.join(context.overrepresented_topics) or 'none'}",
            f"Allowed difficulties: {', '.join(DIFFICULTIES)}",
            f"Allowed Bloom levels: {', '.join(BLOOM_LEVELS)}",
            "Topics and subtopics:",
            topic_lines,
        ]
    )


class OpenAICriteriaSource:
    def __init__(
        self,
        client_factory: Callable[[], AsyncOpenAI] = get_openai_client,
        *,
        model: str | None = None,
    ) -> None:
        self._client_factory = client_factory
        self._model = model or get_settings().openai_chat_model

    async def select_criteria(self, context: SelectionContext) -> dict[str, Any]:
        try:
            client = self._client_factory()
            response = await client.chat.completions.create(
                model=self._model,
                temperature=0.2,
                response_format={"type": "json_object"},
                messages=[
                    {"role": "system", "content": SYSTEM_PROMPT},
                    {"role": "user", "content": build_selector_prompt(context)},
                ],
            )
        except openai.OpenAIError as exc:
            logger.warning(
                "criteria_service_unavailable",
                attempt_id=str(context.attempt_id),
                error=str(exc),
            )
            raise ExternalServiceError(f"criteria service call failed: {exc}") from exc

        content = response.choices[0].message.content if response.choices else None
        try:
            payload = json.loads(content or "")
        except json.JSONDecodeError as exc:
            raise InvalidSelectionCriteriaError("criteria service returned non-JSON output") from exc
        if not isinstance(payload, dict):
            raise InvalidSelectionCriteriaError("criteria service output is not a JSON object")
        return payload
