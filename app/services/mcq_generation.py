from __future__ import annotations

import json
from typing import Any, Callable, Mapping

import openai
import structlog
from openai import AsyncOpenAI

from app.core.config import get_settings
from app.evaluate import ontology
from app.evaluate.constants import DIFFICULTY_MEDIUM, DIFFICULTIES
from app.evaluate.content import (
    ensure_fenced,
    extract_first_code_fence,
    has_valid_code_block,
    question_repeats_code_block,
)
from app.evaluate.errors import ExternalServiceError, GeneratedItemInvalidError
from app.evaluate.types import GeneratedItemDraft, GenerationRequest
from app.services.openai_client import get_openai_client

logger = structlog.get_logger("app.services.mcq_generation")

MAX_CITATIONS = 3
MIN_CODE_LINES = 3
MAX_CODE_LINES = 50

_BLOOM_PREFIXES: tuple[tuple[str, str], ...] = (
    ("remember", "Remember"),
    ("understand", "Understand"),
    ("apply", "Apply"),
    ("analy", "Analyze"),
    ("evalu", "Evaluate"),
    ("create", "Create"),
)

SYSTEM_PROMPT = (
    "You write one multiple-choice question grounded only in the supplied context. "
    "Return a JSON object with the keys topic, subtopic, difficulty, bloom_level, question, "
    "options (exactly four strings), correct_index (0-3), explanation, citations "
    "(list of {title, url}) and code."
)


def normalize_difficulty(value: Any, default: str) -> str:
    lowered = str(value or default).strip().lower()
    for level in DIFFICULTIES:
        if level.lower() == lowered:
            return level
    return DIFFICULTY_MEDIUM


def normalize_bloom_level(value: Any, default: str) -> str:
    lowered = str(value or default).strip().lower()
    for prefix, level in _BLOOM_PREFIXES:
        if lowered.startswith(prefix):
            return level
    return "Understand"


def _normalize_code(raw_code: Any, question: str) -> str | None:
    if isinstance(raw_code, str) and raw_code.strip():
        return ensure_fenced(raw_code)
    fence = extract_first_code_fence(question)
    if fence is None:
        return None
    lang = fence.lang if fence.lang in ("js", "tsx") else "tsx"
    return "\n".join([f"```{lang}", fence.content, "```"])


def _normalize_citations(raw: Any) -> tuple[dict[str, Any], ...]:
    if not isinstance(raw, list):
        return ()
    citations: list[dict[str, Any]] = []
    for entry in raw:
        if not isinstance(entry, Mapping):
            continue
        url = str(entry.get("url") or "").strip()
        if not url:
            continue
        title = entry.get("title")
        citations.append({"title": str(title) if title is not None else None, "url": url})
    return tuple(citations[:MAX_CITATIONS])


def normalize_generated_item(raw: Mapping[str, Any], request: GenerationRequest) -> GeneratedItemDraft:
    question = str(raw.get("question") or "").strip()
    if not question:
        raise GeneratedItemInvalidError("generated item has no question text")

    raw_options = raw.get("options")
    if not isinstance(raw_options, list) or len(raw_options) != 4:
        raise GeneratedItemInvalidError("generated item must have exactly four options")
    options = tuple(str(option) for option in raw_options)
    if any(not option.strip() for option in options):
        raise GeneratedItemInvalidError("generated item has a blank option")

    try:
        correct_index = int(raw.get("correct_index", 0))
    except (TypeError, ValueError):
        correct_index = 0
    correct_index = max(0, min(3, correct_index))

    code = _normalize_code(raw.get("code"), question)
    if request.coding_mode:
        if not has_valid_code_block(code, min_lines=MIN_CODE_LINES, max_lines=MAX_CODE_LINES):
            raise GeneratedItemInvalidError(
                f"coding item needs a fenced code block of {MIN_CODE_LINES}-{MAX_CODE_LINES} lines"
            )
        if question_repeats_code_block(question, code):
            raise GeneratedItemInvalidError("question repeats the code block instead of referencing it")

    topic = str(raw.get("topic") or request.topic).strip() or request.topic
    subtopic = str(raw.get("subtopic") or request.subtopic or "").strip() or None
    explanation = raw.get("explanation")
    return GeneratedItemDraft(
        topic=topic,
        subtopic=subtopic,
        difficulty=normalize_difficulty(raw.get("difficulty"), request.difficulty),
        bloom_level=normalize_bloom_level(raw.get("bloom_level"), request.bloom_level),
        question=question,
        options=(options[0], options[1], options[2], options[3]),
        correct_index=correct_index,
        code=code,
        explanation=str(explanation) if isinstance(explanation, str) else None,
        citations=_normalize_citations(raw.get("citations")),
    )


def build_generator_prompt(request: GenerationRequest) -> str:
    context_blocks = "\n\n".join(
        f"[{index + 1}] {item.title} ({item.url or 'n/a'})\n{item.content}"
        for index, item in enumerate(request.context_items)
    )
    lines = [
        f"Topic: {request.topic}",
        f"Subtopic: {request.subtopic or 'any'}",
        f"Difficulty: {request.difficulty}",
        f"Bloom level: {request.bloom_level}",
        f"Known subtopics: {', '.join(ontology.subtopics_for(request.topic)) or 'n/a'}",
    ]
    if request.coding_mode:
        lines.append(
            "Coding mode: put a js/tsx snippet of 3-50 lines in a fenced block in the code field "
            "and reference it from the question without repeating it."
        )
    else:
        lines.append("Conceptual mode: no code snippet.")
    if request.avoid_topics:
        lines.append(f"Avoid topics: {', '.join(request.avoid_topics)}")
    if request.avoid_subtopics:
        lines.append(f"Avoid subtopics: {', '.join(request.avoid_subtopics)}")
    if request.negative_examples:
        lines.append("Do not produce questions similar to:")
        lines.extend(f"- {example}" for example in request.negative_examples)
    lines.append("Context:")
    lines.append(context_blocks)
    return "\n".join(lines)


class OpenAIItemGenerator:
    def __init__(
        self,
        client_factory: Callable[[], AsyncOpenAI] = get_openai_client,
        *,
        model: str | None = None,
    ) -> None:
        self._client_factory = client_factory
        self._model = model or get_settings().openai_chat_model

    async def generate_item(self, request: GenerationRequest) -> GeneratedItemDraft:
        try:
            client = self._client_factory()
            response = await client.chat.completions.create(
                model=self._model,
                temperature=0.2,
                response_format={"type": "json_object"},
                messages=[
                    {"role": "system", "content": SYSTEM_PROMPT},
                    {"role": "user", "content": build_generator_prompt(request)},
                ],
            )
        except openai.OpenAIError as exc:
            logger.warning("mcq_generation_request_failed", topic=request.topic, error=str(exc))
            raise ExternalServiceError(f"generation service call failed: {exc}") from exc

        content = response.choices[0].message.content if response.choices else None
        try:
            raw = json.loads(content or "")
        except json.JSONDecodeError as exc:
            raise GeneratedItemInvalidError("generation service returned non-JSON output") from exc
        if not isinstance(raw, dict):
            raise GeneratedItemInvalidError("generation service output is not a JSON object")
        return normalize_generated_item(raw, request)
