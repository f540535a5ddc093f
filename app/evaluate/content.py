from __future__ import annotations

import hashlib
import re
from dataclasses import dataclass
from typing import Sequence

CONTENT_KEY_MAX_CHARS = 600

_CONTENT_KEY_NOISE_RE = re.compile(r"[`*_~>\-\s]+")
_WORD_RE = re.compile(r"\w+")
_CODE_FENCE_RE = re.compile(r"```([\w+-]*)[^\n]*\n(.*?)```", re.DOTALL)
_DEFAULT_CODE_LANG = "tsx"


@dataclass(frozen=True, slots=True)
class CodeFence:
    lang: str | None
    content: str


def content_key(question: str) -> str:
    """Hash of the normalized question text, used as the bank-wide dedup key."""
    gist = _CONTENT_KEY_NOISE_RE.sub(" ", (question or "").lower()).strip()
    gist = gist[:CONTENT_KEY_MAX_CHARS]
    return hashlib.sha256(gist.encode("utf-8")).hexdigest()


def build_embedding_text(
    *,
    topic: str,
    subtopic: str | None,
    difficulty: str,
    bloom_level: str,
    question: str,
    options: Sequence[str],
    version: str | None = None,
) -> str:
    labels = [
        f"Topic: {topic}",
        f"Subtopic: {subtopic}" if subtopic else "",
        f"Version: {version}" if version else "",
        f"Difficulty: {difficulty}",
        f"Bloom: {bloom_level}",
    ]
    lettered = "\n".join(f"{chr(65 + index)}. {option}" for index, option in enumerate(options))
    return "\n\n".join([" | ".join(label for label in labels if label), f"Q: {question}", lettered])


def normalize_question_text(text: str) -> str:
    return (text or "").strip().lower()


def word_set(text: str) -> set[str]:
    return set(_WORD_RE.findall((text or "").lower()))


def jaccard_similarity(left: str, right: str) -> float:
    left_words = word_set(left)
    right_words = word_set(right)
    if not left_words or not right_words:
        return 0.0
    union = left_words | right_words
    return len(left_words & right_words) / len(union)


def extract_first_code_fence(text: str) -> CodeFence | None:
    match = _CODE_FENCE_RE.search(text or "")
    if match is None:
        return None
    lang = match.group(1) or None
    return CodeFence(lang=lang, content=match.group(2).rstrip("\n"))


def ensure_fenced(code: str) -> str:
    stripped = code.strip()
    if stripped.startswith("```"):
        return stripped
    return "\n".join([f"```{_DEFAULT_CODE_LANG}", stripped, "```"])


def has_valid_code_block(code: str | None, *, min_lines: int = 3, max_lines: int = 50) -> bool:
    fence = extract_first_code_fence(code or "")
    if fence is None:
        return False
    lines = [line for line in fence.content.splitlines() if line.strip()]
    return min_lines <= len(lines) <= max_lines


def question_repeats_code_block(question: str, code: str | None) -> bool:
    fence = extract_first_code_fence(code or "")
    if fence is None or not fence.content.strip():
        return False
    if extract_first_code_fence(question) is not None:
        return True
    return fence.content.strip() in (question or "")
