from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any
from uuid import UUID


@dataclass(frozen=True, slots=True)
class AttemptView:
    attempt_id: UUID
    user_id: str
    status: str
    questions_answered: int
    correct_count: int
    total_questions: int


@dataclass(frozen=True, slots=True)
class BankItemView:
    item_id: UUID
    topic: str
    subtopic: str | None
    difficulty: str
    bloom_level: str
    question: str
    options: tuple[str, ...]
    code: str | None = None
    embedding: tuple[float, ...] | None = None
    content_key: str | None = None

    @property
    def has_code(self) -> bool:
        return bool(self.code and self.code.strip())


@dataclass(frozen=True, slots=True)
class AssignmentView:
    attempt_id: UUID
    question_id: UUID
    question_order: int
    user_answer_index: int | None = None
    answered_at: datetime | None = None

    @property
    def is_pending(self) -> bool:
        return self.user_answer_index is None and self.answered_at is None


@dataclass(frozen=True, slots=True)
class AskedQuestion:
    """An assignment of the attempt joined with exactly one bank item."""

    assignment: AssignmentView
    item: BankItemView


@dataclass(slots=True)
class Distributions:
    easy: int = 0
    medium: int = 0
    hard: int = 0
    coding: int = 0
    topics: dict[str, int] = field(default_factory=dict)
    subtopics: dict[str, int] = field(default_factory=dict)
    bloom_levels: dict[str, int] = field(default_factory=dict)

    def difficulty_counts(self) -> dict[str, int]:
        return {"Easy": self.easy, "Medium": self.medium, "Hard": self.hard}


@dataclass(slots=True)
class SelectionContext:
    attempt_id: UUID
    questions_answered: int
    total_questions: int
    distributions: Distributions
    recent_subtopics: list[str]
    overrepresented_topics: list[str]
    difficulty_remaining: dict[str, int]
    coding_needed: int
    remaining_slots: int


@dataclass(frozen=True, slots=True)
class SelectionCriteria:
    difficulty: str
    coding_mode: bool
    preferred_topic: str
    preferred_subtopic: str | None
    bloom_level: str
    reasoning: str | None = None


@dataclass(slots=True)
class ScoredCandidate:
    item: BankItemView
    seen_recently: bool = False
    similarity_penalty: float = 0.0
    score: float = 0.0


@dataclass(frozen=True, slots=True)
class NeighborHit:
    item_id: UUID
    score: float


@dataclass(frozen=True, slots=True)
class ContextItem:
    title: str
    url: str | None
    content: str


@dataclass(frozen=True, slots=True)
class GeneratedItemDraft:
    topic: str
    subtopic: str | None
    difficulty: str
    bloom_level: str
    question: str
    options: tuple[str, str, str, str]
    correct_index: int
    code: str | None = None
    explanation: str | None = None
    citations: tuple[dict[str, Any], ...] = ()


@dataclass(frozen=True, slots=True)
class GenerationRequest:
    topic: str
    subtopic: str | None
    difficulty: str
    bloom_level: str
    coding_mode: bool
    context_items: tuple[ContextItem, ...]
    negative_examples: tuple[str, ...] = ()
    avoid_topics: tuple[str, ...] = ()
    avoid_subtopics: tuple[str, ...] = ()


@dataclass(frozen=True, slots=True)
class NewBankItem:
    draft: GeneratedItemDraft
    content_key: str
    embedding: tuple[float, ...] | None
    owner_user_id: str | None


@dataclass(frozen=True, slots=True)
class AssignmentOutcome:
    question_id: UUID
    question_order: int
    conflict: bool


@dataclass(slots=True)
class NextQuestionView:
    question_id: UUID
    question: str
    options: tuple[str, ...]
    code: str | None
    topic: str
    subtopic: str | None
    difficulty: str
    bloom_level: str
    question_order: int
    coding_mode: bool
    generated_on_demand: bool | None = None


@dataclass(slots=True)
class NextQuestionResult:
    attempt: AttemptView
    next_question: NextQuestionView | None
    method: str | None = None
