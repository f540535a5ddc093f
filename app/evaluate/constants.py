from __future__ import annotations

from dataclasses import dataclass

DIFFICULTY_EASY = "Easy"
DIFFICULTY_MEDIUM = "Medium"
DIFFICULTY_HARD = "Hard"
DIFFICULTIES: tuple[str, ...] = (DIFFICULTY_EASY, DIFFICULTY_MEDIUM, DIFFICULTY_HARD)

BLOOM_LEVELS: tuple[str, ...] = (
    "Remember",
    "Understand",
    "Apply",
    "Analyze",
    "Evaluate",
    "Create",
)

ATTEMPT_STATUS_IN_PROGRESS = "in_progress"
ATTEMPT_STATUS_COMPLETED = "completed"
ATTEMPT_STATUS_ABANDONED = "abandoned"
ATTEMPT_STATUSES: tuple[str, ...] = (
    ATTEMPT_STATUS_IN_PROGRESS,
    ATTEMPT_STATUS_COMPLETED,
    ATTEMPT_STATUS_ABANDONED,
)

MATCH_MODE_EXACT = "exact"
MATCH_MODE_SOFT = "soft"

METHOD_EXISTING_PENDING = "existing_pending"
METHOD_BANK_TOPK = "bank_topk"
METHOD_GENERATED_ON_DEMAND = "generated_on_demand"
METHOD_FALLBACK_ASSIGNMENT = "fallback_assignment"


@dataclass(frozen=True, slots=True)
class SelectionConfig:
    total_questions: int = 60
    easy_target: int = 30
    medium_target: int = 20
    hard_target: int = 10
    min_coding_ratio: float = 0.35
    max_topic_ratio: float = 0.40

    early_stage_answered: int = 20
    mid_stage_answered: int = 40
    early_stage_topic_cap: int = 18
    mid_stage_topic_cap: int = 24
    early_stage_topic_penalty: float = 40.0
    mid_stage_topic_penalty: float = 25.0

    similarity_high: float = 0.92
    similarity_medium: float = 0.85
    text_jaccard_threshold: float = 0.7

    attempt_penalty_high: float = 50.0
    attempt_penalty_medium: float = 25.0
    neighbor_penalty_high: float = 30.0
    neighbor_penalty_medium: float = 15.0
    freshness_penalty: float = 15.0

    topic_bonus: float = 50.0
    subtopic_bonus: float = 30.0
    bloom_bonus: float = 20.0
    coding_bonus: float = 40.0

    base_score: float = 100.0
    top_k: int = 8
    bank_page_size: int = 20
    bank_neighbor_k: int = 5
    recent_attempts_lookback: int = 2
    recent_subtopics_limit: int = 5

    assignment_max_retries: int = 3
    assignment_backoff_base_seconds: float = 0.1

    generation_max_attempts: int = 3
    negative_examples_seed: int = 20
    negative_examples_cap: int = 25
    generation_neighbor_k: int = 8
    retrieval_k: int = 8
    retrieval_alpha: float = 0.5

    @property
    def min_coding_questions(self) -> int:
        return int(round(self.total_questions * self.min_coding_ratio))

    @property
    def topic_ceiling(self) -> int:
        return int(self.total_questions * self.max_topic_ratio)

    def difficulty_targets(self) -> dict[str, int]:
        return {
            DIFFICULTY_EASY: self.easy_target,
            DIFFICULTY_MEDIUM: self.medium_target,
            DIFFICULTY_HARD: self.hard_target,
        }


DEFAULT_SELECTION_CONFIG = SelectionConfig()
