from __future__ import annotations

from uuid import uuid4

from app.evaluate.constants import SelectionConfig
from app.evaluate.distributions import (
    build_selection_context,
    calculate_distributions,
    identify_overrepresented_topics,
    topic_cap_for_stage,
    topic_stage_penalty,
)
from app.evaluate.types import AskedQuestion, AssignmentView, Distributions
from tests.evaluate.fakes import make_item


def _asked(*items) -> list[AskedQuestion]:  # noqa: ANN002
    attempt_id = uuid4()
    return [
        AskedQuestion(
            assignment=AssignmentView(
                attempt_id=attempt_id,
                question_id=item.item_id,
                question_order=index + 1,
            ),
            item=item,
        )
        for index, item in enumerate(items)
    ]


def test_calculate_distributions_counts_every_dimension() -> None:
    asked = _asked(
        make_item("q1", difficulty="Easy", code="```js\na\nb\nc\n```"),
        make_item("q2", difficulty="Medium", subtopic=None, bloom_level="Apply"),
        make_item("q3", difficulty="Hard", topic="Testing", subtopic="Mocking", code="   "),
    )

    distributions = calculate_distributions(asked)

    assert (distributions.easy, distributions.medium, distributions.hard) == (1, 1, 1)
    assert distributions.coding == 1
    assert distributions.topics == {"React Hooks": 2, "Testing": 1}
    assert distributions.subtopics == {"useState": 1, "Mocking": 1}
    assert distributions.bloom_levels == {"Understand": 2, "Apply": 1}


def test_calculate_distributions_empty_attempt() -> None:
    distributions = calculate_distributions([])
    assert distributions == Distributions()


def test_topic_cap_follows_attempt_stage() -> None:
    assert topic_cap_for_stage(0) == 18
    assert topic_cap_for_stage(20) == 18
    assert topic_cap_for_stage(21) == 24
    assert topic_cap_for_stage(40) == 24
    assert topic_cap_for_stage(55) == 24


def test_identify_overrepresented_topics_uses_stage_cap() -> None:
    distributions = Distributions(topics={"React Hooks": 18, "Testing": 17})

    assert identify_overrepresented_topics(distributions, answered=19) == ["React Hooks"]
    assert identify_overrepresented_topics(distributions, answered=30) == []


def test_topic_stage_penalty() -> None:
    distributions = Distributions(topics={"React Hooks": 18, "Testing": 24})

    assert topic_stage_penalty("React Hooks", distributions, answered=10) == 40.0
    assert topic_stage_penalty("React Hooks", distributions, answered=30) == 0.0
    assert topic_stage_penalty("Testing", distributions, answered=30) == 25.0
    assert topic_stage_penalty("Testing", distributions, answered=50) == 0.0


def test_build_selection_context_reports_remaining_quotas() -> None:
    distributions = Distributions(
        easy=5,
        medium=2,
        hard=1,
        coding=3,
        subtopics={"a": 1, "b": 1, "c": 1, "d": 1, "e": 1, "f": 1},
    )

    context = build_selection_context(
        uuid4(),
        questions_answered=8,
        total_questions=60,
        distributions=distributions,
    )

    assert context.difficulty_remaining == {"Easy": 25, "Medium": 18, "Hard": 9}
    assert context.coding_needed == 18
    assert context.remaining_slots == 52
    assert context.recent_subtopics == ["a", "b", "c", "d", "e"]


def test_min_coding_questions_follows_ratio() -> None:
    assert SelectionConfig().min_coding_questions == 21
    assert SelectionConfig().topic_ceiling == 24
