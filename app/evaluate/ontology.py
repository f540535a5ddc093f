from __future__ import annotations

from dataclasses import dataclass
from typing import Mapping, Sequence

from app.evaluate.vectors import coverage_weights


@dataclass(frozen=True, slots=True)
class OntologyTopic:
    name: str
    weight: float
    subtopics: tuple[str, ...]


STATIC_ONTOLOGY: tuple[OntologyTopic, ...] = (
    OntologyTopic(
        name="React Fundamentals",
        weight=1.0,
        subtopics=("JSX", "Components", "Props", "Rendering Lists", "Conditional Rendering"),
    ),
    OntologyTopic(
        name="React Hooks",
        weight=1.2,
        subtopics=("useState", "useEffect", "useMemo", "useCallback", "useRef", "Custom Hooks"),
    ),
    OntologyTopic(
        name="State Management",
        weight=1.0,
        subtopics=("Context API", "Reducers", "Lifting State Up", "External Stores"),
    ),
    OntologyTopic(
        name="Performance",
        weight=0.8,
        subtopics=("Memoization", "Code Splitting", "Reconciliation", "Virtualization"),
    ),
    OntologyTopic(
        name="Next.js",
        weight=1.0,
        subtopics=("App Router", "Server Components", "Data Fetching", "Route Handlers", "Middleware"),
    ),
    OntologyTopic(
        name="TypeScript",
        weight=0.9,
        subtopics=("Generics", "Utility Types", "Type Narrowing", "Typing Props"),
    ),
    OntologyTopic(
        name="JavaScript",
        weight=1.0,
        subtopics=("Closures", "Promises", "Event Loop", "Array Methods", "Modules"),
    ),
    OntologyTopic(
        name="Testing",
        weight=0.7,
        subtopics=("Unit Tests", "React Testing Library", "Mocking", "End-to-End Tests"),
    ),
    OntologyTopic(
        name="Accessibility",
        weight=0.6,
        subtopics=("ARIA", "Keyboard Navigation", "Semantic HTML"),
    ),
    OntologyTopic(
        name="Forms",
        weight=0.7,
        subtopics=("Controlled Inputs", "Validation", "Form Actions"),
    ),
)

_TOPICS_BY_NAME = {topic.name: topic for topic in STATIC_ONTOLOGY}


def topic_names() -> list[str]:
    return [topic.name for topic in STATIC_ONTOLOGY]


def topic_weights() -> dict[str, float]:
    return {topic.name: topic.weight for topic in STATIC_ONTOLOGY}


def topic_pick_weights(topic_counts: Mapping[str, int], topics: Sequence[str]) -> list[float]:
    """Inverse-coverage weight scaled by the topic's ontology weight (1.0 when unknown)."""
    base = topic_weights()
    coverage = coverage_weights(topic_counts, topics)
    return [coverage[topic] * base.get(topic, 1.0) for topic in topics]


def subtopics_for(topic: str) -> list[str]:
    entry = _TOPICS_BY_NAME.get(topic)
    return list(entry.subtopics) if entry is not None else []


def match_subtopic(topic: str, candidate: str | None) -> str | None:
    """Resolve a free-form subtopic to the ontology spelling, if any matches."""
    if not candidate:
        return None
    needle = candidate.strip().lower()
    if not needle:
        return None
    options = subtopics_for(topic)
    for option in options:
        if option.lower() == needle:
            return option
    for option in options:
        lowered = option.lower()
        if needle in lowered or lowered in needle:
            return option
    return None
