from __future__ import annotations

import math
import random
from typing import Iterable, Mapping, Sequence


def to_vector(raw: object) -> tuple[float, ...] | None:
    """Coerce a stored embedding (sequence or pgvector text form) into floats."""
    if raw is None:
        return None
    if isinstance(raw, str):
        parts = [part.strip() for part in raw.strip("[]{}()").split(",")]
        parts = [part for part in parts if part]
        if not parts:
            return None
        try:
            vector = tuple(float(part) for part in parts)
        except ValueError:
            return None
        return vector if all(math.isfinite(value) for value in vector) else None
    try:
        vector = tuple(float(value) for value in raw)  # type: ignore[union-attr]
    except TypeError:
        return None
    return vector or None


def cosine_similarity(left: Sequence[float], right: Sequence[float]) -> float:
    length = min(len(left), len(right))
    if length == 0:
        return 0.0

    dot = 0.0
    left_norm = 0.0
    right_norm = 0.0
    for index in range(length):
        a = left[index]
        b = right[index]
        dot += a * b
        left_norm += a * a
        right_norm += b * b
    if left_norm == 0 or right_norm == 0:
        return 0.0
    return dot / (math.sqrt(left_norm) * math.sqrt(right_norm))


def max_cosine_similarity(
    vector: Sequence[float] | None,
    others: Iterable[Sequence[float] | None],
) -> float:
    if not vector:
        return 0.0
    best = 0.0
    for other in others:
        if not other:
            continue
        best = max(best, cosine_similarity(vector, other))
    return best


def weighted_random_index(weights: Sequence[float], rng: random.Random) -> int:
    if not weights:
        raise ValueError("weights must not be empty")

    sanitized = [w if math.isfinite(w) and w > 0 else 0.0 for w in weights]
    total = sum(sanitized)
    if total <= 0:
        return min(len(sanitized) - 1, int(rng.random() * len(sanitized)))

    threshold = rng.random() * total
    cumulative = 0.0
    for index, weight in enumerate(sanitized):
        cumulative += weight
        if weight > 0 and threshold <= cumulative:
            return index
    return len(sanitized) - 1


def weighted_random_choice(items: Sequence[str], weights: Sequence[float], rng: random.Random) -> str:
    if not items or len(items) != len(weights):
        raise ValueError("items and weights must have the same non-zero length")
    return items[weighted_random_index(weights, rng)]


def coverage_weights(
    distribution: Mapping[str, int],
    keys: Sequence[str],
    *,
    min_weight: float = 1.0,
) -> dict[str, float]:
    """Inverse-coverage weights: less covered keys get proportionally more weight."""
    counts = [distribution.get(key, 0) for key in keys]
    max_count = max(counts) if counts else 0
    return {
        key: max(min_weight, (1.0 / (distribution.get(key, 0) + 1)) * (max_count + 1))
        for key in keys
    }
