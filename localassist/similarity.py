"""Vector similarity helpers."""

from __future__ import annotations

import math
from typing import Sequence


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    """Cosine similarity of two vectors; 0.0 for empty, mismatched or zero vectors."""
    if not a or not b or len(a) != len(b):
        return 0.0

    dot = sum(x * y for x, y in zip(a, b))
    norm_a = math.sqrt(sum(x * x for x in a))
    norm_b = math.sqrt(sum(y * y for y in b))
    if norm_a == 0.0 or norm_b == 0.0:
        return 0.0

    similarity = dot / (norm_a * norm_b)
    return similarity if math.isfinite(similarity) else 0.0


def mean_top(values: Sequence[float], k: int = 3) -> float:
    """Mean of the k largest values (fewer if not available)."""
    if not values:
        return 0.0
    top = sorted(values, reverse=True)[:k]
    return sum(top) / len(top)
