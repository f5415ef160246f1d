"""
Vector math helpers for embedding similarity.
"""

import math
from typing import Sequence


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    """Cosine similarity of two equal-length vectors.

    Returns 0.0 when the lengths differ, a vector is empty, or either norm is zero.
    """
    if len(a) != len(b) or not a:
        return 0.0

    dot = 0.0
    norm_a = 0.0
    norm_b = 0.0
    for x, y in zip(a, b):
        dot += x * y
        norm_a += x * x
        norm_b += y * y

    if norm_a == 0.0 or norm_b == 0.0:
        return 0.0

    similarity = dot / math.sqrt(norm_a * norm_b)
    return max(-1.0, min(1.0, similarity))
