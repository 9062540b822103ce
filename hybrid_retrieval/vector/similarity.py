"""Cosine similarity between embedding vectors."""

from typing import Any

import numpy as np


def cosine_similarity(vec1: Any, vec2: Any) -> float:
    """Compute cosine similarity between two vectors.

    Degenerate input is not an error: vectors of different length, empty
    vectors, zero vectors and anything that does not convert to a 1-D float
    array all score exactly ``0.0``.

    Args:
        vec1: First vector (sequence of numbers or numpy array)
        vec2: Second vector

    Returns:
        Cosine similarity score in ``[-1, 1]``
    """
    try:
        a = np.asarray(vec1, dtype=np.float64)
        b = np.asarray(vec2, dtype=np.float64)
    except (TypeError, ValueError):
        return 0.0

    if a.ndim != 1 or b.ndim != 1:
        return 0.0
    if a.size == 0 or a.size != b.size:
        return 0.0

    norm1 = np.linalg.norm(a)
    norm2 = np.linalg.norm(b)

    if norm1 == 0 or norm2 == 0 or not np.isfinite(norm1) or not np.isfinite(norm2):
        return 0.0

    similarity = float(np.dot(a, b) / (norm1 * norm2))
    # Rounding can push identical vectors a hair past 1.0
    return max(-1.0, min(1.0, similarity))
