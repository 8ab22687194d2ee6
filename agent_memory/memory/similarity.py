"""
Vector similarity ranking shared by the storage backends.
"""

from typing import List, Sequence, Tuple, TypeVar

import numpy as np


T = TypeVar("T")


def cosine_similarity(vec1: Sequence[float], vec2: Sequence[float]) -> float:
    """
    Calculate cosine similarity between two vectors.

    Returns a value in [-1, 1]. Empty, zero-length or mismatched vectors
    score 0.0 instead of raising.
    """
    if not vec1 or not vec2 or len(vec1) != len(vec2):
        return 0.0

    a = np.asarray(vec1, dtype=float)
    b = np.asarray(vec2, dtype=float)

    norm = np.linalg.norm(a) * np.linalg.norm(b)
    if norm == 0:
        return 0.0

    return float(np.dot(a, b) / norm)


def rank_by_similarity(
    query: Sequence[float],
    candidates: List[Tuple[T, Sequence[float]]],
    limit: int,
) -> List[Tuple[T, float]]:
    """
    Rank candidates by cosine similarity to a query vector.

    The sort is stable, so candidates with equal similarity keep the
    order they were fetched in.

    Args:
        query: Query embedding
        candidates: (item, embedding) pairs
        limit: Maximum number of results

    Returns:
        (item, similarity) pairs, most similar first
    """
    scored = [
        (item, cosine_similarity(query, vector))
        for item, vector in candidates
    ]
    scored.sort(key=lambda pair: pair[1], reverse=True)
    return scored[:limit]
