"""Exact (brute-force) cosine similarity scoring and top-K ranking"""

from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Any

import numpy as np

from journal_memory.errors import DimensionMismatchError

VectorLike = Sequence[float] | np.ndarray


@dataclass
class Candidate:
    """A vector to be scored against a query"""

    id: str
    vector: VectorLike
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass
class ScoredCandidate:
    """A candidate with its similarity to the query"""

    id: str
    score: float
    metadata: dict[str, Any] = field(default_factory=dict)


def normalize(vector: VectorLike) -> list[float]:
    """Scale a vector to unit length (zero vectors are returned unchanged)"""
    arr = np.asarray(vector, dtype=np.float64)
    norm = np.linalg.norm(arr)
    if norm == 0:
        return arr.tolist()
    return np.clip(arr / norm, -1.0, 1.0).tolist()


def cosine_similarity(a: VectorLike, b: VectorLike) -> float:
    """
    Cosine similarity between two vectors

    Returns a value in [-1, 1]. If either vector has zero norm the result is
    exactly 0.0.

    Raises:
        DimensionMismatchError: If the vectors differ in length
    """
    if len(a) != len(b):
        raise DimensionMismatchError(len(a), len(b))

    va = np.asarray(a, dtype=np.float64)
    vb = np.asarray(b, dtype=np.float64)

    norm_a = float(np.linalg.norm(va))
    norm_b = float(np.linalg.norm(vb))
    if norm_a == 0.0 or norm_b == 0.0:
        return 0.0

    score = float(np.dot(va, vb)) / (norm_a * norm_b)
    return max(-1.0, min(1.0, score))


def score_all(query: VectorLike, vectors: Sequence[VectorLike]) -> np.ndarray:
    """
    Cosine similarity of the query against every vector

    Raises:
        DimensionMismatchError: If any vector differs in length from the query
    """
    if not len(vectors):
        return np.zeros(0, dtype=np.float64)

    for vector in vectors:
        if len(vector) != len(query):
            raise DimensionMismatchError(len(query), len(vector))

    q = np.asarray(query, dtype=np.float64)
    matrix = np.asarray(vectors, dtype=np.float64)

    query_norm = np.linalg.norm(q)
    norms = np.linalg.norm(matrix, axis=1)
    if query_norm == 0:
        return np.zeros(len(vectors), dtype=np.float64)

    denominators = norms * query_norm
    dots = matrix @ q
    scores = np.divide(dots, denominators, out=np.zeros_like(dots), where=denominators != 0)
    return np.clip(scores, -1.0, 1.0)


def top_k(
    query: VectorLike, candidates: Sequence[Candidate], k: int = 10
) -> list[ScoredCandidate]:
    """
    Rank candidates by similarity to the query

    Every candidate is scored (no approximate index). Ties keep their input
    order.

    Returns:
        The first min(k, len(candidates)) candidates by descending score
    """
    if k <= 0 or not candidates:
        return []

    scores = score_all(query, [c.vector for c in candidates])
    order = np.argsort(-scores, kind="stable")[:k]

    return [
        ScoredCandidate(
            id=candidates[i].id,
            score=float(scores[i]),
            metadata=candidates[i].metadata,
        )
        for i in order
    ]
