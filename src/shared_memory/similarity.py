"""
Nearest-neighbour search over small in-memory vector sets.

Brute force, O(n*d) per query. Conversations and knowledge bases hold
hundreds to low thousands of vectors, so no index structure is kept.
Shared by the memory service and the knowledge base.
"""

import logging
from dataclasses import dataclass
from typing import Any, Iterable, List, Sequence

import numpy as np

from shared_memory.errors import DimensionMismatchError, InvalidInputError

logger = logging.getLogger(__name__)


@dataclass
class SimilarityCandidate:
    """
    A vector that can be ranked against a query.

    Attributes:
        id: Identifier of the item the vector belongs to
        vector: The embedding
        metadata: Arbitrary payload carried through to the match
    """

    id: str
    vector: Sequence[float]
    metadata: Any = None


@dataclass
class SimilarityMatch:
    id: str
    similarity: float
    metadata: Any = None


def cosine_similarity(vector_a: Sequence[float], vector_b: Sequence[float]) -> float:
    """
    Cosine similarity between two vectors.

    Args:
        vector_a: First vector
        vector_b: Second vector

    Returns:
        Similarity in [-1, 1]. 0.0 when either vector has zero magnitude.

    Raises:
        DimensionMismatchError: If the vectors have different lengths
    """
    if len(vector_a) != len(vector_b):
        raise DimensionMismatchError(
            f"Vectors must have the same length ({len(vector_a)} != {len(vector_b)})"
        )

    a = np.asarray(vector_a, dtype=np.float64)
    b = np.asarray(vector_b, dtype=np.float64)

    magnitude = np.linalg.norm(a) * np.linalg.norm(b)
    if magnitude == 0:
        return 0.0

    return float(np.clip(np.dot(a, b) / magnitude, -1.0, 1.0))


def find_similar(
    query_vector: Sequence[float],
    candidates: Iterable[SimilarityCandidate],
    top_k: int = 5,
    min_similarity: float = 0.1,
) -> List[SimilarityMatch]:
    """
    Rank candidates by cosine similarity to the query vector.

    Candidates below min_similarity are dropped, the rest are sorted by
    similarity (highest first, ties keep input order) and cut to top_k.

    Raises:
        InvalidInputError: If top_k is not positive
        DimensionMismatchError: If a candidate vector has the wrong length
    """
    if top_k <= 0:
        raise InvalidInputError(f"top_k must be positive, got {top_k}")

    matches = []
    for candidate in candidates:
        similarity = cosine_similarity(query_vector, candidate.vector)
        if similarity >= min_similarity:
            matches.append(SimilarityMatch(candidate.id, similarity, candidate.metadata))

    # list.sort is stable, so equal scores keep their input order
    matches.sort(key=lambda match: match.similarity, reverse=True)

    logger.debug(
        f"{len(matches)} candidates above min_similarity={min_similarity}, "
        f"returning {min(len(matches), top_k)}"
    )
    return matches[:top_k]


def normalize_vector(vector: Sequence[float]) -> List[float]:
    """Scale a vector to unit length. A zero vector is returned unchanged."""
    array = np.asarray(vector, dtype=np.float64)
    magnitude = np.linalg.norm(array)
    if magnitude == 0:
        return array.tolist()
    return (array / magnitude).tolist()
