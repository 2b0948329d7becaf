"""Cosine-similarity gate deciding whether a face embedding is new.

A candidate is a duplicate when its cosine similarity with any retained
embedding is strictly greater than the threshold. Similarity against a
zero-magnitude vector is undefined and never counts as exceeding the
threshold, so degenerate model output is admitted rather than silently
dropped.
"""
from typing import Optional, Sequence

import numpy as np

from facegroups.core.config import settings
from facegroups.core.exceptions import InvalidEmbeddingError


def _as_vector(embedding: np.ndarray) -> np.ndarray:
    return np.asarray(embedding, dtype=np.float64).reshape(-1)


def cosine_similarity(a: np.ndarray, b: np.ndarray) -> Optional[float]:
    """Cosine similarity of two vectors, or None when either has zero magnitude.

    Raises:
        InvalidEmbeddingError: If the vectors differ in length
    """
    a = _as_vector(a)
    b = _as_vector(b)
    if a.shape != b.shape:
        raise InvalidEmbeddingError(
            "Embedding dimensions differ",
            details={"left": a.shape[0], "right": b.shape[0]},
        )
    norm = float(np.linalg.norm(a)) * float(np.linalg.norm(b))
    if norm == 0.0:
        return None
    return float(np.dot(a, b) / norm)


def is_new_face(
    candidate: np.ndarray,
    existing: Sequence[np.ndarray],
    threshold: Optional[float] = None,
) -> bool:
    """Decide whether ``candidate`` is distinct from every embedding in ``existing``.

    Args:
        candidate: Embedding of the face under consideration
        existing: Previously retained embeddings
        threshold: Similarity above which the candidate is a duplicate
            (defaults to ``settings.SIMILARITY_THRESHOLD``)

    Returns:
        True to admit the candidate, False if it duplicates a retained face
    """
    if threshold is None:
        threshold = settings.SIMILARITY_THRESHOLD
    if len(existing) == 0:
        return True

    for embedding in existing:
        similarity = cosine_similarity(candidate, embedding)
        if similarity is not None and similarity > threshold:
            return False
    return True
