"""
K-means clustering of retained face embeddings.

The engine partitions the current embedding snapshot into at most ``k``
groups using Euclidean k-means and keeps a single representative per group:
the member closest to the group's final centroid.

Centroids are initialized by drawing ``k`` distinct points uniformly at
random, so cluster ids and membership change between runs unless a seed is
fixed. Cluster ids are run-scoped labels, not stable person identifiers.

Example:
    ```python
    clusterer = KMeansClusterer(k=5, max_iterations=100, seed=7)
    representatives = clusterer.cluster(store.all())
    for cluster_id, face_png in representatives.items():
        ...
    ```
"""
from dataclasses import dataclass
from typing import Callable, Dict, Optional, Sequence, TypeVar

import numpy as np

from facegroups.core.config import settings
from facegroups.core.exceptions import InvalidEmbeddingError
from facegroups.core.logging import get_logger
from facegroups.domain.entities.face import RetainedFace

logger = get_logger(__name__)

T = TypeVar("T")


@dataclass
class KMeansResult:
    """Final state of a k-means run."""
    labels: np.ndarray
    centroids: np.ndarray
    iterations: int

    @property
    def k(self) -> int:
        return int(self.centroids.shape[0])


def _stack(points: Sequence[np.ndarray]) -> np.ndarray:
    if len(points) == 0:
        return np.empty((0, 0), dtype=np.float64)
    try:
        return np.vstack([np.asarray(p, dtype=np.float64).reshape(1, -1) for p in points])
    except ValueError as e:
        raise InvalidEmbeddingError(f"Embeddings must share one dimension: {str(e)}")


def _assign(points: np.ndarray, centroids: np.ndarray) -> np.ndarray:
    # argmin keeps the first centroid on ties
    distances = np.linalg.norm(points[:, np.newaxis, :] - centroids[np.newaxis, :, :], axis=2)
    return np.argmin(distances, axis=1)


def kmeans(
    points: np.ndarray,
    k: int,
    max_iterations: int,
    rng: np.random.Generator,
) -> KMeansResult:
    """Run Lloyd's k-means on a ``(n, dim)`` array.

    Args:
        points: One embedding per row
        k: Requested number of clusters, capped at the number of points
        max_iterations: Upper bound on assignment/update rounds
        rng: Generator used to pick the initial centroids

    Returns:
        KMeansResult with one label per point and the final centroids
    """
    if k < 0 or max_iterations < 0:
        raise ValueError("k and max_iterations must be non-negative")

    n = points.shape[0]
    k = min(k, n)
    if k == 0:
        dim = points.shape[1] if points.ndim == 2 else 0
        return KMeansResult(
            labels=np.empty(0, dtype=int),
            centroids=np.empty((0, dim), dtype=np.float64),
            iterations=0,
        )

    initial = rng.choice(n, size=k, replace=False)
    centroids = points[initial].copy()
    labels = _assign(points, centroids)

    iterations = 0
    while iterations < max_iterations:
        iterations += 1
        labels = _assign(points, centroids)
        updated = centroids.copy()
        for cluster_id in range(k):
            members = points[labels == cluster_id]
            if len(members) > 0:
                updated[cluster_id] = members.mean(axis=0)
        converged = np.array_equal(updated, centroids)
        centroids = updated
        if converged:
            break

    return KMeansResult(labels=labels, centroids=centroids, iterations=iterations)


def select_representatives(points: np.ndarray, result: KMeansResult) -> Dict[int, int]:
    """Map each non-empty cluster id to the index of the member nearest its centroid.

    Ties go to the member that comes first in ``points``.
    """
    representatives: Dict[int, int] = {}
    for cluster_id in range(result.k):
        members = np.flatnonzero(result.labels == cluster_id)
        if len(members) == 0:
            continue
        distances = np.linalg.norm(points[members] - result.centroids[cluster_id], axis=1)
        representatives[cluster_id] = int(members[int(np.argmin(distances))])
    return representatives


def cluster(
    points: Sequence[np.ndarray],
    representative_of: Callable[[int], T],
    k: int = 5,
    max_iterations: int = 100,
    rng: Optional[np.random.Generator] = None,
) -> Dict[int, T]:
    """Cluster embeddings and return one representative per non-empty cluster.

    Args:
        points: Embeddings to cluster
        representative_of: Maps the index of a point to its associated image
        k: Requested number of clusters
        max_iterations: Upper bound on k-means rounds
        rng: Generator for centroid initialization (fresh, unseeded if omitted)

    Returns:
        Mapping from cluster id to the image of the member closest to the centroid
    """
    if len(points) == 0:
        return {}
    matrix = _stack(points)
    result = kmeans(matrix, k, max_iterations, rng or np.random.default_rng())
    return {
        cluster_id: representative_of(index)
        for cluster_id, index in select_representatives(matrix, result).items()
    }


class KMeansClusterer:
    """Clusters retained faces and keeps one representative face per cluster."""

    def __init__(
        self,
        k: Optional[int] = None,
        max_iterations: Optional[int] = None,
        seed: Optional[int] = None,
        rng: Optional[np.random.Generator] = None,
    ) -> None:
        """Initialize the clusterer.

        Args:
            k: Requested number of clusters (defaults to ``settings.NUM_CLUSTERS``)
            max_iterations: Iteration cap (defaults to ``settings.MAX_ITERATIONS``)
            seed: Seed applied afresh on every run, making runs reproducible
            rng: Shared generator used when no seed is given
        """
        self.k = settings.NUM_CLUSTERS if k is None else k
        self.max_iterations = settings.MAX_ITERATIONS if max_iterations is None else max_iterations
        self._seed = seed
        self._rng = rng or np.random.default_rng()

    def _generator(self) -> np.random.Generator:
        if self._seed is not None:
            return np.random.default_rng(self._seed)
        return self._rng

    def fit(self, points: Sequence[np.ndarray]) -> KMeansResult:
        """Run k-means over raw embeddings."""
        return kmeans(_stack(points), self.k, self.max_iterations, self._generator())

    def cluster(self, faces: Sequence[RetainedFace]) -> Dict[int, bytes]:
        """Cluster a snapshot of retained faces.

        Returns:
            Mapping from cluster id to the representative face image
        """
        if not faces:
            return {}

        matrix = _stack([face.embedding for face in faces])
        result = self.fit(matrix)
        representatives = {
            cluster_id: faces[index].face_image
            for cluster_id, index in select_representatives(matrix, result).items()
        }
        logger.info(
            "Clustering completed",
            points=len(faces),
            requested_k=self.k,
            iterations=result.iterations,
            clusters=len(representatives),
        )
        return representatives
