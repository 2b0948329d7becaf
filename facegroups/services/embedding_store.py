"""In-memory, append-only working set of retained faces."""
import threading
from typing import List, Optional

import numpy as np

from facegroups.core.exceptions import InvalidEmbeddingError
from facegroups.core.logging import get_logger
from facegroups.domain.entities.face import RetainedFace
from facegroups.services.similarity import is_new_face

logger = get_logger(__name__)


class EmbeddingStore:
    """Append-only store of retained embeddings and their face images.

    The store lives for one grouping session. Nothing is ever removed; a new
    session starts with a new store. ``admit_if_new`` runs the similarity gate
    and the append under one lock so two near-duplicate faces can never both
    be admitted.

    Example:
        ```python
        store = EmbeddingStore(dimension=512)
        if store.admit_if_new(embedding, face_png, threshold=0.6):
            snapshot = store.all()
        ```
    """

    def __init__(self, dimension: Optional[int] = None) -> None:
        """Initialize an empty store.

        Args:
            dimension: Expected embedding length, or None to accept any length
        """
        self._dimension = dimension
        self._faces: List[RetainedFace] = []
        self._lock = threading.Lock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._faces)

    def validate(self, embedding: np.ndarray) -> np.ndarray:
        """Return the embedding as a flat float64 array, checking length and finiteness.

        Raises:
            InvalidEmbeddingError: If the embedding is rejected
        """
        arr = np.asarray(embedding, dtype=np.float64).reshape(-1)
        if self._dimension is not None and arr.shape[0] != self._dimension:
            raise InvalidEmbeddingError(
                f"Expected embedding of length {self._dimension}, got {arr.shape[0]}",
                details={"expected": self._dimension, "actual": arr.shape[0]},
            )
        if not np.all(np.isfinite(arr)):
            raise InvalidEmbeddingError("Embedding contains non-finite values")
        return arr

    def admit(
        self,
        embedding: np.ndarray,
        face_image: bytes,
        image_key: Optional[str] = None,
    ) -> RetainedFace:
        """Append a face unconditionally.

        Callers are expected to have consulted the similarity gate already.

        Raises:
            InvalidEmbeddingError: If the embedding has the wrong length or non-finite values
        """
        face = RetainedFace(
            embedding=self.validate(embedding),
            face_image=face_image,
            image_key=image_key,
        )
        with self._lock:
            self._faces.append(face)
        return face

    def admit_if_new(
        self,
        embedding: np.ndarray,
        face_image: bytes,
        threshold: Optional[float] = None,
        image_key: Optional[str] = None,
    ) -> Optional[RetainedFace]:
        """Run the similarity gate and append in one atomic step.

        Returns:
            The retained face, or None if it was rejected as a duplicate

        Raises:
            InvalidEmbeddingError: If the embedding has the wrong length or non-finite values
        """
        face = RetainedFace(
            embedding=self.validate(embedding),
            face_image=face_image,
            image_key=image_key,
        )
        with self._lock:
            existing = [retained.embedding for retained in self._faces]
            if not is_new_face(face.embedding, existing, threshold):
                return None
            self._faces.append(face)
            size = len(self._faces)

        logger.debug("Face admitted to embedding store", image_key=image_key, store_size=size)
        return face

    def all(self) -> List[RetainedFace]:
        """Snapshot of every retained face, safe to use while the store keeps growing."""
        with self._lock:
            return list(self._faces)
