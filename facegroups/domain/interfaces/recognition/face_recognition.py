"""Face detection and embedding interfaces."""
from abc import ABC, abstractmethod
from typing import Optional

import numpy as np

from ...value_objects.recognition import DetectionResult


class FaceDetector(ABC):
    """Interface for locating faces in an image."""

    @abstractmethod
    async def detect_faces(
        self,
        image_bytes: bytes,
        max_faces: Optional[int] = None,
    ) -> DetectionResult:
        """
        Detect faces in the provided image.

        Args:
            image_bytes: Raw image data
            max_faces: Maximum number of faces to detect (None for no limit)

        Returns:
            DetectionResult containing the detected faces with their crops

        Raises:
            InvalidImageError: If the image cannot be decoded
            DetectorError: If the detector itself fails
        """
        pass


class FaceEmbedder(ABC):
    """Interface for turning a face crop into an embedding vector."""

    @abstractmethod
    async def embed(self, face_image: bytes) -> np.ndarray:
        """
        Compute the embedding of a single face crop.

        Args:
            face_image: Encoded face crop as produced by a FaceDetector

        Returns:
            1-D embedding vector

        Raises:
            ModelError: If the model fails to produce an embedding
        """
        pass
