"""Storage interfaces for persisted clusters and processed images."""
from abc import ABC, abstractmethod
from typing import List, Optional

from ...entities.face import PersistedFaceRecord


class ClusterStore(ABC):
    """Interface for storing one representative face per cluster id."""

    @abstractmethod
    async def exists(self, cluster_id: int) -> bool:
        """
        Check whether a record for the cluster id is already stored.

        Raises:
            StorageError: If the lookup fails
        """
        pass

    @abstractmethod
    async def insert(self, cluster_id: int, face_image: bytes) -> PersistedFaceRecord:
        """
        Store the representative face of a cluster.

        Args:
            cluster_id: Run-scoped cluster identifier
            face_image: Representative face image bytes

        Returns:
            The stored record

        Raises:
            StorageError: If the write fails
        """
        pass

    @abstractmethod
    async def list_all(self) -> List[PersistedFaceRecord]:
        """
        Return every stored record ordered by cluster id.

        Raises:
            StorageError: If the read fails
        """
        pass

    @abstractmethod
    async def clear(self) -> int:
        """
        Delete every stored record.

        Returns:
            Number of deleted records

        Raises:
            StorageError: If the delete fails
        """
        pass


class ImageRegistry(ABC):
    """Interface for remembering which images were already processed."""

    @abstractmethod
    async def get_status(self, image_key: str) -> Optional[bool]:
        """
        Look up an image.

        Returns:
            None if the image was never processed, otherwise whether it had faces
        """
        pass

    @abstractmethod
    async def mark_processed(self, image_key: str, had_face: bool) -> None:
        """Record that an image was processed."""
        pass
