"""Database repositories for the face grouping pipeline."""
from typing import List, Optional

from sqlalchemy import delete, exists, select
from sqlalchemy.ext.asyncio import AsyncSession

from facegroups.infrastructure.database.models import DetectedImage, FaceCluster


class FaceClusterRepository:
    """Repository for persisted cluster representatives."""

    def __init__(self, session: AsyncSession) -> None:
        """Initialize repository.

        Args:
            session: Database session
        """
        self._session = session

    async def exists(self, cluster_id: int) -> bool:
        """Check whether a record exists for the cluster id."""
        stmt = select(exists().where(FaceCluster.cluster_id == cluster_id))
        result = await self._session.execute(stmt)
        return bool(result.scalar())

    async def create(self, cluster_id: int, face_image: bytes) -> FaceCluster:
        """Create a new cluster record.

        Args:
            cluster_id: Run-scoped cluster identifier
            face_image: Representative face image bytes

        Returns:
            FaceCluster: Created record
        """
        record = FaceCluster(cluster_id=cluster_id, face_image=face_image)
        self._session.add(record)
        await self._session.flush()
        return record

    async def list_all(self) -> List[FaceCluster]:
        """Get every record, by cluster id and newest first."""
        stmt = select(FaceCluster).order_by(FaceCluster.cluster_id, FaceCluster.created_at.desc())
        result = await self._session.execute(stmt)
        return list(result.scalars().all())

    async def delete_all(self) -> int:
        """Delete every record.

        Returns:
            int: Number of deleted rows
        """
        result = await self._session.execute(delete(FaceCluster))
        return result.rowcount or 0


class DetectedImageRepository:
    """Repository for images that went through detection."""

    def __init__(self, session: AsyncSession) -> None:
        """Initialize repository.

        Args:
            session: Database session
        """
        self._session = session

    async def get(self, image_key: str) -> Optional[DetectedImage]:
        """Get an image record by key, or None."""
        return await self._session.get(DetectedImage, image_key)

    async def upsert(self, image_key: str, had_face: bool) -> DetectedImage:
        """Insert or update an image record.

        Args:
            image_key: External image identifier
            had_face: Whether detection found at least one face

        Returns:
            DetectedImage: Stored record
        """
        record = await self.get(image_key)
        if record is None:
            record = DetectedImage(image_key=image_key, had_face=had_face)
            self._session.add(record)
        else:
            record.had_face = had_face
        await self._session.flush()
        return record
