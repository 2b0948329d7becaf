"""SQLAlchemy-backed implementations of the storage interfaces."""
from typing import List, Optional

from sqlalchemy.exc import SQLAlchemyError

from facegroups.core.exceptions import StorageError
from facegroups.core.logging import get_logger
from facegroups.domain.entities.face import PersistedFaceRecord
from facegroups.domain.interfaces.storage.cluster_store import ClusterStore, ImageRegistry
from facegroups.infrastructure.database.models import FaceCluster
from facegroups.infrastructure.database.session import Database
from facegroups.infrastructure.database.unit_of_work import UnitOfWork

logger = get_logger(__name__)


def _to_record(row: FaceCluster) -> PersistedFaceRecord:
    return PersistedFaceRecord(
        cluster_id=row.cluster_id,
        face_image=row.face_image,
        created_at=row.created_at,
    )


class SQLAlchemyClusterStore(ClusterStore):
    """Cluster store with one committed transaction per call."""

    def __init__(self, database: Database) -> None:
        self._database = database

    async def exists(self, cluster_id: int) -> bool:
        try:
            async with self._database.session() as session:
                async with UnitOfWork(session) as uow:
                    return await uow.clusters.exists(cluster_id)
        except SQLAlchemyError as e:
            raise StorageError(
                f"Failed to look up cluster: {str(e)}", details={"cluster_id": cluster_id}
            )

    async def insert(self, cluster_id: int, face_image: bytes) -> PersistedFaceRecord:
        try:
            async with self._database.session() as session:
                async with UnitOfWork(session) as uow:
                    row = await uow.clusters.create(cluster_id, face_image)
                    record = _to_record(row)
        except SQLAlchemyError as e:
            raise StorageError(
                f"Failed to insert cluster: {str(e)}", details={"cluster_id": cluster_id}
            )
        logger.info("Saved new face for cluster", cluster_id=cluster_id)
        return record

    async def list_all(self) -> List[PersistedFaceRecord]:
        try:
            async with self._database.session() as session:
                async with UnitOfWork(session) as uow:
                    rows = await uow.clusters.list_all()
                    return [_to_record(row) for row in rows]
        except SQLAlchemyError as e:
            raise StorageError(f"Failed to list clusters: {str(e)}")

    async def clear(self) -> int:
        try:
            async with self._database.session() as session:
                async with UnitOfWork(session) as uow:
                    return await uow.clusters.delete_all()
        except SQLAlchemyError as e:
            raise StorageError(f"Failed to clear clusters: {str(e)}")


class SQLAlchemyImageRegistry(ImageRegistry):
    """Processed-image registry backed by the ``detected_images`` table."""

    def __init__(self, database: Database) -> None:
        self._database = database

    async def get_status(self, image_key: str) -> Optional[bool]:
        try:
            async with self._database.session() as session:
                async with UnitOfWork(session) as uow:
                    record = await uow.images.get(image_key)
                    return None if record is None else record.had_face
        except SQLAlchemyError as e:
            raise StorageError(
                f"Failed to look up image: {str(e)}", details={"image_key": image_key}
            )

    async def mark_processed(self, image_key: str, had_face: bool) -> None:
        try:
            async with self._database.session() as session:
                async with UnitOfWork(session) as uow:
                    await uow.images.upsert(image_key, had_face)
        except SQLAlchemyError as e:
            raise StorageError(
                f"Failed to record image: {str(e)}", details={"image_key": image_key}
            )
