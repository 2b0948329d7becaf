"""Idempotent persistence of cluster representatives."""
from typing import Mapping

from facegroups.core.exceptions import StorageError
from facegroups.core.logging import get_logger
from facegroups.domain.interfaces.storage.cluster_store import ClusterStore
from facegroups.domain.value_objects.recognition import PersistResult

logger = get_logger(__name__)


class PersistenceGate:
    """Writes each cluster's representative at most once per cluster id.

    A cluster id that already exists in storage is skipped entirely. Writes are
    not transactional across ids: a failed insert is recorded and the remaining
    clusters are still attempted, and the next run re-checks existence before
    retrying.
    """

    def __init__(self, store: ClusterStore) -> None:
        """Initialize the gate.

        Args:
            store: Storage handle owning the persisted clusters
        """
        self._store = store

    async def persist(self, clusters: Mapping[int, bytes]) -> PersistResult:
        """Insert representatives for cluster ids not stored yet.

        Args:
            clusters: Mapping from cluster id to representative face image

        Returns:
            PersistResult listing inserted, skipped and failed cluster ids
        """
        result = PersistResult()
        for cluster_id, face_image in clusters.items():
            try:
                if await self._store.exists(cluster_id):
                    result.skipped.append(cluster_id)
                    continue
                await self._store.insert(cluster_id, face_image)
                result.inserted.append(cluster_id)
                logger.debug("Persisted cluster representative", cluster_id=cluster_id)
            except StorageError as e:
                logger.error(
                    "Failed to persist cluster representative",
                    cluster_id=cluster_id,
                    error=str(e),
                )
                result.failed[cluster_id] = str(e)

        logger.info(
            "Persisted clustering run",
            inserted=len(result.inserted),
            skipped=len(result.skipped),
            failed=len(result.failed),
        )
        return result
