"""Face grouping orchestration.

Wires detection, embedding, the similarity gate, the embedding store, the
cluster engine and the persistence gate together. All mutable pipeline state
lives in an explicit ``GroupingSession`` passed to every call.
"""
import asyncio
import uuid
from typing import Dict, List, Optional, Sequence, Set

import numpy as np

from facegroups.core.config import settings
from facegroups.core.exceptions import (
    DetectorError,
    InvalidEmbeddingError,
    InvalidImageError,
    ModelError,
    StorageError,
)
from facegroups.core.logging import get_logger
from facegroups.domain.entities.face import PersistedFaceRecord
from facegroups.domain.interfaces.recognition.face_recognition import FaceDetector, FaceEmbedder
from facegroups.domain.interfaces.storage.cluster_store import ClusterStore, ImageRegistry
from facegroups.domain.value_objects.recognition import (
    ImageProcessingResult,
    PersistResult,
    PipelineState,
)
from facegroups.services.clustering import KMeansClusterer
from facegroups.services.embedding_store import EmbeddingStore
from facegroups.services.persistence import PersistenceGate

logger = get_logger(__name__)


class GroupingSession:
    """State of one processing session.

    Attributes:
        session_id: Random identifier used in logs
        store: Append-only store of retained faces
        state: Latest pipeline transition of any in-flight call; IDLE only
            once no ingestion or clustering call is in flight
        active_calls: Number of in-flight ingestion calls
        processed_images: Images fed through the pipeline this session
        pending_images: Counted images since the last clustering run
        failed_images: Images whose detection or embedding failed this session
        last_failures: Cluster ids whose insert failed in the last clustering run
    """

    def __init__(self, embedding_dim: Optional[int] = None) -> None:
        self._embedding_dim = embedding_dim
        self.reset()

    def reset(self) -> None:
        """Start over with an empty store and zeroed counters."""
        self.session_id = str(uuid.uuid4())
        self.store = EmbeddingStore(dimension=self._embedding_dim)
        self.state = PipelineState.IDLE
        self.active_calls = 0
        self.processed_images = 0
        self.pending_images = 0
        self.failed_images: Set[str] = set()
        self.last_failures: Dict[int, str] = {}


class FaceGroupingService:
    """Incrementally deduplicates faces and persists one face per cluster.

    Example:
        ```python
        service = FaceGroupingService(
            detector=recognition_service,
            embedder=recognition_service,
            cluster_store=SQLAlchemyClusterStore(database),
            image_registry=SQLAlchemyImageRegistry(database),
        )
        session = service.new_session()
        for key, image_bytes in images:
            result = await service.process_image(session, key, image_bytes)
        persons = await service.list_persons()
        ```
    """

    def __init__(
        self,
        detector: FaceDetector,
        embedder: FaceEmbedder,
        cluster_store: ClusterStore,
        image_registry: Optional[ImageRegistry] = None,
        clusterer: Optional[KMeansClusterer] = None,
        similarity_threshold: Optional[float] = None,
        cluster_every_n_images: Optional[int] = None,
        cluster_only_on_new_faces: Optional[bool] = None,
        embedding_dim: Optional[int] = None,
        max_faces: Optional[int] = None,
        embed_timeout: Optional[float] = None,
    ) -> None:
        """Initialize the service.

        Args:
            detector: Locates faces and produces face crops
            embedder: Turns a face crop into an embedding
            cluster_store: Storage handle for persisted clusters
            image_registry: Optional record of images processed in earlier runs
            clusterer: Cluster engine (built from settings if omitted)
            similarity_threshold: Cosine similarity above which a face is a duplicate
            cluster_every_n_images: Counted images between clustering runs
            cluster_only_on_new_faces: Count only images that admitted a face
            embedding_dim: Expected embedding length for new sessions
            max_faces: Detector cap per image
            embed_timeout: Per-face bound on ``embed()`` in seconds
        """
        self._detector = detector
        self._embedder = embedder
        self._cluster_store = cluster_store
        self._image_registry = image_registry
        self._clusterer = clusterer or KMeansClusterer(seed=settings.CLUSTER_SEED)
        self._persistence = PersistenceGate(cluster_store)
        self._threshold = (
            settings.SIMILARITY_THRESHOLD if similarity_threshold is None else similarity_threshold
        )
        self._every_n = (
            settings.CLUSTER_EVERY_N_IMAGES if cluster_every_n_images is None else cluster_every_n_images
        )
        if self._every_n < 1:
            raise ValueError("cluster_every_n_images must be at least 1")
        self._only_new_faces = (
            settings.CLUSTER_ONLY_ON_NEW_FACES if cluster_only_on_new_faces is None
            else cluster_only_on_new_faces
        )
        self._embedding_dim = embedding_dim
        self._max_faces = settings.MAX_FACES_PER_IMAGE if max_faces is None else max_faces
        self._embed_timeout = settings.EMBED_TIMEOUT_SECONDS if embed_timeout is None else embed_timeout

    def new_session(self) -> GroupingSession:
        """Create an empty session."""
        session = GroupingSession(embedding_dim=self._embedding_dim)
        logger.info("Started grouping session", session_id=session.session_id)
        return session

    async def process_image(
        self,
        session: GroupingSession,
        image_key: str,
        image_bytes: bytes,
    ) -> ImageProcessingResult:
        """Detect, embed and deduplicate the faces of one image.

        Images recorded by the image registry in an earlier run, and images that
        already failed in this session, are skipped. Detector and model failures
        are absorbed: the image is treated as containing no faces.

        Args:
            session: Session receiving the admitted faces
            image_key: Stable identifier of the image (path, URI)
            image_bytes: Encoded image

        Returns:
            ImageProcessingResult describing what happened to the image
        """
        if image_key in session.failed_images:
            logger.debug("Skipping image that failed earlier in this session", image_key=image_key)
            return ImageProcessingResult(image_key=image_key, already_processed=True)

        if await self._already_processed(image_key):
            logger.debug("Skipping image processed in an earlier run", image_key=image_key)
            return ImageProcessingResult(image_key=image_key, already_processed=True)

        try:
            detection = await self._detector.detect_faces(image_bytes, max_faces=self._max_faces)
            face_images = [face.face_image for face in detection.faces]
        except (DetectorError, InvalidImageError) as e:
            logger.warning("Face detection failed, treating image as faceless", image_key=image_key, error=str(e))
            session.failed_images.add(image_key)
            result = ImageProcessingResult(image_key=image_key, error=str(e))
            return await self._ingest(session, image_key, [], result)

        result = ImageProcessingResult(image_key=image_key, faces_detected=len(face_images))
        result = await self._ingest(session, image_key, face_images, result)
        if result.error is None:
            await self._mark_processed(image_key, had_face=len(face_images) > 0)
        return result

    async def process_faces(
        self,
        session: GroupingSession,
        image_key: str,
        face_images: Sequence[bytes],
    ) -> ImageProcessingResult:
        """Embed and deduplicate face crops produced by an external detector."""
        result = ImageProcessingResult(image_key=image_key, faces_detected=len(face_images))
        return await self._ingest(session, image_key, list(face_images), result)

    async def refresh_clusters(self, session: GroupingSession) -> PersistResult:
        """Cluster the current store snapshot and persist new cluster ids.

        Clustering runs in a worker thread on a snapshot, so ingestion may keep
        growing the store meanwhile.
        """
        snapshot = session.store.all()
        session.pending_images = 0

        session.state = PipelineState.CLUSTERING
        logger.info("Clustering retained faces", session_id=session.session_id, faces=len(snapshot))
        clusters = await asyncio.to_thread(self._clusterer.cluster, snapshot)

        session.state = PipelineState.PERSISTING
        result = await self._persistence.persist(clusters)
        session.last_failures = dict(result.failed)
        if session.active_calls == 0:
            session.state = PipelineState.IDLE

        if result.failed:
            logger.warning(
                "Some clusters were not persisted, they will be retried on the next run",
                session_id=session.session_id,
                failed=sorted(result.failed),
            )
        return result

    async def list_persons(self) -> List[PersistedFaceRecord]:
        """Return every persisted representative face."""
        return await self._cluster_store.list_all()

    async def clear_persons(self) -> int:
        """Delete every persisted representative face."""
        deleted = await self._cluster_store.clear()
        logger.info("Cleared persisted clusters", deleted=deleted)
        return deleted

    async def _ingest(
        self,
        session: GroupingSession,
        image_key: str,
        face_images: List[bytes],
        result: ImageProcessingResult,
    ) -> ImageProcessingResult:
        session.active_calls += 1
        try:
            return await self._admit_faces(session, image_key, face_images, result)
        finally:
            session.active_calls -= 1
            if session.active_calls == 0:
                session.state = PipelineState.IDLE

    async def _admit_faces(
        self,
        session: GroupingSession,
        image_key: str,
        face_images: List[bytes],
        result: ImageProcessingResult,
    ) -> ImageProcessingResult:
        embeddings = await self._embed_all(session, image_key, face_images, result)

        for embedding, face_image in zip(embeddings, face_images):
            retained = session.store.admit_if_new(
                embedding, face_image, threshold=self._threshold, image_key=image_key
            )
            if retained is None:
                session.state = PipelineState.REJECTED
                result.faces_rejected += 1
            else:
                session.state = PipelineState.ADMITTED
                result.faces_admitted += 1

        session.processed_images += 1
        if result.faces_admitted > 0 or not self._only_new_faces:
            session.pending_images += 1

        logger.info(
            "Processed image",
            session_id=session.session_id,
            image_key=image_key,
            faces_admitted=result.faces_admitted,
            faces_rejected=result.faces_rejected,
            unique_faces=len(session.store),
        )

        if session.pending_images >= self._every_n:
            result.clustering = await self.refresh_clusters(session)

        return result

    async def _embed_all(
        self,
        session: GroupingSession,
        image_key: str,
        face_images: List[bytes],
        result: ImageProcessingResult,
    ) -> List[np.ndarray]:
        # One failing face discards the whole image
        session.state = PipelineState.EMBEDDING
        embeddings = []
        try:
            for face_image in face_images:
                if self._embed_timeout is not None:
                    embedding = await asyncio.wait_for(
                        self._embedder.embed(face_image), timeout=self._embed_timeout
                    )
                else:
                    embedding = await self._embedder.embed(face_image)
                embeddings.append(session.store.validate(embedding))
        except asyncio.TimeoutError:
            self._absorb_model_failure(session, image_key, result, "Embedding timed out")
            return []
        except (ModelError, InvalidEmbeddingError) as e:
            self._absorb_model_failure(session, image_key, result, str(e))
            return []
        return embeddings

    def _absorb_model_failure(
        self,
        session: GroupingSession,
        image_key: str,
        result: ImageProcessingResult,
        error: str,
    ) -> None:
        logger.warning("Embedding failed, treating image as faceless", image_key=image_key, error=error)
        session.failed_images.add(image_key)
        result.error = error

    async def _already_processed(self, image_key: str) -> bool:
        if self._image_registry is None:
            return False
        try:
            return await self._image_registry.get_status(image_key) is not None
        except StorageError as e:
            logger.warning("Image registry lookup failed", image_key=image_key, error=str(e))
            return False

    async def _mark_processed(self, image_key: str, had_face: bool) -> None:
        if self._image_registry is None:
            return
        try:
            await self._image_registry.mark_processed(image_key, had_face)
        except StorageError as e:
            logger.error("Failed to record processed image", image_key=image_key, error=str(e))
