"""Service container for dependency injection."""
from typing import Optional

from facegroups.core.config import settings
from facegroups.core.exceptions import ServiceNotInitializedError
from facegroups.domain.interfaces.storage.cluster_store import ClusterStore, ImageRegistry
from facegroups.infrastructure.database.session import Database
from facegroups.infrastructure.database.stores import SQLAlchemyClusterStore, SQLAlchemyImageRegistry
from facegroups.services.clustering import KMeansClusterer
from facegroups.services.face_grouping import FaceGroupingService
from facegroups.services.recognition.insight_face import InsightFaceRecognitionService


class ServiceContainer:
    """Container for application services.

    This container owns the database handle and the recognition model, and
    wires them into the grouping service.

    Example:
        ```python
        container = ServiceContainer()
        await container.initialize()

        grouping = container.grouping_service
        session = grouping.new_session()
        ...
        await container.cleanup()
        ```
    """

    def __init__(self) -> None:
        """Initialize empty container."""
        self.database: Optional[Database] = None
        self.recognition_service: Optional[InsightFaceRecognitionService] = None
        self.cluster_store: Optional[ClusterStore] = None
        self.image_registry: Optional[ImageRegistry] = None
        self.grouping_service: Optional[FaceGroupingService] = None

    async def initialize(
        self,
        database_url: Optional[str] = None,
        similarity_threshold: Optional[float] = None,
        num_clusters: Optional[int] = None,
        cluster_every_n_images: Optional[int] = None,
        seed: Optional[int] = None,
    ) -> None:
        """Initialize all services in the correct order.

        Arguments left as None fall back to settings.
        """
        self.database = Database(database_url)
        await self.database.create_all()

        self.cluster_store = SQLAlchemyClusterStore(self.database)
        self.image_registry = SQLAlchemyImageRegistry(self.database)
        self.recognition_service = InsightFaceRecognitionService()
        self.grouping_service = FaceGroupingService(
            detector=self.recognition_service,
            embedder=self.recognition_service,
            cluster_store=self.cluster_store,
            image_registry=self.image_registry,
            clusterer=KMeansClusterer(
                k=num_clusters,
                seed=settings.CLUSTER_SEED if seed is None else seed,
            ),
            similarity_threshold=similarity_threshold,
            cluster_every_n_images=cluster_every_n_images,
            embedding_dim=settings.EMBEDDING_DIM,
        )

    def require_grouping_service(self) -> FaceGroupingService:
        """Return the grouping service or fail if the container is not initialized."""
        if self.grouping_service is None:
            raise ServiceNotInitializedError("Grouping service not initialized")
        return self.grouping_service

    async def cleanup(self) -> None:
        """Cleanup all services in reverse order of initialization."""
        self.grouping_service = None
        self.recognition_service = None
        self.cluster_store = None
        self.image_registry = None

        if self.database:
            await self.database.dispose()
            self.database = None
