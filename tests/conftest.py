"""Shared fixtures: fake detector/embedder and real storage backends."""
import asyncio
from datetime import datetime, timezone
from typing import Dict, List, Optional, Sequence

import numpy as np
import pytest

from facegroups.core.exceptions import DetectorError, ModelError, StorageError
from facegroups.domain.entities.face import BoundingBox, DetectedFace, PersistedFaceRecord
from facegroups.domain.interfaces.recognition.face_recognition import FaceDetector, FaceEmbedder
from facegroups.domain.interfaces.storage.cluster_store import ClusterStore, ImageRegistry
from facegroups.domain.value_objects.recognition import DetectionResult
from facegroups.infrastructure.database.session import Database
from facegroups.services.clustering import KMeansClusterer
from facegroups.services.face_grouping import FaceGroupingService


class FakeDetector(FaceDetector):
    """Returns preconfigured face crops per image; ``b"broken"`` fails."""

    def __init__(self, faces_by_image: Dict[bytes, List[bytes]]) -> None:
        self.faces_by_image = faces_by_image
        self.calls = 0

    async def detect_faces(self, image_bytes: bytes, max_faces: Optional[int] = None) -> DetectionResult:
        self.calls += 1
        if image_bytes == b"broken":
            raise DetectorError("detector crashed")
        faces = [
            DetectedFace(
                confidence=0.99,
                bounding_box=BoundingBox(left=0.1, top=0.1, width=0.2, height=0.2),
                face_image=face_image,
            )
            for face_image in self.faces_by_image.get(image_bytes, [])
        ]
        return DetectionResult(faces=faces)


class FakeEmbedder(FaceEmbedder):
    """Looks embeddings up by face crop; unknown crops raise ModelError."""

    def __init__(self, embeddings: Dict[bytes, Sequence[float]], delay: float = 0.0) -> None:
        self.embeddings = embeddings
        self.delay = delay

    async def embed(self, face_image: bytes) -> np.ndarray:
        await asyncio.sleep(self.delay)
        if face_image not in self.embeddings:
            raise ModelError("model could not embed face")
        return np.array(self.embeddings[face_image], dtype=np.float32)


class InMemoryClusterStore(ClusterStore):
    """Dict-backed cluster store that records inserts and can fail on chosen ids."""

    def __init__(self, failing_ids: Sequence[int] = ()) -> None:
        self.records: Dict[int, PersistedFaceRecord] = {}
        self.insert_calls: List[int] = []
        self.failing_ids = set(failing_ids)

    async def exists(self, cluster_id: int) -> bool:
        return cluster_id in self.records

    async def insert(self, cluster_id: int, face_image: bytes) -> PersistedFaceRecord:
        self.insert_calls.append(cluster_id)
        if cluster_id in self.failing_ids:
            raise StorageError("disk full", details={"cluster_id": cluster_id})
        record = PersistedFaceRecord(
            cluster_id=cluster_id,
            face_image=face_image,
            created_at=datetime.now(timezone.utc),
        )
        self.records[cluster_id] = record
        return record

    async def list_all(self) -> List[PersistedFaceRecord]:
        return [self.records[key] for key in sorted(self.records)]

    async def clear(self) -> int:
        count = len(self.records)
        self.records.clear()
        return count


class InMemoryImageRegistry(ImageRegistry):
    def __init__(self) -> None:
        self.images: Dict[str, bool] = {}

    async def get_status(self, image_key: str) -> Optional[bool]:
        return self.images.get(image_key)

    async def mark_processed(self, image_key: str, had_face: bool) -> None:
        self.images[image_key] = had_face


# Two people seen from slightly different angles, plus a third person
FACE_EMBEDDINGS = {
    b"alice-1": [1.0, 0.0],
    b"alice-2": [0.99, 0.1],
    b"bob-1": [-1.0, 0.0],
    b"bob-2": [-0.98, -0.05],
    b"carol-1": [0.0, 1.0],
}


@pytest.fixture
def cluster_store():
    """Provide an in-memory cluster store."""
    return InMemoryClusterStore()


@pytest.fixture
def image_registry():
    """Provide an in-memory image registry."""
    return InMemoryImageRegistry()


@pytest.fixture
def embedder():
    """Provide an embedder for the faces in FACE_EMBEDDINGS."""
    return FakeEmbedder(FACE_EMBEDDINGS)


@pytest.fixture
def detector():
    """Provide a detector over a small synthetic gallery."""
    return FakeDetector({
        b"img-alice": [b"alice-1"],
        b"img-alice-again": [b"alice-2"],
        b"img-bob": [b"bob-1", b"bob-2"],
        b"img-carol": [b"carol-1"],
        b"img-empty": [],
        b"img-unembeddable": [b"alice-1", b"mystery"],
    })


@pytest.fixture
def make_service(detector, embedder, cluster_store, image_registry):
    """Build a grouping service over the fakes, with per-test overrides."""
    def _make(**overrides) -> FaceGroupingService:
        options = dict(
            detector=detector,
            embedder=embedder,
            cluster_store=cluster_store,
            image_registry=image_registry,
            clusterer=KMeansClusterer(k=5, max_iterations=100, seed=42),
            similarity_threshold=0.8,
            cluster_every_n_images=1,
            cluster_only_on_new_faces=True,
            embedding_dim=2,
            embed_timeout=None,
        )
        options.update(overrides)
        return FaceGroupingService(**options)
    return _make


@pytest.fixture
async def database(tmp_path):
    """Provide a real SQLite database in a temporary directory."""
    db = Database(f"sqlite+aiosqlite:///{tmp_path / 'faces.db'}", echo=False)
    await db.create_all()
    yield db
    await db.dispose()


@pytest.fixture
def make_cluster_store():
    """Build in-memory cluster stores, optionally failing on some cluster ids."""
    return InMemoryClusterStore
