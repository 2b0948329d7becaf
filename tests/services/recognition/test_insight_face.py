"""Tests for InsightFace recognition service."""
from pathlib import Path
from types import SimpleNamespace

import cv2
import numpy as np
import pytest
from insightface.utils import face_align

from facegroups.core.exceptions import DetectorError, InvalidImageError, ModelError
from facegroups.core.utils.image import bytes_to_numpy_array, numpy_array_to_png_bytes
from facegroups.services.face_grouping import FaceGroupingService
from facegroups.services.recognition.insight_face import InsightFaceRecognitionService

# Test fixtures directory
FIXTURES_DIR = Path(__file__).parent.parent.parent / "fixtures"

# Five keypoints (eyes, nose, mouth corners) of a face inside a 200x100 image
KEYPOINTS = np.array(
    [[80.0, 35.0], [120.0, 35.0], [100.0, 55.0], [85.0, 75.0], [115.0, 75.0]],
    dtype=np.float32,
)


class StubRecognition:
    def __init__(self, fail: bool = False) -> None:
        self.fail = fail
        self.crops = []

    def get_feat(self, crop):
        if self.fail:
            raise RuntimeError("onnx session crashed")
        self.crops.append(crop)
        return np.arange(8, dtype=np.float32).reshape(1, 8)


class StubModel:
    """Mimics the parts of FaceAnalysis the service uses."""

    def __init__(self, faces=(), fail: bool = False, recognition=None) -> None:
        self.faces = list(faces)
        self.fail = fail
        self.max_num = None
        self.models = {"recognition": recognition or StubRecognition()}

    def get(self, image, max_num=0):
        self.max_num = max_num
        if self.fail:
            raise RuntimeError("detector crashed")
        return self.faces


def _service(model: StubModel) -> InsightFaceRecognitionService:
    # Bypass __init__ so no model pack is downloaded
    service = InsightFaceRecognitionService.__new__(InsightFaceRecognitionService)
    service.model = model
    service.face_size = 112
    service.min_confidence = 0.5
    return service


def _photo(width: int = 200, height: int = 100) -> bytes:
    image = np.full((height, width, 3), 127, dtype=np.uint8)
    ok, buffer = cv2.imencode(".jpg", image)
    assert ok
    return buffer.tobytes()


def _detection(box, score, kps=None):
    return SimpleNamespace(bbox=np.array(box, dtype=np.float32), det_score=score, kps=kps)


async def test_detected_faces_carry_png_crops_and_relative_boxes():
    model = StubModel(faces=[_detection([20, 10, 60, 50], 0.9)])
    result = await _service(model).detect_faces(_photo(), max_faces=3)

    assert model.max_num == 3
    assert len(result.faces) == 1
    face = result.faces[0]
    assert face.confidence == pytest.approx(0.9)
    assert face.bounding_box.left == pytest.approx(0.1)
    assert face.bounding_box.top == pytest.approx(0.1)
    assert face.bounding_box.width == pytest.approx(0.2)
    assert face.bounding_box.height == pytest.approx(0.4)
    assert face.face_image.startswith(b"\x89PNG")
    assert bytes_to_numpy_array(face.face_image).shape == (112, 112, 3)


async def test_keypoint_aligned_crop_is_what_gets_embedded():
    source = np.random.default_rng(0).integers(0, 256, size=(100, 200, 3), dtype=np.uint8)
    recognition = StubRecognition()
    model = StubModel(
        faces=[_detection([70, 20, 130, 90], 0.95, kps=KEYPOINTS)],
        recognition=recognition,
    )
    service = _service(model)
    expected = face_align.norm_crop(source, landmark=KEYPOINTS, image_size=112)

    result = await service.detect_faces(numpy_array_to_png_bytes(source))
    await service.embed(result.faces[0].face_image)

    assert np.array_equal(bytes_to_numpy_array(result.faces[0].face_image), expected)
    assert len(recognition.crops) == 1
    assert np.array_equal(recognition.crops[0], expected)


async def test_low_confidence_and_off_image_detections_are_dropped():
    model = StubModel(faces=[
        _detection([20, 10, 60, 50], 0.2),
        _detection([500, 500, 600, 600], 0.95),
        _detection([0, 0, 40, 40], 0.7),
    ])
    result = await _service(model).detect_faces(_photo())

    assert model.max_num == 0
    assert [face.confidence for face in result.faces] == [pytest.approx(0.7)]


@pytest.mark.parametrize("image_bytes", [b"", b"not an image"])
async def test_undecodable_image_is_rejected(image_bytes):
    with pytest.raises(InvalidImageError):
        await _service(StubModel()).detect_faces(image_bytes)


async def test_detector_crash_becomes_detector_error():
    with pytest.raises(DetectorError):
        await _service(StubModel(fail=True)).detect_faces(_photo())


async def test_embed_returns_flat_float_vector():
    recognition = StubRecognition()
    service = _service(StubModel(recognition=recognition))
    crop = numpy_array_to_png_bytes(np.zeros((112, 112, 3), dtype=np.uint8))

    embedding = await service.embed(crop)

    assert embedding.shape == (8,)
    assert embedding.dtype == np.float32
    assert [c.shape for c in recognition.crops] == [(112, 112, 3)]


@pytest.mark.parametrize("face_image", [b"", b"garbage"])
async def test_undecodable_crops_become_model_errors(face_image):
    with pytest.raises(ModelError):
        await _service(StubModel()).embed(face_image)


async def test_recognition_crash_becomes_model_error():
    crop = numpy_array_to_png_bytes(np.zeros((112, 112, 3), dtype=np.uint8))
    with pytest.raises(ModelError):
        await _service(StubModel(recognition=StubRecognition(fail=True))).embed(crop)


def test_face_size_must_suit_alignment():
    with pytest.raises(ValueError):
        InsightFaceRecognitionService(face_size=160)


async def test_empty_photo_does_not_stop_the_session(cluster_store):
    service = _service(StubModel(faces=[_detection([20, 10, 60, 50], 0.9)]))
    grouping = FaceGroupingService(
        detector=service,
        embedder=service,
        cluster_store=cluster_store,
        embedding_dim=8,
    )
    session = grouping.new_session()

    empty = await grouping.process_image(session, "empty.jpg", b"")
    photo = await grouping.process_image(session, "photo.jpg", _photo())

    assert empty.error is not None
    assert empty.faces_admitted == 0
    assert "empty.jpg" in session.failed_images
    assert photo.error is None
    assert photo.faces_admitted == 1


@pytest.fixture
def face_service():
    """Provide InsightFace service instance backed by the real model pack."""
    image = FIXTURES_DIR / "images/single_face.jpg"
    if not image.exists():
        pytest.skip("face fixture images are not available")
    return InsightFaceRecognitionService()


class TestInsightFaceRecognition:
    """Checks against the real model, run when fixture images are present."""

    async def test_detect_and_embed_single_face(self, face_service):
        image_bytes = (FIXTURES_DIR / "images/single_face.jpg").read_bytes()
        result = await face_service.detect_faces(image_bytes)

        assert len(result.faces) == 1
        embedding = await face_service.embed(result.faces[0].face_image)
        assert embedding.ndim == 1
        assert np.linalg.norm(embedding) > 0

    async def test_no_face_detected(self, face_service):
        path = FIXTURES_DIR / "images/no_faces.jpg"
        if not path.exists():
            pytest.skip("no_faces.jpg fixture is not available")
        result = await face_service.detect_faces(path.read_bytes())
        assert len(result.faces) == 0
