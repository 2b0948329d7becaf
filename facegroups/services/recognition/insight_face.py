"""
InsightFace-based face detector and embedder.

This module provides the concrete detector and embedding model used by the
grouping pipeline. Detection aligns every face on its five keypoints and
encodes the aligned crop as PNG; embedding runs the model pack's recognition
network on such a crop.

Example:
    ```python
    service = InsightFaceRecognitionService()

    with open("image.jpg", "rb") as f:
        result = await service.detect_faces(f.read(), max_faces=5)
    embedding = await service.embed(result.faces[0].face_image)
    ```

Note:
    This implementation uses CPU inference by default. For GPU support,
    modify the providers list in __init__ to include 'CUDAExecutionProvider'.
"""
import math
from typing import List, Optional

import cv2
import numpy as np
from insightface.app import FaceAnalysis
from insightface.app.common import Face as InsightFace
from insightface.utils import face_align

from facegroups.core.config import settings
from facegroups.core.exceptions import DetectorError, InvalidImageError, ModelError, ModelLoadError
from facegroups.core.logging import get_logger
from facegroups.core.utils.image import bytes_to_numpy_array, crop_and_resize, numpy_array_to_png_bytes
from facegroups.domain.entities.face import BoundingBox, DetectedFace
from facegroups.domain.interfaces.recognition.face_recognition import FaceDetector, FaceEmbedder
from facegroups.domain.value_objects.recognition import DetectionResult

logger = get_logger(__name__)

class InsightFaceRecognitionService(FaceDetector, FaceEmbedder):
    """
    InsightFace-based detector and embedding model.

    Attributes:
        model: InsightFace model pack used for detection and recognition
        face_size: Side length of the stored face crops (a multiple of 112
            or 128 for keypoint alignment)
        min_confidence: Detections scoring below this are dropped
    """

    def __init__(
        self,
        model_name: Optional[str] = None,
        face_size: Optional[int] = None,
        min_confidence: Optional[float] = None,
    ) -> None:
        """Load the InsightFace model pack.

        Raises:
            ModelLoadError: If the model pack cannot be prepared
        """
        self.face_size = face_size or settings.FACE_IMAGE_SIZE
        if self.face_size % 112 != 0 and self.face_size % 128 != 0:
            raise ValueError("face_size must be a multiple of 112 or 128")
        self.min_confidence = settings.MIN_FACE_CONFIDENCE if min_confidence is None else min_confidence
        try:
            self.model = FaceAnalysis(
                name=model_name or settings.MODEL_PATH,
                root=settings.MODEL_CACHE_DIR,
                allowed_modules=["detection", "recognition"],
                providers=['CPUExecutionProvider']
            )
            # Detection size affects accuracy significantly
            self.model.prepare(ctx_id=0, det_size=(640, 640))
        except Exception as e:
            logger.error("Failed to load InsightFace model", error=str(e), exc_info=True)
            raise ModelLoadError(f"Failed to load InsightFace model: {str(e)}")

        if "recognition" not in self.model.models:
            raise ModelLoadError("Model pack has no recognition model")

    def _load_and_validate_image(self, image_bytes: bytes) -> np.ndarray:
        """Decode the image and downscale it if it exceeds the pixel budget."""
        try:
            img = bytes_to_numpy_array(image_bytes)
        except ValueError as e:
            raise InvalidImageError(f"Invalid image format: {str(e)}")

        height, width = img.shape[:2]
        pixels = width * height

        if pixels > settings.MAX_IMAGE_PIXELS:
            scale = math.sqrt(settings.MAX_IMAGE_PIXELS / pixels)
            new_width = int(width * scale)
            new_height = int(height * scale)

            logger.info(
                "Resizing large image",
                original_size=(width, height),
                new_size=(new_width, new_height)
            )

            img = cv2.resize(
                img,
                (new_width, new_height),
                interpolation=cv2.INTER_AREA
            )

        return img

    def _convert_to_face(self, image: np.ndarray, face_data: InsightFace) -> DetectedFace:
        """
        Convert an InsightFace detection into a DetectedFace with its crop.

        Args:
            image: Image the face was detected in
            face_data: Face detection result from InsightFace

        Returns:
            DetectedFace with relative (0-1) coordinates and a PNG crop
        """
        height, width = image.shape[:2]
        bbox = face_data.bbox.astype(int)

        bounding_box = BoundingBox(
            top=float(bbox[1] / height),
            left=float(bbox[0] / width),
            width=float((bbox[2] - bbox[0]) / width),
            height=float((bbox[3] - bbox[1]) / height)
        )

        return DetectedFace(
            bounding_box=bounding_box,
            confidence=float(face_data.det_score),
            face_image=numpy_array_to_png_bytes(self._crop_face(image, face_data))
        )

    def _crop_face(self, image: np.ndarray, face_data: InsightFace) -> np.ndarray:
        """Warp the face onto the ArcFace template using its five keypoints.

        Detections without keypoints fall back to a plain bounding box crop.
        """
        kps = getattr(face_data, "kps", None)
        if kps is None:
            return crop_and_resize(image, face_data.bbox, self.face_size)
        return face_align.norm_crop(image, landmark=kps, image_size=self.face_size)

    def _run_detector(
        self,
        image: np.ndarray,
        max_faces: Optional[int] = None
    ) -> List[InsightFace]:
        try:
            faces = self.model.get(image, max_num=0 if max_faces is None else max_faces)
        except Exception as e:
            logger.error(
                "Face detection failed",
                error=str(e),
                image_shape=image.shape,
                exc_info=True
            )
            raise DetectorError(f"Face detection failed: {str(e)}")

        kept = [face for face in faces if float(face.det_score) >= self.min_confidence]
        logger.debug(
            "Face detection results",
            faces_found=len(faces),
            faces_kept=len(kept),
            max_faces=max_faces
        )
        return kept

    async def detect_faces(
        self,
        image_bytes: bytes,
        max_faces: Optional[int] = None,
    ) -> DetectionResult:
        """Detect faces and crop each one out of the image."""
        img = self._load_and_validate_image(image_bytes)
        faces = self._run_detector(img, max_faces)

        detected = []
        for face in faces:
            try:
                detected.append(self._convert_to_face(img, face))
            except ValueError as e:
                logger.debug("Dropping unusable face crop", error=str(e))
        return DetectionResult(faces=detected)

    async def embed(self, face_image: bytes) -> np.ndarray:
        """Compute the recognition embedding of a face crop."""
        try:
            crop = bytes_to_numpy_array(face_image)
        except ValueError as e:
            raise ModelError(f"Face crop cannot be decoded: {str(e)}")

        try:
            # Crops are already aligned to the ArcFace template
            feature = self.model.models["recognition"].get_feat(crop)
        except Exception as e:
            logger.error("Embedding extraction failed", error=str(e), exc_info=True)
            raise ModelError(f"Embedding extraction failed: {str(e)}")

        return np.asarray(feature, dtype=np.float32).reshape(-1)
