"""Recognition interfaces."""
from .face_recognition import FaceDetector, FaceEmbedder

__all__ = ["FaceDetector", "FaceEmbedder"]
