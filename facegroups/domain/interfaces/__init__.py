"""Service interfaces package."""
from .recognition import FaceDetector, FaceEmbedder
from .storage import ClusterStore, ImageRegistry

__all__ = ["FaceDetector", "FaceEmbedder", "ClusterStore", "ImageRegistry"]
