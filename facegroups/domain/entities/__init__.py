"""Domain entities package."""
from .face import BoundingBox, DetectedFace, PersistedFaceRecord, RetainedFace

__all__ = ["BoundingBox", "DetectedFace", "PersistedFaceRecord", "RetainedFace"]
