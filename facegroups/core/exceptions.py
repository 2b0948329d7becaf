"""Custom exceptions for the face grouping pipeline."""
from typing import Optional


class FaceGroupingError(Exception):
    """Base exception for face grouping operations."""

    def __init__(self, message: str, details: Optional[dict] = None):
        """
        Initialize face grouping error.

        Args:
            message: Error description
            details: Additional error context
        """
        super().__init__(message)
        self.details = details or {}


class InvalidImageError(FaceGroupingError):
    """Raised when the provided image is invalid or cannot be processed."""
    pass


class DetectorError(FaceGroupingError):
    """Raised when the face detector fails on an image."""
    pass


class ModelError(FaceGroupingError):
    """Raised when the embedding model fails to produce an embedding."""
    pass


class ModelLoadError(ModelError):
    """Raised when the face recognition model fails to load."""
    pass


class InvalidEmbeddingError(FaceGroupingError):
    """Raised when an embedding has the wrong shape or non-finite values."""
    pass


class StorageError(FaceGroupingError):
    """Raised when the persistence collaborator fails to read or write."""
    pass


class ServiceNotInitializedError(FaceGroupingError):
    """Raised when a service is requested before the container is initialized."""
    pass
