"""Face grouping value objects."""
from enum import Enum
from typing import Dict, List, Optional

from pydantic import BaseModel, Field

from facegroups.domain.entities.face import DetectedFace


class DetectionResult(BaseModel):
    """Result of face detection operation."""
    faces: List[DetectedFace] = Field(..., description="List of detected faces")


class PersistResult(BaseModel):
    """Outcome of writing one clustering run to storage."""
    inserted: List[int] = Field(default_factory=list, description="Cluster ids written")
    skipped: List[int] = Field(default_factory=list, description="Cluster ids already stored")
    failed: Dict[int, str] = Field(default_factory=dict, description="Cluster ids whose insert failed")


class ImageProcessingResult(BaseModel):
    """Outcome of feeding one image through the pipeline."""
    image_key: str = Field(..., description="Identifier of the processed image")
    already_processed: bool = Field(False, description="Image was skipped as seen before")
    faces_detected: int = Field(0, description="Faces reported by the detector")
    faces_admitted: int = Field(0, description="Faces admitted as new")
    faces_rejected: int = Field(0, description="Faces rejected as duplicates")
    error: Optional[str] = Field(None, description="Absorbed detector or model failure")
    clustering: Optional[PersistResult] = Field(None, description="Set when clustering was triggered")


class PipelineState(str, Enum):
    """States a grouping session moves through for each face."""
    IDLE = "idle"
    EMBEDDING = "embedding"
    ADMITTED = "admitted"
    REJECTED = "rejected"
    CLUSTERING = "clustering"
    PERSISTING = "persisting"
