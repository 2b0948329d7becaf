"""Core face domain entities."""
from datetime import datetime
from typing import Optional, Union

import numpy as np
from pydantic import BaseModel, ConfigDict, Field, field_validator


class BoundingBox(BaseModel):
    """Face bounding box coordinates."""
    left: float = Field(..., description="Left coordinate of the bounding box")
    top: float = Field(..., description="Top coordinate of the bounding box")
    width: float = Field(..., description="Width of the bounding box")
    height: float = Field(..., description="Height of the bounding box")


class DetectedFace(BaseModel):
    """Face found by the detector, cropped out of its source image."""
    confidence: float = Field(..., description="Confidence score of the detection")
    bounding_box: BoundingBox = Field(..., description="Bounding box coordinates (0-1)")
    face_image: bytes = Field(..., description="PNG-encoded face crop")


class RetainedFace(BaseModel):
    """An admitted embedding and the face image that represents it.

    Instances are immutable: the embedding is copied and marked read-only.
    """
    embedding: np.ndarray = Field(..., description="Face embedding vector")
    face_image: bytes = Field(..., description="Representative face image")
    image_key: Optional[str] = Field(None, description="Identifier of the source image")

    model_config = ConfigDict(arbitrary_types_allowed=True, frozen=True)

    @field_validator('embedding', mode='before')
    @classmethod
    def validate_embedding(cls, v: Union[np.ndarray, list]) -> np.ndarray:
        """Convert the embedding to a read-only 1-D float64 array."""
        arr = np.array(v, dtype=np.float64).reshape(-1)
        arr.setflags(write=False)
        return arr


class PersistedFaceRecord(BaseModel):
    """Representative face stored for a cluster id."""
    cluster_id: int = Field(..., description="Run-scoped cluster identifier")
    face_image: bytes = Field(..., description="Representative face image")
    created_at: Optional[datetime] = Field(None, description="When the record was inserted")
