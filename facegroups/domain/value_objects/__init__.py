"""Value objects package."""
from .recognition import DetectionResult, ImageProcessingResult, PersistResult, PipelineState

__all__ = ["DetectionResult", "ImageProcessingResult", "PersistResult", "PipelineState"]
