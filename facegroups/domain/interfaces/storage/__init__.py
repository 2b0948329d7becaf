"""Storage interfaces."""
from .cluster_store import ClusterStore, ImageRegistry

__all__ = ["ClusterStore", "ImageRegistry"]
