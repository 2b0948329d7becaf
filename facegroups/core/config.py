"""Configuration settings for the face grouping pipeline."""
from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings.

    These settings are loaded from environment variables with the following precedence:
    1. Environment variables
    2. .env file
    3. Default values

    Attributes:
        DATABASE_URL: Async SQLAlchemy URL of the database holding persisted clusters
        SIMILARITY_THRESHOLD: Cosine similarity above which a face is a duplicate
        NUM_CLUSTERS: Requested number of k-means clusters (bounded by retained faces)
        CLUSTER_EVERY_N_IMAGES: How many counted images trigger a clustering run
    """
    model_config = SettingsConfigDict(
        case_sensitive=True,
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        env_prefix="",  # No prefix for environment variables
        env_nested_delimiter="__"  # Use double underscore for nested settings
    )

    # Core Settings
    PROJECT_NAME: str = "Face Grouping Pipeline"
    VERSION: str = "0.1.0"
    ENVIRONMENT: str = "development"

    # Database Settings
    DATABASE_URL: str = "sqlite+aiosqlite:///./facegroups.db"
    DATABASE_ECHO: bool = False

    # Face Detection Settings
    MAX_FACES_PER_IMAGE: int = 20
    MIN_FACE_CONFIDENCE: float = 0.5
    MODEL_CACHE_DIR: str = ".model_cache"
    MAX_IMAGE_PIXELS: int = 1920 * 1080  # ~2MP (Full HD)
    MODEL_PATH: str = "buffalo_l"
    FACE_IMAGE_SIZE: int = 112  # Side of the aligned face crop (ArcFace input)
    EMBED_TIMEOUT_SECONDS: Optional[float] = None  # Per-face bound on embed()

    # Embedding Settings
    EMBEDDING_DIM: int = 512  # buffalo_l recognition output

    # Deduplication Settings
    SIMILARITY_THRESHOLD: float = 0.6

    # Clustering Settings
    NUM_CLUSTERS: int = 5
    MAX_ITERATIONS: int = 100
    CLUSTER_SEED: Optional[int] = None
    CLUSTER_EVERY_N_IMAGES: int = 1
    CLUSTER_ONLY_ON_NEW_FACES: bool = True

    # Optional settings with defaults
    LOG_LEVEL: str = "INFO"
    DEBUG: bool = False

settings = Settings()
