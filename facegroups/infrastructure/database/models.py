"""SQLAlchemy models for the face grouping pipeline."""
from datetime import datetime, timezone

from sqlalchemy import Boolean, DateTime, Integer, LargeBinary, String
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Base(DeclarativeBase):
    """Base class for all models."""
    pass


class FaceCluster(Base):
    """Representative face persisted for a cluster id."""

    __tablename__ = "face_clusters"

    id: Mapped[int] = mapped_column(
        Integer,
        primary_key=True,
        autoincrement=True
    )
    cluster_id: Mapped[int] = mapped_column(
        Integer,
        unique=True,
        index=True,
        nullable=False,
        comment="Run-scoped cluster identifier"
    )
    face_image: Mapped[bytes] = mapped_column(
        LargeBinary,
        nullable=False,
        comment="PNG-encoded representative face"
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=_utcnow
    )


class DetectedImage(Base):
    """Image already run through detection, keyed by its external identifier."""

    __tablename__ = "detected_images"

    image_key: Mapped[str] = mapped_column(
        String(1024),
        primary_key=True,
        comment="External image identifier (path or URI)"
    )
    had_face: Mapped[bool] = mapped_column(
        Boolean,
        default=False,
        nullable=False
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=_utcnow
    )
