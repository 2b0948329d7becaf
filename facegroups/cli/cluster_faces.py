"""CLI tool that groups the faces of a set of images into persons.

Usage:
    python -m facegroups.cli.cluster_faces photos/a.jpg photos/b.jpg --db sqlite+aiosqlite:///./faces.db
"""
import argparse
import asyncio
import sys
from pathlib import Path
from typing import List, Optional

from facegroups.core.config import settings
from facegroups.core.container import ServiceContainer
from facegroups.core.logging import get_logger, setup_logging

logger = get_logger(__name__)


async def cluster_images(
    image_paths: List[str],
    database_url: Optional[str] = None,
    threshold: Optional[float] = None,
    num_clusters: Optional[int] = None,
    every: Optional[int] = None,
    seed: Optional[int] = None,
    reset: bool = False,
) -> int:
    """
    Run one grouping session over the given images.

    Args:
        image_paths: Image files to process, in order
        database_url: Database receiving the persisted clusters
        threshold: Similarity threshold for duplicate faces
        num_clusters: Requested number of clusters
        every: Counted images between clustering runs
        seed: Seed for reproducible clustering
        reset: Delete previously persisted clusters first

    Returns:
        Number of persisted persons
    """
    container = ServiceContainer()
    await container.initialize(
        database_url=database_url,
        similarity_threshold=threshold,
        num_clusters=num_clusters,
        cluster_every_n_images=every,
        seed=seed,
    )
    try:
        service = container.require_grouping_service()
        if reset:
            await service.clear_persons()

        session = service.new_session()
        for image_path in image_paths:
            image_file = Path(image_path)
            if not image_file.is_file():
                logger.error("Image file not found", path=image_path)
                continue

            with open(image_file, "rb") as f:
                image_bytes = f.read()

            result = await service.process_image(session, str(image_file.resolve()), image_bytes)
            logger.info(
                "Image processed",
                path=image_path,
                skipped=result.already_processed,
                detected=result.faces_detected,
                admitted=result.faces_admitted,
                rejected=result.faces_rejected,
                error=result.error,
            )

        # Make sure the final state of the session is persisted
        if session.pending_images > 0:
            await service.refresh_clusters(session)

        persons = await service.list_persons()
        for person in persons:
            logger.info(
                "Person",
                cluster_id=person.cluster_id,
                image_bytes=len(person.face_image),
                created_at=str(person.created_at)
            )
        logger.info("Grouping completed", unique_faces=len(session.store), persons=len(persons))
        return len(persons)
    finally:
        await container.cleanup()


def main(argv: Optional[List[str]] = None) -> None:
    """CLI entry point."""
    parser = argparse.ArgumentParser(description="Group the faces of a set of images into persons")
    parser.add_argument("images", nargs="+", help="Image files to process")
    parser.add_argument("--db", dest="database_url", default=settings.DATABASE_URL,
                        help="Async SQLAlchemy database URL")
    parser.add_argument("--threshold", type=float, default=None,
                        help="Cosine similarity above which a face is a duplicate")
    parser.add_argument("--clusters", dest="num_clusters", type=int, default=None,
                        help="Requested number of clusters")
    parser.add_argument("--every", type=int, default=None,
                        help="Images with new faces between clustering runs")
    parser.add_argument("--seed", type=int, default=None,
                        help="Seed for reproducible clustering")
    parser.add_argument("--reset", action="store_true",
                        help="Delete previously persisted clusters first")
    parser.add_argument("--log-level", default=None,
                        help="Log level (defaults to LOG_LEVEL)")
    args = parser.parse_args(argv)

    setup_logging(level=args.log_level)
    try:
        asyncio.run(cluster_images(
            args.images,
            database_url=args.database_url,
            threshold=args.threshold,
            num_clusters=args.num_clusters,
            every=args.every,
            seed=args.seed,
            reset=args.reset,
        ))
    except Exception as e:
        logger.error("Face grouping failed", error=str(e), exc_info=True)
        sys.exit(1)


if __name__ == "__main__":
    main()
