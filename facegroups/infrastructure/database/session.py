"""Database session management."""
from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine
)

from facegroups.core.config import settings
from facegroups.core.logging import get_logger
from facegroups.infrastructure.database.models import Base

logger = get_logger(__name__)


class Database:
    """Explicitly constructed database handle.

    Owns the async engine and the session factory. Whoever creates it is
    responsible for calling :meth:`dispose`.

    Example:
        ```python
        database = Database("sqlite+aiosqlite:///./facegroups.db")
        await database.create_all()
        async with database.session() as session:
            await session.execute(query)
            await session.commit()
        await database.dispose()
        ```
    """

    def __init__(self, url: Optional[str] = None, echo: Optional[bool] = None) -> None:
        """Create the engine and session factory.

        Args:
            url: Async SQLAlchemy URL (defaults to ``settings.DATABASE_URL``)
            echo: Echo SQL statements (defaults to ``settings.DATABASE_ECHO``)
        """
        self.url = url or settings.DATABASE_URL
        self.engine: AsyncEngine = create_async_engine(
            self.url,
            echo=settings.DATABASE_ECHO if echo is None else echo,
        )
        self._session_factory = async_sessionmaker(
            self.engine,
            class_=AsyncSession,
            expire_on_commit=False,
            autoflush=False
        )

    async def create_all(self) -> None:
        """Create missing tables."""
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        logger.debug("Database schema ready", url=self.engine.url.render_as_string(hide_password=True))

    async def dispose(self) -> None:
        """Close all pooled connections."""
        await self.engine.dispose()

    @asynccontextmanager
    async def session(self) -> AsyncGenerator[AsyncSession, None]:
        """Get database session.

        Yields:
            AsyncSession: Database session
        """
        session = self._session_factory()
        logger.debug("Creating new database session")
        try:
            yield session
        except Exception as e:
            logger.error(
                "Database session error",
                error=str(e),
                exc_info=True
            )
            await session.rollback()
            raise
        finally:
            logger.debug("Closing database session")
            await session.close()
