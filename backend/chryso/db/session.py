"""Database engine and session management.

The API and the retention worker share one engine per process. The
retention scheduler opens its own sessions from the session factory, one
per policy run.
"""

from typing import Any, AsyncGenerator

from sqlalchemy import text
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from chryso.config import settings
from chryso.core.logging import get_logger

logger = get_logger(__name__)


def create_database_engine(url: str | None = None, echo: bool | None = None) -> AsyncEngine:
    """Create an async engine for ``url`` (the configured database by default).

    Pool sizing applies to server databases; SQLite URLs keep the driver's
    default pool.
    """
    url = url or settings.async_database_url
    options: dict[str, Any] = {
        "echo": settings.debug if echo is None else echo,
        "pool_pre_ping": True,
    }
    if not url.startswith("sqlite"):
        options.update(
            pool_size=settings.db_pool_size,
            max_overflow=settings.db_max_overflow,
            pool_timeout=settings.db_pool_timeout,
            pool_recycle=settings.db_pool_recycle,
        )
    return create_async_engine(url, **options)


def create_session_factory(bind: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Session factory for request handlers and retention runs.

    Loaded objects stay readable after commit; a rollback still expires them.
    """
    return async_sessionmaker(
        bind,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


engine = create_database_engine()
AsyncSessionLocal = create_session_factory(engine)


async def get_async_session() -> AsyncGenerator[AsyncSession, None]:
    """Yield a session for one request."""
    async with AsyncSessionLocal() as session:
        yield session


async def init_db() -> None:
    """Check the database is reachable."""
    logger.info("Initializing database connection", url=settings.async_database_url.split("@")[-1])
    async with engine.begin() as conn:
        await conn.execute(text("SELECT 1"))
    logger.info("Database connection established")


async def close_db() -> None:
    """Dispose of the connection pool."""
    await engine.dispose()
    logger.info("Database connection pool closed")
