"""
Database connection management for ADL contributions
PostgreSQL through SQLAlchemy's asyncio engine (asyncpg driver)
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional

from sqlalchemy import text
from sqlalchemy.exc import DBAPIError, InterfaceError, OperationalError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from adl.core.config import settings
from .models import Base

logger = logging.getLogger(__name__)

# Errors that mean the database is unreachable rather than the query is wrong
CONNECTION_ERRORS = (
    ConnectionError,
    TimeoutError,
    asyncio.TimeoutError,
    OSError,
)

CONNECTION_KEYWORDS = (
    "connection refused",
    "connection reset",
    "connection closed",
    "connect call failed",
    "server closed the connection",
    "could not connect",
    "timeout",
    "timed out",
    "too many connections",
)


def is_connection_error(error: BaseException) -> bool:
    """Check if an exception indicates the database cannot be reached."""
    if isinstance(error, CONNECTION_ERRORS):
        return True
    if isinstance(error, (DBAPIError, OperationalError, InterfaceError)):
        if getattr(error, "connection_invalidated", False):
            return True
        message = str(error).lower()
        return any(keyword in message for keyword in CONNECTION_KEYWORDS)
    return False


def to_async_url(url: str) -> str:
    """Point a plain postgres URL at the asyncpg driver."""
    if url.startswith("postgres://"):
        url = "postgresql://" + url[len("postgres://"):]
    if url.startswith("postgresql://"):
        url = "postgresql+asyncpg://" + url[len("postgresql://"):]
    return url


class DatabaseConnection:
    """
    Async database connection manager with connection pooling.
    """

    def __init__(
        self,
        database_url: Optional[str] = None,
        pool_size: Optional[int] = None,
        max_overflow: int = 0,
        query_timeout_ms: Optional[int] = None,
    ):
        """
        Initialize database connection.

        Args:
            database_url: PostgreSQL connection URL
            pool_size: Connection pool size
            max_overflow: Max connections beyond pool_size
            query_timeout_ms: Per-statement timeout
        """
        self.database_url = to_async_url(database_url or settings.database_url or "")
        if not self.database_url:
            raise ValueError("DATABASE_URL is not configured")

        self.query_timeout_ms = query_timeout_ms or settings.postgres_query_timeout_ms

        self.engine = create_async_engine(
            self.database_url,
            pool_size=pool_size or settings.postgres_pool_max,
            max_overflow=max_overflow,
            pool_pre_ping=True,  # Verify connections before use
            pool_timeout=self.query_timeout_ms / 1000,
            connect_args={
                "command_timeout": self.query_timeout_ms / 1000,
                "server_settings": {"application_name": "adl_contributions", "timezone": "UTC"},
            },
            echo=settings.debug,
        )

        self.SessionLocal = async_sessionmaker(
            self.engine,
            expire_on_commit=False,
            autoflush=False,
        )

        logger.info(f"Database connection initialized: {self._mask_url(self.database_url)}")

    def _mask_url(self, url: str) -> str:
        """Mask password in connection URL for logging."""
        if "@" in url and ":" in url:
            parts = url.split("@")
            credentials = parts[0].split(":")
            if len(credentials) >= 3:
                credentials[-1] = "****"
            return ":".join(credentials) + "@" + parts[1]
        return url

    async def create_tables(self) -> None:
        """Create all database tables."""
        try:
            async with self.engine.begin() as conn:
                await conn.run_sync(Base.metadata.create_all)
            logger.info("Database tables created successfully")
        except SQLAlchemyError as e:
            logger.error(f"Failed to create tables: {e}")
            raise

    async def check_connection(self) -> bool:
        """
        Check if database connection is healthy.

        Returns:
            True if connection is healthy
        """
        try:
            async with self.engine.connect() as conn:
                await conn.execute(text("SELECT 1"))
            return True
        except (SQLAlchemyError, OSError) as e:
            logger.error(f"Database connection check failed: {e}")
            return False

    @asynccontextmanager
    async def get_session(self) -> AsyncGenerator[AsyncSession, None]:
        """
        Context manager for database sessions.

        Yields:
            SQLAlchemy async session
        """
        session = self.SessionLocal()
        try:
            yield session
            await session.commit()
        except SQLAlchemyError as e:
            await session.rollback()
            logger.error(f"Database session error: {e}")
            raise
        finally:
            await session.close()

    async def close(self) -> None:
        """Dispose the engine and its pool."""
        await self.engine.dispose()
        logger.info("Database connection closed")
