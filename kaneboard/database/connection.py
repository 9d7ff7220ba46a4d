"""
Database connection and session management with connection pooling.

Provides async SQLAlchemy engine and session factory. One `session()`
block is one transaction: it commits on exit and rolls back on any error,
so multi-row changes (a status transition plus the timers it stops) either
land together or not at all.
"""

import logging
from typing import AsyncGenerator, Optional, Dict, Any
from contextlib import asynccontextmanager

from sqlalchemy import text
from sqlalchemy.exc import OperationalError
from sqlalchemy.ext.asyncio import (
    create_async_engine,
    AsyncSession,
    async_sessionmaker,
    AsyncEngine,
)
from sqlalchemy.pool import NullPool, AsyncAdaptedQueuePool

from config import settings
from .models import Base
from .exceptions import DatabaseConnectionError, DatabaseOperationError

logger = logging.getLogger(__name__)


def normalize_database_url(database_url: str) -> str:
    """Convert postgres:// URLs to the asyncpg driver form."""
    if database_url.startswith("postgres://"):
        return database_url.replace("postgres://", "postgresql+asyncpg://", 1)
    if database_url.startswith("postgresql://"):
        return database_url.replace("postgresql://", "postgresql+asyncpg://", 1)
    return database_url


class Database:
    """Database connection manager."""

    def __init__(self, database_url: Optional[str] = None):
        self.database_url = database_url
        self.engine: Optional[AsyncEngine] = None
        self.session_factory: Optional[async_sessionmaker[AsyncSession]] = None
        self._initialized = False

    async def initialize(self) -> bool:
        """Initialize database connection and create tables."""
        if self._initialized:
            return True

        database_url = self.database_url or settings.database_url
        if not database_url:
            logger.warning("DATABASE_URL not configured")
            return False

        try:
            database_url = normalize_database_url(database_url)
            is_sqlite = database_url.startswith("sqlite")

            engine_kwargs: Dict[str, Any] = {"echo": settings.database_echo}

            if settings.environment == "test" or is_sqlite:
                engine_kwargs["poolclass"] = NullPool
                logger.info("Using NullPool (test environment or SQLite)")
            else:
                engine_kwargs.update({
                    "poolclass": AsyncAdaptedQueuePool,
                    "pool_size": settings.db_pool_size,
                    "max_overflow": settings.db_max_overflow,
                    "pool_timeout": settings.db_pool_timeout,
                    "pool_recycle": settings.db_pool_recycle,
                    "pool_pre_ping": True,
                })
                logger.info(
                    f"Database pool config: size={settings.db_pool_size}, "
                    f"max_overflow={settings.db_max_overflow}, "
                    f"timeout={settings.db_pool_timeout}s"
                )

            if database_url.startswith("postgresql+asyncpg"):
                engine_kwargs["connect_args"] = {
                    "server_settings": {
                        "application_name": "kaneboard",
                        "jit": "off",
                    }
                }

            self.engine = create_async_engine(database_url, **engine_kwargs)

            self.session_factory = async_sessionmaker(
                bind=self.engine,
                class_=AsyncSession,
                expire_on_commit=False,
                autoflush=False,
            )

            async with self.engine.begin() as conn:
                await conn.run_sync(Base.metadata.create_all)

            self._initialized = True
            logger.info("Database initialized successfully")
            return True

        except Exception as e:
            logger.error(f"Database initialization failed: {e}")
            return False

    async def close(self):
        """Close database connection."""
        if self.engine:
            await self.engine.dispose()
            self._initialized = False
            logger.info("Database connection closed")

    @asynccontextmanager
    async def session(self) -> AsyncGenerator[AsyncSession, None]:
        """Get a transactional database session."""
        if not self._initialized:
            await self.initialize()

        if not self.session_factory:
            raise DatabaseConnectionError("Database not initialized")

        async with self.session_factory() as session:
            try:
                yield session
                await session.commit()
            except OperationalError as e:
                # Lock wait timeouts and deadlocks land here; the caller retries unchanged
                await session.rollback()
                logger.error(f"Database operational error: {e}")
                raise DatabaseOperationError(f"Database operation failed: {e}") from e
            except Exception:
                await session.rollback()
                raise

    async def health_check(self) -> dict:
        """Perform health check on database."""
        try:
            async with self.session() as session:
                result = await session.execute(text("SELECT 1"))
                result.scalar()

            return {
                "status": "healthy",
                "initialized": self._initialized,
            }
        except Exception as e:
            return {
                "status": "unhealthy",
                "error": str(e),
            }


# Singleton instance
_database: Optional[Database] = None


def get_database() -> Database:
    """Get the database singleton."""
    global _database
    if _database is None:
        _database = Database()
    return _database


def set_database(database: Optional[Database]) -> None:
    """Replace the database singleton (used by tests and alternate entry points)."""
    global _database
    _database = database


async def init_database() -> bool:
    """Initialize the database."""
    db = get_database()
    return await db.initialize()


async def close_database():
    """Close the database connection."""
    global _database
    if _database:
        await _database.close()
        _database = None
