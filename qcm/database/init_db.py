"""
Database initialization and connection management.

This module provides functions for:
1. Initializing the async engine
2. Creating the schema
3. Handing out session factories
4. Disposing of the connection pool
"""

from typing import Optional

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from qcm.common.logger import app_logger
from qcm.database.base import Base

# Setup module logger
logger = app_logger.getChild("database.init_db")

# Global engine instance
_engine: Optional[AsyncEngine] = None


def get_engine() -> AsyncEngine:
    """Get the global async engine instance."""
    if _engine is None:
        raise RuntimeError("Database engine not initialized. Call initialize_database() first.")
    return _engine


async def initialize_database(
    database_url: str,
    echo: bool = False,
    pool_size: int = 5,
    max_overflow: int = 10,
    pool_timeout: int = 30,
) -> AsyncEngine:
    """
    Initialize the async database engine.

    Pool options only apply to server databases; SQLite uses SQLAlchemy's
    default pool.

    Args:
        database_url: Database connection URL
        echo: Whether to echo SQL statements
        pool_size: Connection pool size
        max_overflow: Maximum number of connections to allow above pool_size
        pool_timeout: Timeout for getting a connection from the pool

    Returns:
        AsyncEngine instance
    """
    global _engine

    engine_kwargs = {"echo": echo}
    if not database_url.startswith("sqlite"):
        engine_kwargs.update(
            pool_size=pool_size,
            max_overflow=max_overflow,
            pool_timeout=pool_timeout,
        )

    logger.info(f"Initializing database with URL: {database_url[:10]}...")
    try:
        engine = create_async_engine(database_url, **engine_kwargs)

        # Test connection
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
    except Exception as e:
        logger.error(f"Failed to initialize async database: {str(e)}")
        raise

    _engine = engine
    logger.info("Database engine initialized successfully")
    return _engine


async def initialize_from_settings(settings) -> AsyncEngine:
    """Initialize the engine from a ``qcm.config.Settings`` instance."""
    return await initialize_database(
        settings.DATABASE_URL,
        echo=settings.SQL_ECHO,
        pool_size=settings.DB_POOL_SIZE,
        max_overflow=settings.DB_MAX_OVERFLOW,
        pool_timeout=settings.DB_POOL_TIMEOUT,
    )


async def create_schema(engine: Optional[AsyncEngine] = None) -> None:
    """Create every table that does not exist yet."""
    # Registers the ORM models on Base.metadata
    from qcm.database import models  # noqa: F401

    async with (engine or get_engine()).begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("Database schema created")


def get_session_factory(engine: Optional[AsyncEngine] = None) -> async_sessionmaker:
    """Return a session factory bound to ``engine`` or the global engine."""
    return async_sessionmaker(
        engine or get_engine(),
        class_=AsyncSession,
        expire_on_commit=False
    )


async def close_database() -> None:
    """Close the database engine and all connections."""
    global _engine

    if _engine:
        try:
            await _engine.dispose()
            logger.info("Database engine closed successfully")
        except Exception as e:
            logger.error(f"Error closing database engine: {str(e)}")
            raise
        finally:
            _engine = None
