"""
Database connection and session management.
Uses SQLAlchemy 2.0 async patterns with asyncpg driver for PostgreSQL
or aiosqlite for local SQLite development.
"""

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase
import logging

from src.config import get_settings

logger = logging.getLogger(__name__)
settings = get_settings()

# Determine if we're using SQLite (for local dev) or PostgreSQL (production)
is_sqlite = settings.async_database_url.startswith("sqlite")

# SQLite doesn't support pool_size/max_overflow, so configure engine accordingly
if is_sqlite:
    engine = create_async_engine(
        settings.async_database_url,
        echo=settings.debug,
        connect_args={"check_same_thread": False},
    )
else:
    engine = create_async_engine(
        settings.async_database_url,
        echo=settings.debug,
        pool_pre_ping=True,
        pool_size=5,
        max_overflow=10,
    )


def create_session_factory(bind: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """
    Builds a session factory for the given engine.
    Sessions never expire attributes on commit so committed trades can be
    returned to callers after the transaction closes.
    """
    return async_sessionmaker(
        bind,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


async_session_factory = create_session_factory(engine)


class Base(DeclarativeBase):
    """
    Base class for all SQLAlchemy ORM models.
    All models should inherit from this class.
    """
    pass


async def init_db(bind: AsyncEngine | None = None) -> None:
    """
    Initializes the database by creating all tables.
    Called during application startup; create_all only creates
    tables that don't exist yet.
    """
    # Importing the package registers every model with Base.metadata
    import src.models  # noqa: F401

    target = bind or engine
    tables = list(Base.metadata.tables.keys())
    logger.info(f"Registered models for tables: {tables}")

    try:
        async with target.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        logger.info("Database initialized successfully")
    except Exception as e:
        logger.error(f"Database initialization failed: {type(e).__name__}: {e}")
        raise
