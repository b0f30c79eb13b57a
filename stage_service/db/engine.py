"""
Async SQLAlchemy engine and session factory.
Uses asyncpg for PostgreSQL and aiosqlite for local SQLite databases.
Engine is lazily created on first use to avoid import-time connection failures.
"""
import logging
from typing import Any, Dict, Optional

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from stage_service.config.settings import settings
from stage_service.db.base import Base

logger = logging.getLogger(__name__)

_engine: Optional[AsyncEngine] = None
_session_factory: Optional[async_sessionmaker] = None


def _engine_kwargs(url: str) -> Dict[str, Any]:
    if url.startswith("sqlite"):
        return {}
    return {
        "pool_size": settings.database_pool_size,
        "max_overflow": settings.database_max_overflow,
        "pool_pre_ping": True,
    }


def get_engine() -> AsyncEngine:
    """Lazily create and return the async engine singleton."""
    global _engine
    if _engine is None:
        _engine = create_async_engine(
            settings.database_url,
            echo=False,
            **_engine_kwargs(settings.database_url),
        )
        logger.info(f"Created async engine for {settings.database_url.split('@')[-1]}")
    return _engine


def get_session_factory() -> async_sessionmaker:
    """Lazily create and return the session factory singleton."""
    global _session_factory
    if _session_factory is None:
        _session_factory = async_sessionmaker(
            bind=get_engine(),
            class_=AsyncSession,
            expire_on_commit=False,
        )
    return _session_factory


async def create_schema() -> None:
    """Create all tables (local runs only; production uses Alembic)."""
    from stage_service.db import models  # noqa: F401
    async with get_engine().begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("Database schema created")


async def dispose_engine() -> None:
    """Dispose the engine on shutdown (call from lifespan)."""
    global _engine, _session_factory
    if _engine is not None:
        await _engine.dispose()
        _engine = None
        _session_factory = None
        logger.info("Async engine disposed")
