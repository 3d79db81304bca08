"""Async engine and per-request sessions for the integrations/orders store."""

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from app.config import get_settings

import structlog

logger = structlog.get_logger()

# Built on first request so alembic and tests can import the models offline.
_engine: AsyncEngine | None = None
_session_maker: async_sessionmaker[AsyncSession] | None = None


def get_engine() -> AsyncEngine:
    global _engine
    if _engine is None:
        settings = get_settings()
        _engine = create_async_engine(
            settings.database_url,
            pool_pre_ping=True,
            echo=settings.debug,
        )
    return _engine


def get_session_maker() -> async_sessionmaker[AsyncSession]:
    global _session_maker
    if _session_maker is None:
        # Sync results are read after commit; keep attributes loaded.
        _session_maker = async_sessionmaker(get_engine(), expire_on_commit=False)
    return _session_maker


async def dispose_engine():
    """Close pooled connections on shutdown. No-op if nothing was opened."""
    global _engine, _session_maker
    if _engine is None:
        return
    await _engine.dispose()
    logger.info("database_engine_disposed")
    _engine = None
    _session_maker = None


async def get_db():
    """FastAPI dependency: one AsyncSession per request."""
    async with get_session_maker()() as session:
        yield session
