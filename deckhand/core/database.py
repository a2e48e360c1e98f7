"""
Async SQLAlchemy engine and sessions for the onboarding store.

PostgreSQL (asyncpg) in deployments, SQLite (aiosqlite) for local runs and
tests. The engine is created lazily from DATABASE_URL and shared by every
request.
"""

import logging

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase
from sqlalchemy.pool import StaticPool

from .config import get_settings

logger = logging.getLogger(__name__)


class Base(DeclarativeBase):
    pass


_engine = None
_session_factory = None


def _engine_options(url: str, echo: bool) -> tuple[str, dict]:
    if url.startswith("postgresql://"):
        url = url.replace("postgresql://", "postgresql+asyncpg://", 1)
    if "sqlite" not in url:
        return url, {"echo": echo, "pool_size": 20, "max_overflow": 10, "pool_pre_ping": True}
    if url.endswith("://") or ":memory:" in url:
        # In-memory: every checkout must see the same database
        return url, {"echo": echo, "poolclass": StaticPool}
    return url, {"echo": echo}


def get_engine():
    global _engine
    if _engine is None:
        settings = get_settings()
        url, options = _engine_options(settings.database_url, settings.debug)
        _engine = create_async_engine(url, **options)
        logger.info("Database engine created (%s)", _engine.dialect.name)
    return _engine


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    global _session_factory
    if _session_factory is None:
        _session_factory = async_sessionmaker(bind=get_engine(), expire_on_commit=False)
    return _session_factory


async def get_db() -> AsyncSession:
    """One session per request; committed on success, rolled back on error."""
    async with get_session_factory()() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


async def init_db():
    """Create the onboarding, consent, archive and profile tables."""
    from .. import models  # noqa: F401  registers every table on Base.metadata

    async with get_engine().begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("Database tables created/verified")


async def close_db():
    global _engine, _session_factory
    if _engine is not None:
        await _engine.dispose()
        _engine = None
        _session_factory = None
        logger.info("Database engine disposed")
