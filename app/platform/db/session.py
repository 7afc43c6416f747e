from contextlib import asynccontextmanager

from sqlalchemy import create_engine
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import sessionmaker

from app.platform.config import settings

_async_engine = None
_async_session_factory = None
_sync_engine = None
_sync_session_factory = None


def _pool_options(url: str, pool_size: int, max_overflow: int) -> dict:
    # SQLite (local runs and tests) does not take pool sizing
    if url.startswith("sqlite"):
        return {}
    return {
        "pool_pre_ping": True,
        "pool_recycle": 1800,
        "pool_size": pool_size,
        "max_overflow": max_overflow,
        "pool_timeout": 30,
    }


def sync_database_url(url: str) -> str:
    """Convert an async driver url to its sync counterpart for Celery workers."""
    if url.startswith("postgresql+asyncpg://"):
        return url.replace("postgresql+asyncpg://", "postgresql+psycopg2://")
    if url.startswith("sqlite+aiosqlite://"):
        return url.replace("sqlite+aiosqlite://", "sqlite://")
    return url


def get_async_session_factory() -> async_sessionmaker:
    global _async_engine, _async_session_factory

    if _async_session_factory is None:
        _async_engine = create_async_engine(
            settings.DATABASE_URL,
            echo=False,
            future=True,
            **_pool_options(settings.DATABASE_URL, pool_size=20, max_overflow=30),
        )
        _async_session_factory = async_sessionmaker(
            _async_engine, class_=AsyncSession, expire_on_commit=False, autoflush=False
        )
    return _async_session_factory


async def get_db():
    """FastAPI dependency yielding an async session."""
    async with get_async_session_factory()() as session:
        yield session


@asynccontextmanager
async def get_async_db():
    """
    Async session for code running inside a sync Celery task.

    Usage in a task:
        asyncio.run(_do_work())  # where _do_work opens `async with get_async_db() as db`

    The engine is disposed on exit because every asyncio.run() call gets a
    fresh event loop and pooled connections cannot cross loops.
    """
    factory = get_async_session_factory()
    async with factory() as session:
        try:
            yield session
        finally:
            await session.close()
            await _async_engine.dispose()


def get_sync_db():
    """Get a database session for Celery tasks."""
    global _sync_engine, _sync_session_factory

    if _sync_engine is None:
        db_url = sync_database_url(settings.DATABASE_URL)
        _sync_engine = create_engine(db_url, **_pool_options(db_url, pool_size=25, max_overflow=25))
        _sync_session_factory = sessionmaker(autocommit=False, autoflush=False, bind=_sync_engine)

    return _sync_session_factory()
