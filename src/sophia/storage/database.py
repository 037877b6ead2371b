"""Database connection and session management."""

from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager, contextmanager
from typing import Any, AsyncIterator, Generator

from sqlalchemy import Engine, create_engine, text
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import NullPool, StaticPool

from sophia.config import settings
from sophia.observability.logging import get_logger
from sophia.storage.models import Base

logger = get_logger(__name__)

__all__ = [
    "get_engine",
    "get_session",
    "get_session_factory",
    "init_db",
    "shutdown_db",
    "get_async_engine",
    "get_async_session",
    "get_async_session_factory",
    "init_async_db",
    "shutdown_async_db",
]

_engine: Engine | None = None
_engine_url: str | None = None
_SessionLocal: sessionmaker[Session] | None = None

_async_engine: AsyncEngine | None = None
_async_engine_url: str | None = None
_async_engine_loop_id: int | None = None  # loop the engine was created on
_AsyncSessionLocal: async_sessionmaker[AsyncSession] | None = None
_async_engines_to_dispose: dict[int, AsyncEngine] = {}

_SQLITE_PRAGMAS = (
    "PRAGMA journal_mode=WAL",
    "PRAGMA synchronous=NORMAL",
    "PRAGMA foreign_keys=ON",
    "PRAGMA busy_timeout=3000",
)


def _stash_async_engine(engine: AsyncEngine) -> None:
    """Keep a strong ref until shutdown to avoid leaked aiosqlite threads in tests."""
    _async_engines_to_dispose[id(engine)] = engine


def _is_sqlite_file(url: str) -> bool:
    return url.startswith("sqlite") and ":memory:" not in url


def _sync_url(url: str) -> str:
    if url.startswith("sqlite+aiosqlite://"):
        return url.replace("sqlite+aiosqlite://", "sqlite://")
    return url


def _async_url(url: str) -> str:
    if url.startswith("sqlite://"):
        return url.replace("sqlite://", "sqlite+aiosqlite://")
    return url


def get_engine() -> Engine:
    """Get or create the sync engine (CLI and admin commands)."""
    global _engine, _engine_url, _SessionLocal
    if _engine is None or _engine_url != settings.database_url:
        if _engine is not None:
            try:
                _engine.dispose()
            except Exception:  # pragma: no cover - best-effort cleanup
                logger.debug("Failed to dispose sync engine on url change", exc_info=True)

        logger.info("Creating database engine")
        url = _sync_url(settings.database_url)
        kw: dict[str, Any] = {"pool_pre_ping": True}
        if url.startswith("sqlite"):
            kw["connect_args"] = {"check_same_thread": False}
            if ":memory:" in url:
                kw["poolclass"] = StaticPool
        else:
            kw["pool_size"] = settings.db_pool_size
            kw["max_overflow"] = settings.db_max_overflow
        _engine = create_engine(url, **kw)
        _engine_url = settings.database_url
        _SessionLocal = None
    return _engine


def get_async_engine() -> AsyncEngine:
    """Get or create the async engine used by the API and the brain adapters."""
    global _async_engine, _async_engine_url, _AsyncSessionLocal, _async_engine_loop_id

    try:
        curr_loop_id: int | None = id(asyncio.get_running_loop())
    except RuntimeError:
        curr_loop_id = None
    url = _async_url(settings.database_url)

    # An engine created on another event loop (pytest, CLI anyio.run) is never reused.
    stale = _async_engine is not None and (
        _async_engine_url != url
        or (
            _async_engine_loop_id is not None
            and curr_loop_id is not None
            and curr_loop_id != _async_engine_loop_id
        )
    )
    if stale and _async_engine is not None:
        _stash_async_engine(_async_engine)
        _async_engine = None
        _AsyncSessionLocal = None

    if _async_engine is None:
        logger.info("Creating async database engine")
        kw: dict[str, Any] = {"pool_pre_ping": True}
        if url.startswith("sqlite"):
            kw["connect_args"] = {"check_same_thread": False}
            if ":memory:" in url:
                kw["poolclass"] = StaticPool
            elif settings.environment == "test":
                # Pooled aiosqlite connections outlive per-test event loops.
                kw["poolclass"] = NullPool
        else:
            kw["pool_size"] = settings.db_pool_size
            kw["max_overflow"] = settings.db_max_overflow
        _async_engine = create_async_engine(url, **kw)
        _async_engine_url = url
        _async_engine_loop_id = curr_loop_id
        _AsyncSessionLocal = None
    return _async_engine


def get_session_factory() -> sessionmaker[Session]:
    """Get or create the session factory (sync)."""
    global _SessionLocal
    if _SessionLocal is None:
        _SessionLocal = sessionmaker(
            autocommit=False,
            autoflush=False,
            expire_on_commit=False,
            bind=get_engine(),
        )
    return _SessionLocal


def get_async_session_factory() -> async_sessionmaker[AsyncSession]:
    """Get or create async session factory."""
    global _AsyncSessionLocal
    if _AsyncSessionLocal is None:
        _AsyncSessionLocal = async_sessionmaker(
            autocommit=False,
            autoflush=False,
            expire_on_commit=False,
            bind=get_async_engine(),
            class_=AsyncSession,
        )
    return _AsyncSessionLocal


@contextmanager
def get_session() -> Generator[Session, None, None]:
    """Context manager that yields a database session."""
    SessionLocal = get_session_factory()
    session = SessionLocal()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


@asynccontextmanager
async def get_async_session() -> AsyncIterator[AsyncSession]:
    """Async counterpart of `get_session`: commit on success, rollback on error."""
    SessionLocal = get_async_session_factory()
    async with SessionLocal() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


def init_db() -> None:
    """Initialize database tables."""
    logger.info("Initializing database tables")
    engine = get_engine()
    Base.metadata.create_all(bind=engine)

    if _is_sqlite_file(settings.database_url):
        try:
            with engine.begin() as conn:
                for pragma in _SQLITE_PRAGMAS:
                    conn.execute(text(pragma))
            logger.info("Enabled WAL mode for SQLite database (sync engine)")
        except Exception:
            logger.warning("Could not enable WAL mode for SQLite sync engine", exc_info=True)

    logger.info("Database tables created")


async def init_async_db() -> None:
    """Initialize database tables using the async engine."""
    await shutdown_async_db()
    engine = get_async_engine()
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
        if _is_sqlite_file(settings.database_url):
            for pragma in _SQLITE_PRAGMAS:
                await conn.execute(text(pragma))
            logger.info("Enabled WAL mode for SQLite database")
    logger.info("Async database tables created")


def shutdown_db() -> None:
    """Dispose the sync engine and clear session factory caches."""
    global _engine, _engine_url, _SessionLocal
    _SessionLocal = None
    if _engine is not None:
        try:
            _engine.dispose()
        except Exception:  # pragma: no cover - best-effort cleanup
            logger.debug("Failed to dispose sync engine", exc_info=True)
    _engine = None
    _engine_url = None


async def shutdown_async_db() -> None:
    """Dispose async engines and clear session factory caches.

    Leaked aiosqlite connections raise at interpreter shutdown once the event
    loop is closed, so every engine ever created is disposed here.
    """
    global _async_engine, _async_engine_url, _AsyncSessionLocal, _async_engine_loop_id
    global _async_engines_to_dispose

    _AsyncSessionLocal = None
    if _async_engine is not None:
        _stash_async_engine(_async_engine)

    engines = list(_async_engines_to_dispose.values())
    _async_engines_to_dispose = {}
    for engine in engines:
        try:
            await engine.dispose()
        except Exception:  # pragma: no cover - best-effort cleanup
            try:
                engine.sync_engine.dispose()
            except Exception:
                logger.debug("Failed to dispose async engine", exc_info=True)

    _async_engine = None
    _async_engine_url = None
    _async_engine_loop_id = None
