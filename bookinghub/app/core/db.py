"""Async SQLAlchemy database helpers.

Single authoritative module providing:
    * get_engine / get_session / get_session_factory
    * init_db(force=..., on_create=...)
    * dispose_engine (called on application shutdown)
    * _reset_engine_for_tests (used in test isolation)
    * get_db (wrapper for dependency injection)
"""

import logging
import os
from contextlib import asynccontextmanager
from typing import AsyncIterator, Callable

from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from ..domain.models import Base

logger = logging.getLogger(__name__)


# =====================================================
# 🔧 ENV + Static configuration
# =====================================================
DATABASE_URL_ENV = "DATABASE_URL"
DEFAULT_URL = "postgresql+asyncpg://booking_user:change_me@db:5432/bookinghub"
AUTO_CREATE_SCHEMA_ENV = "DB_AUTO_CREATE"

_engine: AsyncEngine | None = None
_session_factory: async_sessionmaker[AsyncSession] | None = None
_SCHEMA_READY: bool = False
_SCHEMA_CHECKING: bool = False


def database_url() -> str:
    return os.getenv(DATABASE_URL_ENV, DEFAULT_URL)


# =====================================================
# ⚙️ Engine / Session factory
# =====================================================
def _make_engine(url: str) -> AsyncEngine:
    """Create an async engine."""
    return create_async_engine(url, echo=False, pool_pre_ping=True)


def get_engine() -> AsyncEngine:
    global _engine, _session_factory
    if _engine is None:
        _engine = _make_engine(database_url())
        _session_factory = async_sessionmaker(_engine, expire_on_commit=False)
    return _engine


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    get_engine()
    assert _session_factory is not None
    return _session_factory


async def _ensure_schema() -> None:
    """Create tables on first use when DB_AUTO_CREATE is enabled (dev setups)."""
    global _SCHEMA_READY, _SCHEMA_CHECKING
    if _SCHEMA_READY or _SCHEMA_CHECKING:
        return
    if os.getenv(AUTO_CREATE_SCHEMA_ENV, "").strip().lower() not in {"1", "true", "yes", "on"}:
        _SCHEMA_READY = True
        return
    _SCHEMA_CHECKING = True
    try:
        async with get_engine().begin() as conn:
            await conn.execute(text("SELECT 1 FROM bookings LIMIT 1"))
        _SCHEMA_READY = True
    except SQLAlchemyError:
        logger.info("bookings table missing, creating schema from metadata")
        await init_db(force=False)
    finally:
        _SCHEMA_CHECKING = False


@asynccontextmanager
async def get_session() -> AsyncIterator[AsyncSession]:
    """Provide a new AsyncSession."""
    await _ensure_schema()
    factory = get_session_factory()
    session = factory()
    try:
        yield session
    finally:
        await session.close()


# =====================================================
# 🧩 DB Init / Reset helpers
# =====================================================
async def init_db(
    force: bool = False, on_create: Callable[[AsyncEngine], None] | None = None
) -> None:
    """Create database schema (btree_gist and exclusion constraints included)."""
    engine = get_engine()
    async with engine.begin() as conn:
        if force:
            await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)
    if on_create:
        on_create(engine)
    global _SCHEMA_READY
    _SCHEMA_READY = True


async def dispose_engine() -> None:
    global _engine, _session_factory
    if _engine is not None:
        await _engine.dispose()
    _engine = None
    _session_factory = None


def _reset_engine_for_tests() -> None:
    """Reset engine references (fast, synchronous)."""
    global _engine, _session_factory, _SCHEMA_READY, _SCHEMA_CHECKING
    _engine = None
    _session_factory = None
    _SCHEMA_READY = False
    _SCHEMA_CHECKING = False


# =====================================================
# 💡 Dependency-compatible alias
# =====================================================
async def get_db() -> AsyncIterator[AsyncSession]:
    """Wrapper for dependency injection (used in routers)."""
    async with get_session() as session:
        yield session


# =====================================================
# 📦 Export
# =====================================================
__all__ = [
    "database_url",
    "get_engine",
    "get_session",
    "get_session_factory",
    "init_db",
    "dispose_engine",
    "_reset_engine_for_tests",
    "get_db",
]
