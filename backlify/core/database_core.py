# -*- coding: utf-8 -*-
# backlify/core/database_core.py
# =============================================================================
# Purpose:
#   • Single database entry point (PostgreSQL + asyncpg + SQLAlchemy 2.0).
#   • Declarative Base shared by all models.
#   • AsyncEngine / async_sessionmaker creation and configuration.
#   • Session delivery for FastAPI routes (get_db) and scripts
#     (lifespan_session), plus db_ping() for /health.
#
# Invariants:
#   • Async engine only.
#   • DSN comes from Settings.database_url_asyncpg().
#   • Sessions use expire_on_commit=False and autoflush=False.
#   • The engine is created lazily: importing models or running Alembic
#     offline does not open connections.
#
# Prohibitions:
#   • No business logic and no DDL here (DDL lives in migrations/).
# =============================================================================

from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from typing import AsyncGenerator, AsyncIterator, Optional

from sqlalchemy import MetaData, text
from sqlalchemy.exc import DBAPIError, OperationalError
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase

from backlify.core.config_core import get_settings
from backlify.core.logging_core import get_logger

logger = get_logger(__name__)

NAMING_CONVENTION = {
    "ix": "ix_%(column_0_label)s",
    "uq": "uq_%(table_name)s_%(column_0_name)s",
    "ck": "ck_%(table_name)s_%(constraint_name)s",
    "fk": "fk_%(table_name)s_%(column_0_name)s_%(referred_table_name)s",
    "pk": "pk_%(table_name)s",
}


class Base(DeclarativeBase):
    """Declarative base of every Backlify model."""

    metadata = MetaData(naming_convention=NAMING_CONVENTION)


# -----------------------------------------------------------------------------
# Engine and session factory (module globals, created lazily)
# -----------------------------------------------------------------------------
_engine: Optional[AsyncEngine] = None
_SessionFactory: Optional[async_sessionmaker[AsyncSession]] = None
_engine_lock = asyncio.Lock()


def _create_engine() -> AsyncEngine:
    """
    New AsyncEngine from current settings.

    • pool_pre_ping detects dead connections early.
    • echo only in DEBUG.
    """
    settings = get_settings()
    dsn = settings.database_url_asyncpg()
    logger.info("Creating async DB engine", extra={"dsn_set": bool(dsn)})
    return create_async_engine(
        dsn,
        pool_size=settings.DB_POOL_SIZE,
        max_overflow=settings.DB_MAX_OVERFLOW,
        pool_pre_ping=True,
        echo=settings.DEBUG,
    )


def _create_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        bind=engine,
        expire_on_commit=False,
        autoflush=False,
        class_=AsyncSession,
    )


async def reset_engine() -> None:
    """
    Rebuilds the engine and session factory, disposing of the old pool.

    On failure the previous engine stays in place and the error propagates.
    """
    global _engine, _SessionFactory

    async with _engine_lock:
        old_engine = _engine
        try:
            new_engine = _create_engine()
        except Exception:
            logger.exception("Failed to reset DB engine")
            raise
        _engine = new_engine
        _SessionFactory = _create_session_factory(new_engine)
        logger.info("DB engine has been reset")
        if old_engine is not None:
            await old_engine.dispose()


def get_engine() -> AsyncEngine:
    """Current AsyncEngine, created on first use."""
    global _engine, _SessionFactory

    if _engine is None:
        _engine = _create_engine()
        _SessionFactory = _create_session_factory(_engine)
        logger.info("DB engine lazily initialized")
    return _engine


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    global _SessionFactory

    if _SessionFactory is None:
        _SessionFactory = _create_session_factory(get_engine())
        logger.info("Session factory initialized")
    return _SessionFactory


async def dispose_engine() -> None:
    """Closes the pool on application shutdown."""
    global _engine, _SessionFactory

    if _engine is not None:
        await _engine.dispose()
        logger.info("DB engine disposed")
    _engine = None
    _SessionFactory = None


# -----------------------------------------------------------------------------
# Sessions
# -----------------------------------------------------------------------------
async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """
    FastAPI dependency: one session per request.

        SessionDep = Annotated[AsyncSession, Depends(get_db)]

    Transactions are opened by the persistence gateway; nothing is committed
    here. Errors are logged with context and propagated.
    """
    session = get_session_factory()()
    try:
        yield session
    except Exception:
        logger.exception("DB session error")
        raise
    finally:
        await session.close()


@asynccontextmanager
async def lifespan_session() -> AsyncIterator[AsyncSession]:
    """Session for scripts and background jobs (run.py sweep)."""
    session = get_session_factory()()
    try:
        yield session
    finally:
        await session.close()


# -----------------------------------------------------------------------------
# Health
# -----------------------------------------------------------------------------
async def db_ping() -> bool:
    """
    SELECT 1 against the pool.

    True when the database answers; False when it is unreachable or
    DATABASE_URL is not configured.
    """
    if not get_settings().DATABASE_URL:
        return False
    try:
        async with get_engine().connect() as conn:
            await conn.execute(text("SELECT 1"))
        return True
    except (OperationalError, DBAPIError, OSError) as exc:
        logger.error("DB ping failed: DB is not reachable", extra={"error": str(exc)})
        return False


__all__ = [
    "AsyncSession",
    "AsyncEngine",
    "Base",
    "get_engine",
    "get_session_factory",
    "get_db",
    "lifespan_session",
    "db_ping",
    "reset_engine",
    "dispose_engine",
]
