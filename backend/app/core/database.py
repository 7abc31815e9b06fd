"""
Database layer — async PostgreSQL via SQLAlchemy 2.0 + asyncpg.

Provides:
    • Async engine and session factory builders
    • Base model for ORM entities
    • Table creation / disposal helpers for the application lifespan

The engine is owned by the application instance (see main.create_app), so
tests can point a fresh app at a throwaway SQLite file via aiosqlite.

Usage:
    from backend.app.core.database import build_engine, build_session_factory

    engine = build_engine(settings.DATABASE_URL)
    session_factory = build_session_factory(engine)
    async with session_factory() as session:
        ...
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from sqlalchemy import text
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase

from backend.app.core.config import settings

logger = logging.getLogger(__name__)


# ── ORM Base ──
class Base(DeclarativeBase):
    """Declarative base for all ORM models."""
    pass


# ── Engine ──
def build_engine(url: Optional[str] = None, *, echo: Optional[bool] = None) -> AsyncEngine:
    """
    Create an async engine for ``url`` (defaults to settings.DATABASE_URL).

    Pool sizing only applies to server databases; SQLite gets the
    driver's default pool.
    """
    url = url or settings.DATABASE_URL
    kwargs: Dict[str, Any] = {
        "echo": settings.DATABASE_ECHO if echo is None else echo,
    }
    if not url.startswith("sqlite"):
        kwargs["pool_size"] = settings.DATABASE_POOL_SIZE
        kwargs["max_overflow"] = settings.DATABASE_MAX_OVERFLOW
        kwargs["pool_pre_ping"] = True
    return create_async_engine(url, **kwargs)


# ── Session Factory ──
def build_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )


# ── Lifecycle ──
async def init_db(engine: AsyncEngine) -> None:
    """Create all tables (dev/test only — use migrations in production)."""
    # Registers the ORM tables on Base.metadata
    from backend.app.storage import tables  # noqa: F401

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("Database tables initialised")


async def ping_db(engine: AsyncEngine) -> None:
    """Round-trip a trivial query; raises on failure."""
    async with engine.connect() as conn:
        await conn.execute(text("SELECT 1"))


async def close_db(engine: AsyncEngine) -> None:
    """Dispose engine connections."""
    await engine.dispose()
    logger.info("Database connections closed")
