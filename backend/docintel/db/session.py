"""
Database engine and session management.

The engine and session factory are built once by the service container
(docintel.services.container) from Settings and handed to the SQL-backed
components (SQLChunkStore, SQLDocumentRepository). No module-level engine
exists, so tests point the same components at an in-memory SQLite engine.

Every unit of work opens its own short transaction:

    async with transaction(session_factory) as session:
        ...   # commits on exit, rolls back on exception
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from sqlalchemy import text
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from docintel.core.config import Settings
from docintel.models.documents import Base

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Engine + session factory
# ---------------------------------------------------------------------------

def create_engine_from_settings(settings: Settings) -> AsyncEngine:
    kwargs: dict = {"echo": settings.db_echo_sql}   # log SQL in dev; disable in prod
    if not settings.database_url.startswith("sqlite"):
        kwargs.update(
            pool_size=settings.db_pool_size,
            max_overflow=settings.db_max_overflow,
            pool_pre_ping=True,          # detect stale connections before use
            pool_recycle=3600,           # recycle connections every hour
        )
    return create_async_engine(settings.database_url, **kwargs)


def create_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    # expire_on_commit=False keeps ORM objects usable after commit
    return async_sessionmaker(
        bind=engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


@asynccontextmanager
async def transaction(
    session_factory: async_sessionmaker[AsyncSession],
) -> AsyncGenerator[AsyncSession, None]:
    """One session, one transaction: commit on success, roll back on error."""
    async with session_factory() as session:
        async with session.begin():
            yield session


async def create_tables(engine: AsyncEngine) -> None:
    """Create missing tables (local dev / tests; production uses migrations)."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


# ---------------------------------------------------------------------------
# Health check helper
# ---------------------------------------------------------------------------

async def check_db_health(engine: AsyncEngine) -> dict:
    """Ping the database; used by startup and /health."""
    try:
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
        return {"status": "ok"}
    except Exception as exc:
        logger.error("DB health check failed: %s", exc)
        return {"status": "error", "detail": str(exc)}
