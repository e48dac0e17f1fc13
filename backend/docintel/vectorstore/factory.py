"""
Chunk Store Factory

Selects the correct backend (SQL | in-memory) based on config.
The rest of the app only receives the ChunkStore built here, through the
service container, and never touches the concrete classes directly.
"""

from __future__ import annotations

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from docintel.core.config import Settings
from docintel.core.errors import ValidationError
from docintel.vectorstore.base import ChunkStore


def create_chunk_store(
    settings:        Settings,
    session_factory: async_sessionmaker[AsyncSession] | None = None,
) -> ChunkStore:
    """Return the configured chunk store backend."""
    backend = settings.chunk_store_backend.lower()

    if backend == "sql":
        if session_factory is None:
            raise ValidationError("The 'sql' chunk store needs a database session factory")
        from docintel.vectorstore.sql_store import SQLChunkStore
        return SQLChunkStore(session_factory)

    if backend == "memory":
        from docintel.vectorstore.memory_store import InMemoryChunkStore
        return InMemoryChunkStore()

    raise ValidationError(
        f"Unknown chunk store backend: '{backend}'. "
        f"Valid options: 'sql', 'memory'"
    )
