from docintel.vectorstore.base import (
    ChunkRecord,
    ChunkStats,
    ChunkStore,
    ScoredChunk,
    StoredChunk,
)
from docintel.vectorstore.factory import create_chunk_store

__all__ = [
    "ChunkRecord",
    "ChunkStats",
    "ChunkStore",
    "ScoredChunk",
    "StoredChunk",
    "create_chunk_store",
]
