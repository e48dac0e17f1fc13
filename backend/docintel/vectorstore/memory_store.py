"""
In-memory chunk store — process-local backend for the stub provider,
local development and tests.

Chunks are held in an immutable per-document tuple. Writers build the new
tuple completely and swap it in under an asyncio.Lock, so a reader never
observes a half-written document and a failed write leaves nothing behind.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from datetime import datetime, timezone
from uuid import UUID

from docintel.core.errors import ValidationError
from docintel.vectorstore.base import (
    ChunkRecord,
    ChunkStats,
    ChunkStore,
    ScoredChunk,
    StoredChunk,
    rank_candidates,
)

logger = logging.getLogger(__name__)


class InMemoryChunkStore(ChunkStore):

    def __init__(self) -> None:
        self._documents: dict[UUID, tuple[StoredChunk, ...]] = {}
        self._lock = asyncio.Lock()

    @staticmethod
    def _materialize(records: list[ChunkRecord]) -> list[StoredChunk]:
        now = datetime.now(timezone.utc)
        return [
            StoredChunk(
                id=uuid.uuid4(),
                document_id=r.document_id,
                tenant_id=r.tenant_id,
                chunk_index=r.chunk_index,
                content=r.content,
                embedding=list(r.embedding),
                created_at=now,
            )
            for r in records
        ]

    async def insert_chunks(self, tenant_id: UUID, records: list[ChunkRecord]) -> int:
        self._validate_batch(tenant_id, records)
        stored = self._materialize(records)

        async with self._lock:
            staged = dict(self._documents)
            for chunk in stored:
                existing = staged.get(chunk.document_id, ())
                if any(c.chunk_index == chunk.chunk_index for c in existing):
                    raise ValidationError(
                        f"Chunk {chunk.document_id}#{chunk.chunk_index} already exists"
                    )
                staged[chunk.document_id] = tuple(
                    sorted((*existing, chunk), key=lambda c: c.chunk_index)
                )
            self._documents = staged

        logger.debug("InMemoryChunkStore | inserted=%d tenant=%s", len(stored), tenant_id)
        return len(stored)

    async def replace_document_chunks(
        self,
        document_id: UUID,
        tenant_id:   UUID,
        records:     list[ChunkRecord],
    ) -> int:
        self._validate_batch(tenant_id, records, document_id=document_id)
        stored = tuple(sorted(self._materialize(records), key=lambda c: c.chunk_index))

        async with self._lock:
            staged = dict(self._documents)
            staged[document_id] = stored
            self._documents = staged
        return len(stored)

    async def delete_all(self, document_id: UUID) -> int:
        async with self._lock:
            staged  = dict(self._documents)
            removed = staged.pop(document_id, ())
            self._documents = staged
        return len(removed)

    async def list_by_document(self, document_id: UUID) -> list[StoredChunk]:
        return list(self._documents.get(document_id, ()))

    async def has_chunks(self, document_id: UUID) -> bool:
        return bool(self._documents.get(document_id))

    async def stats(self, tenant_id: UUID | None = None) -> ChunkStats:
        chunks = [
            c for doc in self._documents.values() for c in doc
            if tenant_id is None or c.tenant_id == tenant_id
        ]
        return ChunkStats(
            total_chunks=len(chunks),
            total_documents=len({c.document_id for c in chunks}),
        )

    async def search(
        self,
        vector:      list[float],
        tenant_id:   UUID,
        k:           int,
        document_id: UUID | None = None,
    ) -> list[ScoredChunk]:
        # Filter first: only this tenant's chunks are ever scored
        snapshot   = self._documents
        doc_ids    = [document_id] if document_id is not None else sorted(snapshot, key=str)
        candidates = [
            c
            for doc_id in doc_ids
            for c in snapshot.get(doc_id, ())
            if c.tenant_id == tenant_id
        ]
        return rank_candidates(vector, candidates, k)
