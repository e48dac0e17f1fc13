"""
Embedding Pipeline  —  Batch Embeddings for Document Chunks
══════════════════════════════════════════════════════════════

Design goals:
  • Batch efficiency: one provider call per batch_size chunks (default 100)
  • All-or-nothing: a failed or short batch aborts the whole document;
    a partially embedded document is never handed to the chunk store
  • Tenant linkage: every ChunkRecord carries the document's tenant_id
  • Retry/backoff lives in the ProviderGateway, not here

Batches run sequentially. The worker pool already caps how many documents
embed at once; fanning out batches inside one document as well would
multiply the load on the provider past that cap.
"""

from __future__ import annotations

import logging
import time
from uuid import UUID

from docintel.llm.gateway import ProviderGateway
from docintel.processing.chunking import TextChunk
from docintel.vectorstore.base import ChunkRecord

logger = logging.getLogger(__name__)

EMBEDDING_BATCH_SIZE = 100    # texts per provider call


class ChunkEmbedder:
    """
    Turns TextChunks into ChunkRecords ready for the chunk store.

    Usage:
        embedder = ChunkEmbedder(gateway, batch_size=100)
        records  = await embedder.embed_chunks(chunks, document_id, tenant_id)
    """

    def __init__(self, gateway: ProviderGateway, batch_size: int = EMBEDDING_BATCH_SIZE) -> None:
        self._gateway    = gateway
        self._batch_size = max(1, batch_size)

    async def embed_chunks(
        self,
        chunks:      list[TextChunk],
        document_id: UUID,
        tenant_id:   UUID,
    ) -> list[ChunkRecord]:
        t0      = time.perf_counter()
        records: list[ChunkRecord] = []

        for start in range(0, len(chunks), self._batch_size):
            batch   = chunks[start:start + self._batch_size]
            results = await self._gateway.generate_embeddings([c.text for c in batch])

            records.extend(
                ChunkRecord(
                    document_id=document_id,
                    tenant_id=tenant_id,
                    chunk_index=chunk.index,
                    content=chunk.text,
                    embedding=result.embedding,
                )
                for chunk, result in zip(batch, results)
            )

        logger.info(
            "ChunkEmbedder | doc=%s chunks=%d batches=%d latency_ms=%.1f",
            document_id, len(records),
            (len(chunks) + self._batch_size - 1) // self._batch_size,
            (time.perf_counter() - t0) * 1000,
        )
        return records
