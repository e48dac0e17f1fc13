"""
SQL chunk store — document_chunks table via SQLAlchemy async.

Search strategy:
  1. SELECT candidates WHERE tenant_id = :tenant [AND document_id = :doc]
     ORDER BY document_id, chunk_index   ← tenant filter runs in the database
  2. Cosine-score the candidates in Python and keep the top k.

The tenant predicate is part of the SQL statement itself, so chunks of
other tenants are never loaded, let alone scored. Scoring in Python keeps
the store portable (PostgreSQL / SQLite) without a vector extension; an ANN
index can replace step 2 later without changing this contract.

Writes run in a single transaction per call: a bulk insert lands fully or
not at all, and replace_document_chunks() deletes and re-inserts under the
same transaction.
"""

from __future__ import annotations

import logging
from uuid import UUID

from sqlalchemy import delete, distinct, func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from docintel.core.errors import ValidationError
from docintel.db.session import transaction
from docintel.models.documents import DocumentChunk
from docintel.vectorstore.base import (
    ChunkRecord,
    ChunkStats,
    ChunkStore,
    ScoredChunk,
    StoredChunk,
    rank_candidates,
)

logger = logging.getLogger(__name__)


def _to_row(record: ChunkRecord) -> DocumentChunk:
    return DocumentChunk(
        document_id=record.document_id,
        tenant_id=record.tenant_id,
        chunk_index=record.chunk_index,
        content=record.content,
        embedding=list(record.embedding),
    )


def _to_stored(row: DocumentChunk) -> StoredChunk:
    return StoredChunk(
        id=row.id,
        document_id=row.document_id,
        tenant_id=row.tenant_id,
        chunk_index=row.chunk_index,
        content=row.content,
        embedding=list(row.embedding),
        created_at=row.created_at,
    )


class SQLChunkStore(ChunkStore):

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def insert_chunks(self, tenant_id: UUID, records: list[ChunkRecord]) -> int:
        self._validate_batch(tenant_id, records)
        try:
            async with transaction(self._session_factory) as session:
                session.add_all([_to_row(r) for r in records])
        except IntegrityError as exc:
            raise ValidationError(f"Chunk batch conflicts with stored chunks: {exc.orig}") from exc

        logger.info("SQLChunkStore | inserted=%d tenant=%s", len(records), tenant_id)
        return len(records)

    async def replace_document_chunks(
        self,
        document_id: UUID,
        tenant_id:   UUID,
        records:     list[ChunkRecord],
    ) -> int:
        self._validate_batch(tenant_id, records, document_id=document_id)

        async with transaction(self._session_factory) as session:
            result = await session.execute(
                delete(DocumentChunk).where(DocumentChunk.document_id == document_id)
            )
            await session.flush()
            session.add_all([_to_row(r) for r in records])

        logger.info(
            "SQLChunkStore | replaced doc=%s removed=%d inserted=%d",
            document_id, result.rowcount or 0, len(records),
        )
        return len(records)

    async def delete_all(self, document_id: UUID) -> int:
        async with transaction(self._session_factory) as session:
            result = await session.execute(
                delete(DocumentChunk).where(DocumentChunk.document_id == document_id)
            )
        removed = result.rowcount or 0
        logger.info("SQLChunkStore | deleted doc=%s count=%d", document_id, removed)
        return removed

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def list_by_document(self, document_id: UUID) -> list[StoredChunk]:
        async with self._session_factory() as session:
            result = await session.execute(
                select(DocumentChunk)
                .where(DocumentChunk.document_id == document_id)
                .order_by(DocumentChunk.chunk_index)
            )
            return [_to_stored(row) for row in result.scalars().all()]

    async def has_chunks(self, document_id: UUID) -> bool:
        async with self._session_factory() as session:
            result = await session.execute(
                select(DocumentChunk.id)
                .where(DocumentChunk.document_id == document_id)
                .limit(1)
            )
            return result.first() is not None

    async def stats(self, tenant_id: UUID | None = None) -> ChunkStats:
        stmt = select(
            func.count(DocumentChunk.id),
            func.count(distinct(DocumentChunk.document_id)),
        )
        if tenant_id is not None:
            stmt = stmt.where(DocumentChunk.tenant_id == tenant_id)

        async with self._session_factory() as session:
            total_chunks, total_documents = (await session.execute(stmt)).one()
        return ChunkStats(total_chunks=int(total_chunks), total_documents=int(total_documents))

    async def search(
        self,
        vector:      list[float],
        tenant_id:   UUID,
        k:           int,
        document_id: UUID | None = None,
    ) -> list[ScoredChunk]:
        stmt = select(DocumentChunk).where(DocumentChunk.tenant_id == tenant_id)
        if document_id is not None:
            stmt = stmt.where(DocumentChunk.document_id == document_id)
        stmt = stmt.order_by(DocumentChunk.document_id, DocumentChunk.chunk_index)

        async with self._session_factory() as session:
            rows = (await session.execute(stmt)).scalars().all()

        candidates = [_to_stored(row) for row in rows]
        logger.debug(
            "SQLChunkStore | search tenant=%s doc=%s candidates=%d k=%d",
            tenant_id, document_id, len(candidates), k,
        )
        return rank_candidates(vector, candidates, k)
