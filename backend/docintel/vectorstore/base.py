"""
Chunk Store — Abstract Base

Every concrete chunk store backend (SQL, in-memory) implements this
interface. The rest of the application only speaks this protocol, so
backends are swappable without changing retrieval or pipeline code.

Tenant isolation contract (enforced by ALL implementations):
  - Every written chunk carries its parent document's tenant_id; a batch
    whose records disagree with the batch tenant is rejected outright.
  - search() REQUIRES a tenant_id and applies it as a filter BEFORE any
    scoring, ranking or limiting. A chunk from another tenant is never a
    candidate, so no score can promote it into the results.
  - There is no cross-tenant search method. That operation does not exist.

Atomicity contract:
  - replace_document_chunks() removes a document's previous chunks and
    inserts the new set as ONE unit: after it returns or fails, the
    document's chunk set is either the complete new set or unchanged.
"""

from __future__ import annotations

import math
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from uuid import UUID

from docintel.core.errors import DimensionMismatchError, ValidationError


# ---------------------------------------------------------------------------
# Shared data types
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class ChunkRecord:
    """A chunk to insert: text + vector + tenant/document linkage."""
    document_id: UUID
    tenant_id:   UUID
    chunk_index: int
    content:     str
    embedding:   list[float]


@dataclass(frozen=True)
class StoredChunk:
    """A persisted chunk. Immutable: edits are delete-then-reinsert."""
    id:          UUID
    document_id: UUID
    tenant_id:   UUID
    chunk_index: int
    content:     str
    embedding:   list[float]
    created_at:  datetime


@dataclass(frozen=True)
class ScoredChunk:
    """One search hit; `position` is its rank in candidate (retrieval) order."""
    chunk:    StoredChunk
    score:    float           # cosine similarity
    position: int


@dataclass(frozen=True)
class ChunkStats:
    total_chunks:    int
    total_documents: int


# ---------------------------------------------------------------------------
# Abstract interface
# ---------------------------------------------------------------------------

class ChunkStore(ABC):
    """Multi-tenant chunk persistence with tenant-filtered similarity search."""

    @abstractmethod
    async def insert_chunks(self, tenant_id: UUID, records: list[ChunkRecord]) -> int:
        """
        Bulk-insert a batch in one transaction. Returns the number inserted.
        Every record MUST carry `tenant_id`.
        """

    @abstractmethod
    async def replace_document_chunks(
        self,
        document_id: UUID,
        tenant_id:   UUID,
        records:     list[ChunkRecord],
    ) -> int:
        """Atomically delete the document's chunks and insert `records`."""

    @abstractmethod
    async def delete_all(self, document_id: UUID) -> int:
        """Delete ALL chunks of a document. Returns the number removed."""

    @abstractmethod
    async def list_by_document(self, document_id: UUID) -> list[StoredChunk]:
        """A document's chunks ordered by chunk_index."""

    @abstractmethod
    async def has_chunks(self, document_id: UUID) -> bool: ...

    @abstractmethod
    async def stats(self, tenant_id: UUID | None = None) -> ChunkStats:
        """Chunk count + distinct document count (one tenant, or all)."""

    @abstractmethod
    async def search(
        self,
        vector:      list[float],
        tenant_id:   UUID,
        k:           int,
        document_id: UUID | None = None,
    ) -> list[ScoredChunk]:
        """
        Nearest-neighbour search over the tenant's chunks ONLY (and the
        document's, when scoped). Results are score-descending with ties in
        candidate order.
        """

    async def close(self) -> None:
        """Release backend resources. Default: nothing to release."""

    # ------------------------------------------------------------------
    # Shared helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _validate_batch(
        tenant_id:   UUID,
        records:     list[ChunkRecord],
        document_id: UUID | None = None,
    ) -> None:
        """Reject batches that would break tenant linkage or vector shape."""
        if not records:
            raise ValidationError("Chunk batch must not be empty")

        dims = len(records[0].embedding)
        if dims == 0:
            raise ValidationError("Chunk embedding must not be empty")

        seen: set[tuple[UUID, int]] = set()
        for record in records:
            if record.tenant_id != tenant_id:
                raise ValidationError(
                    f"Chunk tenant {record.tenant_id} does not match batch tenant {tenant_id}"
                )
            if document_id is not None and record.document_id != document_id:
                raise ValidationError(
                    f"Chunk document {record.document_id} does not match {document_id}"
                )
            if len(record.embedding) != dims:
                raise DimensionMismatchError(dims, len(record.embedding))
            if not record.content.strip():
                raise ValidationError("Chunk content must not be blank")
            key = (record.document_id, record.chunk_index)
            if key in seen:
                raise ValidationError(f"Duplicate chunk index {record.chunk_index}")
            seen.add(key)


# ---------------------------------------------------------------------------
# Ranking: shared by every backend that scores in Python
# ---------------------------------------------------------------------------

def cosine_similarity(a: list[float], b: list[float]) -> float:
    """Cosine similarity; 0.0 when either vector has zero norm."""
    if len(a) != len(b):
        raise DimensionMismatchError(len(a), len(b))
    dot    = sum(x * y for x, y in zip(a, b))
    norm_a = math.sqrt(sum(x * x for x in a))
    norm_b = math.sqrt(sum(y * y for y in b))
    if norm_a == 0.0 or norm_b == 0.0:
        return 0.0
    return dot / (norm_a * norm_b)


def rank_candidates(
    vector:     list[float],
    candidates: list[StoredChunk],
    k:          int,
) -> list[ScoredChunk]:
    """
    Score already tenant-filtered candidates and keep the top k.

    sorted() is stable, so equal scores keep candidate order.
    """
    scored = [
        ScoredChunk(chunk=c, score=cosine_similarity(vector, c.embedding), position=i)
        for i, c in enumerate(candidates)
    ]
    scored.sort(key=lambda s: s.score, reverse=True)
    return scored[:k]
