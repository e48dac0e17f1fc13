"""
RAG Retriever — tenant-scoped nearest-neighbour search

  question ──▶ ProviderGateway.generate_embedding()   (exactly one call)
           ──▶ ChunkStore.search(vector, tenant_id, k, document_id?)
           ──▶ RetrievedMatch[]  score-descending, stable on ties

Tenant isolation is a structural property of the call, not a ranking
signal: tenant_id is a required argument that the chunk store applies as
a filter BEFORE scoring and limiting, identically for corpus-wide and
single-document queries. The tenant id always comes from the caller's
authenticated context, never from the question body.

An embedding failure propagates; there is no degraded "search anyway"
path. An empty match list is a normal outcome.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from uuid import UUID

from docintel.core.errors import ValidationError
from docintel.llm.gateway import ProviderGateway
from docintel.vectorstore.base import ChunkStore

logger = logging.getLogger(__name__)

# Providers with large context windows can afford more fragments per answer
DEFAULT_TOP_K: dict[str, int] = {"openai": 6}
FALLBACK_TOP_K = 3


def default_top_k(provider_name: str) -> int:
    return DEFAULT_TOP_K.get(provider_name, FALLBACK_TOP_K)


@dataclass(frozen=True)
class RetrievedMatch:
    """One retrieved chunk and its relevance to the question."""
    document_id: UUID
    tenant_id:   UUID
    chunk_index: int
    content:     str
    score:       float


class TenantScopedRetriever:
    """
    Embeds a question and searches the caller's tenant partition.

    Usage:
        retriever = TenantScopedRetriever(gateway, store)
        matches   = await retriever.retrieve("What is AI?", tenant_id, k=3)
    """

    def __init__(
        self,
        gateway:   ProviderGateway,
        store:     ChunkStore,
        default_k: int | None = None,
    ) -> None:
        self._gateway   = gateway
        self._store     = store
        self._default_k = default_k or default_top_k(gateway.provider_name)

    @property
    def default_k(self) -> int:
        return self._default_k

    async def retrieve(
        self,
        question:    str,
        tenant_id:   UUID,
        document_id: UUID | None = None,
        k:           int | None  = None,
    ) -> list[RetrievedMatch]:
        if not question or not question.strip():
            raise ValidationError("Question must not be empty")
        if tenant_id is None:
            raise ValidationError("A tenant id is required for retrieval")
        top_k = self._default_k if k is None else k
        if top_k < 1:
            raise ValidationError(f"k must be at least 1, got {top_k}")

        embedding = await self._gateway.generate_embedding(question.strip())

        hits = await self._store.search(
            vector=embedding.embedding,
            tenant_id=tenant_id,
            k=top_k,
            document_id=document_id,
        )
        # Stores return score-descending already; re-sort stably on
        # (score, retrieval position) so the ordering holds for any backend.
        hits = sorted(hits, key=lambda h: (-h.score, h.position))[:top_k]

        matches = [
            RetrievedMatch(
                document_id=h.chunk.document_id,
                tenant_id=h.chunk.tenant_id,
                chunk_index=h.chunk.chunk_index,
                content=h.chunk.content,
                score=h.score,
            )
            for h in hits
        ]

        logger.info(
            "Retriever | tenant=%s doc=%s k=%d matches=%d top_score=%.3f",
            tenant_id, document_id or "-", top_k, len(matches),
            matches[0].score if matches else 0.0,
        )
        return matches
