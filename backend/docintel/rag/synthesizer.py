"""
Answer Synthesizer — grounded question answering

  question + tenant_id [+ document_id]
        │
        ▼
  TenantScopedRetriever.retrieve()      ← one embedding call
        │
        ├── no matches ──▶ NO_RELEVANT_INFO_ANSWER, sources=[]  (no chat call)
        ▼
  truncate_context(token_budget)        ← prefix of matches, last one maybe cut
        │
        ▼
  prompt_builder.render(variant)        ← [Fragment N] numbering
        │
        ▼
  ProviderGateway.generate_chat_response()
        │
        ▼
  Answer(answer, sources, model, usage)

`sources` lists exactly the chunks that made it into the prompt, in
fragment order, so "[Fragment 2]" in the answer is sources[1]. Provider
errors propagate unchanged to the caller.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from uuid import UUID

from docintel.core.errors import ValidationError
from docintel.llm.base import ChatOptions, TokenUsage
from docintel.llm.gateway import ProviderGateway
from docintel.rag import prompt_builder
from docintel.rag.prompt_builder import ChatTurn, PromptVariant
from docintel.rag.retriever import RetrievedMatch, TenantScopedRetriever
from docintel.vectorstore.base import ChunkStore

logger = logging.getLogger(__name__)

NO_RELEVANT_INFO_ANSWER = (
    "I could not find relevant information in your documents to answer this question."
)
NO_CHUNKS_SUMMARY = "This document has no processed content to summarize yet."

DEFAULT_TOKEN_BUDGET = 3000


@dataclass(frozen=True)
class SourceRef:
    document_id: UUID
    chunk_index: int
    score:       float


@dataclass
class Answer:
    answer:  str
    sources: list[SourceRef] = field(default_factory=list)
    model:   str | None      = None
    usage:   TokenUsage      = field(default_factory=TokenUsage)


class AnswerSynthesizer:
    """
    Retrieval-augmented answering over one tenant's chunks.

    Usage:
        synthesizer = AnswerSynthesizer(gateway, retriever, store)
        answer      = await synthesizer.answer("What is AI?", tenant_id)
    """

    def __init__(
        self,
        gateway:      ProviderGateway,
        retriever:    TenantScopedRetriever,
        store:        ChunkStore | None = None,
        token_budget: int   = DEFAULT_TOKEN_BUDGET,
        temperature:  float | None = None,
        max_tokens:   int | None   = None,
    ) -> None:
        self._gateway      = gateway
        self._retriever    = retriever
        self._store        = store
        self._token_budget = token_budget
        self._temperature  = temperature
        self._max_tokens   = max_tokens

    async def answer(
        self,
        question:     str,
        tenant_id:    UUID,
        document_id:  UUID | None = None,
        k:            int | None  = None,
        token_budget: int | None  = None,
        variant:      PromptVariant = PromptVariant.FULL,
        history:      list[ChatTurn] | None = None,
    ) -> Answer:
        t0     = time.perf_counter()
        budget = self._token_budget if token_budget is None else token_budget
        if budget <= 0:
            raise ValidationError(f"Token budget must be positive, got {budget}")

        matches = await self._retriever.retrieve(
            question, tenant_id, document_id=document_id, k=k,
        )
        if not matches:
            logger.info(
                "AnswerSynthesizer | tenant=%s doc=%s no matches, skipping chat",
                tenant_id, document_id or "-",
            )
            return Answer(answer=NO_RELEVANT_INFO_ANSWER, sources=[], model=None)

        context = prompt_builder.truncate_context([m.content for m in matches], budget)
        if not context:
            # Budget fits not even a partial top fragment
            logger.warning(
                "AnswerSynthesizer | tenant=%s budget=%d fits no context", tenant_id, budget,
            )
            return Answer(answer=NO_RELEVANT_INFO_ANSWER, sources=[], model=None)

        retained = matches[:len(context)]
        prompt   = prompt_builder.render(variant, question, context, history)
        response = await self._gateway.generate_chat_response(
            prompt,
            ChatOptions(
                temperature=self._temperature,
                max_tokens=self._max_tokens,
                system_message=prompt_builder.DEFAULT_SYSTEM_MESSAGE,
            ),
        )

        logger.info(
            "AnswerSynthesizer | tenant=%s doc=%s variant=%s fragments=%d/%d "
            "tokens=%d latency_ms=%.1f",
            tenant_id, document_id or "-", variant.value, len(retained), len(matches),
            response.usage.total_tokens, (time.perf_counter() - t0) * 1000,
        )
        return Answer(
            answer=response.content,
            sources=[_source(m) for m in retained],
            model=response.model,
            usage=response.usage,
        )

    async def summarize_document_chunks(
        self,
        document_id:  UUID,
        tenant_id:    UUID,
        token_budget: int | None = None,
    ) -> Answer:
        """Summarize one document from its stored chunks (no retrieval step)."""
        if self._store is None:
            raise ValidationError("No chunk store configured for document summaries")

        chunks = [
            c for c in await self._store.list_by_document(document_id)
            if c.tenant_id == tenant_id
        ]
        if not chunks:
            return Answer(answer=NO_CHUNKS_SUMMARY, sources=[], model=None)

        budget  = self._token_budget if token_budget is None else token_budget
        context = prompt_builder.truncate_context([c.content for c in chunks], budget)
        if not context:
            return Answer(answer=NO_CHUNKS_SUMMARY, sources=[], model=None)

        prompt   = prompt_builder.build_summarization_prompt(f"document {document_id}", context)
        response = await self._gateway.generate_chat_response(
            prompt,
            ChatOptions(temperature=self._temperature, max_tokens=self._max_tokens),
        )
        logger.info(
            "AnswerSynthesizer | summary doc=%s fragments=%d/%d",
            document_id, len(context), len(chunks),
        )
        return Answer(
            answer=response.content,
            sources=[
                SourceRef(document_id=c.document_id, chunk_index=c.chunk_index, score=1.0)
                for c in chunks[:len(context)]
            ],
            model=response.model,
            usage=response.usage,
        )


def _source(match: RetrievedMatch) -> SourceRef:
    return SourceRef(
        document_id=match.document_id,
        chunk_index=match.chunk_index,
        score=match.score,
    )
