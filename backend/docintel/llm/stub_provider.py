"""
Deterministic stub provider — offline backend for tests and local dev.

Embeddings are hashed bag-of-words vectors: every lower-cased word token is
hashed (md5, NOT Python's salted hash()) into one of `dimensions` buckets
and the counts are L2-normalised. Texts that share words therefore get a
positive cosine similarity, which makes retrieval tests meaningful without
a model. Same text → same vector, across processes.
"""

from __future__ import annotations

import hashlib
import math
import re

from docintel.llm.base import (
    FALLBACK_CATEGORY,
    AIProvider,
    ChatOptions,
    ChatResponse,
    ClassificationResult,
    EmbeddingResult,
    SummaryResult,
    TokenUsage,
)

_TOKEN_RE    = re.compile(r"\w+", re.UNICODE)
_SENTENCE_RE = re.compile(r"(?<=[.!?])\s+")

# (keywords, category, confidence, tags)
_KEYWORD_RULES: tuple[tuple[tuple[str, ...], str, float, tuple[str, ...]], ...] = (
    (("invoice", "factura"),   "Invoice",  0.90, ("financial", "billing")),
    (("contract", "contrato"), "Contract", 0.85, ("legal", "agreement")),
    (("report", "informe"),    "Report",   0.80, ("report", "analysis")),
    (("manual", "guide"),      "Manual",   0.75, ("documentation", "guide")),
)


def _bucket(token: str, dimensions: int) -> int:
    digest = hashlib.md5(token.encode("utf-8"), usedforsecurity=False).digest()
    return int.from_bytes(digest[:8], "big") % dimensions


def hashed_embedding(text: str, dimensions: int) -> list[float]:
    tokens = _TOKEN_RE.findall(text.lower()) or [text]
    vector = [0.0] * dimensions
    for token in tokens:
        vector[_bucket(token, dimensions)] += 1.0
    norm = math.sqrt(sum(v * v for v in vector))
    return [v / norm for v in vector]


class StubProvider(AIProvider):
    """Provider with no network access and fully reproducible output."""

    name = "stub"

    def __init__(
        self,
        dimensions:    int = 1536,
        chat_response: str = "",
    ) -> None:
        self._dimensions    = dimensions
        self._chat_response = chat_response

    @property
    def embedding_dimensions(self) -> int:
        return self._dimensions

    @property
    def embedding_model(self) -> str:
        return "stub-embedding"

    @property
    def chat_model(self) -> str:
        return "stub-chat"

    async def generate_embedding(self, text: str) -> EmbeddingResult:
        return EmbeddingResult(hashed_embedding(text, self._dimensions), self._dimensions, self.embedding_model)

    async def generate_embeddings(self, texts: list[str]) -> list[EmbeddingResult]:
        return [await self.generate_embedding(t) for t in texts]

    async def generate_chat_response(
        self,
        prompt:  str,
        options: ChatOptions | None = None,
    ) -> ChatResponse:
        content = self._chat_response or (
            f'Stub response for prompt: "{prompt[:50]}{"..." if len(prompt) > 50 else ""}"'
        )
        return ChatResponse(
            content = content,
            model   = (options.model if options and options.model else self.chat_model),
            usage   = TokenUsage(len(prompt) // 4, len(content) // 4),
        )

    async def classify_document(self, text: str) -> ClassificationResult:
        lowered = text.lower()
        for keywords, category, confidence, tags in _KEYWORD_RULES:
            if any(k in lowered for k in keywords):
                return ClassificationResult(category, confidence, ["stub", *tags])
        return ClassificationResult(FALLBACK_CATEGORY, 0.7, ["stub"])

    async def summarize_document(self, text: str) -> SummaryResult:
        sentences = [s.strip() for s in _SENTENCE_RE.split(text.strip()) if s.strip()]
        words     = len(text.split())
        summary   = " ".join(sentences[:2]) if sentences else ""
        return SummaryResult(
            summary    = summary,
            key_points = [f"The document has {words} words", *sentences[:3]],
        )

    async def check_connection(self) -> bool:
        return True
