"""
Provider Gateway — Unified Entry Point for all AI Requests

Chunking, retrieval, answering and the document pipeline never hold an
AIProvider directly; they call the gateway, which composes:

  ┌─────────────────────────────────────────────────────┐
  │  ProviderGateway.<operation>()                      │
  │       │                                             │
  │       ▼                                             │
  │  input validation          ← empty text / batch     │
  │       │                                             │
  │       ▼                                             │
  │  provider call + backoff   ← rate-limit/unavailable │
  │       │                                             │
  │       ▼                                             │
  │  error classification      ← ProviderError(kind)    │
  │       │                                             │
  │       ▼                                             │
  │  result contract checks    ← count + dimension      │
  └─────────────────────────────────────────────────────┘

An embedding failure ALWAYS surfaces as an exception. A short batch or a
wrong-length vector is a hard failure as well: a placeholder vector would
match arbitrary neighbours and produce plausible-looking wrong answers.
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Awaitable, Callable, TypeVar

from docintel.core.config import Settings
from docintel.core.errors import (
    DimensionMismatchError,
    DocIntelError,
    ProviderError,
    ProviderErrorKind,
    ValidationError,
)
from docintel.llm.base import (
    AIProvider,
    ChatOptions,
    ChatResponse,
    ClassificationResult,
    EmbeddingResult,
    SummaryResult,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

# ---------------------------------------------------------------------------
# Transient exception detection for errors a provider did not classify
# ---------------------------------------------------------------------------

_TRANSIENT_EXCEPTION_TYPES = (
    "TimeoutError",
    "ConnectTimeout",
    "ReadTimeout",
    "ConnectError",
    "RemoteProtocolError",
    "ServiceUnavailableError",
)


def _is_transient(exc: Exception) -> bool:
    """True if the exception class name suggests a transient transport error."""
    name = type(exc).__name__
    return any(name.endswith(t) for t in _TRANSIENT_EXCEPTION_TYPES)


# ---------------------------------------------------------------------------
# ProviderGateway
# ---------------------------------------------------------------------------

class ProviderGateway:
    """
    Provider-agnostic AI interface with validation, backoff and contract checks.

    Built once at startup around the provider from create_provider(); safe
    for concurrent use.
    """

    def __init__(
        self,
        provider:         AIProvider,
        max_retries:      int   = 2,
        retry_base_delay: float = 0.3,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._provider         = provider
        self._max_retries      = max(0, max_retries)
        self._retry_base_delay = retry_base_delay
        self._sleep            = sleep

    @classmethod
    def from_settings(cls, provider: AIProvider, settings: Settings) -> "ProviderGateway":
        return cls(
            provider,
            max_retries=settings.provider_max_retries,
            retry_base_delay=settings.provider_retry_base_delay,
        )

    # -----------------------------------------------------------------------
    # Accessors: callers read dimension from here, never hardcode it
    # -----------------------------------------------------------------------

    @property
    def provider_name(self) -> str:
        return self._provider.name

    @property
    def embedding_dimensions(self) -> int:
        return self._provider.embedding_dimensions

    @property
    def embedding_model(self) -> str:
        return self._provider.embedding_model

    @property
    def chat_model(self) -> str:
        return self._provider.chat_model

    @property
    def model_name(self) -> str:
        return self._provider.chat_model

    # -----------------------------------------------------------------------
    # Embeddings
    # -----------------------------------------------------------------------

    async def generate_embedding(self, text: str) -> EmbeddingResult:
        if not text or not text.strip():
            raise ValidationError("Cannot embed empty text")

        result = await self._call("embed", lambda: self._provider.generate_embedding(text))
        self._check_dimensions(result)
        return result

    async def generate_embeddings(self, texts: list[str]) -> list[EmbeddingResult]:
        """
        Embed a batch in one provider call.

        Raises ProviderError when the provider returns a different number of
        vectors than inputs; a partial batch is never returned.
        """
        if not texts:
            raise ValidationError("Cannot embed an empty batch")
        if any(not t or not t.strip() for t in texts):
            raise ValidationError("Cannot embed empty text inside a batch")

        results = await self._call(
            "embed_batch", lambda: self._provider.generate_embeddings(list(texts))
        )
        if len(results) != len(texts):
            raise ProviderError(
                ProviderErrorKind.UNAVAILABLE,
                f"Provider returned {len(results)} embeddings for {len(texts)} inputs",
                provider=self.provider_name,
                retryable=False,
            )
        for result in results:
            self._check_dimensions(result)
        return results

    # -----------------------------------------------------------------------
    # Chat / classification / summarization
    # -----------------------------------------------------------------------

    async def generate_chat_response(
        self,
        prompt:  str,
        options: ChatOptions | None = None,
    ) -> ChatResponse:
        if not prompt or not prompt.strip():
            raise ValidationError("Prompt must not be empty")
        return await self._call(
            "chat", lambda: self._provider.generate_chat_response(prompt, options)
        )

    async def classify_document(self, text: str) -> ClassificationResult:
        if not text or not text.strip():
            raise ValidationError("Cannot classify empty text")
        result = await self._call("classify", lambda: self._provider.classify_document(text))
        result.confidence = min(1.0, max(0.0, result.confidence))
        return result

    async def summarize_document(self, text: str) -> SummaryResult:
        if not text or not text.strip():
            raise ValidationError("Cannot summarize empty text")
        return await self._call("summarize", lambda: self._provider.summarize_document(text))

    async def check_connection(self) -> bool:
        try:
            return await self._provider.check_connection()
        except Exception as exc:
            logger.error("ProviderGateway | health check raised: %s", exc)
            return False

    async def aclose(self) -> None:
        await self._provider.aclose()

    # -----------------------------------------------------------------------
    # Internals
    # -----------------------------------------------------------------------

    def _check_dimensions(self, result: EmbeddingResult) -> None:
        expected = self._provider.embedding_dimensions
        actual   = len(result.embedding)
        if actual != expected or result.dimensions != expected:
            raise DimensionMismatchError(expected, actual, model=result.model)

    async def _call(self, op: str, fn: Callable[[], Awaitable[T]]) -> T:
        """
        Invoke `fn` with exponential backoff on retryable ProviderErrors.
        Unclassified exceptions are wrapped as ProviderError(unavailable).
        """
        attempt = 0
        while True:
            t0 = time.perf_counter()
            try:
                result = await fn()
            except ProviderError as exc:
                error = exc
            except DocIntelError:
                raise
            except Exception as exc:
                error = ProviderError(
                    ProviderErrorKind.UNAVAILABLE,
                    f"{type(exc).__name__}: {exc}",
                    provider=self.provider_name,
                )
                error.__cause__ = exc
                if not _is_transient(exc):
                    logger.error(
                        "ProviderGateway | op=%s provider=%s unexpected error: %s",
                        op, self.provider_name, exc,
                    )
                    raise error
            else:
                logger.debug(
                    "ProviderGateway | op=%s provider=%s attempt=%d latency_ms=%.1f",
                    op, self.provider_name, attempt + 1, (time.perf_counter() - t0) * 1000,
                )
                return result

            if not error.retryable or attempt >= self._max_retries:
                logger.warning(
                    "ProviderGateway | op=%s provider=%s kind=%s attempts=%d giving up: %s",
                    op, self.provider_name, error.kind.value, attempt + 1, error,
                )
                raise error

            delay = self._retry_base_delay * (2 ** attempt)
            logger.info(
                "ProviderGateway | op=%s provider=%s kind=%s retry_in=%.2fs",
                op, self.provider_name, error.kind.value, delay,
            )
            attempt += 1
            await self._sleep(delay)
