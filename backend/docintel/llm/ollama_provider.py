"""
Ollama provider — self-hosted model server over its REST API.

  POST /api/embed   {"model", "input": [...]}        → {"embeddings": [[...]]}
  POST /api/chat    {"model", "messages", "stream"}  → {"message": {"content"}}
  GET  /api/tags                                     → health check

Talks to Ollama with a shared httpx.AsyncClient (one connection pool per
process). Tests inject a client built on httpx.MockTransport.
"""

from __future__ import annotations

import logging
from typing import Any

import httpx

from docintel.core.config import Settings
from docintel.core.errors import ProviderError, ProviderErrorKind
from docintel.llm.base import (
    AIProvider,
    ChatOptions,
    ChatResponse,
    ClassificationResult,
    EmbeddingResult,
    SummaryResult,
    TokenUsage,
    build_classification_prompt,
    build_summary_prompt,
    kind_for_status,
    parse_classification,
    parse_summary,
)

logger = logging.getLogger(__name__)


def map_httpx_error(exc: httpx.HTTPError) -> ProviderError:
    """Translate an httpx failure talking to Ollama into a ProviderError."""
    if isinstance(exc, httpx.HTTPStatusError):
        body = exc.response.text[:300]
        kind = kind_for_status(exc.response.status_code, body)
        message = f"Ollama HTTP {exc.response.status_code}: {body}"
    else:
        kind    = ProviderErrorKind.UNAVAILABLE
        message = f"Ollama unreachable: {type(exc).__name__}: {exc}"
    return ProviderError(kind, message, provider="ollama")


class OllamaProvider(AIProvider):
    """Local / air-gapped backend. Construct via create_provider(settings)."""

    name = "ollama"

    def __init__(self, settings: Settings, client: httpx.AsyncClient | None = None) -> None:
        self._embedding_model      = settings.ollama_embedding_model
        self._embedding_dimensions = settings.ollama_embedding_dimensions
        self._chat_model           = settings.ollama_chat_model
        self._temperature          = settings.llm_temperature
        self._max_tokens           = settings.llm_max_tokens

        self._client = client or httpx.AsyncClient(
            base_url=settings.ollama_base_url.rstrip("/"),
            timeout=settings.provider_timeout,
        )

    @property
    def embedding_dimensions(self) -> int:
        return self._embedding_dimensions

    @property
    def embedding_model(self) -> str:
        return self._embedding_model

    @property
    def chat_model(self) -> str:
        return self._chat_model

    # ------------------------------------------------------------------
    # Transport
    # ------------------------------------------------------------------

    async def _post(self, path: str, payload: dict[str, Any]) -> dict[str, Any]:
        try:
            response = await self._client.post(path, json=payload)
            response.raise_for_status()
        except httpx.HTTPError as exc:
            raise map_httpx_error(exc) from exc

        try:
            return response.json()
        except ValueError as exc:
            raise ProviderError(
                ProviderErrorKind.UNAVAILABLE,
                f"Ollama returned a non-JSON body for {path}",
                provider=self.name,
            ) from exc

    # ------------------------------------------------------------------
    # Embeddings
    # ------------------------------------------------------------------

    async def generate_embedding(self, text: str) -> EmbeddingResult:
        results = await self.generate_embeddings([text])
        return results[0]

    async def generate_embeddings(self, texts: list[str]) -> list[EmbeddingResult]:
        data    = await self._post("/api/embed", {"model": self._embedding_model, "input": texts})
        vectors = data.get("embeddings")
        if not isinstance(vectors, list):
            raise ProviderError(
                ProviderErrorKind.UNAVAILABLE,
                "Ollama embed response has no 'embeddings' list",
                provider=self.name,
            )
        return [
            EmbeddingResult([float(x) for x in v], len(v), self._embedding_model)
            for v in vectors
        ]

    # ------------------------------------------------------------------
    # Chat
    # ------------------------------------------------------------------

    async def generate_chat_response(
        self,
        prompt:  str,
        options: ChatOptions | None = None,
    ) -> ChatResponse:
        return await self._chat(prompt, options or ChatOptions())

    async def _chat(
        self,
        prompt:      str,
        options:     ChatOptions,
        json_format: bool = False,
    ) -> ChatResponse:
        messages = []
        if options.system_message:
            messages.append({"role": "system", "content": options.system_message})
        messages.append({"role": "user", "content": prompt})

        model   = options.model or self._chat_model
        payload: dict[str, Any] = {
            "model":    model,
            "messages": messages,
            "stream":   False,
            "options": {
                "temperature": self._temperature if options.temperature is None else options.temperature,
                "num_predict": options.max_tokens or self._max_tokens,
            },
        }
        if json_format:
            payload["format"] = "json"

        data    = await self._post("/api/chat", payload)
        content = (data.get("message") or {}).get("content", "")
        return ChatResponse(
            content = str(content).strip(),
            model   = data.get("model", model),
            usage   = TokenUsage(
                prompt_tokens     = int(data.get("prompt_eval_count", 0)),
                completion_tokens = int(data.get("eval_count", 0)),
            ),
        )

    async def classify_document(self, text: str) -> ClassificationResult:
        reply = await self._chat(
            build_classification_prompt(text),
            ChatOptions(temperature=0.2, max_tokens=200),
            json_format=True,
        )
        return parse_classification(reply.content, self.name)

    async def summarize_document(self, text: str) -> SummaryResult:
        reply = await self._chat(
            build_summary_prompt(text),
            ChatOptions(temperature=0.3, max_tokens=500),
            json_format=True,
        )
        return parse_summary(reply.content, self.name)

    # ------------------------------------------------------------------
    # Health
    # ------------------------------------------------------------------

    async def check_connection(self) -> bool:
        try:
            response = await self._client.get("/api/tags")
            response.raise_for_status()
            return True
        except httpx.HTTPError as exc:
            logger.error("OllamaProvider | connection check failed: %s", exc)
            return False

    async def aclose(self) -> None:
        await self._client.aclose()
