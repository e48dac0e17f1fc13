"""
OpenAI provider — LangChain OpenAI wrappers behind the AIProvider contract.

  embeddings : OpenAIEmbeddings (text-embedding-3-small, 1536 dims)
  chat       : ChatOpenAI       (gpt-4o-mini)

Retries are disabled on the LangChain clients (max_retries=0): backoff is
the ProviderGateway's job, so a rate-limit surfaces here exactly once and
is classified before anyone decides to retry.

OpenAI SDK exceptions are mapped by type:
  AuthenticationError / PermissionDeniedError  → auth
  RateLimitError (insufficient_quota)          → quota
  RateLimitError                               → rate-limit
  APIStatusError 413                           → payload-too-large
  APIConnectionError / APITimeoutError / 5xx   → unavailable
"""

from __future__ import annotations

import logging

import openai
from langchain_core.messages import BaseMessage, HumanMessage, SystemMessage
from langchain_openai import ChatOpenAI, OpenAIEmbeddings

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


def map_openai_error(exc: openai.OpenAIError) -> ProviderError:
    """Translate an OpenAI SDK exception into a classified ProviderError."""
    message = str(exc) or type(exc).__name__

    if isinstance(exc, (openai.AuthenticationError, openai.PermissionDeniedError)):
        kind = ProviderErrorKind.AUTH
    elif isinstance(exc, openai.RateLimitError):
        code = getattr(exc, "code", None)
        kind = (
            ProviderErrorKind.QUOTA
            if code == "insufficient_quota" or "quota" in message.lower()
            else ProviderErrorKind.RATE_LIMIT
        )
    elif isinstance(exc, openai.APIConnectionError):   # includes APITimeoutError
        kind = ProviderErrorKind.UNAVAILABLE
    elif isinstance(exc, openai.APIStatusError):
        kind = kind_for_status(exc.status_code, message)
    elif "api key" in message.lower() or "api_key" in message.lower():
        kind = ProviderErrorKind.AUTH
    else:
        kind = ProviderErrorKind.UNAVAILABLE

    return ProviderError(kind, f"OpenAI: {message}", provider="openai")


class OpenAIProvider(AIProvider):
    """Cloud backend. Construct via create_provider(settings)."""

    name = "openai"

    def __init__(self, settings: Settings) -> None:
        if not settings.openai_api_key:
            raise ProviderError(
                ProviderErrorKind.AUTH,
                "OPENAI_API_KEY is not configured",
                provider=self.name,
            )

        self._embedding_model      = settings.openai_embedding_model
        self._embedding_dimensions = settings.openai_embedding_dimensions
        self._chat_model           = settings.openai_chat_model
        self._temperature          = settings.llm_temperature
        self._max_tokens           = settings.llm_max_tokens

        self._embeddings = OpenAIEmbeddings(
            model=self._embedding_model,
            dimensions=self._embedding_dimensions,
            api_key=settings.openai_api_key,
            timeout=settings.provider_timeout,
            max_retries=0,
        )
        self._llm = ChatOpenAI(
            model=self._chat_model,
            api_key=settings.openai_api_key,
            temperature=self._temperature,
            max_tokens=self._max_tokens,
            timeout=settings.provider_timeout,
            max_retries=0,
        )
        # Raw SDK client, used only for the connectivity check
        self._client = openai.AsyncOpenAI(
            api_key=settings.openai_api_key,
            timeout=settings.provider_timeout,
            max_retries=0,
        )

    # ------------------------------------------------------------------
    # Accessors
    # ------------------------------------------------------------------

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
    # Embeddings
    # ------------------------------------------------------------------

    async def generate_embedding(self, text: str) -> EmbeddingResult:
        try:
            vector = await self._embeddings.aembed_query(text)
        except openai.OpenAIError as exc:
            raise map_openai_error(exc) from exc
        return EmbeddingResult(vector, len(vector), self._embedding_model)

    async def generate_embeddings(self, texts: list[str]) -> list[EmbeddingResult]:
        try:
            vectors = await self._embeddings.aembed_documents(texts)
        except openai.OpenAIError as exc:
            raise map_openai_error(exc) from exc
        return [EmbeddingResult(v, len(v), self._embedding_model) for v in vectors]

    # ------------------------------------------------------------------
    # Chat
    # ------------------------------------------------------------------

    async def generate_chat_response(
        self,
        prompt:  str,
        options: ChatOptions | None = None,
    ) -> ChatResponse:
        opts      = options or ChatOptions()
        overrides = {}
        if opts.temperature is not None:
            overrides["temperature"] = opts.temperature
        if opts.max_tokens is not None:
            overrides["max_tokens"] = opts.max_tokens
        if opts.model:
            overrides["model"] = opts.model

        runnable = self._llm.bind(**overrides) if overrides else self._llm
        messages = build_messages(prompt, opts.system_message)

        try:
            reply = await runnable.ainvoke(messages)
        except openai.OpenAIError as exc:
            raise map_openai_error(exc) from exc

        usage = getattr(reply, "usage_metadata", None) or {}
        return ChatResponse(
            content = str(reply.content).strip(),
            model   = opts.model or self._chat_model,
            usage   = TokenUsage(
                prompt_tokens     = int(usage.get("input_tokens", 0)),
                completion_tokens = int(usage.get("output_tokens", 0)),
            ),
        )

    async def classify_document(self, text: str) -> ClassificationResult:
        reply = await self.generate_chat_response(
            build_classification_prompt(text),
            ChatOptions(temperature=0.2, max_tokens=200),
        )
        return parse_classification(reply.content, self.name)

    async def summarize_document(self, text: str) -> SummaryResult:
        reply = await self.generate_chat_response(
            build_summary_prompt(text),
            ChatOptions(temperature=0.3, max_tokens=500),
        )
        return parse_summary(reply.content, self.name)

    # ------------------------------------------------------------------
    # Health
    # ------------------------------------------------------------------

    async def check_connection(self) -> bool:
        try:
            await self._client.models.list()
            return True
        except openai.OpenAIError as exc:
            logger.error("OpenAIProvider | connection check failed: %s", exc)
            return False

    async def aclose(self) -> None:
        await self._client.close()


def build_messages(prompt: str, system_message: str | None = None) -> list[BaseMessage]:
    """Assemble the LangChain message list: optional system + user prompt."""
    messages: list[BaseMessage] = []
    if system_message:
        messages.append(SystemMessage(content=system_message))
    messages.append(HumanMessage(content=prompt))
    return messages
