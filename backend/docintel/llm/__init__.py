"""
AI Provider Package

A provider-agnostic interface over interchangeable AI backends:
  - OpenAI   (text-embedding-3-small + gpt-4o-mini)
  - Ollama   (nomic-embed-text + llama3.2 — self-hosted / air-gapped)
  - Stub     (deterministic, offline — tests and local dev)

Public API::

    from docintel.llm import ProviderGateway, create_provider

    gateway = ProviderGateway.from_settings(create_provider(settings), settings)
    vectors = await gateway.generate_embeddings(["chunk one", "chunk two"])
"""

from docintel.llm.base import (
    AIProvider,
    ChatOptions,
    ChatResponse,
    ClassificationResult,
    EmbeddingResult,
    SummaryResult,
    TokenUsage,
)
from docintel.llm.factory import Provider, create_provider
from docintel.llm.gateway import ProviderGateway

__all__ = [
    "AIProvider",
    "ChatOptions",
    "ChatResponse",
    "ClassificationResult",
    "EmbeddingResult",
    "Provider",
    "ProviderGateway",
    "SummaryResult",
    "TokenUsage",
    "create_provider",
]
