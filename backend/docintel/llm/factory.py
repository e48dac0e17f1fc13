"""
Provider Factory

Selects the AI backend (OpenAI | Ollama | stub) from Settings.ai_provider.
Called exactly once, when the service container is built at startup; the
resulting provider is passed down by constructor injection. There is no
module-level provider instance, so tests build their own with a stub.

Usage:
    provider = create_provider(settings)
    gateway  = ProviderGateway.from_settings(provider, settings)
"""

from __future__ import annotations

from enum import Enum

from docintel.core.config import Settings
from docintel.core.errors import ValidationError
from docintel.llm.base import AIProvider


class Provider(str, Enum):
    OPENAI = "openai"
    OLLAMA = "ollama"
    STUB   = "stub"


def resolve_provider(name: str) -> Provider:
    try:
        return Provider(name.strip().lower())
    except ValueError:
        valid = ", ".join(p.value for p in Provider)
        raise ValidationError(
            f"Unknown AI provider: '{name}'. Valid options: {valid}"
        ) from None


def create_provider(settings: Settings) -> AIProvider:
    """Instantiate the configured backend."""
    provider = resolve_provider(settings.ai_provider)

    if provider is Provider.OPENAI:
        from docintel.llm.openai_provider import OpenAIProvider
        return OpenAIProvider(settings)

    if provider is Provider.OLLAMA:
        from docintel.llm.ollama_provider import OllamaProvider
        return OllamaProvider(settings)

    from docintel.llm.stub_provider import StubProvider
    return StubProvider(
        dimensions=settings.stub_embedding_dimensions,
        chat_response=settings.stub_chat_response,
    )
