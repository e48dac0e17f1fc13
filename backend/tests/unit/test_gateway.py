"""
Unit Tests — ProviderGateway
═════════════════════════════
Validation, backoff and result-contract checks around a provider.
The backoff sleep is the `fake_sleep` fixture, so the recorded delays
can be asserted without waiting.
"""

from __future__ import annotations

import pytest

from docintel.core.errors import (
    DimensionMismatchError,
    ProviderError,
    ProviderErrorKind,
    ValidationError,
)
from docintel.llm.base import ClassificationResult, EmbeddingResult
from docintel.llm.gateway import ProviderGateway
from docintel.llm.stub_provider import StubProvider
from docintel.main import status_for


class ScriptedProvider(StubProvider):
    """StubProvider whose embed calls fail with queued errors before succeeding."""

    def __init__(self, failures: list[Exception] | None = None, **kwargs) -> None:
        super().__init__(dimensions=8, **kwargs)
        self.failures = list(failures or [])
        self.calls    = 0

    async def generate_embedding(self, text: str) -> EmbeddingResult:
        self.calls += 1
        if self.failures:
            raise self.failures.pop(0)
        return await super().generate_embedding(text)


class ShortBatchProvider(StubProvider):
    async def generate_embeddings(self, texts: list[str]) -> list[EmbeddingResult]:
        results = await super().generate_embeddings(texts)
        return results[:-1]


class WrongDimensionProvider(StubProvider):
    async def generate_embedding(self, text: str) -> EmbeddingResult:
        return EmbeddingResult([0.5, 0.5], 2, "broken-model")


class OverconfidentProvider(StubProvider):
    async def classify_document(self, text: str) -> ClassificationResult:
        return ClassificationResult("Invoice", 1.4, [])


class ExplodingHealthCheckProvider(StubProvider):
    async def check_connection(self) -> bool:
        raise RuntimeError("health check crashed")


def _gateway(provider, fake_sleep) -> ProviderGateway:
    return ProviderGateway(provider, max_retries=2, retry_base_delay=0.3, sleep=fake_sleep)


def _rate_limited() -> ProviderError:
    return ProviderError(ProviderErrorKind.RATE_LIMIT, "429 Too Many Requests", provider="stub")


# ─────────────────────────────────────────────────────────────────────────────
# Retry / backoff
# ─────────────────────────────────────────────────────────────────────────────

@pytest.mark.unit
class TestRetries:

    async def test_rate_limit_is_retried_with_exponential_backoff(self, fake_sleep, sleep_calls):
        provider = ScriptedProvider([_rate_limited(), _rate_limited()])
        result   = await _gateway(provider, fake_sleep).generate_embedding("hello")

        assert provider.calls == 3
        assert sleep_calls == pytest.approx([0.3, 0.6])
        assert len(result.embedding) == 8

    async def test_gives_up_after_max_retries(self, fake_sleep, sleep_calls):
        provider = ScriptedProvider([_rate_limited()] * 5)

        with pytest.raises(ProviderError) as exc_info:
            await _gateway(provider, fake_sleep).generate_embedding("hello")

        assert exc_info.value.kind is ProviderErrorKind.RATE_LIMIT
        assert provider.calls == 3
        assert len(sleep_calls) == 2

    @pytest.mark.parametrize("kind", [
        ProviderErrorKind.AUTH,
        ProviderErrorKind.QUOTA,
        ProviderErrorKind.PAYLOAD_TOO_LARGE,
    ])
    async def test_non_retryable_kinds_fail_immediately(self, kind, fake_sleep, sleep_calls):
        provider = ScriptedProvider([ProviderError(kind, "nope", provider="stub")])

        with pytest.raises(ProviderError) as exc_info:
            await _gateway(provider, fake_sleep).generate_embedding("hello")

        assert exc_info.value.kind is kind
        assert provider.calls == 1
        assert sleep_calls == []

    async def test_unexpected_exception_is_wrapped_and_not_retried(self, fake_sleep, sleep_calls):
        provider = ScriptedProvider([KeyError("boom")])

        with pytest.raises(ProviderError) as exc_info:
            await _gateway(provider, fake_sleep).generate_embedding("hello")

        assert exc_info.value.kind is ProviderErrorKind.UNAVAILABLE
        assert isinstance(exc_info.value.__cause__, KeyError)
        assert provider.calls == 1
        assert sleep_calls == []

    async def test_transient_transport_error_is_retried(self, fake_sleep, sleep_calls):
        provider = ScriptedProvider([TimeoutError("read timed out")])
        await _gateway(provider, fake_sleep).generate_embedding("hello")

        assert provider.calls == 2
        assert sleep_calls == pytest.approx([0.3])

    async def test_zero_retries_disables_backoff(self, fake_sleep, sleep_calls):
        provider = ScriptedProvider([_rate_limited()])
        gateway  = ProviderGateway(provider, max_retries=0, sleep=fake_sleep)

        with pytest.raises(ProviderError):
            await gateway.generate_embedding("hello")
        assert sleep_calls == []


# ─────────────────────────────────────────────────────────────────────────────
# Result contracts
# ─────────────────────────────────────────────────────────────────────────────

@pytest.mark.unit
class TestContracts:

    async def test_short_batch_is_a_provider_error(self, fake_sleep, sleep_calls):
        gateway = _gateway(ShortBatchProvider(dimensions=8), fake_sleep)

        with pytest.raises(ProviderError, match="2 embeddings for 3 inputs") as exc_info:
            await gateway.generate_embeddings(["a", "b", "c"])

        assert exc_info.value.kind is ProviderErrorKind.UNAVAILABLE
        assert exc_info.value.retryable is False
        assert status_for(exc_info.value) == 502
        assert sleep_calls == []

    async def test_wrong_dimension_is_rejected(self, fake_sleep):
        gateway = _gateway(WrongDimensionProvider(dimensions=8), fake_sleep)

        with pytest.raises(DimensionMismatchError) as exc_info:
            await gateway.generate_embedding("hello")
        assert exc_info.value.expected == 8
        assert exc_info.value.actual == 2

    async def test_batch_keeps_input_order(self, gateway, stub_provider):
        results  = await gateway.generate_embeddings(["alpha", "beta"])
        expected = await stub_provider.generate_embedding("beta")
        assert results[1].embedding == expected.embedding

    async def test_confidence_is_clamped(self, fake_sleep):
        result = await _gateway(OverconfidentProvider(), fake_sleep).classify_document("invoice")
        assert result.confidence == 1.0

    def test_accessors_delegate_to_provider(self, gateway):
        assert gateway.provider_name == "stub"
        assert gateway.embedding_dimensions == 64
        assert gateway.embedding_model == "stub-embedding"
        assert gateway.chat_model == "stub-chat"


# ─────────────────────────────────────────────────────────────────────────────
# Input validation
# ─────────────────────────────────────────────────────────────────────────────

@pytest.mark.unit
class TestValidation:

    @pytest.mark.parametrize("text", ["", "   ", "\n\t"])
    async def test_blank_text_is_rejected_before_the_provider(self, text, fake_sleep):
        provider = ScriptedProvider()
        with pytest.raises(ValidationError):
            await _gateway(provider, fake_sleep).generate_embedding(text)
        assert provider.calls == 0

    async def test_empty_batch_is_rejected(self, gateway):
        with pytest.raises(ValidationError):
            await gateway.generate_embeddings([])

    async def test_blank_member_of_batch_is_rejected(self, gateway):
        with pytest.raises(ValidationError):
            await gateway.generate_embeddings(["fine", "  "])

    async def test_blank_prompt_is_rejected(self, gateway):
        with pytest.raises(ValidationError):
            await gateway.generate_chat_response("  ")

    async def test_blank_text_cannot_be_classified_or_summarized(self, gateway):
        with pytest.raises(ValidationError):
            await gateway.classify_document("")
        with pytest.raises(ValidationError):
            await gateway.summarize_document(" ")


# ─────────────────────────────────────────────────────────────────────────────
# Health
# ─────────────────────────────────────────────────────────────────────────────

@pytest.mark.unit
class TestHealth:

    async def test_health_check_exception_reports_disconnected(self, fake_sleep):
        gateway = _gateway(ExplodingHealthCheckProvider(), fake_sleep)
        assert await gateway.check_connection() is False

    async def test_stub_health_check_reports_connected(self, gateway):
        assert await gateway.check_connection() is True
