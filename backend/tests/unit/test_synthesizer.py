"""
Unit Tests — AnswerSynthesizer
═══════════════════════════════
Runs retrieval over an InMemoryChunkStore with the stub provider; a
recording subclass captures what reaches the chat endpoint.
"""

from __future__ import annotations

import uuid

import pytest

from docintel.core.errors import ProviderError, ProviderErrorKind, ValidationError
from docintel.llm.base import ChatOptions, ChatResponse
from docintel.llm.gateway import ProviderGateway
from docintel.llm.stub_provider import StubProvider
from docintel.rag.prompt_builder import DEFAULT_SYSTEM_MESSAGE, ChatTurn, PromptVariant
from docintel.rag.retriever import TenantScopedRetriever
from docintel.rag.synthesizer import (
    NO_CHUNKS_SUMMARY,
    NO_RELEVANT_INFO_ANSWER,
    AnswerSynthesizer,
    SourceRef,
)
from docintel.vectorstore.base import ChunkRecord

LONG_CHUNK = "alpha beta " * 40   # 440 chars ≈ 110 tokens


class RecordingProvider(StubProvider):
    def __init__(self, fail_chat: bool = False, chat_response: str = "") -> None:
        super().__init__(dimensions=64, chat_response=chat_response)
        self.prompts: list[str] = []
        self.options: list[ChatOptions | None] = []
        self.fail_chat = fail_chat

    async def generate_chat_response(self, prompt: str, options: ChatOptions | None = None) -> ChatResponse:
        self.prompts.append(prompt)
        self.options.append(options)
        if self.fail_chat:
            raise ProviderError(ProviderErrorKind.QUOTA, "insufficient_quota", provider="stub")
        return await super().generate_chat_response(prompt, options)


@pytest.fixture
def provider() -> RecordingProvider:
    return RecordingProvider()


def _synthesizer(provider, store, fake_sleep) -> AnswerSynthesizer:
    gateway = ProviderGateway(provider, max_retries=0, sleep=fake_sleep)
    return AnswerSynthesizer(gateway, TenantScopedRetriever(gateway, store), store)


@pytest.fixture
def synthesizer(provider, memory_store, fake_sleep) -> AnswerSynthesizer:
    return _synthesizer(provider, memory_store, fake_sleep)


async def _store(store, provider, tenant_id, document_id, texts):
    records = [
        ChunkRecord(
            document_id=document_id,
            tenant_id=tenant_id,
            chunk_index=i,
            content=text,
            embedding=(await provider.generate_embedding(text)).embedding,
        )
        for i, text in enumerate(texts)
    ]
    await store.insert_chunks(tenant_id, records)


@pytest.mark.unit
class TestAnswer:

    async def test_grounded_answer_with_sources(
        self, memory_store, fake_sleep, test_tenant_id, test_document_id,
    ):
        provider    = RecordingProvider(chat_response="AI stands for Artificial Intelligence.")
        synthesizer = _synthesizer(provider, memory_store, fake_sleep)
        await _store(memory_store, provider, test_tenant_id, test_document_id,
                     ["AI is artificial intelligence"])

        answer = await synthesizer.answer("What is AI?", test_tenant_id)

        assert answer.answer == "AI stands for Artificial Intelligence."
        assert answer.model == "stub-chat"
        assert len(answer.sources) == 1
        assert answer.sources[0].document_id == test_document_id
        assert answer.sources[0].chunk_index == 0
        assert answer.sources[0].score > 0.0
        assert "[Fragment 1]\nAI is artificial intelligence" in provider.prompts[0]
        assert "USER QUESTION:\nWhat is AI?" in provider.prompts[0]
        assert provider.options[0].system_message == DEFAULT_SYSTEM_MESSAGE

    async def test_no_matches_skips_the_chat_call(self, synthesizer, provider, test_tenant_id):
        answer = await synthesizer.answer("What is AI?", test_tenant_id)

        assert answer.answer == NO_RELEVANT_INFO_ANSWER
        assert answer.sources == []
        assert answer.model is None
        assert provider.prompts == []

    async def test_other_tenants_chunks_are_not_used(
        self, synthesizer, provider, memory_store, test_tenant_id, other_tenant_id,
    ):
        await _store(memory_store, provider, other_tenant_id, uuid.uuid4(), ["AI is artificial intelligence"])

        answer = await synthesizer.answer("What is AI?", test_tenant_id)

        assert answer.answer == NO_RELEVANT_INFO_ANSWER
        assert provider.prompts == []

    async def test_sources_list_only_chunks_that_fit_the_budget(
        self, synthesizer, provider, memory_store, test_tenant_id, test_document_id,
    ):
        await _store(memory_store, provider, test_tenant_id, test_document_id, [LONG_CHUNK] * 3)

        answer = await synthesizer.answer("alpha beta", test_tenant_id, k=3, token_budget=150)

        assert answer.sources == [SourceRef(test_document_id, 0, answer.sources[0].score)]
        assert "[Fragment 1]" in provider.prompts[0]
        assert "[Fragment 2]" not in provider.prompts[0]

    async def test_budget_that_fits_nothing_answers_without_chat(
        self, synthesizer, provider, memory_store, test_tenant_id, test_document_id,
    ):
        await _store(memory_store, provider, test_tenant_id, test_document_id, [LONG_CHUNK])

        answer = await synthesizer.answer("alpha", test_tenant_id, token_budget=10)

        assert answer.answer == NO_RELEVANT_INFO_ANSWER
        assert provider.prompts == []

    @pytest.mark.parametrize("budget", [0, -100])
    async def test_non_positive_budget_raises(self, synthesizer, test_tenant_id, budget):
        with pytest.raises(ValidationError):
            await synthesizer.answer("What is AI?", test_tenant_id, token_budget=budget)

    async def test_conversational_variant_includes_history(
        self, synthesizer, provider, memory_store, test_tenant_id, test_document_id,
    ):
        await _store(memory_store, provider, test_tenant_id, test_document_id, ["Revenue grew 12% in Q3"])
        await synthesizer.answer(
            "And in Q4?",
            test_tenant_id,
            variant=PromptVariant.CONVERSATIONAL,
            history=[ChatTurn("user", "How did revenue do in Q3?"), ChatTurn("assistant", "It grew 12%.")],
        )

        assert "User: How did revenue do in Q3?" in provider.prompts[0]
        assert "NEW QUESTION:\nAnd in Q4?" in provider.prompts[0]

    async def test_chat_provider_error_propagates(self, memory_store, fake_sleep, test_tenant_id, test_document_id):
        provider = RecordingProvider(fail_chat=True)
        gateway  = ProviderGateway(provider, max_retries=0, sleep=fake_sleep)
        synth    = AnswerSynthesizer(gateway, TenantScopedRetriever(gateway, memory_store))
        await _store(memory_store, provider, test_tenant_id, test_document_id, ["AI is artificial intelligence"])

        with pytest.raises(ProviderError) as exc_info:
            await synth.answer("What is AI?", test_tenant_id)
        assert exc_info.value.kind is ProviderErrorKind.QUOTA


@pytest.mark.unit
class TestDocumentSummary:

    async def test_summary_uses_the_documents_chunks(
        self, synthesizer, provider, memory_store, test_tenant_id, test_document_id,
    ):
        await _store(memory_store, provider, test_tenant_id, test_document_id, ["Part one.", "Part two."])

        answer = await synthesizer.summarize_document_chunks(test_document_id, test_tenant_id)

        assert [s.chunk_index for s in answer.sources] == [0, 1]
        assert all(s.score == 1.0 for s in answer.sources)
        assert provider.prompts[0].startswith(f"Summarize the following information about: document {test_document_id}")

    async def test_summary_of_foreign_document_is_empty(
        self, synthesizer, provider, memory_store, other_tenant_id, test_tenant_id, test_document_id,
    ):
        await _store(memory_store, provider, other_tenant_id, test_document_id, ["Secret plans."])

        answer = await synthesizer.summarize_document_chunks(test_document_id, test_tenant_id)

        assert answer.answer == NO_CHUNKS_SUMMARY
        assert provider.prompts == []

    async def test_summary_requires_a_store(self, gateway, memory_store, test_tenant_id, test_document_id):
        synth = AnswerSynthesizer(gateway, TenantScopedRetriever(gateway, memory_store))
        with pytest.raises(ValidationError):
            await synth.summarize_document_chunks(test_document_id, test_tenant_id)
