"""
Service container — everything built once, at startup.

  Settings
     │
     ├── create_provider() ──▶ ProviderGateway            (single provider factory call)
     ├── engine ──▶ session_factory ──▶ SQLDocumentRepository
     │                              └──▶ create_chunk_store()
     ├── TenantScopedRetriever(gateway, store)
     ├── AnswerSynthesizer(gateway, retriever, store)
     ├── DocumentAIPipeline(repo, gateway, extractor, indexer, store, chunker, embedder)
     ├── scheduler: BoundedWorkerPool(pipeline.run) | CeleryScheduler
     └── sweeper:   BacklogSweeper(pipeline.schedule_pending)   (local scheduler only)

The FastAPI lifespan and each Celery worker process own one AIServices
instance; request handlers and tasks only read from it.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from functools import partial

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from docintel.core.config import Settings
from docintel.core.errors import ValidationError
from docintel.db.session import create_engine_from_settings, create_session_factory, create_tables
from docintel.llm.base import AIProvider
from docintel.llm.factory import create_provider
from docintel.llm.gateway import ProviderGateway
from docintel.processing.chunking import Chunker, chunk_config_for
from docintel.processing.embeddings import ChunkEmbedder
from docintel.rag.retriever import TenantScopedRetriever
from docintel.rag.synthesizer import AnswerSynthesizer
from docintel.services.documents import DocumentRepository, SQLDocumentRepository
from docintel.services.extraction import LocalTextExtractor, TextExtractor
from docintel.services.pipeline import DocumentAIPipeline
from docintel.services.search_index import HttpSearchIndexer, NullSearchIndexer, SearchIndexer
from docintel.vectorstore.base import ChunkStore
from docintel.vectorstore.factory import create_chunk_store
from docintel.workers.pool import BacklogSweeper, BoundedWorkerPool, PipelineScheduler

logger = logging.getLogger(__name__)


def create_scheduler(settings: Settings, pipeline: DocumentAIPipeline) -> PipelineScheduler:
    mode = settings.pipeline_scheduler.lower()
    if mode == "local":
        return BoundedWorkerPool(
            pipeline.run,
            max_concurrency=settings.pipeline_max_concurrency,
            retry_delay=settings.pipeline_retry_delay,
            max_deferrals=settings.pipeline_max_deferrals,
        )
    if mode == "celery":
        from docintel.workers.tasks import CeleryScheduler
        return CeleryScheduler()
    raise ValidationError(
        f"Unknown pipeline scheduler: '{mode}'. Valid options: 'local', 'celery'"
    )


def create_search_indexer(settings: Settings) -> SearchIndexer:
    if settings.search_index_url:
        return HttpSearchIndexer(
            settings.search_index_url,
            index_name=settings.search_index_name,
            timeout=settings.provider_timeout,
        )
    return NullSearchIndexer()


@dataclass
class AIServices:
    settings:        Settings
    engine:          AsyncEngine
    session_factory: async_sessionmaker[AsyncSession]
    gateway:         ProviderGateway
    store:           ChunkStore
    repository:      DocumentRepository
    extractor:       TextExtractor
    indexer:         SearchIndexer
    retriever:       TenantScopedRetriever
    synthesizer:     AnswerSynthesizer
    pipeline:        DocumentAIPipeline
    scheduler:       PipelineScheduler
    sweeper:         BacklogSweeper | None = None
    owns_engine:     bool = True

    @classmethod
    async def build(
        cls,
        settings:      Settings,
        *,
        provider:      AIProvider | None = None,
        engine:        AsyncEngine | None = None,
        extractor:     TextExtractor | None = None,
        indexer:       SearchIndexer | None = None,
        create_schema: bool = False,
    ) -> "AIServices":
        """
        Wire every component from `settings`.

        `provider`, `engine`, `extractor` and `indexer` replace the configured
        ones (tests pass a StubProvider and an in-memory SQLite engine).
        """
        owns_engine = engine is None
        engine      = engine or create_engine_from_settings(settings)
        if create_schema:
            await create_tables(engine)
        session_factory = create_session_factory(engine)

        gateway = ProviderGateway.from_settings(provider or create_provider(settings), settings)
        store   = create_chunk_store(settings, session_factory)
        repo    = SQLDocumentRepository(session_factory)

        extractor = extractor or LocalTextExtractor(settings.storage_root)
        indexer   = indexer or create_search_indexer(settings)

        retriever = TenantScopedRetriever(gateway, store, default_k=settings.rag_top_k or None)
        synthesizer = AnswerSynthesizer(
            gateway,
            retriever,
            store,
            token_budget=settings.rag_token_budget,
            temperature=settings.llm_temperature,
            max_tokens=settings.llm_max_tokens,
        )

        chunker = Chunker(chunk_config_for(
            gateway.provider_name,
            target_words=settings.chunk_target_words,
            min_words=settings.chunk_min_words,
            max_words=settings.chunk_max_words,
            overlap_words=settings.chunk_overlap_words,
        ))
        pipeline = DocumentAIPipeline(
            repository=repo,
            gateway=gateway,
            extractor=extractor,
            indexer=indexer,
            store=store,
            chunker=chunker,
            embedder=ChunkEmbedder(gateway, batch_size=settings.embedding_batch_size),
            confidence_threshold=settings.classification_confidence_threshold,
            fallback_category=settings.fallback_category,
        )
        scheduler = create_scheduler(settings, pipeline)
        pipeline.bind_scheduler(scheduler)

        sweeper = None
        if isinstance(scheduler, BoundedWorkerPool) and settings.pipeline_backlog_interval > 0:
            sweeper = BacklogSweeper(
                partial(pipeline.schedule_pending, settings.pipeline_backlog_limit),
                interval=settings.pipeline_backlog_interval,
            )

        logger.info(
            "AIServices | provider=%s chat_model=%s embedding_model=%s dims=%d "
            "store=%s scheduler=%s",
            gateway.provider_name, gateway.chat_model, gateway.embedding_model,
            gateway.embedding_dimensions, settings.chunk_store_backend,
            settings.pipeline_scheduler,
        )
        return cls(
            settings=settings,
            engine=engine,
            session_factory=session_factory,
            gateway=gateway,
            store=store,
            repository=repo,
            extractor=extractor,
            indexer=indexer,
            retriever=retriever,
            synthesizer=synthesizer,
            pipeline=pipeline,
            scheduler=scheduler,
            sweeper=sweeper,
            owns_engine=owns_engine,
        )

    def start_backlog_sweep(self) -> None:
        if self.sweeper is not None:
            self.sweeper.start()

    async def aclose(self) -> None:
        if self.sweeper is not None:
            await self.sweeper.aclose()
        await self.scheduler.aclose()
        await self.indexer.aclose()
        await self.gateway.aclose()
        await self.store.close()
        if self.owns_engine:
            await self.engine.dispose()
