"""
Document AI Pipeline

Turns an uploaded document into extracted text, a category, a summary, a
search-index entry and embedded chunks:

  on_upload_completed(doc)          none ──▶ pending, then scheduler.submit()
        │
        ▼
  run(doc)                          claim: pending ──▶ processing (atomic)
        │
        ├─ a. extract      extracted_text      unsupported MIME / blank text ─┐
        ├─ b. classify     ai_category, ai_confidence, ai_tags                │
        ├─ c. summarize    ai_summary, ai_key_points                          │
        ├─ d. re-index     SearchIndexer.index_document()                     │
        └─ e. chunk+embed  ChunkStore.replace_document_chunks()  (tenant only)│
        │                                                                     │
        ▼                                                                     ▼
  processing ──▶ completed  (ai_processed_at set, ai_error cleared)  ◀────────┘
  processing ──▶ failed     (ai_error = str(exc); earlier step outputs kept)

Each step persists its output before the next one starts, so a failure in
step (e) still leaves the category and summary from (b) and (c) in place.

run() never raises: every outcome, including "document not found" and
"someone else is already processing it", comes back as a PipelineOutcome.
A completed or failed document is only run again after reprocess(), which
first clears the previous outputs and deletes its chunks.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import TYPE_CHECKING
from uuid import UUID

from docintel.core.errors import DocumentNotFoundError, ValidationError
from docintel.llm.base import FALLBACK_CATEGORY, ClassificationResult, SummaryResult
from docintel.llm.gateway import ProviderGateway
from docintel.models.processing import (
    ProcessingState,
    TransitionTrigger,
    sources_for,
)
from docintel.processing.chunking import Chunker
from docintel.processing.embeddings import ChunkEmbedder
from docintel.services.documents import DocumentRecord, DocumentRepository
from docintel.services.extraction import ExtractionResult, TextExtractor
from docintel.services.search_index import SearchIndexer
from docintel.vectorstore.base import ChunkStats, ChunkStore

if TYPE_CHECKING:
    from docintel.workers.pool import PipelineScheduler

logger = logging.getLogger(__name__)

DEFAULT_CONFIDENCE_THRESHOLD = 0.5

# Reset by reprocess(); a re-run that stops early (unsupported MIME, blank
# text) leaves them empty
CLEARED_OUTPUTS: dict[str, object] = {
    "ai_error":        None,
    "ai_processed_at": None,
    "ai_category":     None,
    "ai_confidence":   None,
    "ai_tags":         [],
    "ai_summary":      None,
    "ai_key_points":   [],
    "extracted_text":  None,
}


class OutcomeStatus(str, Enum):
    COMPLETED = "completed"
    FAILED    = "failed"
    SKIPPED   = "skipped"


@dataclass
class PipelineOutcome:
    document_id: UUID
    status:      OutcomeStatus
    steps:       list[str]  = field(default_factory=list)
    chunk_count: int        = 0
    error:       str | None = None
    reason:      str | None = None     # why a run was skipped
    latency_ms:  float      = 0.0


class DocumentAIPipeline:
    """
    Runs the AI steps for one document at a time.

    Every collaborator is injected; the container builds one instance at
    startup and shares it between the HTTP layer and the workers.
    """

    def __init__(
        self,
        repository:           DocumentRepository,
        gateway:              ProviderGateway,
        extractor:            TextExtractor,
        indexer:              SearchIndexer,
        store:                ChunkStore,
        chunker:              Chunker,
        embedder:             ChunkEmbedder,
        confidence_threshold: float = DEFAULT_CONFIDENCE_THRESHOLD,
        fallback_category:    str   = FALLBACK_CATEGORY,
        scheduler:            "PipelineScheduler | None" = None,
    ) -> None:
        self._repo                 = repository
        self._gateway              = gateway
        self._extractor            = extractor
        self._indexer              = indexer
        self._store                = store
        self._chunker              = chunker
        self._embedder             = embedder
        self._confidence_threshold = confidence_threshold
        self._fallback_category    = fallback_category
        self._scheduler            = scheduler

    def bind_scheduler(self, scheduler: "PipelineScheduler") -> None:
        """Attach the scheduler once it exists (it needs run() as its runner)."""
        self._scheduler = scheduler

    # -----------------------------------------------------------------------
    # Triggers
    # -----------------------------------------------------------------------

    async def mark_pending(self, document_id: UUID) -> DocumentRecord:
        """Upload completion: none ──▶ pending. Raises InvalidTransitionError otherwise."""
        return await self._repo.set_state(
            document_id, ProcessingState.PENDING, TransitionTrigger.UPLOAD,
        )

    async def on_upload_completed(self, document_id: UUID) -> DocumentRecord:
        """Mark pending synchronously, then schedule the run."""
        record = await self.mark_pending(document_id)
        await self._schedule(document_id)
        return record

    async def reprocess(self, document_id: UUID) -> DocumentRecord:
        """
        Explicit re-run of a completed or failed document.

        Clears every output of the previous run (error, category, summary,
        extracted text, chunks), moves the document back to pending and
        schedules a run that starts again from extraction.
        """
        record  = await self._repo.set_state(
            document_id,
            ProcessingState.PENDING,
            TransitionTrigger.REPROCESS,
            **CLEARED_OUTPUTS,
        )
        removed = await self._store.delete_all(document_id)
        logger.info("Pipeline | reprocess requested doc=%s chunks_removed=%d", document_id, removed)
        await self._schedule(document_id)
        return record

    async def _schedule(self, document_id: UUID) -> None:
        if self._scheduler is None:
            logger.warning(
                "Pipeline | no scheduler bound, doc=%s left pending for the backlog sweep",
                document_id,
            )
            return
        await self._scheduler.submit(document_id)

    # -----------------------------------------------------------------------
    # Run
    # -----------------------------------------------------------------------

    async def run(self, document_id: UUID) -> PipelineOutcome:
        t0      = time.perf_counter()
        outcome = PipelineOutcome(document_id=document_id, status=OutcomeStatus.SKIPPED)

        try:
            record = await self._repo.get(document_id)
        except DocumentNotFoundError:
            logger.warning("Pipeline | doc=%s not found, nothing to run", document_id)
            outcome.reason = "not_found"
            return outcome
        except Exception as exc:
            logger.error("Pipeline | doc=%s could not be loaded: %s", document_id, exc, exc_info=True)
            outcome.status = OutcomeStatus.FAILED
            outcome.error  = str(exc)
            return outcome

        if record.ai_processing_status is not ProcessingState.PENDING:
            logger.info(
                "Pipeline | doc=%s status=%s, skipping",
                document_id, record.ai_processing_status.value,
            )
            outcome.reason = f"status_{record.ai_processing_status.value}"
            return outcome

        try:
            claimed = await self._repo.claim(
                document_id,
                sources_for(ProcessingState.PROCESSING, TransitionTrigger.PIPELINE),
                ProcessingState.PROCESSING,
            )
        except Exception as exc:
            logger.error("Pipeline | doc=%s claim failed: %s", document_id, exc, exc_info=True)
            outcome.status = OutcomeStatus.FAILED
            outcome.error  = str(exc)
            return outcome

        if not claimed:
            logger.info("Pipeline | doc=%s claimed by another run, skipping", document_id)
            outcome.reason = "already_claimed"
            return outcome

        logger.info(
            "Pipeline | start doc=%s tenant=%s mime=%s",
            document_id, record.tenant_id or "-", record.mime_type,
        )

        try:
            await self._execute(record, outcome)
            await self._repo.set_state(
                document_id,
                ProcessingState.COMPLETED,
                TransitionTrigger.PIPELINE,
                ai_processed_at=datetime.now(timezone.utc),
                ai_error=None,
            )
            outcome.status = OutcomeStatus.COMPLETED
        except Exception as exc:
            outcome.status = OutcomeStatus.FAILED
            outcome.error  = str(exc) or type(exc).__name__
            logger.error(
                "Pipeline | doc=%s failed after steps=%s: %s",
                document_id, outcome.steps, outcome.error, exc_info=True,
            )
            await self._mark_failed(document_id, outcome.error)

        outcome.latency_ms = (time.perf_counter() - t0) * 1000
        logger.info(
            "Pipeline | end doc=%s status=%s steps=%s chunks=%d latency_ms=%.1f",
            document_id, outcome.status.value, ",".join(outcome.steps),
            outcome.chunk_count, outcome.latency_ms,
        )
        return outcome

    async def _execute(self, record: DocumentRecord, outcome: PipelineOutcome) -> None:
        document_id = record.id

        # --- a. extract -------------------------------------------------------
        if not self._extractor.supports(record.mime_type):
            logger.info(
                "Pipeline | doc=%s mime=%s unsupported, completing without AI steps",
                document_id, record.mime_type,
            )
            await self._repo.update_fields(document_id, extracted_text="")
            outcome.steps.append("extract")
            return

        extraction = await self._extractor.extract(record)
        text       = extraction.text
        await self._repo.update_fields(document_id, extracted_text=text)
        outcome.steps.append("extract")

        if not text.strip():
            logger.info("Pipeline | doc=%s extracted no text, completing", document_id)
            return

        # --- b. classify ------------------------------------------------------
        await self._classify(document_id, text)
        outcome.steps.append("classify")

        # --- c. summarize -----------------------------------------------------
        await self._summarize(document_id, text)
        outcome.steps.append("summarize")

        # --- d. re-index ------------------------------------------------------
        await self._indexer.index_document(await self._repo.get(document_id), text)
        outcome.steps.append("index")

        # --- e. chunk + embed -------------------------------------------------
        if record.tenant_id is None:
            logger.info("Pipeline | doc=%s has no tenant, skipping chunk+embed", document_id)
            return

        chunks  = self._chunker.chunk(text)
        records = await self._embedder.embed_chunks(chunks, document_id, record.tenant_id)
        outcome.chunk_count = await self._store.replace_document_chunks(
            document_id, record.tenant_id, records,
        )
        outcome.steps.append("embed")

    async def _classify(self, document_id: UUID, text: str) -> ClassificationResult:
        classification = await self._gateway.classify_document(text)
        category = classification.category
        if classification.confidence < self._confidence_threshold:
            logger.info(
                "Pipeline | doc=%s low confidence %.2f for %s, using %s",
                document_id, classification.confidence, category, self._fallback_category,
            )
            category = self._fallback_category
        await self._repo.update_fields(
            document_id,
            ai_category=category,
            ai_confidence=classification.confidence,
            ai_tags=list(classification.tags),
        )
        return ClassificationResult(category, classification.confidence, list(classification.tags))

    async def _summarize(self, document_id: UUID, text: str) -> SummaryResult:
        summary = await self._gateway.summarize_document(text)
        await self._repo.update_fields(
            document_id,
            ai_summary=summary.summary,
            ai_key_points=list(summary.key_points),
        )
        return summary

    async def _mark_failed(self, document_id: UUID, error: str) -> None:
        try:
            await self._repo.set_state(
                document_id,
                ProcessingState.FAILED,
                TransitionTrigger.PIPELINE,
                ai_error=error,
            )
        except Exception as exc:
            # The document stays in `processing`; the log is all that is left
            logger.error(
                "Pipeline | doc=%s could not record failure: %s", document_id, exc, exc_info=True,
            )

    # -----------------------------------------------------------------------
    # On-demand AI over a document's text
    # -----------------------------------------------------------------------

    async def document_text(self, document_id: UUID) -> ExtractionResult:
        """
        The stored extracted text, or a fresh extraction when the pipeline
        has not stored any yet. A fresh extraction is persisted.
        Unsupported MIME types raise ValidationError.
        """
        record = await self._repo.get(document_id)
        if not self._extractor.supports(record.mime_type):
            raise ValidationError(f"Unsupported MIME type for text extraction: {record.mime_type}")

        stored = await self._repo.get_extracted_text(document_id)
        if stored is not None:
            return ExtractionResult.from_text(stored)

        extraction = await self._extractor.extract(record)
        await self._repo.update_fields(document_id, extracted_text=extraction.text)
        logger.info(
            "Pipeline | doc=%s extracted on demand chars=%d", document_id, extraction.char_count,
        )
        return extraction

    async def classify_document(self, document_id: UUID) -> ClassificationResult:
        """Classify the document's text and store category, confidence and tags."""
        return await self._classify(document_id, await self._text_for_ai(document_id))

    async def summarize_document(self, document_id: UUID) -> SummaryResult:
        """Summarize the document's text and store summary and key points."""
        return await self._summarize(document_id, await self._text_for_ai(document_id))

    async def _text_for_ai(self, document_id: UUID) -> str:
        text = (await self.document_text(document_id)).text
        if not text.strip():
            raise ValidationError("Document has no extractable text")
        return text

    # -----------------------------------------------------------------------
    # Backlog + chunk maintenance
    # -----------------------------------------------------------------------

    async def process_pending(self, limit: int = 10) -> list[PipelineOutcome]:
        """Run up to `limit` pending documents, oldest first, one after another."""
        ids = await self._repo.list_by_state(ProcessingState.PENDING, limit)
        if ids:
            logger.info("Pipeline | backlog sweep found %d pending documents", len(ids))
        return [await self.run(document_id) for document_id in ids]

    async def schedule_pending(self, limit: int = 10) -> int:
        """Hand up to `limit` pending documents to the scheduler."""
        ids = await self._repo.list_by_state(ProcessingState.PENDING, limit)
        for document_id in ids:
            await self._schedule(document_id)
        return len(ids)

    async def delete_document_chunks(self, document_id: UUID) -> int:
        return await self._store.delete_all(document_id)

    async def has_document_chunks(self, document_id: UUID) -> bool:
        return await self._store.has_chunks(document_id)

    async def statistics(self, tenant_id: UUID | None = None) -> ChunkStats:
        return await self._store.stats(tenant_id)
