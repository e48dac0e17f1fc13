"""
Unit Tests — DocumentAIPipeline
════════════════════════════════
Real collaborators end to end: SQLite document repository, LocalTextExtractor
over a tmp storage root, the stub provider behind a ProviderGateway and the
in-memory chunk store. Only the search indexer and the scheduler are
recording doubles.

  ✅ Full run: extract → classify → summarize → index → embed → completed
  ✅ Unsupported MIME / blank text complete without AI steps
  ✅ Low classification confidence falls back to "Other"
  ✅ A failing step records ai_error and keeps earlier step outputs
  ✅ Completed documents are never re-run implicitly; reprocess() is explicit
     and clears every output of the previous run
  ✅ A submission the worker pool dropped is run by the backlog sweeper
  ✅ Concurrent runs on one document: exactly one does the work
"""

from __future__ import annotations

import asyncio
import uuid
from functools import partial

import pytest

from docintel.core.errors import InvalidTransitionError
from docintel.models.processing import ProcessingState
from docintel.processing.chunking import Chunker, chunk_config_for
from docintel.processing.embeddings import ChunkEmbedder
from docintel.services.documents import DocumentRecord
from docintel.services.extraction import LocalTextExtractor
from docintel.services.pipeline import DocumentAIPipeline, OutcomeStatus
from docintel.workers.pool import BacklogSweeper, BoundedWorkerPool

INVOICE_TEXT = "Invoice 2024-001 for consulting services. Total due: 1,200 EUR. Payment within 30 days."


class RecordingIndexer:
    def __init__(self, error: Exception | None = None) -> None:
        self.indexed: list[tuple[DocumentRecord, str]] = []
        self.error = error

    async def index_document(self, document: DocumentRecord, text: str) -> None:
        if self.error is not None:
            raise self.error
        self.indexed.append((document, text))

    async def aclose(self) -> None:
        return None


@pytest.fixture
def indexer() -> RecordingIndexer:
    return RecordingIndexer()


def _pipeline(repository, gateway, storage_root, store, indexer, scheduler=None, **kwargs):
    return DocumentAIPipeline(
        repository=repository,
        gateway=gateway,
        extractor=LocalTextExtractor(storage_root),
        indexer=indexer,
        store=store,
        chunker=Chunker(chunk_config_for("stub")),
        embedder=ChunkEmbedder(gateway),
        scheduler=scheduler,
        **kwargs,
    )


@pytest.fixture
def pipeline(repository, gateway, storage_root, memory_store, indexer, recording_scheduler):
    return _pipeline(repository, gateway, storage_root, memory_store, indexer, recording_scheduler)


@pytest.fixture
def make_document(repository, storage_root):
    async def _make(
        content:   str | bytes = INVOICE_TEXT,
        filename:  str = "invoice.txt",
        mime_type: str = "text/plain",
        tenant_id: uuid.UUID | None = None,
        write:     bool = True,
    ) -> DocumentRecord:
        if write:
            data = content.encode("utf-8") if isinstance(content, str) else content
            (storage_root / filename).write_bytes(data)
        return await repository.create(filename, mime_type, filename, tenant_id=tenant_id)
    return _make


# ─────────────────────────────────────────────────────────────────────────────
# Happy path
# ─────────────────────────────────────────────────────────────────────────────

@pytest.mark.unit
class TestRun:

    async def test_full_run(self, pipeline, repository, memory_store, indexer, make_document, test_tenant_id):
        doc = await make_document(tenant_id=test_tenant_id)
        await pipeline.mark_pending(doc.id)

        outcome = await pipeline.run(doc.id)

        assert outcome.status is OutcomeStatus.COMPLETED
        assert outcome.steps == ["extract", "classify", "summarize", "index", "embed"]
        assert outcome.chunk_count == 1
        assert outcome.error is None

        record = await repository.get(doc.id)
        assert record.ai_processing_status is ProcessingState.COMPLETED
        assert record.ai_processed_at is not None
        assert record.ai_error is None
        assert record.ai_category == "Invoice"
        assert record.ai_confidence == pytest.approx(0.9)
        assert "stub" in record.ai_tags
        assert record.ai_summary == "Invoice 2024-001 for consulting services. Total due: 1,200 EUR."
        assert record.ai_key_points[0] == "The document has 13 words"
        assert await repository.get_extracted_text(doc.id) == INVOICE_TEXT

        chunks = await memory_store.list_by_document(doc.id)
        assert [c.chunk_index for c in chunks] == [0]
        assert chunks[0].tenant_id == test_tenant_id

        indexed_record, indexed_text = indexer.indexed[0]
        assert indexed_record.ai_category == "Invoice"
        assert indexed_text == INVOICE_TEXT

    async def test_document_without_tenant_is_not_embedded(
        self, pipeline, repository, memory_store, make_document,
    ):
        doc = await make_document(tenant_id=None)
        await pipeline.mark_pending(doc.id)

        outcome = await pipeline.run(doc.id)

        assert outcome.status is OutcomeStatus.COMPLETED
        assert "embed" not in outcome.steps
        assert (await repository.get(doc.id)).ai_category == "Invoice"
        assert await memory_store.has_chunks(doc.id) is False

    async def test_unsupported_mime_completes_without_ai_steps(
        self, pipeline, repository, indexer, make_document, test_tenant_id,
    ):
        doc = await make_document(b"\x89PNG\r\n", filename="photo.png", mime_type="image/png",
                                  tenant_id=test_tenant_id)
        await pipeline.mark_pending(doc.id)

        outcome = await pipeline.run(doc.id)

        assert outcome.status is OutcomeStatus.COMPLETED
        assert outcome.steps == ["extract"]
        record = await repository.get(doc.id)
        assert record.ai_processing_status is ProcessingState.COMPLETED
        assert record.ai_category is None
        assert await repository.get_extracted_text(doc.id) == ""
        assert indexer.indexed == []

    async def test_blank_text_completes_without_ai_steps(
        self, pipeline, repository, make_document, test_tenant_id,
    ):
        doc = await make_document("   \n\n  ", filename="blank.txt", tenant_id=test_tenant_id)
        await pipeline.mark_pending(doc.id)

        outcome = await pipeline.run(doc.id)

        assert outcome.status is OutcomeStatus.COMPLETED
        assert outcome.steps == ["extract"]
        assert (await repository.get(doc.id)).ai_summary is None

    async def test_low_confidence_uses_fallback_category(
        self, repository, gateway, storage_root, memory_store, indexer, make_document, test_tenant_id,
    ):
        pipeline = _pipeline(
            repository, gateway, storage_root, memory_store, indexer, confidence_threshold=0.95,
        )
        doc = await make_document(tenant_id=test_tenant_id)
        await pipeline.mark_pending(doc.id)

        await pipeline.run(doc.id)

        record = await repository.get(doc.id)
        assert record.ai_category == "Other"
        assert record.ai_confidence == pytest.approx(0.9)

    async def test_sql_chunk_store(
        self, repository, gateway, storage_root, sql_store, indexer, make_document, test_tenant_id,
    ):
        pipeline = _pipeline(repository, gateway, storage_root, sql_store, indexer)
        doc = await make_document(tenant_id=test_tenant_id)
        await pipeline.mark_pending(doc.id)

        outcome = await pipeline.run(doc.id)

        assert outcome.status is OutcomeStatus.COMPLETED
        assert (await pipeline.statistics(test_tenant_id)).total_chunks == 1


# ─────────────────────────────────────────────────────────────────────────────
# Failures
# ─────────────────────────────────────────────────────────────────────────────

@pytest.mark.unit
class TestFailures:

    async def test_failing_step_keeps_earlier_outputs(
        self, repository, gateway, storage_root, memory_store, make_document, test_tenant_id,
    ):
        pipeline = _pipeline(
            repository, gateway, storage_root, memory_store, RecordingIndexer(RuntimeError("search down")),
        )
        doc = await make_document(tenant_id=test_tenant_id)
        await pipeline.mark_pending(doc.id)

        outcome = await pipeline.run(doc.id)

        assert outcome.status is OutcomeStatus.FAILED
        assert outcome.error == "search down"
        assert outcome.steps == ["extract", "classify", "summarize"]

        record = await repository.get(doc.id)
        assert record.ai_processing_status is ProcessingState.FAILED
        assert record.ai_error == "search down"
        assert record.ai_category == "Invoice"
        assert record.ai_summary is not None
        assert record.ai_processed_at is None
        assert await memory_store.has_chunks(doc.id) is False

    async def test_missing_file_fails_the_run(self, pipeline, repository, make_document, test_tenant_id):
        doc = await make_document(filename="gone.txt", write=False, tenant_id=test_tenant_id)
        await pipeline.mark_pending(doc.id)

        outcome = await pipeline.run(doc.id)

        assert outcome.status is OutcomeStatus.FAILED
        record = await repository.get(doc.id)
        assert record.ai_processing_status is ProcessingState.FAILED
        assert record.ai_error

    async def test_unknown_document_is_skipped(self, pipeline):
        outcome = await pipeline.run(uuid.uuid4())
        assert outcome.status is OutcomeStatus.SKIPPED
        assert outcome.reason == "not_found"


# ─────────────────────────────────────────────────────────────────────────────
# Lifecycle
# ─────────────────────────────────────────────────────────────────────────────

@pytest.mark.unit
class TestLifecycle:

    async def test_upload_completed_marks_pending_and_schedules(
        self, pipeline, repository, recording_scheduler, make_document,
    ):
        doc = await make_document()

        record = await pipeline.on_upload_completed(doc.id)

        assert record.ai_processing_status is ProcessingState.PENDING
        assert recording_scheduler.submitted == [doc.id]

    async def test_second_upload_notification_is_rejected(self, pipeline, make_document):
        doc = await make_document()
        await pipeline.on_upload_completed(doc.id)
        with pytest.raises(InvalidTransitionError):
            await pipeline.on_upload_completed(doc.id)

    async def test_document_not_pending_is_skipped(self, pipeline, make_document):
        doc = await make_document()
        outcome = await pipeline.run(doc.id)
        assert outcome.status is OutcomeStatus.SKIPPED
        assert outcome.reason == "status_none"

    async def test_completed_document_is_not_run_again(self, pipeline, make_document, test_tenant_id):
        doc = await make_document(tenant_id=test_tenant_id)
        await pipeline.mark_pending(doc.id)
        await pipeline.run(doc.id)

        again = await pipeline.run(doc.id)

        assert again.status is OutcomeStatus.SKIPPED
        assert again.reason == "status_completed"
        assert again.steps == []

    async def test_reprocess_reruns_and_replaces_chunks(
        self, pipeline, repository, memory_store, recording_scheduler, make_document, test_tenant_id,
    ):
        doc = await make_document(tenant_id=test_tenant_id)
        await pipeline.mark_pending(doc.id)
        first = await pipeline.run(doc.id)

        record = await pipeline.reprocess(doc.id)
        assert record.ai_processing_status is ProcessingState.PENDING
        assert record.ai_processed_at is None
        assert recording_scheduler.submitted == [doc.id]

        second = await pipeline.run(doc.id)

        assert second.status is OutcomeStatus.COMPLETED
        assert len(await memory_store.list_by_document(doc.id)) == first.chunk_count

    async def test_reprocess_clears_previous_error(
        self, repository, gateway, storage_root, memory_store, make_document, test_tenant_id,
    ):
        failing  = _pipeline(repository, gateway, storage_root, memory_store, RecordingIndexer(RuntimeError("down")))
        doc = await make_document(tenant_id=test_tenant_id)
        await failing.mark_pending(doc.id)
        await failing.run(doc.id)

        healthy = _pipeline(repository, gateway, storage_root, memory_store, RecordingIndexer())
        await healthy.reprocess(doc.id)
        assert (await repository.get(doc.id)).ai_error is None

        outcome = await healthy.run(doc.id)
        assert outcome.status is OutcomeStatus.COMPLETED
        assert (await repository.get(doc.id)).ai_processing_status is ProcessingState.COMPLETED

    async def test_reprocess_to_blank_text_leaves_no_stale_outputs(
        self, pipeline, repository, memory_store, storage_root, make_document, test_tenant_id,
    ):
        doc = await make_document(tenant_id=test_tenant_id)
        await pipeline.mark_pending(doc.id)
        await pipeline.run(doc.id)
        assert (await repository.get(doc.id)).ai_category == "Invoice"
        assert await memory_store.has_chunks(doc.id) is True

        # The file is replaced with whitespace before the re-run
        (storage_root / "invoice.txt").write_text("   \n\n  ")

        record = await pipeline.reprocess(doc.id)
        assert record.ai_category is None
        assert record.ai_summary is None
        assert record.ai_tags == []
        assert record.ai_key_points == []
        assert await repository.get_extracted_text(doc.id) is None
        assert await memory_store.list_by_document(doc.id) == []

        outcome = await pipeline.run(doc.id)

        assert outcome.status is OutcomeStatus.COMPLETED
        assert outcome.steps == ["extract"]
        record = await repository.get(doc.id)
        assert record.ai_processing_status is ProcessingState.COMPLETED
        assert record.ai_category is None
        assert record.ai_confidence is None
        assert record.ai_summary is None
        assert record.ai_tags == []
        assert await pipeline.has_document_chunks(doc.id) is False

    async def test_reprocess_while_pending_is_rejected(self, pipeline, make_document):
        doc = await make_document()
        await pipeline.mark_pending(doc.id)
        with pytest.raises(InvalidTransitionError):
            await pipeline.reprocess(doc.id)

    async def test_concurrent_runs_do_the_work_once(self, pipeline, indexer, make_document, test_tenant_id):
        doc = await make_document(tenant_id=test_tenant_id)
        await pipeline.mark_pending(doc.id)

        outcomes = await asyncio.gather(pipeline.run(doc.id), pipeline.run(doc.id), pipeline.run(doc.id))

        statuses = sorted(o.status.value for o in outcomes)
        assert statuses == ["completed", "skipped", "skipped"]
        assert len(indexer.indexed) == 1


# ─────────────────────────────────────────────────────────────────────────────
# Backlog + chunk maintenance
# ─────────────────────────────────────────────────────────────────────────────

@pytest.mark.unit
class TestBacklog:

    async def test_process_pending_runs_oldest_first(self, pipeline, make_document, test_tenant_id):
        first  = await make_document(filename="a.txt", tenant_id=test_tenant_id)
        second = await make_document(filename="b.txt", tenant_id=test_tenant_id)
        await make_document(filename="c.txt", tenant_id=test_tenant_id)   # never uploaded
        await pipeline.mark_pending(first.id)
        await pipeline.mark_pending(second.id)

        outcomes = await pipeline.process_pending(limit=10)

        assert [o.document_id for o in outcomes] == [first.id, second.id]
        assert all(o.status is OutcomeStatus.COMPLETED for o in outcomes)

    async def test_schedule_pending_submits_backlog(self, pipeline, recording_scheduler, make_document):
        docs = [await make_document(filename=f"{i}.txt") for i in range(3)]
        for doc in docs:
            await pipeline.mark_pending(doc.id)

        assert await pipeline.schedule_pending(limit=2) == 2
        assert recording_scheduler.submitted == [docs[0].id, docs[1].id]

    async def test_dropped_submission_is_run_by_the_backlog_sweeper(
        self, repository, gateway, storage_root, memory_store, indexer, make_document, test_tenant_id,
    ):
        pipeline = _pipeline(repository, gateway, storage_root, memory_store, indexer)
        release  = asyncio.Event()

        async def gated_run(document_id: uuid.UUID):
            await release.wait()
            return await pipeline.run(document_id)

        pool = BoundedWorkerPool(gated_run, max_concurrency=1, max_deferrals=0)
        pipeline.bind_scheduler(pool)

        first  = await make_document(filename="a.txt", tenant_id=test_tenant_id)
        second = await make_document(filename="b.txt", tenant_id=test_tenant_id)
        await pipeline.on_upload_completed(first.id)
        await pipeline.on_upload_completed(second.id)

        assert pool.stats.dropped == 1
        assert (await repository.get(second.id)).ai_processing_status is ProcessingState.PENDING

        sweeper = BacklogSweeper(partial(pipeline.schedule_pending, 10), interval=0.01)
        sweeper.start()
        release.set()
        try:
            for _ in range(300):
                if (await repository.get(second.id)).ai_processing_status is ProcessingState.COMPLETED:
                    break
                await asyncio.sleep(0.01)
        finally:
            await sweeper.aclose()
            await pool.aclose()

        assert (await repository.get(first.id)).ai_processing_status is ProcessingState.COMPLETED
        assert (await repository.get(second.id)).ai_processing_status is ProcessingState.COMPLETED
        assert sweeper.sweeps >= 1

    async def test_chunk_maintenance(self, pipeline, make_document, test_tenant_id):
        doc = await make_document(tenant_id=test_tenant_id)
        await pipeline.mark_pending(doc.id)
        await pipeline.run(doc.id)

        assert await pipeline.has_document_chunks(doc.id) is True
        stats = await pipeline.statistics(test_tenant_id)
        assert (stats.total_chunks, stats.total_documents) == (1, 1)

        assert await pipeline.delete_document_chunks(doc.id) == 1
        assert await pipeline.has_document_chunks(doc.id) is False
