"""
Celery Tasks — Document AI Pipeline

Task: process_document_ai
  Runs DocumentAIPipeline.run() for one document id. The pipeline owns all
  state handling (claim, step outputs, completed / failed), so the task
  never retries: a failed document stays failed until reprocessed.

Task: process_pending_documents
  Beat task. Runs up to `limit` documents still `pending`, e.g. after the
  broker was unreachable during upload. `failed` documents are not swept.

Each worker process builds the service container once, on its own event
loop, and reuses both for every task it executes.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from dataclasses import asdict
from typing import Any, Coroutine, TypeVar
from uuid import UUID

from docintel.core.config import get_settings
from docintel.workers.celery_app import celery_app

logger = logging.getLogger(__name__)

T = TypeVar("T")

_worker_loop: asyncio.AbstractEventLoop | None = None
_worker_services = None


# ---------------------------------------------------------------------------
# Async task helper
# Run async coroutines inside Celery's synchronous task context.
# ---------------------------------------------------------------------------

def run_async(coro: Coroutine[Any, Any, T]) -> T:
    """
    Execute a coroutine on this worker process's persistent event loop.

    The loop outlives individual tasks so the database engine and HTTP
    clients built on it can be reused.
    """
    global _worker_loop
    if _worker_loop is None or _worker_loop.is_closed():
        _worker_loop = asyncio.new_event_loop()
    return _worker_loop.run_until_complete(coro)


async def _services():
    global _worker_services
    if _worker_services is None:
        from docintel.services.container import AIServices

        # Runs scheduled from inside a worker go back through Celery
        _worker_services = await AIServices.build(get_settings())
    return _worker_services


def _outcome_payload(outcome) -> dict[str, Any]:
    payload = asdict(outcome)
    payload["document_id"] = str(outcome.document_id)
    payload["status"]      = outcome.status.value
    return payload


# ---------------------------------------------------------------------------
# Pipeline run
# ---------------------------------------------------------------------------

@celery_app.task(
    name="docintel.workers.tasks.process_document_ai",
    acks_late=True,
    reject_on_worker_lost=True,
)
def process_document_ai(*, document_id: str) -> dict[str, Any]:
    return run_async(_process_document_ai_async(uuid.UUID(document_id)))


async def _process_document_ai_async(document_id: UUID) -> dict[str, Any]:
    services = await _services()
    outcome  = await services.pipeline.run(document_id)
    return _outcome_payload(outcome)


# ---------------------------------------------------------------------------
# Backlog sweep: runs via Celery Beat
# ---------------------------------------------------------------------------

@celery_app.task(
    name="docintel.workers.tasks.process_pending_documents",
    acks_late=True,
    soft_time_limit=1800,
    time_limit=1860,
)
def process_pending_documents(limit: int = 10) -> dict[str, int]:
    return run_async(_process_pending_documents_async(limit))


async def _process_pending_documents_async(limit: int) -> dict[str, int]:
    services = await _services()
    outcomes = await services.pipeline.process_pending(limit)

    counts: dict[str, int] = {"found": len(outcomes)}
    for outcome in outcomes:
        counts[outcome.status.value] = counts.get(outcome.status.value, 0) + 1
    logger.info("Backlog sweep | %s", counts)
    return counts


# ---------------------------------------------------------------------------
# Scheduler adapter
# ---------------------------------------------------------------------------

class CeleryScheduler:
    """
    PipelineScheduler that publishes process_document_ai.

    The broker publish is blocking I/O, so it runs in a thread executor
    instead of on the event loop serving the request.
    """

    async def submit(self, document_id: UUID) -> None:
        loop   = asyncio.get_running_loop()
        result = await loop.run_in_executor(
            None,
            lambda: process_document_ai.apply_async(kwargs={"document_id": str(document_id)}),
        )
        logger.info("CeleryScheduler | published doc=%s task_id=%s", document_id, result.id)

    async def aclose(self) -> None:
        return None
