"""
Celery Application Factory

Used when pipeline_scheduler="celery": document AI runs execute in Celery
workers instead of the API process.

Queue topology:
  documents.ai       pipeline runs published by upload / reprocess
  documents.backlog  periodic sweep of documents left `pending`

Only document ids travel in task payloads; workers load everything else
from the database. Worker concurrency is pipeline_max_concurrency, the same
cap the in-process pool enforces.
"""

from __future__ import annotations

import logging

from celery import Celery
from celery.signals import task_failure, task_postrun, task_prerun
from kombu import Exchange, Queue

from docintel.core.config import Settings, get_settings

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Queue and exchange definitions
# ---------------------------------------------------------------------------

DOCUMENTS_EXCHANGE = Exchange("documents", type="direct", durable=True)

TASK_QUEUES = (
    Queue(
        "documents.ai",
        exchange=DOCUMENTS_EXCHANGE,
        routing_key="documents.ai",
        durable=True,
    ),
    Queue(
        "documents.backlog",
        exchange=DOCUMENTS_EXCHANGE,
        routing_key="documents.backlog",
        durable=True,
    ),
)

TASK_ROUTES = {
    "docintel.workers.tasks.process_document_ai":       {"queue": "documents.ai"},
    "docintel.workers.tasks.process_pending_documents": {"queue": "documents.backlog"},
}

BACKLOG_SWEEP_INTERVAL = 60   # seconds

# ---------------------------------------------------------------------------
# Celery app factory
# ---------------------------------------------------------------------------

def create_celery_app(settings: Settings | None = None) -> Celery:
    settings = settings or get_settings()
    app = Celery("docintel")

    app.conf.update(
        # --- Broker / Backend ---
        broker_url=settings.celery_broker_url,
        result_backend=settings.celery_result_backend,

        # --- Serialization (reject non-JSON messages) ---
        task_serializer="json",
        result_serializer="json",
        accept_content=["json"],
        event_serializer="json",

        # --- Queues ---
        task_queues=TASK_QUEUES,
        task_routes=TASK_ROUTES,
        task_default_queue="documents.ai",
        task_default_exchange="documents",
        task_default_routing_key="documents.ai",

        # --- Reliability ---
        task_acks_late=True,           # ack only after the run finished
        task_reject_on_worker_lost=True,
        worker_prefetch_multiplier=1,  # no hidden per-worker backlog

        # --- Concurrency cap ---
        worker_concurrency=settings.pipeline_max_concurrency,

        # --- Timeouts ---
        task_soft_time_limit=600,
        task_time_limit=660,

        # --- Result TTL (state lives in the documents table) ---
        result_expires=3600,

        timezone="UTC",
        enable_utc=True,

        # --- Beat schedule (backlog sweep) ---
        beat_schedule={
            "process-pending-documents": {
                "task":     "docintel.workers.tasks.process_pending_documents",
                "schedule": BACKLOG_SWEEP_INTERVAL,
                "kwargs":   {"limit": settings.pipeline_backlog_limit},
                "options":  {"queue": "documents.backlog"},
            },
        },

        worker_max_tasks_per_child=200,
    )

    app.autodiscover_tasks(["docintel.workers"])
    return app


celery_app = create_celery_app()


# ---------------------------------------------------------------------------
# Celery signals: task lifecycle logging
# ---------------------------------------------------------------------------

@task_prerun.connect
def on_task_prerun(task_id, task, args, kwargs, **_):
    logger.info(
        "Task start | task_id=%s task=%s doc=%s",
        task_id, task.name, (kwargs or {}).get("document_id", "-"),
    )


@task_postrun.connect
def on_task_postrun(task_id, task, args, kwargs, retval, state, **_):
    logger.info(
        "Task end | task_id=%s task=%s state=%s doc=%s",
        task_id, task.name, state, (kwargs or {}).get("document_id", "-"),
    )


@task_failure.connect
def on_task_failure(task_id, exception, args, kwargs, traceback, einfo, **_):
    logger.error(
        "Task failed | task_id=%s doc=%s error=%s",
        task_id, (kwargs or {}).get("document_id", "-"), exception,
        exc_info=True,
    )
