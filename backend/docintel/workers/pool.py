"""
Pipeline schedulers.

Upload and reprocess requests only *submit* a document id; a scheduler
decides when its pipeline run starts. Two implementations:

  BoundedWorkerPool   in-process asyncio tasks (pipeline_scheduler="local")
  CeleryScheduler     publishes process_document_ai (pipeline_scheduler="celery"),
                      see docintel.workers.tasks

BoundedWorkerPool admission:

  submit(doc)
     │
     ├── already running / deferred ──▶ ignored
     ├── active < max_concurrency ─────▶ start task now
     ├── deferrals < max_deferrals ────▶ loop.call_later(retry_delay, _admit)
     └── otherwise ────────────────────▶ dropped; the document stays `pending`
                                          until BacklogSweeper submits it again

Nothing is queued without bound: at most max_concurrency runs are active,
and every other submission is a single timer handle.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Protocol
from uuid import UUID

logger = logging.getLogger(__name__)

Runner = Callable[[UUID], Awaitable[Any]]


class PipelineScheduler(Protocol):
    async def submit(self, document_id: UUID) -> None: ...

    async def aclose(self) -> None: ...


@dataclass
class PoolStats:
    max_concurrency: int
    active:          int = 0
    deferred:        int = 0
    started:         int = 0
    finished:        int = 0
    deferrals:       int = 0
    dropped:         int = 0


class BoundedWorkerPool:
    """
    Runs `runner(document_id)` with at most `max_concurrency` runs in flight.

    Usage:
        pool = BoundedWorkerPool(pipeline.run, max_concurrency=3)
        await pool.submit(document_id)
        await pool.drain()
    """

    def __init__(
        self,
        runner:          Runner,
        max_concurrency: int   = 3,
        retry_delay:     float = 5.0,
        max_deferrals:   int   = 12,
    ) -> None:
        if max_concurrency < 1:
            raise ValueError("max_concurrency must be at least 1")
        self._runner        = runner
        self._max           = max_concurrency
        self._retry_delay   = retry_delay
        self._max_deferrals = max(0, max_deferrals)

        self._active:   dict[UUID, asyncio.Task]        = {}
        self._deferred: dict[UUID, asyncio.TimerHandle] = {}
        self._idle   = asyncio.Event()
        self._idle.set()
        self._closed = False
        self._stats  = PoolStats(max_concurrency=max_concurrency)

    @property
    def stats(self) -> PoolStats:
        self._stats.active   = len(self._active)
        self._stats.deferred = len(self._deferred)
        return self._stats

    async def submit(self, document_id: UUID) -> None:
        if document_id in self._active or document_id in self._deferred:
            logger.debug("WorkerPool | doc=%s already scheduled", document_id)
            return
        self._admit(document_id, attempt=0)

    def _admit(self, document_id: UUID, attempt: int) -> None:
        self._deferred.pop(document_id, None)
        if self._closed:
            self._stats.dropped += 1
            self._refresh_idle()
            return

        if len(self._active) < self._max:
            self._start(document_id)
        elif attempt < self._max_deferrals:
            loop = asyncio.get_running_loop()
            self._deferred[document_id] = loop.call_later(
                self._retry_delay, self._admit, document_id, attempt + 1,
            )
            self._stats.deferrals += 1
            logger.info(
                "WorkerPool | at capacity (%d), deferring doc=%s attempt=%d retry_in=%.1fs",
                self._max, document_id, attempt + 1, self._retry_delay,
            )
        else:
            self._stats.dropped += 1
            logger.warning(
                "WorkerPool | doc=%s deferred %d times, leaving it pending for the backlog sweep",
                document_id, attempt,
            )
        self._refresh_idle()

    def _start(self, document_id: UUID) -> None:
        task = asyncio.get_running_loop().create_task(
            self._run(document_id), name=f"pipeline-{document_id}",
        )
        self._active[document_id] = task
        self._stats.started += 1
        task.add_done_callback(lambda _t: self._finish(document_id))

    async def _run(self, document_id: UUID) -> None:
        try:
            await self._runner(document_id)
        except Exception as exc:
            logger.error("WorkerPool | run for doc=%s raised: %s", document_id, exc, exc_info=True)

    def _finish(self, document_id: UUID) -> None:
        self._active.pop(document_id, None)
        self._stats.finished += 1
        self._refresh_idle()

    def _refresh_idle(self) -> None:
        if self._active or self._deferred:
            self._idle.clear()
        else:
            self._idle.set()

    async def drain(self) -> None:
        """Wait until no run is active and no deferral is pending."""
        await self._idle.wait()

    async def aclose(self) -> None:
        """Stop admitting work, drop deferred submissions, wait for active runs."""
        self._closed = True
        for handle in self._deferred.values():
            handle.cancel()
        self._stats.dropped += len(self._deferred)
        self._deferred.clear()
        self._refresh_idle()
        if self._active:
            await asyncio.gather(*self._active.values(), return_exceptions=True)


class BacklogSweeper:
    """
    Every `interval` seconds, awaits `sweep()` to hand pending documents back
    to the scheduler.

    In-process counterpart of the Celery Beat `process_pending_documents`
    task: a submission BoundedWorkerPool dropped after max_deferrals stays
    `pending` and is submitted again by the next sweep.

    Usage:
        sweeper = BacklogSweeper(lambda: pipeline.schedule_pending(10), interval=60)
        sweeper.start()
        ...
        await sweeper.aclose()
    """

    def __init__(self, sweep: Callable[[], Awaitable[int]], interval: float) -> None:
        if interval <= 0:
            raise ValueError("interval must be positive")
        self._sweep    = sweep
        self._interval = interval
        self._task: asyncio.Task | None = None
        self.sweeps    = 0

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.get_running_loop().create_task(self._loop(), name="backlog-sweeper")
        logger.info("BacklogSweeper | started interval=%.1fs", self._interval)

    async def _loop(self) -> None:
        while True:
            await asyncio.sleep(self._interval)
            try:
                submitted = await self._sweep()
            except Exception as exc:
                logger.error("BacklogSweeper | sweep failed: %s", exc, exc_info=True)
                continue
            self.sweeps += 1
            if submitted:
                logger.info("BacklogSweeper | re-submitted %d pending documents", submitted)

    async def aclose(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
