"""
Unit Tests — BoundedWorkerPool
═══════════════════════════════
Runners block on an asyncio.Event so the tests control exactly when runs
finish. retry_delay is a few milliseconds, so deferrals resolve quickly.
"""

from __future__ import annotations

import asyncio
import uuid

import pytest

from docintel.workers.pool import BacklogSweeper, BoundedWorkerPool


class GatedRunner:
    """Runner that records concurrency and waits for `release` before returning."""

    def __init__(self) -> None:
        self.release = asyncio.Event()
        self.running = 0
        self.peak    = 0
        self.done: list[uuid.UUID] = []

    async def __call__(self, document_id: uuid.UUID) -> None:
        self.running += 1
        self.peak = max(self.peak, self.running)
        try:
            await self.release.wait()
            self.done.append(document_id)
        finally:
            self.running -= 1


async def _settle(seconds: float = 0.05) -> None:
    await asyncio.sleep(seconds)


@pytest.mark.unit
class TestBoundedWorkerPool:

    async def test_never_exceeds_max_concurrency(self):
        runner = GatedRunner()
        pool   = BoundedWorkerPool(runner, max_concurrency=2, retry_delay=0.005, max_deferrals=1000)
        docs   = [uuid.uuid4() for _ in range(5)]

        for doc in docs:
            await pool.submit(doc)
        await _settle()

        assert pool.stats.active == 2
        assert pool.stats.deferred == 3

        runner.release.set()
        await asyncio.wait_for(pool.drain(), timeout=5)

        assert runner.peak == 2
        assert sorted(runner.done) == sorted(docs)
        assert pool.stats.started == 5
        assert pool.stats.finished == 5
        assert pool.stats.dropped == 0

    async def test_duplicate_submission_is_ignored(self):
        runner = GatedRunner()
        pool   = BoundedWorkerPool(runner, max_concurrency=2)
        doc    = uuid.uuid4()

        await pool.submit(doc)
        await pool.submit(doc)
        runner.release.set()
        await asyncio.wait_for(pool.drain(), timeout=5)

        assert runner.done == [doc]
        assert pool.stats.started == 1

    async def test_submission_is_dropped_after_max_deferrals(self):
        runner = GatedRunner()
        pool   = BoundedWorkerPool(runner, max_concurrency=1, retry_delay=0.005, max_deferrals=2)
        first, second = uuid.uuid4(), uuid.uuid4()

        await pool.submit(first)
        await pool.submit(second)
        await _settle()

        assert pool.stats.deferrals == 2
        assert pool.stats.dropped == 1
        assert pool.stats.deferred == 0

        runner.release.set()
        await asyncio.wait_for(pool.drain(), timeout=5)
        assert runner.done == [first]

    async def test_runner_exception_does_not_break_the_pool(self):
        calls: list[uuid.UUID] = []

        async def failing(document_id: uuid.UUID) -> None:
            calls.append(document_id)
            raise RuntimeError("pipeline exploded")

        pool = BoundedWorkerPool(failing, max_concurrency=1)
        await pool.submit(uuid.uuid4())
        await asyncio.wait_for(pool.drain(), timeout=5)
        await pool.submit(uuid.uuid4())
        await asyncio.wait_for(pool.drain(), timeout=5)

        assert len(calls) == 2
        assert pool.stats.finished == 2

    async def test_drain_returns_immediately_when_idle(self):
        pool = BoundedWorkerPool(GatedRunner(), max_concurrency=1)
        await asyncio.wait_for(pool.drain(), timeout=1)

    async def test_aclose_drops_deferred_and_waits_for_active(self):
        runner = GatedRunner()
        pool   = BoundedWorkerPool(runner, max_concurrency=1, retry_delay=10.0, max_deferrals=5)
        active, waiting = uuid.uuid4(), uuid.uuid4()

        await pool.submit(active)
        await pool.submit(waiting)
        await asyncio.sleep(0)

        closing = asyncio.create_task(pool.aclose())
        await asyncio.sleep(0)
        assert not closing.done()

        runner.release.set()
        await asyncio.wait_for(closing, timeout=5)

        assert runner.done == [active]
        assert pool.stats.dropped == 1

        await pool.submit(uuid.uuid4())
        assert pool.stats.started == 1
        assert pool.stats.dropped == 2

    def test_max_concurrency_must_be_positive(self):
        with pytest.raises(ValueError):
            BoundedWorkerPool(GatedRunner(), max_concurrency=0)


@pytest.mark.unit
class TestBacklogSweeper:

    async def test_sweeps_repeatedly_until_closed(self):
        calls = 0

        async def sweep() -> int:
            nonlocal calls
            calls += 1
            return 1

        sweeper = BacklogSweeper(sweep, interval=0.005)
        sweeper.start()
        await _settle()
        await sweeper.aclose()

        assert calls >= 2
        assert sweeper.sweeps == calls
        assert sweeper.running is False

        seen = calls
        await _settle(0.02)
        assert calls == seen

    async def test_failed_sweep_does_not_stop_the_loop(self):
        outcomes = [RuntimeError("database unavailable"), 0, 0]

        async def sweep() -> int:
            outcome = outcomes.pop(0) if outcomes else 0
            if isinstance(outcome, Exception):
                raise outcome
            return outcome

        sweeper = BacklogSweeper(sweep, interval=0.005)
        sweeper.start()
        await _settle()
        await sweeper.aclose()

        assert sweeper.sweeps >= 2

    async def test_start_is_idempotent(self):
        async def sweep() -> int:
            return 0

        sweeper = BacklogSweeper(sweep, interval=10.0)
        sweeper.start()
        task = sweeper._task
        sweeper.start()

        assert sweeper._task is task
        await sweeper.aclose()

    def test_interval_must_be_positive(self):
        async def sweep() -> int:
            return 0

        with pytest.raises(ValueError):
            BacklogSweeper(sweep, interval=0)
