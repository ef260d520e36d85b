import asyncio

import pytest

from loadpace.core.scheduler import ScheduledIteration
from loadpace.core.worker_pool import WorkerPool


def _iteration(sequence):
    return ScheduledIteration(fire_at=0.0, sequence=sequence)


class _GatedExecutor:
    """Holds every iteration until the gate opens, tracking concurrency."""

    def __init__(self):
        self.gate = asyncio.Event()
        self.running = 0
        self.peak = 0
        self.executed = []

    async def __call__(self, iteration):
        self.running += 1
        self.peak = max(self.peak, self.running)
        try:
            await self.gate.wait()
            self.executed.append(iteration.sequence)
        finally:
            self.running -= 1


@pytest.mark.unit
class TestWorkerPool:
    """Bounded elastic executor pool."""

    @pytest.mark.asyncio
    async def test_start_preallocates_floor(self):
        pool = WorkerPool(_GatedExecutor(), preallocated=3, max_workers=5)
        await pool.start()

        assert pool.size == 3
        assert pool.active == 0
        await pool.shutdown()

    @pytest.mark.asyncio
    async def test_burst_beyond_ceiling_runs_n_and_drops_rest(self):
        executor = _GatedExecutor()
        dropped = []
        pool = WorkerPool(executor, preallocated=0, max_workers=3, on_dropped=dropped.append)
        await pool.start()

        accepted = [pool.dispatch(_iteration(n)) for n in range(5)]
        for _ in range(3):
            await asyncio.sleep(0)

        assert accepted == [True, True, True, False, False]
        assert [it.sequence for it in dropped] == [3, 4]
        assert pool.dropped == 2
        assert executor.running == 3
        assert pool.peak_active == 3
        assert pool.size == 3

        executor.gate.set()
        assert await pool.drain(1.0) == []
        assert sorted(executor.executed) == [0, 1, 2]
        assert pool.active == 0
        await pool.shutdown()

    @pytest.mark.asyncio
    async def test_idle_executor_is_reused(self):
        executor = _GatedExecutor()
        executor.gate.set()
        pool = WorkerPool(executor, preallocated=1, max_workers=5)
        await pool.start()

        for n in range(4):
            assert pool.dispatch(_iteration(n))
            await pool.drain(1.0)

        assert pool.size == 1
        assert executor.executed == [0, 1, 2, 3]
        await pool.shutdown()

    @pytest.mark.asyncio
    async def test_grows_on_demand_up_to_ceiling(self):
        executor = _GatedExecutor()
        pool = WorkerPool(executor, preallocated=1, max_workers=4)
        await pool.start()

        for n in range(4):
            assert pool.dispatch(_iteration(n))

        assert pool.size == 4
        assert not pool.dispatch(_iteration(4))
        executor.gate.set()
        await pool.drain(1.0)
        # No mid-run shrink.
        assert pool.size == 4
        await pool.shutdown()

    @pytest.mark.asyncio
    async def test_drain_interrupts_after_grace(self):
        executor = _GatedExecutor()
        pool = WorkerPool(executor, preallocated=2, max_workers=2)
        await pool.start()
        pool.dispatch(_iteration(7))
        pool.dispatch(_iteration(8))
        await asyncio.sleep(0)

        interrupted = await pool.drain(0.05)

        assert sorted(it.sequence for it, _ in interrupted) == [7, 8]
        assert all(started is not None for _, started in interrupted)
        assert pool.active == 0
        assert executor.executed == []
        await pool.shutdown()

    @pytest.mark.asyncio
    async def test_executor_failure_releases_worker(self):
        calls = []

        async def flaky(iteration):
            calls.append(iteration.sequence)
            if iteration.sequence == 0:
                raise RuntimeError("boom")

        pool = WorkerPool(flaky, preallocated=1, max_workers=1)
        await pool.start()
        pool.dispatch(_iteration(0))
        await pool.drain(1.0)

        assert pool.active == 0
        assert pool.dispatch(_iteration(1))
        await pool.drain(1.0)
        assert calls == [0, 1]
        await pool.shutdown()

    @pytest.mark.asyncio
    async def test_shutdown_is_idempotent_and_final(self):
        pool = WorkerPool(_GatedExecutor(), preallocated=2, max_workers=2)
        await pool.start()

        await pool.shutdown()
        await pool.shutdown()

        with pytest.raises(RuntimeError):
            pool.dispatch(_iteration(0))

    @pytest.mark.asyncio
    async def test_dispatch_requires_start(self):
        pool = WorkerPool(_GatedExecutor(), preallocated=0, max_workers=1)

        with pytest.raises(RuntimeError):
            pool.dispatch(_iteration(0))

    def test_rejects_inverted_bounds(self):
        with pytest.raises(ValueError):
            WorkerPool(_GatedExecutor(), preallocated=5, max_workers=2)
        with pytest.raises(ValueError):
            WorkerPool(_GatedExecutor(), preallocated=0, max_workers=0)

    @pytest.mark.asyncio
    async def test_stats_snapshot(self):
        executor = _GatedExecutor()
        pool = WorkerPool(executor, preallocated=1, max_workers=1)
        await pool.start()
        pool.dispatch(_iteration(0))
        pool.dispatch(_iteration(1))

        stats = pool.stats()

        assert stats.to_dict() == {"size": 1, "active": 1, "peak_active": 1, "dropped": 1, "max_workers": 1}
        executor.gate.set()
        await pool.shutdown()
