"""Elastic pool of asyncio executors bounded by a preallocated floor and a hard ceiling."""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Awaitable, Callable, List, Optional, Tuple

from .scheduler import ScheduledIteration

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PoolStats:
    size: int
    active: int
    peak_active: int
    dropped: int
    max_workers: int

    def to_dict(self) -> dict:
        return {
            "size": self.size,
            "active": self.active,
            "peak_active": self.peak_active,
            "dropped": self.dropped,
            "max_workers": self.max_workers,
        }


class _Worker:
    __slots__ = ("index", "inbox", "task", "current", "started_at")

    def __init__(self, index: int):
        self.index = index
        self.inbox: asyncio.Queue = asyncio.Queue(maxsize=1)
        self.task: Optional[asyncio.Task] = None
        self.current: Optional[ScheduledIteration] = None
        self.started_at: Optional[float] = None


class WorkerPool:
    """Hands each due iteration to an idle executor, growing on demand.

    ``dispatch`` never waits: when no executor is idle and the pool already
    holds ``max_workers`` executors, the iteration is dropped and reported
    through ``on_dropped``. Executors are only torn down by ``shutdown``.
    """

    def __init__(
        self,
        execute: Callable[[ScheduledIteration], Awaitable[None]],
        *,
        preallocated: int = 1,
        max_workers: int = 1,
        on_dropped: Optional[Callable[[ScheduledIteration], None]] = None,
    ):
        if preallocated < 0:
            raise ValueError("preallocated must be >= 0")
        if max_workers < 1:
            raise ValueError("max_workers must be >= 1")
        if max_workers < preallocated:
            raise ValueError(f"max_workers ({max_workers}) must be >= preallocated ({preallocated})")

        self._execute = execute
        self.preallocated = preallocated
        self.max_workers = max_workers
        self.on_dropped = on_dropped

        self._workers: List[_Worker] = []
        self._idle: List[_Worker] = []
        self._all_idle: Optional[asyncio.Event] = None
        self._closed = False
        self.active = 0
        self.peak_active = 0
        self.dropped = 0

    @property
    def size(self) -> int:
        return len(self._workers)

    def stats(self) -> PoolStats:
        return PoolStats(
            size=self.size,
            active=self.active,
            peak_active=self.peak_active,
            dropped=self.dropped,
            max_workers=self.max_workers,
        )

    async def start(self) -> None:
        """Create the preallocated executors before any iteration is due."""
        self._all_idle = asyncio.Event()
        self._all_idle.set()
        for _ in range(self.preallocated):
            self._idle.append(self._spawn())
        # Let every executor reach its first await on the inbox.
        await asyncio.sleep(0)
        logger.debug(f"Worker pool started with {self.size} executors (max {self.max_workers})")

    def _spawn(self) -> _Worker:
        worker = _Worker(len(self._workers))
        worker.task = asyncio.create_task(self._work(worker), name=f"loadpace-worker-{worker.index}")
        self._workers.append(worker)
        return worker

    def dispatch(self, iteration: ScheduledIteration) -> bool:
        """Start ``iteration`` on a free executor; ``False`` means it was dropped."""
        if self._closed:
            raise RuntimeError("Cannot dispatch to a pool that has been shut down")
        if self._all_idle is None:
            raise RuntimeError("WorkerPool.start() must be awaited before dispatching")

        if self._idle:
            worker = self._idle.pop()
        elif self.size < self.max_workers:
            worker = self._spawn()
            logger.debug(f"Grew worker pool to {self.size} executors")
        else:
            self.dropped += 1
            if self.on_dropped is not None:
                self.on_dropped(iteration)
            return False

        worker.current = iteration
        worker.started_at = time.time()
        self.active += 1
        self.peak_active = max(self.peak_active, self.active)
        self._all_idle.clear()
        worker.inbox.put_nowait(iteration)
        return True

    async def _work(self, worker: _Worker) -> None:
        while True:
            iteration = await worker.inbox.get()
            if iteration is None:
                return
            try:
                await self._execute(iteration)
            except Exception as e:
                logger.error(f"Executor {worker.index} failed on iteration {iteration.sequence}: {e}")
            finally:
                self._release(worker)

    def _release(self, worker: _Worker) -> None:
        worker.current = None
        worker.started_at = None
        self.active -= 1
        if not self._closed:
            self._idle.append(worker)
        if self.active == 0 and self._all_idle is not None:
            self._all_idle.set()

    async def drain(self, grace: float) -> List[Tuple[ScheduledIteration, Optional[float]]]:
        """Wait up to ``grace`` seconds for in-flight iterations.

        Returns the ``(iteration, started_at)`` pairs that were still running
        when the grace period ran out; their executors are cancelled.
        """
        if self._all_idle is None or self.active == 0:
            return []
        try:
            await asyncio.wait_for(self._all_idle.wait(), timeout=grace)
            return []
        except asyncio.TimeoutError:
            pass

        busy = [w for w in self._workers if w.current is not None]
        interrupted = [(w.current, w.started_at) for w in busy]
        logger.warning(f"Graceful stop expired; interrupting {len(busy)} in-flight iterations")
        for worker in busy:
            worker.task.cancel()
        await asyncio.gather(*(w.task for w in busy), return_exceptions=True)
        self._workers = [w for w in self._workers if w not in busy]
        self._idle = [w for w in self._idle if w not in busy]
        return interrupted

    async def shutdown(self) -> None:
        """Stop every executor. Idempotent."""
        if self._closed:
            return
        self._closed = True
        live = [w for w in self._workers if w.task is not None and not w.task.done()]
        for worker in live:
            if worker.current is None:
                worker.inbox.put_nowait(None)
            else:
                worker.task.cancel()
        await asyncio.gather(*(w.task for w in live), return_exceptions=True)
        self._idle.clear()
        logger.debug(f"Worker pool shut down (peak {self.peak_active} active, {self.dropped} dropped)")
