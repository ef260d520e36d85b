"""Run orchestration: pacing loop, executors, periodic evaluation and the final verdict."""

from __future__ import annotations

import asyncio
import logging
import time
from contextlib import nullcontext
from datetime import datetime
from typing import Any, Awaitable, Callable, Optional

from rich.console import Console
from rich.live import Live

from ..adapters.base import CredentialProvider, HttpClient
from ..adapters.credentials import provider_from_config
from ..adapters.httpx_client import HttpxClient
from .aggregator import MetricsAggregator
from .config import TestPlan
from .dashboard import RunDashboard, console_supports_live
from .observers import CompositeRunObserver, NullRunObserver, RunObserver
from .results import RunReport
from .runner import UNEXPECTED, IterationResult, IterationRunner
from .scheduler import MonotonicClock, RateScheduler, ScheduledIteration
from .settings import LoadPaceSettings
from .thresholds import ThresholdEvaluator
from .worker_pool import WorkerPool

logger = logging.getLogger(__name__)
console = Console()

IterationFn = Callable[[ScheduledIteration], Awaitable[IterationResult]]


class LoadTest:
    """
    Drives one :class:`TestPlan` from first scheduled iteration to verdict.

    Args:
        plan: Validated test plan
        client: HTTP client; an :class:`HttpxClient` sized to the worker ceiling by default
        credentials: Bearer token source; resolved from ``plan.credentials`` by default
        iteration: Replacement iteration logic (``async (ScheduledIteration) -> IterationResult``)
        observer: Receives lifecycle and progress notifications
        settings: Process defaults; read from ``LOADPACE_*`` variables by default
        clock: Pacing clock, monotonic by default
    """

    def __init__(
        self,
        plan: TestPlan,
        *,
        client: Optional[HttpClient] = None,
        credentials: Optional[CredentialProvider] = None,
        iteration: Optional[IterationFn] = None,
        observer: Optional[RunObserver] = None,
        settings: Optional[LoadPaceSettings] = None,
        clock: Optional[MonotonicClock] = None,
    ):
        self.plan = plan
        self.settings = settings or LoadPaceSettings()
        self.client = client
        self.clock = clock or MonotonicClock()
        self.timeout = plan.timeout or self.settings.default_timeout
        self.graceful_stop = plan.graceful_stop if plan.graceful_stop is not None else self.settings.graceful_stop

        self.credentials = credentials
        if self.credentials is None and iteration is None:
            self.credentials = provider_from_config(plan.credentials, self.settings)
        self._iteration = iteration

        self.observer = CompositeRunObserver([observer or NullRunObserver()])

        self.scheduler = RateScheduler.from_plan(plan)
        self.evaluator = ThresholdEvaluator(plan.threshold_specs())
        self.aggregator = MetricsAggregator(self.settings.histogram_accuracy)

        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._stop: Optional[asyncio.Event] = None
        self._stop_reason: Optional[str] = None
        self._finished = False

    def _attach_observer(self, observer: Optional[RunObserver]) -> None:
        self.observer.add_observer(observer)

    def _notify_observer(self, method: str, **payload: Any) -> None:
        """Best-effort observer notification."""
        callback = getattr(self.observer, method, None)
        if callable(callback):
            try:
                callback(run_name=self.plan.name, **payload)
            except Exception as e:
                logger.error(f"Observer callback {method} failed: {e}")

    @property
    def stop_reason(self) -> Optional[str]:
        return self._stop_reason

    def cancel(self, reason: str = "cancelled by user") -> None:
        """Stop scheduling new iterations. Safe to call from signal handlers and other threads.

        A no-op once the run has finished.
        """
        if self._finished:
            logger.debug(f"Ignoring cancel after '{self.plan.name}' finished: {reason}")
            return
        if self._stop_reason is None:
            self._stop_reason = reason
        loop, stop = self._loop, self._stop
        if loop is None or stop is None or loop.is_closed():
            return
        try:
            loop.call_soon_threadsafe(stop.set)
        except RuntimeError:
            # Loop closed between the check and the call.
            logger.debug(f"Cancel arrived after the event loop closed: {reason}")

    def run(self, show_dashboard: bool = True) -> RunReport:
        """Run the load test synchronously and return its report."""
        return asyncio.run(self.arun(show_dashboard=show_dashboard))

    async def arun(self, show_dashboard: bool = False) -> RunReport:
        """Run the load test on the current event loop."""
        self._loop = asyncio.get_running_loop()
        self._stop = asyncio.Event()
        if self._stop_reason is not None:
            self._stop.set()

        plan = self.plan
        owns_client = self.client is None
        client = self.client or HttpxClient(max_connections=plan.worker_ceiling)
        iteration_fn = self._iteration or IterationRunner(
            client,
            plan.request,
            checks=plan.build_checks(),
            credentials=self.credentials,
            timeout=self.timeout,
        )

        pool = WorkerPool(
            lambda it: self._execute(iteration_fn, it),
            preallocated=plan.preallocated_workers,
            max_workers=plan.worker_ceiling,
            on_dropped=self._record_dropped,
        )

        dashboard = None
        live_context: Any = nullcontext()
        if show_dashboard and console_supports_live(console):
            dashboard = RunDashboard(plan.name, enabled=True, console=console)
            self._attach_observer(dashboard.create_observer())
            live_context = Live(
                dashboard.render(),
                console=console,
                refresh_per_second=4,
                screen=False,
                transient=True,
                vertical_overflow="crop",
            )

        expected = self.scheduler.expected_iterations()
        logger.info(
            f"Starting '{plan.name}': {expected} iterations over {self.scheduler.total_duration:.1f}s "
            f"(workers {plan.preallocated_workers}-{plan.worker_ceiling})"
        )

        started_at = datetime.now()
        final_panel = None
        with live_context as live:
            if dashboard and live:
                dashboard.bind(live)
            await pool.start()
            self._notify_observer("on_run_start", plan=plan, expected_iterations=expected)
            self.aggregator.mark_started(time.time())
            monitor = asyncio.create_task(self._monitor(pool))
            try:
                await self._pace(pool)
                interrupted = await pool.drain(self.graceful_stop)
                for iteration, iteration_started in interrupted:
                    self.aggregator.record(IterationResult.interrupted(iteration, iteration_started))
            finally:
                monitor.cancel()
                try:
                    await monitor
                except asyncio.CancelledError:
                    pass
                await pool.shutdown()
                if owns_client:
                    await client.aclose()
                self._finished = True
                self._loop = None
                self._stop = None

            snapshot = self.aggregator.snapshot(now=time.time())
            verdict = self.evaluator.evaluate(snapshot, incomplete=self._stop_reason is not None)
            report = RunReport(
                plan_name=plan.name,
                metrics=snapshot,
                verdict=verdict,
                started_at=started_at,
                finished_at=datetime.now(),
                expected_iterations=expected,
                pool=pool.stats(),
                stop_reason=self._stop_reason,
                request_name=plan.request.name,
                tags=dict(plan.tags),
            )
            self._notify_observer("on_run_complete", report=report)
            if dashboard:
                final_panel = dashboard.render()

        if final_panel is not None:
            console.print(final_panel)

        logger.info(
            f"Finished '{plan.name}': {snapshot.count} iterations, {snapshot.error_count} errors, "
            f"pass={verdict.overall_pass}{' (incomplete)' if verdict.incomplete else ''}"
        )
        return report

    async def _pace(self, pool: WorkerPool) -> None:
        """Dispatch each iteration at its absolute fire time until the schedule ends or a stop is requested."""
        start = self.clock.now()
        for scheduled in self.scheduler.iterations(start):
            delay = scheduled.fire_at - self.clock.now()
            if delay > 0:
                try:
                    await asyncio.wait_for(self._stop.wait(), timeout=delay)
                except asyncio.TimeoutError:
                    pass
            else:
                # Behind schedule; still let executors make progress.
                await asyncio.sleep(0)
            if self._stop.is_set():
                logger.info(f"Scheduling stopped at iteration {scheduled.sequence}: {self._stop_reason}")
                return
            pool.dispatch(scheduled)

    async def _execute(self, iteration_fn: IterationFn, iteration: ScheduledIteration) -> None:
        try:
            result = await iteration_fn(iteration)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"Iteration {iteration.sequence} raised {type(e).__name__}: {e}")
            result = IterationResult.failure(iteration.sequence, UNEXPECTED, f"{type(e).__name__}: {e}")
        if not isinstance(result, IterationResult):
            logger.error(f"Iteration {iteration.sequence} returned {type(result).__name__}, not an IterationResult")
            result = IterationResult.failure(
                iteration.sequence,
                UNEXPECTED,
                f"iteration returned {type(result).__name__} instead of an IterationResult",
            )
        self.aggregator.record(result)
        self._notify_observer("on_iteration_complete", result=result)

    def _record_dropped(self, iteration: ScheduledIteration) -> None:
        self.aggregator.record(IterationResult.dropped(iteration))
        self._notify_observer("on_iteration_dropped", iteration=iteration)

    async def _monitor(self, pool: WorkerPool) -> None:
        """Publish periodic snapshots and stop the run when an abort-on-fail threshold is breached."""
        while True:
            await asyncio.sleep(self.settings.evaluation_interval)
            snapshot = self.aggregator.snapshot(now=time.time())
            self._notify_observer("on_snapshot", snapshot=snapshot, pool=pool.stats())
            breaches = self.evaluator.aborting_breaches(snapshot)
            if breaches:
                labels = ", ".join(r.spec.label for r in breaches)
                logger.warning(f"Aborting run, thresholds breached: {labels}")
                self.cancel(f"threshold breached: {labels}")
                return
