"""Observer hooks for load test lifecycle and progress updates."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any, List, Optional, Sequence

if TYPE_CHECKING:
    from .aggregator import AggregateMetrics
    from .config import TestPlan
    from .results import RunReport
    from .runner import IterationResult
    from .scheduler import ScheduledIteration
    from .worker_pool import PoolStats

logger = logging.getLogger(__name__)


class RunObserver:
    """Base observer with no-op hooks for load test lifecycle events."""

    def on_run_start(
        self,
        run_name: str,
        plan: "TestPlan",
        expected_iterations: int,
    ) -> None:
        """Called once, after the pool is warm and before the first iteration fires."""

    def on_iteration_complete(
        self,
        run_name: str,
        result: "IterationResult",
    ) -> None:
        """Called when an executed iteration has been recorded."""

    def on_iteration_dropped(
        self,
        run_name: str,
        iteration: "ScheduledIteration",
    ) -> None:
        """Called when an iteration was due but no executor was available."""

    def on_snapshot(
        self,
        run_name: str,
        snapshot: "AggregateMetrics",
        pool: "PoolStats",
    ) -> None:
        """Called every evaluation interval with fresh aggregates."""

    def on_run_complete(
        self,
        run_name: str,
        report: "RunReport",
    ) -> None:
        """Called after the run has finished and its verdict is known."""


class NullRunObserver(RunObserver):
    """Default observer that ignores all notifications."""

    pass


class CompositeRunObserver(RunObserver):
    """Fan-out observer that notifies multiple observers."""

    def __init__(self, observers: Optional[Sequence[RunObserver]] = None) -> None:
        self._observers: List[RunObserver] = []
        if observers:
            for observer in observers:
                self.add_observer(observer)

    def add_observer(self, observer: Optional[RunObserver]) -> None:
        if observer is None:
            return
        self._observers.append(observer)

    @property
    def observers(self) -> List[RunObserver]:
        return list(self._observers)

    def _call(self, method: str, **kwargs: Any) -> None:
        for observer in list(self._observers):
            callback = getattr(observer, method, None)
            if callable(callback):
                try:
                    callback(**kwargs)
                except Exception as e:
                    logger.error(f"Observer {type(observer).__name__}.{method} failed: {e}")

    def on_run_start(self, **kwargs: Any) -> None:
        self._call("on_run_start", **kwargs)

    def on_iteration_complete(self, **kwargs: Any) -> None:
        self._call("on_iteration_complete", **kwargs)

    def on_iteration_dropped(self, **kwargs: Any) -> None:
        self._call("on_iteration_dropped", **kwargs)

    def on_snapshot(self, **kwargs: Any) -> None:
        self._call("on_snapshot", **kwargs)

    def on_run_complete(self, **kwargs: Any) -> None:
        self._call("on_run_complete", **kwargs)
