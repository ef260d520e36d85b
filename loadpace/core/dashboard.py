"""Rich live dashboard for a running load test."""

from __future__ import annotations

import threading
import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Optional

from rich import box
from rich.console import Console, Group, RenderableType
from rich.live import Live
from rich.panel import Panel
from rich.progress_bar import ProgressBar
from rich.table import Table
from rich.text import Text

from loadpace import __version__

from .observers import RunObserver


@dataclass
class RunVisualState:
    """Holds mutable state for the dashboard, fed by observer events."""

    run_name: str
    url: str = ""
    expected_iterations: int = 0
    completed: int = 0
    errored: int = 0
    dropped: int = 0
    pool_size: int = 0
    pool_active: int = 0
    max_workers: int = 0
    rate: Optional[float] = None
    latency: Dict[str, Optional[float]] = field(default_factory=dict)
    start_time: Optional[float] = None
    end_time: Optional[float] = None
    status: str = "pending"
    stop_reason: Optional[str] = None

    @property
    def processed(self) -> int:
        return self.completed + self.dropped

    def percent_complete(self) -> float:
        if not self.expected_iterations:
            return 0.0
        return min(100.0, self.processed / self.expected_iterations * 100)

    def error_rate(self) -> Optional[float]:
        if not self.processed:
            return None
        return (self.errored + self.dropped) / self.processed


class RunDashboard:
    """Live view of throughput, latency percentiles, errors and pool size."""

    def __init__(self, run_name: str, *, enabled: bool = True, console: Optional[Console] = None) -> None:
        self.console = console or Console()
        self.enabled = enabled
        self.state = RunVisualState(run_name=run_name)
        self.live: Optional[Live] = None
        self._lock = threading.Lock()

    def bind(self, live: Live) -> None:
        self.live = live
        self.refresh(force=True)

    def create_observer(self) -> RunObserver:
        return _DashboardObserver(self)

    def initialize_run(self, url: str, expected_iterations: int, max_workers: int) -> None:
        with self._lock:
            self.state.url = url
            self.state.expected_iterations = expected_iterations
            self.state.max_workers = max_workers
            self.state.start_time = time.time()
            self.state.status = "running"
        self.refresh()

    def record_iteration(self, errored: bool) -> None:
        with self._lock:
            self.state.completed += 1
            if errored:
                self.state.errored += 1

    def record_dropped(self) -> None:
        with self._lock:
            self.state.dropped += 1

    def record_snapshot(self, snapshot: Any, pool: Any) -> None:
        durations = snapshot.durations
        with self._lock:
            self.state.rate = snapshot.iteration_rate
            self.state.pool_size = pool.size
            self.state.pool_active = pool.active
            self.state.latency = {
                "avg": durations.mean,
                "p50": durations.quantile(0.5) if durations.count else None,
                "p95": durations.quantile(0.95) if durations.count else None,
                "p99": durations.quantile(0.99) if durations.count else None,
            }
        self.refresh()

    def mark_run_complete(self, stop_reason: Optional[str]) -> None:
        with self._lock:
            self.state.status = "incomplete" if stop_reason else "completed"
            self.state.stop_reason = stop_reason
            self.state.end_time = time.time()
        self.refresh(force=True)

    def refresh(self, force: bool = False) -> None:
        if not self.enabled or not self.live:
            return
        self.live.update(self.render(), refresh=force)

    def render(self) -> RenderableType:
        with self._lock:
            return Group(
                self._render_header(),
                self._render_main(),
                self._render_footer(),
            )

    def _render_header(self) -> RenderableType:
        state = self.state
        elapsed = 0.0
        if state.start_time:
            elapsed = (state.end_time or time.time()) - state.start_time

        grid = Table.grid(expand=True)
        grid.add_column(justify="left", ratio=1)
        grid.add_column(justify="right", ratio=1)

        title = Text("⚡ loadpace", style="bold magenta")
        title.append(f"  {state.run_name}", style="bold white")

        stats = Text()
        stats.append(f"Time: {_format_duration(elapsed)}  ", style="bold white")
        stats.append(f"Status: {state.status}  ", style=_STATUS_STYLES.get(state.status, "white"))
        if state.rate is not None:
            stats.append(f"Rate: {state.rate:.1f} it/s", style="cyan")

        grid.add_row(title, stats)
        return Panel(grid, style="white", box=box.ROUNDED, padding=(0, 1))

    def _render_main(self) -> RenderableType:
        state = self.state
        table = Table(box=box.SIMPLE, expand=True, header_style="bold dim white")
        table.add_column("Progress", ratio=4)
        table.add_column("Latency", ratio=3)
        table.add_column("Errors", ratio=2)
        table.add_column("Workers", ratio=2)

        total = state.expected_iterations or max(state.processed, 1)
        bar = ProgressBar(
            total=total,
            completed=min(state.processed, total),
            width=36,
            pulse=state.expected_iterations == 0 and state.status == "running",
            complete_style="green",
            finished_style="green",
        )
        progress = Group(bar, Text(f"{state.processed}/{state.expected_iterations or '?'} ({state.percent_complete():.0f}%)", style="dim"))

        latency = Text()
        for key in ("avg", "p50", "p95", "p99"):
            latency.append(f"{key}: ", style="dim")
            latency.append(f"{_format_ms(state.latency.get(key))}\n", style="white")

        error_rate = state.error_rate()
        errors = Text()
        errors.append("× ", style="red")
        errors.append(f"{state.errored}\n", style="white")
        errors.append("⤫ ", style="yellow")
        errors.append(f"{state.dropped} dropped\n", style="white")
        if error_rate is not None:
            errors.append(f"{error_rate:.2%}", style="red" if error_rate > 0.01 else "green")

        workers = Text()
        workers.append(f"{state.pool_active} busy\n", style="yellow")
        workers.append(f"{state.pool_size}/{state.max_workers} alive", style="dim")

        table.add_row(progress, latency, errors, workers)
        return Panel(table, box=box.ROUNDED, title=state.url or "Load Test", border_style="blue", expand=True)

    def _render_footer(self) -> RenderableType:
        grid = Table.grid(expand=True)
        grid.add_column(justify="left")
        grid.add_column(justify="right")
        grid.add_row(
            Text("Press Ctrl+C to stop", style="dim"),
            Text(f"v{__version__} • {datetime.now().strftime('%H:%M:%S')}", style="dim"),
        )
        return grid


class _DashboardObserver(RunObserver):
    """Bridges run events into the dashboard."""

    def __init__(self, dashboard: RunDashboard) -> None:
        self.dashboard = dashboard

    def on_run_start(self, **kwargs: Any) -> None:
        plan = kwargs.get("plan")
        self.dashboard.initialize_run(
            plan.request.url if plan is not None else "",
            kwargs.get("expected_iterations", 0),
            plan.worker_ceiling if plan is not None else 0,
        )

    def on_iteration_complete(self, **kwargs: Any) -> None:
        result = kwargs.get("result")
        self.dashboard.record_iteration(bool(getattr(result, "errored", False)))

    def on_iteration_dropped(self, **kwargs: Any) -> None:
        self.dashboard.record_dropped()

    def on_snapshot(self, **kwargs: Any) -> None:
        self.dashboard.record_snapshot(kwargs["snapshot"], kwargs["pool"])

    def on_run_complete(self, **kwargs: Any) -> None:
        report = kwargs.get("report")
        self.dashboard.mark_run_complete(getattr(report, "stop_reason", None))


_STATUS_STYLES = {
    "running": "yellow",
    "completed": "green",
    "incomplete": "red",
}


def _format_duration(duration: float) -> str:
    total_seconds = max(0, int(duration))
    hours, remainder = divmod(total_seconds, 3600)
    minutes, seconds = divmod(remainder, 60)
    return f"{hours:d}:{minutes:02d}:{seconds:02d}" if hours else f"{minutes:02d}:{seconds:02d}"


def _format_ms(value: Optional[float]) -> str:
    if value is None:
        return "—"
    if value >= 1000:
        return f"{value / 1000:.2f}s"
    return f"{value:.1f}ms"


def console_supports_live(console: Console) -> bool:
    """Return True when live updates should be rendered for this console."""
    return bool(getattr(console, "is_terminal", False))
