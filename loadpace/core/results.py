"""Run report container: final aggregates, verdict, and persistence."""

from __future__ import annotations

import csv
import json
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional

from rich.console import Console
from rich.markup import escape
from rich.table import Table
from rich.panel import Panel

from .aggregator import AggregateMetrics
from .thresholds import Outcome, Verdict
from .worker_pool import PoolStats


console = Console()

EXIT_PASS = 0
EXIT_THRESHOLD_FAILED = 1
EXIT_ERROR = 2


@dataclass
class RunReport:
    """Everything a finished (or cancelled) run produced."""

    plan_name: str
    metrics: AggregateMetrics
    verdict: Verdict
    started_at: datetime
    finished_at: datetime
    expected_iterations: int = 0
    pool: Optional[PoolStats] = None
    stop_reason: Optional[str] = None
    request_name: Optional[str] = None
    tags: Dict[str, str] = field(default_factory=dict)

    @property
    def passed(self) -> bool:
        return self.verdict.overall_pass

    @property
    def incomplete(self) -> bool:
        return self.verdict.incomplete

    @property
    def exit_code(self) -> int:
        return EXIT_PASS if self.passed and not self.incomplete else EXIT_THRESHOLD_FAILED

    @property
    def duration(self) -> float:
        return (self.finished_at - self.started_at).total_seconds()

    def _tags_text(self) -> str:
        return ", ".join(f"{k}={v}" for k, v in sorted(self.tags.items()))

    def _format_ms(self, value: Optional[float]) -> str:
        if value is None:
            return "-"
        if value >= 1000:
            return f"{value / 1000:.2f}s"
        return f"{value:.2f}ms"

    def print_summary(self, target: Optional[Console] = None):
        """Print a rich formatted summary to console."""
        from rich.console import Group
        from rich.rule import Rule
        from rich.box import ROUNDED

        out = target or console
        m = self.metrics
        d = m.durations

        latency = Table(box=ROUNDED, show_header=True, header_style="bold", expand=True)
        for column in ("avg", "min", "med", "p90", "p95", "p99", "max"):
            latency.add_column(column, justify="right")
        latency.add_row(
            self._format_ms(d.mean),
            self._format_ms(d.min),
            self._format_ms(d.quantile(0.5) if d.count else None),
            self._format_ms(d.quantile(0.9) if d.count else None),
            self._format_ms(d.quantile(0.95) if d.count else None),
            self._format_ms(d.quantile(0.99) if d.count else None),
            self._format_ms(d.max),
        )

        error_rate = m.error_rate
        rate = m.iteration_rate
        header_line = (
            f"[bold]{self.plan_name}[/bold] | {m.count} iterations"
            f" ({m.executed_count} executed, {m.dropped_count} dropped)"
        )
        if rate is not None:
            header_line += f" | {rate:.1f}/s"
        if self.request_name:
            header_line += f" | request [bold]{escape(self.request_name)}[/bold]"
        error_line = (
            f"[bold]Errors:[/bold] {m.error_count}"
            + (f" ({error_rate:.2%})" if error_rate is not None else "")
        )
        if m.error_kinds:
            error_line += "  " + ", ".join(f"{k}={v}" for k, v in sorted(m.error_kinds.items()))

        thresholds = Table(box=ROUNDED, show_header=True, header_style="bold", expand=True)
        thresholds.add_column("Threshold", style="cyan")
        thresholds.add_column("Observed", justify="right")
        thresholds.add_column("Result", justify="right")
        styles = {Outcome.PASS: "[green]pass[/green]", Outcome.FAIL: "[red]FAIL[/red]", Outcome.INDETERMINATE: "[yellow]no data[/yellow]"}
        for result in self.verdict.results.values():
            observed = "-" if result.observed is None else f"{result.observed:.4g}"
            thresholds.add_row(result.spec.label, observed, styles[result.outcome])

        content_parts: List[Any] = [
            header_line,
            *([f"[dim]Tags:[/dim] {escape(self._tags_text())}"] if self.tags else []),
            error_line,
            f"[dim]Latency estimates within {d.relative_accuracy:.1%} relative error[/dim]",
            Rule(style="dim"),
            latency,
        ]
        if m.check_counts:
            checks = Table(box=ROUNDED, show_header=True, header_style="bold", expand=True)
            checks.add_column("Check", style="cyan")
            checks.add_column("Passes", justify="right", style="green")
            checks.add_column("Fails", justify="right", style="red")
            for name, (passes, fails) in m.check_counts.items():
                checks.add_row(name, str(passes), str(fails))
            content_parts.extend([Rule(style="dim"), checks])
        if self.verdict.results:
            content_parts.extend([Rule(style="dim"), thresholds])
        if self.stop_reason:
            content_parts.extend(["", f"[yellow]Run incomplete:[/yellow] {self.stop_reason}"])

        status = "[bold green]PASSED[/bold green]" if self.passed else "[bold red]FAILED[/bold red]"
        panel = Panel(
            Group(*content_parts),
            title=f"[bold cyan]Load Test Results[/bold cyan] {status}",
            expand=False,
            border_style="green" if self.passed else "red",
            padding=(1, 3),
            width=100,
        )
        out.print(panel)

    def to_dict(self) -> Dict[str, Any]:
        """Convert report to dictionary format."""
        return {
            "plan_name": self.plan_name,
            "started_at": self.started_at.isoformat(),
            "finished_at": self.finished_at.isoformat(),
            "duration": self.duration,
            "expected_iterations": self.expected_iterations,
            "stop_reason": self.stop_reason,
            "request_name": self.request_name,
            "tags": dict(self.tags),
            "pool": self.pool.to_dict() if self.pool else None,
            "metrics": self.metrics.to_dict(),
            "verdict": self.verdict.to_dict(),
        }

    def _default_path(self, suffix: str, output_dir: Optional[str]) -> Path:
        timestamp = self.started_at.strftime("%Y%m%d_%H%M%S")
        filename = f"loadpace_{self.plan_name}_{timestamp}.{suffix}"
        return Path(output_dir) / filename if output_dir else Path(filename)

    def save_json(self, filepath: Optional[str] = None, output_dir: Optional[str] = None) -> str:
        """
        Save the report to a JSON file.

        Args:
            filepath: Optional custom filepath. If not provided, generates one.
            output_dir: Directory for the generated filename.

        Returns:
            Path to the saved file
        """
        path = Path(filepath) if filepath else self._default_path("json", output_dir)
        path.parent.mkdir(parents=True, exist_ok=True)

        with open(path, "w", encoding="utf-8") as f:
            json.dump(self.to_dict(), f, indent=2, default=str, ensure_ascii=False)

        console.print(f"[blue]Results saved to:[/blue] {path}")
        return str(path)

    def save_csv(self, filepath: Optional[str] = None, output_dir: Optional[str] = None) -> str:
        """Save a one-row-per-threshold summary, with the run's headline numbers on every row."""
        path = Path(filepath) if filepath else self._default_path("csv", output_dir)
        path.parent.mkdir(parents=True, exist_ok=True)

        m = self.metrics
        base = {
            "plan_name": self.plan_name,
            "request_name": self.request_name or "",
            "tags": self._tags_text(),
            "started_at": self.started_at.isoformat(),
            "count": m.count,
            "errors": m.error_count,
            "dropped": m.dropped_count,
            "error_rate": m.error_rate,
            "p95_ms": m.duration_percentile(95),
            "overall_pass": self.passed,
            "incomplete": self.incomplete,
        }
        rows = [
            {**base, "threshold": r.spec.label, "observed": r.observed, "outcome": r.outcome.value}
            for r in self.verdict.results.values()
        ] or [{**base, "threshold": "", "observed": "", "outcome": ""}]

        with open(path, "w", newline="", encoding="utf-8") as f:
            writer = csv.DictWriter(f, fieldnames=list(rows[0].keys()))
            writer.writeheader()
            writer.writerows(rows)

        console.print(f"[blue]Results saved to:[/blue] {path}")
        return str(path)

    def save(self, format: str = "json", filepath: Optional[str] = None, output_dir: Optional[str] = None) -> str:
        """
        Save the report in the specified format.

        Args:
            format: "json" or "csv"
            filepath: Optional custom filepath

        Returns:
            Path to the saved file
        """
        if format == "json":
            return self.save_json(filepath, output_dir)
        elif format == "csv":
            return self.save_csv(filepath, output_dir)
        else:
            raise ValueError(f"Unsupported format: {format}. Use 'json' or 'csv'")
