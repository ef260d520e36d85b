"""Thread-safe accumulation of iteration results into rolling statistics.

Latency percentiles come from :class:`LogHistogram`, a bounded-memory
streaming estimator with logarithmically sized buckets. A value ``x`` lands
in bucket ``i = ceil(log_gamma(x))`` with ``gamma = (1 + a) / (1 - a)`` and is
reported back as ``2 * gamma**i / (gamma + 1)``, so every estimate is within a
relative error of ``a`` (the ``relative_accuracy``) of a real sample. Memory
grows with the dynamic range of the samples, not their number: with the
default 1% accuracy, everything between 1 microsecond and 1000 seconds fits
in roughly 1000 buckets.
"""

from __future__ import annotations

import logging
import math
import threading
import time
from collections import Counter
from dataclasses import dataclass, field
from typing import Any, Dict, Mapping, Optional, Tuple

from ..utils.errors import CapacityExceededError
from .runner import IterationResult

logger = logging.getLogger(__name__)


class LogHistogram:
    """Streaming quantile estimator with relative-error guarantees."""

    def __init__(self, relative_accuracy: float = 0.01, min_value: float = 1e-3):
        if not 0 < relative_accuracy < 1:
            raise ValueError("relative_accuracy must be between 0 and 1")
        self.relative_accuracy = relative_accuracy
        self.min_value = min_value
        self._gamma = (1 + relative_accuracy) / (1 - relative_accuracy)
        self._log_gamma = math.log(self._gamma)
        self._buckets: Dict[int, int] = {}
        self._zero_count = 0
        self.count = 0
        self.total = 0.0
        self.min: Optional[float] = None
        self.max: Optional[float] = None

    def add(self, value: float) -> None:
        if value < 0 or math.isnan(value):
            raise ValueError(f"Cannot record negative or NaN value: {value}")
        if value <= self.min_value:
            self._zero_count += 1
        else:
            index = math.ceil(math.log(value) / self._log_gamma)
            self._buckets[index] = self._buckets.get(index, 0) + 1
        self.count += 1
        self.total += value
        self.min = value if self.min is None else min(self.min, value)
        self.max = value if self.max is None else max(self.max, value)

    @property
    def mean(self) -> Optional[float]:
        if not self.count:
            return None
        return self.total / self.count

    @property
    def bucket_count(self) -> int:
        return len(self._buckets) + (1 if self._zero_count else 0)

    def quantile(self, q: float) -> Optional[float]:
        """Estimate the ``q`` quantile (0 <= q <= 1); ``None`` when empty."""
        if not 0 <= q <= 1:
            raise ValueError(f"Quantile must be within [0, 1], got {q}")
        if not self.count:
            return None

        rank = q * (self.count - 1)
        cumulative = self._zero_count
        if cumulative > rank:
            return self.min
        for index in sorted(self._buckets):
            cumulative += self._buckets[index]
            if cumulative > rank:
                estimate = 2 * self._gamma ** index / (self._gamma + 1)
                return min(max(estimate, self.min), self.max)
        return self.max

    def copy(self) -> "LogHistogram":
        clone = LogHistogram(self.relative_accuracy, self.min_value)
        clone._buckets = dict(self._buckets)
        clone._zero_count = self._zero_count
        clone.count = self.count
        clone.total = self.total
        clone.min = self.min
        clone.max = self.max
        return clone

    def merge(self, other: "LogHistogram") -> None:
        if other.relative_accuracy != self.relative_accuracy or other.min_value != self.min_value:
            raise ValueError("Cannot merge histograms with different bucketing")
        for index, n in other._buckets.items():
            self._buckets[index] = self._buckets.get(index, 0) + n
        self._zero_count += other._zero_count
        self.count += other.count
        self.total += other.total
        for bound in (other.min, other.max):
            if bound is None:
                continue
            self.min = bound if self.min is None else min(self.min, bound)
            self.max = bound if self.max is None else max(self.max, bound)


@dataclass(frozen=True)
class AggregateMetrics:
    """Point-in-time, read-only view of everything aggregated so far."""

    count: int
    error_count: int
    dropped_count: int
    durations: LogHistogram
    error_kinds: Mapping[str, int] = field(default_factory=dict)
    status_codes: Mapping[int, int] = field(default_factory=dict)
    check_counts: Mapping[str, Tuple[int, int]] = field(default_factory=dict)
    started_at: Optional[float] = None
    finished_at: Optional[float] = None

    @property
    def executed_count(self) -> int:
        return self.count - self.dropped_count

    @property
    def error_rate(self) -> Optional[float]:
        if not self.count:
            return None
        return self.error_count / self.count

    @property
    def elapsed(self) -> Optional[float]:
        if self.started_at is None or self.finished_at is None:
            return None
        return max(0.0, self.finished_at - self.started_at)

    @property
    def iteration_rate(self) -> Optional[float]:
        elapsed = self.elapsed
        if not elapsed:
            return None
        return self.count / elapsed

    @property
    def relative_accuracy(self) -> float:
        return self.durations.relative_accuracy

    def duration_percentile(self, percentile: float) -> Optional[float]:
        return self.durations.quantile(percentile / 100.0)

    def check_totals(self, name: Optional[str] = None) -> Tuple[int, int]:
        """Return ``(passes, fails)`` for one check, or summed over all checks."""
        if name is not None:
            passes, fails = self.check_counts.get(name, (0, 0))
            return passes, fails
        passes = sum(p for p, _ in self.check_counts.values())
        fails = sum(f for _, f in self.check_counts.values())
        return passes, fails

    def check_rate(self, name: Optional[str] = None) -> Optional[float]:
        passes, fails = self.check_totals(name)
        if passes + fails == 0:
            return None
        return passes / (passes + fails)

    def to_dict(self) -> Dict[str, Any]:
        durations = self.durations
        return {
            "count": self.count,
            "executed": self.executed_count,
            "errors": self.error_count,
            "dropped": self.dropped_count,
            "error_rate": self.error_rate,
            "iteration_rate": self.iteration_rate,
            "elapsed": self.elapsed,
            "error_kinds": dict(self.error_kinds),
            "status_codes": {str(k): v for k, v in sorted(self.status_codes.items())},
            "checks": {
                name: {"passes": p, "fails": f}
                for name, (p, f) in self.check_counts.items()
            },
            "http_req_duration": {
                "count": durations.count,
                "avg": durations.mean,
                "min": durations.min,
                "med": durations.quantile(0.5),
                "p90": durations.quantile(0.90),
                "p95": durations.quantile(0.95),
                "p99": durations.quantile(0.99),
                "max": durations.max,
                "relative_error": durations.relative_accuracy,
            },
        }


class MetricsAggregator:
    """Folds concurrently completing :class:`IterationResult` objects into coarse aggregates."""

    def __init__(self, relative_accuracy: float = 0.01):
        self._lock = threading.Lock()
        self._durations = LogHistogram(relative_accuracy)
        self._count = 0
        self._error_count = 0
        self._dropped_count = 0
        self._error_kinds: Counter = Counter()
        self._status_codes: Counter = Counter()
        self._checks: Dict[str, list] = {}
        self._started_at: Optional[float] = None
        self._finished_at: Optional[float] = None

    def mark_started(self, at: Optional[float] = None) -> None:
        """Anchor the elapsed-time clock used for per-second rates."""
        with self._lock:
            self._started_at = time.time() if at is None else at

    def record(self, result: IterationResult) -> None:
        # Read everything up front so a malformed result leaves no partial update.
        errored = bool(result.errored)
        error_kind = result.error_kind or "unknown"
        status_code = result.status_code
        duration_ms = float(result.duration_ms)
        checks = [(name, bool(passed)) for name, passed in result.checks]
        started_at = result.started_at
        finished_at = result.finished_at
        if status_code is not None and (duration_ms < 0 or math.isnan(duration_ms)):
            raise ValueError(f"Iteration {result.sequence} has an invalid duration: {duration_ms}")

        with self._lock:
            self._count += 1
            if errored:
                self._error_count += 1
                self._error_kinds[error_kind] += 1
                if error_kind == CapacityExceededError.kind:
                    self._dropped_count += 1
            if status_code is not None:
                self._status_codes[status_code] += 1
                self._durations.add(duration_ms)
            for name, passed in checks:
                tally = self._checks.setdefault(name, [0, 0])
                tally[0 if passed else 1] += 1
            if self._started_at is None:
                self._started_at = started_at
            if self._finished_at is None or finished_at > self._finished_at:
                self._finished_at = finished_at

    @property
    def count(self) -> int:
        with self._lock:
            return self._count

    def snapshot(self, *, now: Optional[float] = None) -> AggregateMetrics:
        """Copy current state under the lock; the copy is safe to read at leisure."""
        with self._lock:
            finished_at = self._finished_at
            if now is not None:
                finished_at = max(now, finished_at or now)
            return AggregateMetrics(
                count=self._count,
                error_count=self._error_count,
                dropped_count=self._dropped_count,
                durations=self._durations.copy(),
                error_kinds=dict(self._error_kinds),
                status_codes=dict(self._status_codes),
                check_counts={name: (p, f) for name, (p, f) in self._checks.items()},
                started_at=self._started_at,
                finished_at=finished_at,
            )
