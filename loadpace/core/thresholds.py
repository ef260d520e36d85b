"""Threshold expressions and their evaluation against aggregated metrics."""

from __future__ import annotations

import operator
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional

from ..utils.errors import ThresholdBreach, ThresholdSyntaxError
from .aggregator import AggregateMetrics


DURATION = "http_req_duration"
FAILED = "http_req_failed"
ITERATIONS = "iterations"
DROPPED = "dropped_iterations"
CHECKS = "checks"

METRIC_ALIASES = {
    "duration": DURATION,
    "latency": DURATION,
    "errors": FAILED,
    "error_rate": FAILED,
    "dropped": DROPPED,
}

# Aggregations each metric understands; "p" covers every percentile.
SUPPORTED_AGGREGATIONS = {
    DURATION: {"avg", "min", "max", "med", "p"},
    FAILED: {"rate", "count"},
    ITERATIONS: {"rate", "count"},
    DROPPED: {"rate", "count"},
    CHECKS: {"rate"},
}

_OPERATORS: Dict[str, Callable[[float, float], bool]] = {
    "<": operator.lt,
    "<=": operator.le,
    ">": operator.gt,
    ">=": operator.ge,
    "==": operator.eq,
    "!=": operator.ne,
}

_METRIC_RE = re.compile(r"^\s*(?P<name>[a-z_]+)\s*(?:\{\s*(?P<tag>[^}]+?)\s*\})?\s*$")
_EXPRESSION_RE = re.compile(
    r"""^\s*
    (?:
        p\(\s*(?P<pct_call>\d+(?:\.\d+)?)\s*\)
      | p(?P<pct_short>\d+(?:\.\d+)?)
      | (?P<agg>[a-z]+)
    )
    \s*(?P<op><=|>=|==|!=|<|>)\s*
    (?P<value>-?\d+(?:\.\d+)?)
    \s*(?P<unit>ms|s)?\s*$""",
    re.VERBOSE,
)


class Outcome(str, Enum):
    PASS = "pass"
    FAIL = "fail"
    INDETERMINATE = "indeterminate"


@dataclass(frozen=True)
class ThresholdSpec:
    """A parsed ``metric: expression`` bound such as ``http_req_duration: p(95)<500``."""

    metric: str
    expression: str
    aggregation: str
    operator: str
    target: float
    percentile: Optional[float] = None
    tag: Optional[str] = None
    abort_on_fail: bool = field(default=False, compare=False)

    @classmethod
    def parse(cls, metric: str, expression: str, *, abort_on_fail: bool = False) -> "ThresholdSpec":
        metric_match = _METRIC_RE.match(metric or "")
        if not metric_match:
            raise ThresholdSyntaxError("Unrecognised metric name", metric=metric, expression=expression)
        name = METRIC_ALIASES.get(metric_match.group("name"), metric_match.group("name"))
        tag = metric_match.group("tag")
        if name not in SUPPORTED_AGGREGATIONS:
            raise ThresholdSyntaxError(
                f"Unknown metric; expected one of {', '.join(sorted(SUPPORTED_AGGREGATIONS))}",
                metric=metric,
                expression=expression,
            )
        if tag and name != CHECKS:
            raise ThresholdSyntaxError("Only the checks metric accepts a {name} selector", metric=metric, expression=expression)

        match = _EXPRESSION_RE.match(expression or "")
        if not match:
            raise ThresholdSyntaxError("Expected '<aggregation> <op> <number>[ms|s]'", metric=metric, expression=expression)

        percentile_text = match.group("pct_call") or match.group("pct_short")
        if percentile_text is not None:
            aggregation = "p"
            percentile: Optional[float] = float(percentile_text)
            if not 0 <= percentile <= 100:
                raise ThresholdSyntaxError("Percentile must be within 0-100", metric=metric, expression=expression)
        else:
            aggregation = match.group("agg")
            percentile = None

        if aggregation == "p" and percentile is None:
            raise ThresholdSyntaxError("Percentile needs a value, e.g. p(95)", metric=metric, expression=expression)
        if aggregation not in SUPPORTED_AGGREGATIONS[name]:
            allowed = sorted("p(N)" if a == "p" else a for a in SUPPORTED_AGGREGATIONS[name])
            raise ThresholdSyntaxError(
                f"Aggregation '{aggregation}' is not valid here; use one of {', '.join(allowed)}",
                metric=metric,
                expression=expression,
            )

        target = float(match.group("value"))
        unit = match.group("unit")
        if unit and name != DURATION:
            raise ThresholdSyntaxError("Time units only apply to durations", metric=metric, expression=expression)
        if unit == "s":
            target *= 1000.0

        return cls(
            metric=name,
            expression=expression.strip(),
            aggregation=aggregation,
            operator=match.group("op"),
            target=target,
            percentile=percentile,
            tag=tag,
            abort_on_fail=abort_on_fail,
        )

    @property
    def label(self) -> str:
        metric = f"{self.metric}{{{self.tag}}}" if self.tag else self.metric
        return f"{metric}: {self.expression}"

    def compare(self, observed: float) -> bool:
        return _OPERATORS[self.operator](observed, self.target)


@dataclass(frozen=True)
class ThresholdResult:
    spec: ThresholdSpec
    outcome: Outcome
    observed: Optional[float] = None

    @property
    def passed(self) -> bool:
        return self.outcome is Outcome.PASS


@dataclass(frozen=True)
class Verdict:
    """Terminal pass/fail decision for a run."""

    results: Mapping[ThresholdSpec, ThresholdResult]
    incomplete: bool = False

    @property
    def overall_pass(self) -> bool:
        # Indeterminate thresholds never approve a run.
        return all(r.outcome is Outcome.PASS for r in self.results.values())

    @property
    def failed(self) -> List[ThresholdResult]:
        return [r for r in self.results.values() if r.outcome is Outcome.FAIL]

    @property
    def indeterminate(self) -> List[ThresholdResult]:
        return [r for r in self.results.values() if r.outcome is Outcome.INDETERMINATE]

    def raise_for_breach(self) -> None:
        if self.overall_pass:
            return
        not_passed = [r.spec.label for r in self.results.values() if not r.passed]
        raise ThresholdBreach(not_passed, incomplete=self.incomplete)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "overall_pass": self.overall_pass,
            "incomplete": self.incomplete,
            "thresholds": [
                {
                    "metric": r.spec.metric if not r.spec.tag else f"{r.spec.metric}{{{r.spec.tag}}}",
                    "expression": r.spec.expression,
                    "outcome": r.outcome.value,
                    "observed": r.observed,
                }
                for r in self.results.values()
            ],
        }


class ThresholdEvaluator:
    """Evaluate declared thresholds against a final or periodic snapshot."""

    def __init__(self, specs: Iterable[ThresholdSpec]):
        self.specs = list(specs)

    def evaluate(self, snapshot: AggregateMetrics, *, incomplete: bool = False) -> Verdict:
        results = {spec: self.evaluate_one(spec, snapshot) for spec in self.specs}
        return Verdict(results=results, incomplete=incomplete)

    def evaluate_one(self, spec: ThresholdSpec, snapshot: AggregateMetrics) -> ThresholdResult:
        observed = observe(spec, snapshot)
        if observed is None:
            return ThresholdResult(spec, Outcome.INDETERMINATE)
        outcome = Outcome.PASS if spec.compare(observed) else Outcome.FAIL
        return ThresholdResult(spec, outcome, observed)

    def aborting_breaches(self, snapshot: AggregateMetrics) -> List[ThresholdResult]:
        """Failed results among thresholds flagged ``abort_on_fail``."""
        breaches = []
        for spec in self.specs:
            if not spec.abort_on_fail:
                continue
            result = self.evaluate_one(spec, snapshot)
            if result.outcome is Outcome.FAIL:
                breaches.append(result)
        return breaches


def observe(spec: ThresholdSpec, snapshot: AggregateMetrics) -> Optional[float]:
    """Extract the value a threshold compares against; ``None`` means no samples."""
    if spec.metric == DURATION:
        durations = snapshot.durations
        if not durations.count:
            return None
        if spec.aggregation == "avg":
            return durations.mean
        if spec.aggregation == "min":
            return durations.min
        if spec.aggregation == "max":
            return durations.max
        if spec.aggregation == "med":
            return durations.quantile(0.5)
        return durations.quantile((spec.percentile or 0.0) / 100.0)

    if spec.metric == FAILED:
        if not snapshot.count:
            return None
        if spec.aggregation == "count":
            return float(snapshot.error_count)
        return snapshot.error_rate

    if spec.metric == ITERATIONS:
        if not snapshot.count:
            return None
        if spec.aggregation == "count":
            return float(snapshot.count)
        return snapshot.iteration_rate

    if spec.metric == DROPPED:
        if not snapshot.count:
            return None
        if spec.aggregation == "count":
            return float(snapshot.dropped_count)
        elapsed = snapshot.elapsed
        return snapshot.dropped_count / elapsed if elapsed else None

    if spec.metric == CHECKS:
        return snapshot.check_rate(spec.tag)

    return None
