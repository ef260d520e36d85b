import pytest

from loadpace.core.aggregator import MetricsAggregator
from loadpace.core.runner import IterationResult
from loadpace.core.thresholds import (
    DURATION,
    FAILED,
    Outcome,
    ThresholdEvaluator,
    ThresholdSpec,
)
from loadpace.utils.errors import ThresholdBreach, ThresholdSyntaxError


def _snapshot(durations=(), failures=0, checks=None):
    agg = MetricsAggregator()
    agg.mark_started(at=0.0)
    for n, ms in enumerate(durations):
        agg.record(IterationResult(
            sequence=n,
            started_at=0.0,
            finished_at=1.0,
            duration_ms=ms,
            status_code=200,
            checks=tuple(checks or ()),
        ))
    for n in range(failures):
        agg.record(IterationResult.failure(len(durations) + n, "connection_refused", started_at=0.0, finished_at=1.0))
    return agg.snapshot(now=1.0)


@pytest.mark.unit
class TestThresholdParsing:
    """Threshold expression syntax."""

    @pytest.mark.parametrize("expression, aggregation, operator, target, percentile", [
        ("p(95)<500", "p", "<", 500.0, 95.0),
        ("p95 < 500ms", "p", "<", 500.0, 95.0),
        ("p(99.9)<=1s", "p", "<=", 1000.0, 99.9),
        ("avg<=200", "avg", "<=", 200.0, None),
        ("med < 50", "med", "<", 50.0, None),
        ("max<2s", "max", "<", 2000.0, None),
    ])
    def test_duration_expressions(self, expression, aggregation, operator, target, percentile):
        spec = ThresholdSpec.parse("http_req_duration", expression)

        assert spec.metric == DURATION
        assert spec.aggregation == aggregation
        assert spec.operator == operator
        assert spec.target == pytest.approx(target)
        assert spec.percentile == percentile

    def test_rate_and_aliases(self):
        spec = ThresholdSpec.parse("errors", "rate<0.01")

        assert spec.metric == FAILED
        assert spec.target == 0.01
        assert spec.label == "http_req_failed: rate<0.01"

    def test_checks_selector(self):
        spec = ThresholdSpec.parse("checks{has user data}", "rate>0.99")

        assert spec.tag == "has user data"
        assert spec.label == "checks{has user data}: rate>0.99"

    @pytest.mark.parametrize("metric, expression", [
        ("http_req_duration", "p95 500"),
        ("http_req_duration", "rate<0.1"),
        ("http_req_duration", "p(101)<5"),
        ("http_req_duration", "p<5"),
        ("http_req_failed", "rate<0.1ms"),
        ("http_req_failed", "avg<1"),
        ("latency_budget", "avg<1"),
        ("http_req_duration{x}", "avg<1"),
        ("iterations", ""),
    ])
    def test_malformed_expressions_fail_fast(self, metric, expression):
        with pytest.raises(ThresholdSyntaxError) as exc:
            ThresholdSpec.parse(metric, expression)

        assert exc.value.metric == metric

    def test_abort_flag_does_not_affect_identity(self):
        plain = ThresholdSpec.parse("http_req_failed", "rate<0.1")
        aborting = ThresholdSpec.parse("http_req_failed", "rate<0.1", abort_on_fail=True)

        assert plain == aborting
        assert aborting.abort_on_fail is True


@pytest.mark.unit
class TestThresholdEvaluator:
    """Verdicts from aggregated snapshots."""

    def test_p95_fails_with_six_slow_samples(self):
        snapshot = _snapshot([200.0] * 94 + [800.0] * 6)
        verdict = ThresholdEvaluator([ThresholdSpec.parse("http_req_duration", "p95 < 500ms")]).evaluate(snapshot)

        assert verdict.overall_pass is False
        assert len(verdict.failed) == 1

    def test_p95_passes_with_four_slow_samples(self):
        snapshot = _snapshot([200.0] * 96 + [800.0] * 4)
        verdict = ThresholdEvaluator([ThresholdSpec.parse("http_req_duration", "p95 < 500ms")]).evaluate(snapshot)

        assert verdict.overall_pass is True

    def test_error_rate_breach(self):
        snapshot = _snapshot([10.0] * 8, failures=2)
        spec = ThresholdSpec.parse("http_req_failed", "rate<0.1")

        result = ThresholdEvaluator([spec]).evaluate(snapshot).results[spec]

        assert snapshot.count == 10
        assert snapshot.error_count == 2
        assert result.observed == pytest.approx(0.2)
        assert result.outcome is Outcome.FAIL

    def test_zero_samples_are_indeterminate(self):
        snapshot = _snapshot([], failures=3)
        spec = ThresholdSpec.parse("http_req_duration", "p(95)<500")

        verdict = ThresholdEvaluator([spec]).evaluate(snapshot)

        assert verdict.results[spec].outcome is Outcome.INDETERMINATE
        assert verdict.results[spec].observed is None
        assert verdict.overall_pass is False
        assert verdict.indeterminate and not verdict.failed

    def test_empty_run_is_indeterminate_everywhere(self):
        snapshot = _snapshot([])
        specs = [
            ThresholdSpec.parse("http_req_failed", "rate<0.01"),
            ThresholdSpec.parse("iterations", "count>0"),
            ThresholdSpec.parse("checks", "rate>0.9"),
        ]

        verdict = ThresholdEvaluator(specs).evaluate(snapshot)

        assert all(r.outcome is Outcome.INDETERMINATE for r in verdict.results.values())

    def test_checks_rate_per_name(self):
        snapshot = _snapshot([10.0] * 4, checks=[("status is 200", True), ("has id", False)])
        overall = ThresholdSpec.parse("checks", "rate>0.9")
        named = ThresholdSpec.parse("checks{status is 200}", "rate==1")

        verdict = ThresholdEvaluator([overall, named]).evaluate(snapshot)

        assert verdict.results[overall].observed == pytest.approx(0.5)
        assert verdict.results[overall].passed is False
        assert verdict.results[named].passed is True

    def test_iteration_and_dropped_counts(self):
        snapshot = _snapshot([10.0] * 5)
        specs = [
            ThresholdSpec.parse("iterations", "count>=5"),
            ThresholdSpec.parse("dropped_iterations", "count==0"),
        ]

        assert ThresholdEvaluator(specs).evaluate(snapshot).overall_pass is True

    def test_raise_for_breach(self):
        snapshot = _snapshot([10.0] * 8, failures=2)
        verdict = ThresholdEvaluator([ThresholdSpec.parse("http_req_failed", "rate<0.1")]).evaluate(
            snapshot, incomplete=True
        )

        with pytest.raises(ThresholdBreach) as exc:
            verdict.raise_for_breach()

        assert exc.value.failed == ["http_req_failed: rate<0.1"]
        assert exc.value.incomplete is True

    def test_no_thresholds_passes(self):
        verdict = ThresholdEvaluator([]).evaluate(_snapshot([10.0]))

        assert verdict.overall_pass is True
        verdict.raise_for_breach()

    def test_aborting_breaches_only_flagged_specs(self):
        snapshot = _snapshot([10.0] * 5, failures=5)
        flagged = ThresholdSpec.parse("http_req_failed", "rate<0.1", abort_on_fail=True)
        unflagged = ThresholdSpec.parse("http_req_duration", "p(95)<1")

        breaches = ThresholdEvaluator([flagged, unflagged]).aborting_breaches(snapshot)

        assert [b.spec for b in breaches] == [flagged]

    def test_verdict_to_dict(self):
        spec = ThresholdSpec.parse("http_req_failed", "rate<0.5")
        data = ThresholdEvaluator([spec]).evaluate(_snapshot([10.0] * 3, failures=1)).to_dict()

        assert data["overall_pass"] is True
        assert data["incomplete"] is False
        assert data["thresholds"] == [
            {"metric": "http_req_failed", "expression": "rate<0.5", "outcome": "pass", "observed": 0.25}
        ]
