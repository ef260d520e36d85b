import asyncio
from datetime import datetime

import pytest

from loadpace.adapters.base import HttpClient, HttpResponse
from loadpace.core.aggregator import MetricsAggregator
from loadpace.core.config import plan_from_dict
from loadpace.core.results import RunReport
from loadpace.core.runner import IterationResult
from loadpace.core.settings import LoadPaceSettings
from loadpace.core.thresholds import ThresholdEvaluator, ThresholdSpec
from loadpace.core.worker_pool import PoolStats
from loadpace.utils.errors import TransportError


def pytest_configure(config):
    config.addinivalue_line("markers", "unit: fast, isolated tests")


class FakeHttpClient(HttpClient):
    """Scripted client: fixed status and latency, transport errors on chosen call numbers."""

    def __init__(self, status=200, delay=0.0, failures=(), content=b"", failure_kind="connection_refused"):
        self.status = status
        self.delay = delay
        self.failures = set(failures)
        self.content = content
        self.failure_kind = failure_kind
        self.requests = []
        self.in_flight = 0
        self.peak_in_flight = 0
        self.closed = False

    async def send(self, request, *, timeout):
        call = len(self.requests)
        self.requests.append(request)
        self.in_flight += 1
        self.peak_in_flight = max(self.peak_in_flight, self.in_flight)
        try:
            if self.delay:
                await asyncio.sleep(self.delay)
            if call in self.failures:
                raise TransportError("connection refused", kind=self.failure_kind)
            return HttpResponse(status_code=self.status, headers={}, content=self.content)
        finally:
            self.in_flight -= 1

    async def aclose(self):
        self.closed = True


@pytest.fixture
def make_client():
    return FakeHttpClient


@pytest.fixture
def settings():
    return LoadPaceSettings(
        default_timeout=5.0,
        graceful_stop=1.0,
        evaluation_interval=0.1,
        histogram_accuracy=0.01,
        tokens="",
    )


@pytest.fixture
def make_plan():
    def _make(**overrides):
        data = {
            "name": "test",
            "rate": 10,
            "duration": 1,
            "preallocated_workers": 2,
            "max_workers": 10,
            "request": {"method": "GET", "url": "http://test.local/api/health"},
        }
        data.update(overrides)
        return plan_from_dict(data)
    return _make


@pytest.fixture
def make_report():
    """Build a finished RunReport from synthetic samples."""
    def _make(durations=(12.0, 20.0, 35.0), failures=0, thresholds=(), stop_reason=None):
        agg = MetricsAggregator()
        agg.mark_started(at=0.0)
        for n, ms in enumerate(durations):
            agg.record(IterationResult(
                sequence=n, started_at=0.0, finished_at=1.0, duration_ms=ms, status_code=200,
                checks=(("status is 200", True),),
            ))
        for n in range(failures):
            agg.record(IterationResult.failure(len(durations) + n, "timeout", started_at=0.0, finished_at=1.0))
        snapshot = agg.snapshot(now=1.0)
        specs = [ThresholdSpec.parse(metric, expression) for metric, expression in thresholds]
        verdict = ThresholdEvaluator(specs).evaluate(snapshot, incomplete=stop_reason is not None)
        return RunReport(
            plan_name="health",
            metrics=snapshot,
            verdict=verdict,
            started_at=datetime(2024, 5, 1, 12, 0, 0),
            finished_at=datetime(2024, 5, 1, 12, 0, 30),
            expected_iterations=len(durations) + failures,
            pool=PoolStats(size=4, active=0, peak_active=3, dropped=0, max_workers=10),
            stop_reason=stop_reason,
        )
    return _make
