"""Core load-generation components."""

from .aggregator import AggregateMetrics, LogHistogram, MetricsAggregator
from .config import TestPlan, load_plan, plan_from_dict
from .engine import LoadTest
from .results import RunReport
from .runner import IterationResult, IterationRunner
from .scheduler import ConstantArrivalRate, RampingArrivalRate, RateScheduler, ScheduledIteration
from .thresholds import ThresholdEvaluator, ThresholdSpec, Verdict
from .worker_pool import WorkerPool

__all__ = [
    "AggregateMetrics",
    "ConstantArrivalRate",
    "IterationResult",
    "IterationRunner",
    "LoadTest",
    "LogHistogram",
    "MetricsAggregator",
    "RampingArrivalRate",
    "RateScheduler",
    "RunReport",
    "ScheduledIteration",
    "TestPlan",
    "ThresholdEvaluator",
    "ThresholdSpec",
    "Verdict",
    "WorkerPool",
    "load_plan",
    "plan_from_dict",
]
