"""
loadpace: rate-controlled HTTP load generation with threshold verdicts.

Run a plan at a fixed arrival rate and check it against its thresholds:
    plan = load_plan("health.yaml")
    report = LoadTest(plan).run()
"""

__version__ = "0.1.0"

from .core.config import TestPlan, load_plan
from .core.engine import LoadTest
from .core.results import RunReport
from .checks import builtin_checks, list_available_checks, register_check

__all__ = [
    "LoadTest",
    "RunReport",
    "TestPlan",
    "builtin_checks",
    "list_available_checks",
    "load_plan",
    "register_check",
]
