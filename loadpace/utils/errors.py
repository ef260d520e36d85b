"""Custom exceptions for the load-generation core."""

from __future__ import annotations

from typing import Iterable


class LoadPaceError(Exception):
    """Base exception for all loadpace errors."""
    pass


class PlanValidationError(LoadPaceError):
    """Raised when a test plan is malformed. Always raised before scheduling starts."""
    pass


class ThresholdSyntaxError(PlanValidationError):
    """Raised when a threshold expression cannot be parsed."""

    def __init__(self, message: str, *, metric: str, expression: str):
        self.metric = metric
        self.expression = expression
        super().__init__(f"{message} (metric={metric}, expression={expression!r})")


class TransportError(LoadPaceError):
    """Network-level failure: connection refused, DNS failure, reset, ..."""

    kind = "transport"

    def __init__(self, message: str, *, kind: "str | None" = None):
        super().__init__(message)
        if kind:
            self.kind = kind


class RequestTimeoutError(TransportError):
    """The request did not complete within its timeout."""

    kind = "timeout"


class CapacityExceededError(LoadPaceError):
    """An iteration was due but every executor was busy and the pool was at its ceiling."""

    kind = "capacity_exceeded"


class ThresholdBreach(LoadPaceError):
    """Raised when a run's verdict did not pass its declared thresholds."""

    def __init__(self, failed: Iterable[str], *, incomplete: bool = False):
        self.failed = list(failed)
        self.incomplete = incomplete
        message = "Thresholds not met: " + (", ".join(self.failed) or "none evaluated")
        if incomplete:
            message += " (run incomplete)"
        super().__init__(message)
