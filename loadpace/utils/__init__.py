"""Shared helpers."""

from .errors import (
    CapacityExceededError,
    LoadPaceError,
    PlanValidationError,
    RequestTimeoutError,
    ThresholdBreach,
    ThresholdSyntaxError,
    TransportError,
)

__all__ = [
    "CapacityExceededError",
    "LoadPaceError",
    "PlanValidationError",
    "RequestTimeoutError",
    "ThresholdBreach",
    "ThresholdSyntaxError",
    "TransportError",
]
