"""Absolute-time iteration scheduling.

Every fire time is derived from the run's start instant and the iteration's
sequence number, never from the previous fire time, so timer error does not
accumulate over long runs.
"""

from __future__ import annotations

import bisect
import math
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import TYPE_CHECKING, Iterator, List, Optional, Sequence, Tuple

if TYPE_CHECKING:
    from .config import TestPlan


@dataclass(frozen=True)
class ScheduledIteration:
    fire_at: float
    sequence: int


class MonotonicClock:
    """Clock used for pacing; monotonic so wall-clock adjustments cannot skew the schedule."""

    def now(self) -> float:
        return time.monotonic()


class RateScheduler(ABC):
    """Produces the lazy sequence of fire times for one rate policy."""

    @property
    @abstractmethod
    def total_duration(self) -> float:
        """Length of the schedule in seconds."""

    @abstractmethod
    def offset_of(self, sequence: int) -> Optional[float]:
        """Seconds after start at which iteration ``sequence`` fires, or ``None`` past the end."""

    @abstractmethod
    def expected_iterations(self) -> int:
        """Total number of iterations the schedule will emit."""

    def iterations(self, start: float) -> Iterator[ScheduledIteration]:
        sequence = 0
        while True:
            offset = self.offset_of(sequence)
            if offset is None or offset >= self.total_duration:
                return
            yield ScheduledIteration(fire_at=start + offset, sequence=sequence)
            sequence += 1

    @classmethod
    def from_plan(cls, plan: "TestPlan") -> "RateScheduler":
        if plan.stages:
            return RampingArrivalRate(
                [(stage.duration, stage.target / plan.time_unit) for stage in plan.stages],
                start_rate=plan.start_rate / plan.time_unit,
            )
        return ConstantArrivalRate(plan.rate / plan.time_unit, plan.duration)


class ConstantArrivalRate(RateScheduler):
    """Fires every ``1 / rate`` seconds regardless of how long iterations take."""

    def __init__(self, rate: float, duration: float):
        if rate <= 0:
            raise ValueError("rate must be positive")
        if duration <= 0:
            raise ValueError("duration must be positive")
        self.rate = rate
        self.duration = duration

    @property
    def total_duration(self) -> float:
        return self.duration

    def offset_of(self, sequence: int) -> Optional[float]:
        return sequence / self.rate

    def expected_iterations(self) -> int:
        return max(0, math.ceil(self.duration * self.rate - 1e-9))


class RampingArrivalRate(RateScheduler):
    """Arrival rate linearly interpolated across stages.

    Within a stage that moves from ``r0`` to ``r1`` over ``d`` seconds the
    number of iterations issued after ``t`` seconds is
    ``r0 * t + (r1 - r0) * t**2 / (2 * d)``; iteration ``n`` fires where that
    count, plus everything issued by earlier stages, reaches ``n``.
    """

    def __init__(self, stages: Sequence[Tuple[float, float]], start_rate: float = 0.0):
        if not stages:
            raise ValueError("at least one stage is required")
        if start_rate < 0:
            raise ValueError("start_rate cannot be negative")

        self._segments: List[Tuple[float, float, float, float, float]] = []
        self._starts: List[float] = []
        elapsed = 0.0
        issued = 0.0
        previous = start_rate
        for duration, target in stages:
            if duration < 0 or target < 0:
                raise ValueError("stage durations and targets cannot be negative")
            if duration == 0:
                previous = target
                continue
            count = (previous + target) / 2.0 * duration
            self._segments.append((elapsed, duration, previous, target, issued))
            self._starts.append(issued)
            elapsed += duration
            issued += count
            previous = target

        self._duration = elapsed
        self._total = issued

    @property
    def total_duration(self) -> float:
        return self._duration

    def expected_iterations(self) -> int:
        return max(0, math.ceil(self._total - 1e-9))

    def offset_of(self, sequence: int) -> Optional[float]:
        if sequence >= self._total - 1e-9:
            return None
        index = bisect.bisect_right(self._starts, sequence) - 1
        started_at, duration, r0, r1, issued_before = self._segments[index]
        remaining = sequence - issued_before
        if remaining <= 0:
            return started_at

        a = (r1 - r0) / (2.0 * duration)
        discriminant = max(0.0, r0 * r0 + 4.0 * a * remaining)
        # Conjugate form of the quadratic root; stable when a is zero or negative.
        within = 2.0 * remaining / (r0 + math.sqrt(discriminant))
        return started_at + min(within, duration)
