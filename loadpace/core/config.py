import json
import re
from pathlib import Path
from typing import Any, Dict, List, Literal, Optional, Union

import httpx
import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator

from ..checks import Check, build_check
from ..utils.errors import PlanValidationError
from .thresholds import ThresholdSpec


_DURATION_PART_RE = re.compile(r"(\d+(?:\.\d+)?)(ms|s|m|h)")
_UNIT_SECONDS = {"ms": 0.001, "s": 1.0, "m": 60.0, "h": 3600.0}


def parse_duration(value: Any) -> float:
    """Turn ``30``, ``"30s"``, ``"1m30s"`` or ``"500ms"`` into seconds."""
    if isinstance(value, bool):
        raise ValueError(f"Invalid duration: {value!r}")
    if isinstance(value, (int, float)):
        return float(value)
    text = str(value).strip().lower()
    try:
        return float(text)
    except ValueError:
        pass
    parts = _DURATION_PART_RE.findall(text)
    if not parts or "".join(n + u for n, u in parts) != text:
        raise ValueError(f"Invalid duration: {value!r} (use e.g. 30s, 1m30s, 500ms)")
    return sum(float(n) * _UNIT_SECONDS[u] for n, u in parts)


class Stage(BaseModel):
    """Ramp segment: reach ``target`` iterations per time unit over ``duration``.

    ``target`` is an arrival rate, not a number of virtual users as in k6
    ``stages``. A k6 ramp to 50 VUs becomes a ramp to 50 iterations per
    ``time_unit``; the worker pool grows as needed to sustain it.
    """
    model_config = ConfigDict(frozen=True)

    duration: float = Field(ge=0)
    target: float = Field(ge=0)

    @field_validator("duration", mode="before")
    @classmethod
    def _parse_duration(cls, v: Any) -> float:
        return parse_duration(v)


class RequestTemplate(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    method: str = "GET"
    url: str
    headers: Dict[str, str] = Field(default_factory=dict)
    json_body: Optional[Any] = Field(default=None, alias="json")
    body: Optional[str] = None
    # Request tag shown in reports.
    name: Optional[str] = None
    # Statuses outside this list count as failed requests; default is 200-399.
    expected_statuses: Optional[List[int]] = None

    @field_validator("method")
    @classmethod
    def _upper_method(cls, v: str) -> str:
        return v.upper()

    @field_validator("url")
    @classmethod
    def _absolute_http_url(cls, v: str) -> str:
        try:
            url = httpx.URL(v)
        except httpx.InvalidURL as e:
            raise ValueError(f"invalid request url {v!r}: {e}") from e
        if url.scheme not in ("http", "https") or not url.host:
            raise ValueError(f"request url must be an absolute http(s) URL, got {v!r}")
        return v

    @model_validator(mode="after")
    def _one_body(self) -> "RequestTemplate":
        if self.json_body is not None and self.body is not None:
            raise ValueError("request accepts either 'json' or 'body', not both")
        return self

    def is_expected_status(self, status_code: int) -> bool:
        if self.expected_statuses is None:
            return 200 <= status_code < 400
        return status_code in self.expected_statuses


class CheckSpec(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    check: str
    args: Dict[str, Any] = Field(default_factory=dict)


class ThresholdEntry(BaseModel):
    model_config = ConfigDict(frozen=True)

    threshold: str
    abort_on_fail: bool = False


class CredentialsConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    tokens: List[str] = Field(default_factory=list)
    tokens_env: Optional[str] = None
    strategy: Literal["random", "round_robin"] = "random"


class TestPlan(BaseModel):
    """Full description of a load test. Frozen once constructed."""
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    name: str = "loadtest"

    # Rate policy: either rate + duration, or stages.
    rate: Optional[float] = Field(default=None, gt=0)
    time_unit: float = Field(default=1.0, gt=0)
    duration: Optional[float] = Field(default=None, gt=0)
    stages: Optional[List[Stage]] = None
    start_rate: float = Field(default=0.0, ge=0)

    # Worker bounds
    preallocated_workers: int = Field(default=1, ge=0)
    max_workers: Optional[int] = Field(default=None, ge=1)

    # Lifecycle; None falls back to settings
    timeout: Optional[float] = Field(default=None, gt=0)
    graceful_stop: Optional[float] = Field(default=None, ge=0)

    request: RequestTemplate
    checks: List[CheckSpec] = Field(default_factory=list)
    thresholds: Dict[str, List[Union[str, ThresholdEntry]]] = Field(default_factory=dict)
    credentials: Optional[CredentialsConfig] = None
    # Free-form labels copied into the run report.
    tags: Dict[str, str] = Field(default_factory=dict)

    @field_validator("time_unit", "duration", "timeout", "graceful_stop", mode="before")
    @classmethod
    def _parse_durations(cls, v: Any) -> Any:
        if v is None:
            return None
        return parse_duration(v)

    @field_validator("thresholds", mode="before")
    @classmethod
    def _normalize_thresholds(cls, v: Any) -> Any:
        if isinstance(v, dict):
            return {k: [item] if isinstance(item, (str, dict)) else item for k, item in v.items()}
        return v

    @model_validator(mode="after")
    def _validate_policy(self) -> "TestPlan":
        if (self.rate is None) == (self.stages is None):
            raise ValueError("plan needs exactly one of 'rate' (with 'duration') or 'stages'")
        if self.rate is not None and self.duration is None:
            raise ValueError("'duration' is required with a constant 'rate'")
        if self.stages is not None:
            if not self.stages:
                raise ValueError("'stages' must not be empty")
            if sum(s.duration for s in self.stages) <= 0:
                raise ValueError("stages must add up to a positive duration")
            if self.duration is not None:
                raise ValueError("'duration' is derived from 'stages'; do not set both")
        if self.max_workers is not None and self.max_workers < self.preallocated_workers:
            raise ValueError(
                f"max_workers ({self.max_workers}) must be >= preallocated_workers ({self.preallocated_workers})"
            )
        names = [c.name for c in self.checks]
        if len(names) != len(set(names)):
            raise ValueError("check names must be unique")
        # Parse eagerly so bad expressions fail before any scheduling.
        self.threshold_specs()
        self.build_checks()
        return self

    @property
    def total_duration(self) -> float:
        if self.stages is not None:
            return sum(s.duration for s in self.stages)
        return float(self.duration or 0.0)

    @property
    def worker_ceiling(self) -> int:
        return self.max_workers if self.max_workers is not None else max(self.preallocated_workers, 1)

    def threshold_specs(self) -> List[ThresholdSpec]:
        specs = []
        for metric, entries in self.thresholds.items():
            for entry in entries:
                if isinstance(entry, str):
                    specs.append(ThresholdSpec.parse(metric, entry))
                else:
                    specs.append(ThresholdSpec.parse(metric, entry.threshold, abort_on_fail=entry.abort_on_fail))
        return specs

    def build_checks(self) -> List[Check]:
        return [build_check(c.name, c.check, c.args) for c in self.checks]


def plan_from_dict(data: Dict[str, Any]) -> TestPlan:
    """Validate a raw mapping, turning every validation failure into PlanValidationError."""
    if not isinstance(data, dict):
        raise PlanValidationError("Plan document must be a mapping")
    try:
        return TestPlan.model_validate(data)
    except ValidationError as e:
        raise PlanValidationError(f"Invalid test plan:\n{e}") from e


def load_plan(path: Union[str, Path]) -> TestPlan:
    """Read a YAML (``.yaml``/``.yml``) or JSON plan document."""
    path = Path(path)
    try:
        with path.open("r", encoding="utf-8") as handle:
            if path.suffix.lower() in (".yaml", ".yml"):
                data = yaml.safe_load(handle) or {}
            else:
                data = json.load(handle)
    except FileNotFoundError as e:
        raise PlanValidationError(f"Plan file not found: {path}") from e
    except (yaml.YAMLError, json.JSONDecodeError) as e:
        raise PlanValidationError(f"Could not parse plan {path}: {e}") from e
    return plan_from_dict(data)
