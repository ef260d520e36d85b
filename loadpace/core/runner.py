"""Execution of a single test iteration: build request, send, measure, check."""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, replace
from typing import TYPE_CHECKING, Optional, Sequence, Tuple

from ..adapters.base import CredentialProvider, HttpClient, HttpRequest, HttpResponse
from ..utils.errors import CapacityExceededError, RequestTimeoutError, TransportError

if TYPE_CHECKING:
    from ..checks import Check
    from .config import RequestTemplate
    from .scheduler import ScheduledIteration

logger = logging.getLogger(__name__)

HTTP_STATUS_ERROR = "http_status"
INTERRUPTED = "interrupted"
UNEXPECTED = "unexpected"


@dataclass(frozen=True)
class IterationResult:
    """Outcome of one scheduled iteration. ``status_code`` is ``None`` when no response arrived."""

    sequence: int
    started_at: float
    finished_at: float
    duration_ms: float = 0.0
    status_code: Optional[int] = None
    checks: Tuple[Tuple[str, bool], ...] = ()
    errored: bool = False
    error_kind: Optional[str] = None
    error_message: Optional[str] = None

    @classmethod
    def failure(
        cls,
        sequence: int,
        kind: str,
        message: Optional[str] = None,
        *,
        started_at: Optional[float] = None,
        finished_at: Optional[float] = None,
        duration_ms: float = 0.0,
    ) -> "IterationResult":
        now = time.time()
        return cls(
            sequence=sequence,
            started_at=now if started_at is None else started_at,
            finished_at=now if finished_at is None else finished_at,
            duration_ms=duration_ms,
            errored=True,
            error_kind=kind,
            error_message=message,
        )

    @classmethod
    def dropped(cls, iteration: "ScheduledIteration") -> "IterationResult":
        return cls.failure(
            iteration.sequence,
            CapacityExceededError.kind,
            "dropped: no free worker and pool at max_workers",
        )

    @classmethod
    def interrupted(cls, iteration: "ScheduledIteration", started_at: Optional[float] = None) -> "IterationResult":
        return cls.failure(
            iteration.sequence,
            INTERRUPTED,
            "still running when the graceful stop period expired",
            started_at=started_at,
        )


class IterationRunner:
    """Runs the plan's request template plus its named checks for one iteration.

    Every failure is turned into data: the returned result is errored, never
    raised, so a broken target cannot crash the run.
    """

    def __init__(
        self,
        client: HttpClient,
        template: "RequestTemplate",
        *,
        checks: Sequence["Check"] = (),
        credentials: Optional[CredentialProvider] = None,
        timeout: float = 30.0,
    ):
        if timeout <= 0:
            raise ValueError("timeout must be positive")
        self.client = client
        self.template = template
        self.checks = list(checks)
        self.credentials = credentials
        self.timeout = timeout

    def build_request(self) -> HttpRequest:
        headers = dict(self.template.headers)
        if self.credentials is not None:
            headers.update(self.credentials.headers())
        content = self.template.body.encode("utf-8") if self.template.body is not None else None
        return HttpRequest(
            method=self.template.method,
            url=self.template.url,
            headers=headers,
            json_body=self.template.json_body,
            content=content,
        )

    async def __call__(self, iteration: "ScheduledIteration") -> IterationResult:
        return await self.run(iteration)

    async def run(self, iteration: "ScheduledIteration") -> IterationResult:
        request = self.build_request()
        started_at = time.time()
        start = time.perf_counter()
        response: Optional[HttpResponse] = None

        try:
            # Outer bound in case the client ignores its own timeout.
            response = await asyncio.wait_for(
                self.client.send(request, timeout=self.timeout),
                timeout=self.timeout + 1.0,
            )
        except asyncio.TimeoutError:
            result = self._transport_failure(iteration, RequestTimeoutError(f"request exceeded {self.timeout}s"), started_at, start)
        except TransportError as e:
            result = self._transport_failure(iteration, e, started_at, start)
        except Exception as e:
            logger.warning(f"Iteration {iteration.sequence}: client raised {type(e).__name__}: {e}")
            result = IterationResult.failure(
                iteration.sequence,
                UNEXPECTED,
                f"{type(e).__name__}: {e}",
                started_at=started_at,
                finished_at=time.time(),
                duration_ms=(time.perf_counter() - start) * 1000.0,
            )
        else:
            duration_ms = (time.perf_counter() - start) * 1000.0
            expected = self.template.is_expected_status(response.status_code)
            result = IterationResult(
                sequence=iteration.sequence,
                started_at=started_at,
                finished_at=time.time(),
                duration_ms=duration_ms,
                status_code=response.status_code,
                errored=not expected,
                error_kind=None if expected else HTTP_STATUS_ERROR,
                error_message=None if expected else f"unexpected status {response.status_code}",
            )

        if self.checks:
            outcomes = tuple((check.name, check.evaluate(result, response)) for check in self.checks)
            result = replace(result, checks=outcomes)
        return result

    def _transport_failure(
        self,
        iteration: "ScheduledIteration",
        error: TransportError,
        started_at: float,
        start: float,
    ) -> IterationResult:
        logger.debug(f"Iteration {iteration.sequence} failed ({error.kind}): {error}")
        return IterationResult.failure(
            iteration.sequence,
            error.kind,
            str(error),
            started_at=started_at,
            finished_at=time.time(),
            duration_ms=(time.perf_counter() - start) * 1000.0,
        )
