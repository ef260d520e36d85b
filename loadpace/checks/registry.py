"""Check registry for looking up check factories by name."""

import inspect
import logging
from typing import Any, Callable, Dict, Mapping, Optional

from ..utils.errors import PlanValidationError
from . import builtin_checks

logger = logging.getLogger(__name__)


# Global registry for custom checks
_custom_checks: Dict[str, Callable[..., Callable[..., bool]]] = {}


def _accepts_response(predicate: Callable[..., bool]) -> bool:
    """True when the predicate can take ``(result, response)`` positionally."""
    positional = 0
    for param in inspect.signature(predicate).parameters.values():
        if param.kind is inspect.Parameter.VAR_POSITIONAL:
            return True
        if param.kind in (inspect.Parameter.POSITIONAL_ONLY, inspect.Parameter.POSITIONAL_OR_KEYWORD):
            positional += 1
    return positional >= 2


class Check:
    """A named boolean predicate over an iteration's result (and response)."""

    def __init__(self, name: str, predicate: Callable[..., bool]):
        self.name = name
        self.predicate = predicate
        self._wants_response = _accepts_response(predicate)

    def evaluate(self, result: Any, response: Optional[Any] = None) -> bool:
        """Run the predicate; an exception counts as a failed check."""
        try:
            if self._wants_response:
                return bool(self.predicate(result, response))
            return bool(self.predicate(result))
        except Exception as e:
            logger.debug(f"Check '{self.name}' raised {type(e).__name__}: {e}")
            return False

    def __repr__(self) -> str:
        return f"Check({self.name!r})"


def register_check(name: str, factory: Callable[..., Callable[..., bool]]):
    """
    Register a custom check factory.

    Args:
        name: Name plans use to refer to the check
        factory: Callable taking the check's ``args`` and returning a predicate
    """
    _custom_checks[name] = factory


def get_check(name: str) -> Callable[..., Callable[..., bool]]:
    """
    Get a check factory by name.

    Raises:
        PlanValidationError: If no check is registered under ``name``
    """
    if name in _custom_checks:
        return _custom_checks[name]

    if name in builtin_checks:
        return builtin_checks[name]

    available = list(_custom_checks.keys()) + list(builtin_checks.keys())
    raise PlanValidationError(
        f"Check '{name}' not found. "
        f"Available checks: {', '.join(sorted(available))}"
    )


def build_check(name: str, check: str, args: Optional[Mapping[str, Any]] = None) -> Check:
    """Instantiate the named factory with ``args`` and wrap it as a :class:`Check`."""
    factory = get_check(check)
    try:
        predicate = factory(**dict(args or {}))
    except TypeError as e:
        raise PlanValidationError(f"Invalid arguments for check '{name}' ({check}): {e}") from e
    return Check(name, predicate)
