"""Built-in check factories.

Each factory takes its configuration and returns a pure predicate over the
iteration result, optionally also receiving the HTTP response (``None`` when
the request never produced one).
"""

from typing import Any, Callable, Iterable, Optional

from ..adapters.base import HttpResponse


_MISSING = object()


def status_is(expected: int = 200) -> Callable[..., bool]:
    """Response status equals ``expected``."""
    def predicate(result) -> bool:
        return result.status_code == expected
    return predicate


def status_in(codes: Iterable[int]) -> Callable[..., bool]:
    """Response status is one of ``codes``."""
    allowed = frozenset(int(c) for c in codes)

    def predicate(result) -> bool:
        return result.status_code in allowed
    return predicate


def duration_below(ms: float) -> Callable[..., bool]:
    """A response arrived in under ``ms`` milliseconds."""
    def predicate(result) -> bool:
        return result.status_code is not None and result.duration_ms < ms
    return predicate


def _lookup(document: Any, path: str) -> Any:
    current = document
    for part in path.split("."):
        if isinstance(current, dict) and part in current:
            current = current[part]
        elif isinstance(current, list) and part.isdigit() and int(part) < len(current):
            current = current[int(part)]
        else:
            return _MISSING
    return current


def _json_or_missing(response: Optional[HttpResponse]) -> Any:
    if response is None:
        return _MISSING
    try:
        return response.json()
    except ValueError:
        return _MISSING


def json_has(field: str) -> Callable[..., bool]:
    """JSON body has a value at the dotted ``field`` path (``null`` counts)."""
    def predicate(result, response) -> bool:
        document = _json_or_missing(response)
        if document is _MISSING:
            return False
        return _lookup(document, field) is not _MISSING
    return predicate


def json_equals(field: str, value: Any) -> Callable[..., bool]:
    """JSON body holds ``value`` at the dotted ``field`` path."""
    def predicate(result, response) -> bool:
        document = _json_or_missing(response)
        if document is _MISSING:
            return False
        return _lookup(document, field) == value
    return predicate


def body_contains(text: str) -> Callable[..., bool]:
    """Response body contains ``text``."""
    def predicate(result, response) -> bool:
        return response is not None and text in response.text
    return predicate
