"""Collaborator interfaces: the HTTP client and the credential source."""

import json
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, Mapping, Optional


@dataclass(frozen=True)
class HttpRequest:
    """A fully resolved request, ready to send."""

    method: str
    url: str
    headers: Mapping[str, str] = field(default_factory=dict)
    json_body: Any = None
    content: Optional[bytes] = None


@dataclass(frozen=True)
class HttpResponse:
    status_code: int
    headers: Mapping[str, str] = field(default_factory=dict)
    content: bytes = b""

    @property
    def text(self) -> str:
        return self.content.decode("utf-8", errors="replace")

    def json(self) -> Any:
        return json.loads(self.content or b"null")


class HttpClient(ABC):
    """Base class for HTTP client adapters.

    Implementations raise :class:`~loadpace.utils.errors.TransportError` (or
    its :class:`~loadpace.utils.errors.RequestTimeoutError` subclass) for any
    failure that prevented a response from arriving. HTTP error statuses are
    responses, not exceptions.
    """

    @abstractmethod
    async def send(self, request: HttpRequest, *, timeout: float) -> HttpResponse:
        """Send one request and return its response."""
        pass

    async def aclose(self) -> None:
        """Release pooled connections."""
        pass

    async def __aenter__(self) -> "HttpClient":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()


class CredentialProvider(ABC):
    """Hands out one bearer token per iteration. Storage and refresh live elsewhere."""

    @abstractmethod
    def token(self) -> Optional[str]:
        pass

    def headers(self) -> Dict[str, str]:
        token = self.token()
        if not token:
            return {}
        return {"Authorization": f"Bearer {token}"}
