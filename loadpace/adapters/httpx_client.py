"""HTTP client adapter on top of ``httpx.AsyncClient``."""

from __future__ import annotations

import logging
from typing import Optional

import httpx

from ..utils.errors import RequestTimeoutError, TransportError
from .base import HttpClient, HttpRequest, HttpResponse

logger = logging.getLogger(__name__)

_DNS_MARKERS = (
    "name or service not known",
    "nodename nor servname",
    "temporary failure in name resolution",
    "getaddrinfo failed",
    "no address associated",
)


def _connect_error_kind(error: Exception) -> str:
    message = str(error).lower()
    if any(marker in message for marker in _DNS_MARKERS):
        return "dns"
    if "refused" in message:
        return "connection_refused"
    return "connect"


class HttpxClient(HttpClient):
    """Pooled async client; connection limits are sized to the worker ceiling."""

    def __init__(
        self,
        *,
        max_connections: int = 100,
        verify: bool = True,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(
            limits=httpx.Limits(
                max_connections=max_connections,
                max_keepalive_connections=max_connections,
            ),
            verify=verify,
            transport=transport,
            follow_redirects=False,
        )

    async def send(self, request: HttpRequest, *, timeout: float) -> HttpResponse:
        try:
            response = await self._client.request(
                request.method,
                request.url,
                headers=dict(request.headers),
                json=request.json_body,
                content=request.content,
                timeout=timeout,
            )
        except httpx.TimeoutException as e:
            raise RequestTimeoutError(f"{type(e).__name__}: request exceeded {timeout}s") from e
        except httpx.ConnectError as e:
            raise TransportError(str(e) or "connection failed", kind=_connect_error_kind(e)) from e
        except httpx.TransportError as e:
            raise TransportError(f"{type(e).__name__}: {e}") from e
        except httpx.DecodingError as e:
            raise TransportError(f"DecodingError: {e}", kind="decoding") from e
        except httpx.RequestError as e:
            raise TransportError(f"{type(e).__name__}: {e}") from e
        except httpx.InvalidURL as e:
            raise TransportError(f"InvalidURL: {e}", kind="invalid_url") from e

        return HttpResponse(
            status_code=response.status_code,
            headers=dict(response.headers),
            content=response.content,
        )

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()
