import httpx
import pytest

from loadpace.adapters.base import HttpRequest
from loadpace.adapters.httpx_client import HttpxClient
from loadpace.utils.errors import RequestTimeoutError, TransportError


def _raising(error_type, message):
    def handler(request):
        raise error_type(message, request=request)
    return handler


@pytest.mark.unit
class TestHttpxClient:
    """Adapter behaviour against httpx's mock transport."""

    @pytest.mark.asyncio
    async def test_returns_response_and_forwards_headers(self):
        seen = {}

        def handler(request):
            seen["auth"] = request.headers.get("authorization")
            seen["method"] = request.method
            return httpx.Response(200, json={"id": 3})

        client = HttpxClient(transport=httpx.MockTransport(handler))
        try:
            response = await client.send(
                HttpRequest("GET", "http://test.local/api/users/me", headers={"Authorization": "Bearer t"}),
                timeout=5.0,
            )
        finally:
            await client.aclose()

        assert response.status_code == 200
        assert response.json() == {"id": 3}
        assert seen == {"auth": "Bearer t", "method": "GET"}

    @pytest.mark.asyncio
    async def test_error_status_is_a_response(self):
        client = HttpxClient(transport=httpx.MockTransport(lambda request: httpx.Response(503)))
        try:
            response = await client.send(HttpRequest("GET", "http://test.local/"), timeout=5.0)
        finally:
            await client.aclose()

        assert response.status_code == 503

    @pytest.mark.asyncio
    @pytest.mark.parametrize("message, kind", [
        ("[Errno 111] Connection refused", "connection_refused"),
        ("[Errno -2] Name or service not known", "dns"),
        ("handshake went sideways", "connect"),
    ])
    async def test_connect_errors_are_classified(self, message, kind):
        client = HttpxClient(transport=httpx.MockTransport(_raising(httpx.ConnectError, message)))
        try:
            with pytest.raises(TransportError) as exc:
                await client.send(HttpRequest("GET", "http://test.local/"), timeout=5.0)
        finally:
            await client.aclose()

        assert exc.value.kind == kind

    @pytest.mark.asyncio
    async def test_timeouts(self):
        client = HttpxClient(transport=httpx.MockTransport(_raising(httpx.ReadTimeout, "timed out")))
        try:
            with pytest.raises(RequestTimeoutError) as exc:
                await client.send(HttpRequest("GET", "http://test.local/"), timeout=0.5)
        finally:
            await client.aclose()

        assert exc.value.kind == "timeout"

    @pytest.mark.asyncio
    async def test_other_transport_failures(self):
        client = HttpxClient(transport=httpx.MockTransport(_raising(httpx.RemoteProtocolError, "peer reset")))
        try:
            with pytest.raises(TransportError) as exc:
                await client.send(HttpRequest("GET", "http://test.local/"), timeout=5.0)
        finally:
            await client.aclose()

        assert exc.value.kind == "transport"
        assert "RemoteProtocolError" in str(exc.value)

    @pytest.mark.asyncio
    async def test_decoding_and_url_errors_are_mapped(self):
        decoding = HttpxClient(transport=httpx.MockTransport(_raising(httpx.DecodingError, "bad gzip")))

        def invalid_url(request):
            raise httpx.InvalidURL("Invalid port")

        bad_url = HttpxClient(transport=httpx.MockTransport(invalid_url))
        try:
            with pytest.raises(TransportError) as decoding_exc:
                await decoding.send(HttpRequest("GET", "http://test.local/"), timeout=5.0)
            with pytest.raises(TransportError) as url_exc:
                await bad_url.send(HttpRequest("GET", "http://test.local/"), timeout=5.0)
        finally:
            await decoding.aclose()
            await bad_url.aclose()

        assert decoding_exc.value.kind == "decoding"
        assert url_exc.value.kind == "invalid_url"

    @pytest.mark.asyncio
    async def test_injected_client_is_left_open(self):
        inner = httpx.AsyncClient(transport=httpx.MockTransport(lambda request: httpx.Response(204)))
        client = HttpxClient(client=inner)

        await client.aclose()

        assert inner.is_closed is False
        await inner.aclose()
