"""HTTP client and credential collaborators."""

from .base import CredentialProvider, HttpClient, HttpRequest, HttpResponse
from .credentials import StaticTokenProvider, provider_from_config
from .httpx_client import HttpxClient

__all__ = [
    "CredentialProvider",
    "HttpClient",
    "HttpRequest",
    "HttpResponse",
    "HttpxClient",
    "StaticTokenProvider",
    "provider_from_config",
]
