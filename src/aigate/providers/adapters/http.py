"""
HTTP provider adapter.

Posts the opaque payload to a provider endpoint with httpx and translates
transport failures into router exceptions.
"""

import logging
import os
from typing import Any

import httpx

from aigate.providers.exceptions import (
    NetworkError,
    ProviderError,
    RequestTimeoutError,
)
from aigate.providers.models import ProviderResponse
from aigate.providers.protocol import CancellationToken, ProviderAdapter

logger = logging.getLogger(__name__)


def _parse_retry_after(value: str | None) -> float | None:
    """Parse a Retry-After header given in seconds."""
    if not value:
        return None
    try:
        return max(0.0, float(value))
    except ValueError:
        return None


class HttpProviderAdapter(ProviderAdapter):
    """Send payloads to a provider over HTTP POST."""

    def __init__(
        self,
        name: str,
        endpoint: str,
        *,
        headers: dict[str, str] | None = None,
        api_key_env: str | None = None,
        timeout: float = 30.0,
        content_type: str = "application/json",
        client: httpx.AsyncClient | None = None,
    ):
        """
        Initialize the HTTP adapter.

        Args:
            name: Provider name.
            endpoint: URL that receives the payload (must be http:// or https://).
            headers: Extra request headers.
            api_key_env: Environment variable holding a bearer token.
            timeout: Transport timeout in seconds.
            content_type: Content-Type sent with the payload.
            client: Shared httpx client. Created lazily when omitted.
        """
        if not endpoint.startswith(("http://", "https://")):
            raise ValueError(f"Endpoint must start with http:// or https://: {endpoint}")

        self._name = name
        self.endpoint = endpoint
        self.timeout = timeout
        self._headers = {"Content-Type": content_type, **(headers or {})}
        self._api_key_env = api_key_env
        self._client = client
        self._owns_client = client is None

    @property
    def name(self) -> str:
        """Provider name."""
        return self._name

    @property
    def supports_cancellation(self) -> bool:
        """In-flight requests are aborted when the signal fires."""
        return True

    def _build_headers(self) -> dict[str, str]:
        headers = dict(self._headers)
        if self._api_key_env:
            token = os.environ.get(self._api_key_env)
            if token:
                headers["Authorization"] = f"Bearer {token}"
            else:
                logger.debug(f"{self._api_key_env} not set for provider {self._name}")
        return headers

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeout)
        return self._client

    async def call(self, payload: bytes, signal: CancellationToken) -> ProviderResponse:
        """POST the payload and return the response body."""
        client = self._get_client()
        request_kwargs: dict[str, Any] = {
            "content": payload,
            "headers": self._build_headers(),
            "timeout": self.timeout,
        }

        try:
            response = await signal.guard(client.post(self.endpoint, **request_kwargs))
        except httpx.TimeoutException as e:
            raise RequestTimeoutError(
                f"Request to {self._name} timed out: {e}", provider=self._name
            ) from e
        except httpx.TransportError as e:
            raise NetworkError(
                f"Cannot reach {self._name}: {e}", provider=self._name
            ) from e

        if response.status_code >= 400:
            raise ProviderError(
                f"HTTP {response.status_code}: {response.text[:200]}",
                provider=self._name,
                status=response.status_code,
                retry_after=_parse_retry_after(response.headers.get("Retry-After")),
            )

        return ProviderResponse(
            payload=response.content,
            status=response.status_code,
            headers=dict(response.headers),
        )

    async def aclose(self) -> None:
        """Close the owned httpx client."""
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None
