"""
LiteLLM provider adapter.

Routes opaque JSON payloads to any vendor LiteLLM supports. The payload is
decoded into keyword arguments for ``acompletion``; the response is encoded
back to JSON bytes.
"""

import json
import logging
from typing import Any

import litellm
from litellm import acompletion
from litellm.exceptions import (
    APIConnectionError,
    RateLimitError,
    ServiceUnavailableError,
    Timeout,
)

from aigate.providers.exceptions import (
    NetworkError,
    ProviderError,
    RequestTimeoutError,
    RouterError,
    ValidationError,
)
from aigate.providers.models import ProviderResponse
from aigate.providers.protocol import CancellationToken, ProviderAdapter

logger = logging.getLogger(__name__)

# Drop unsupported params per-provider
litellm.drop_params = True


class LiteLLMAdapter(ProviderAdapter):
    """Dispatch payloads through ``litellm.acompletion``."""

    def __init__(
        self,
        name: str,
        model: str,
        *,
        timeout: float = 60.0,
        api_base: str | None = None,
        extra_params: dict[str, Any] | None = None,
    ):
        """
        Initialize the LiteLLM adapter.

        Args:
            name: Provider name.
            model: LiteLLM model identifier (e.g. "anthropic/claude-sonnet-4").
            timeout: Per-call timeout handed to LiteLLM.
            api_base: Override for the vendor endpoint.
            extra_params: Parameters merged under every payload.
        """
        self._name = name
        self.model = model
        self.timeout = timeout
        self.api_base = api_base
        self.extra_params = extra_params or {}

    @property
    def name(self) -> str:
        return self._name

    @property
    def supports_cancellation(self) -> bool:
        return True

    def _build_kwargs(self, payload: bytes) -> dict[str, Any]:
        try:
            body = json.loads(payload)
        except (UnicodeDecodeError, json.JSONDecodeError) as e:
            raise ValidationError(
                f"Payload for {self._name} is not valid JSON: {e}", provider=self._name
            ) from e
        if not isinstance(body, dict):
            raise ValidationError(
                f"Payload for {self._name} must be a JSON object", provider=self._name
            )

        request_kwargs: dict[str, Any] = {
            **self.extra_params,
            **body,
            "model": self.model,
            "timeout": self.timeout,
            "stream": False,
        }
        if self.api_base:
            request_kwargs["api_base"] = self.api_base
        return request_kwargs

    def _translate(self, error: Exception) -> Exception:
        """Map a LiteLLM exception onto the router taxonomy."""
        if isinstance(error, Timeout):
            return RequestTimeoutError(str(error), provider=self._name)
        if isinstance(error, APIConnectionError):
            return NetworkError(str(error), provider=self._name)
        if isinstance(error, RateLimitError):
            return ProviderError(str(error), provider=self._name, status=429)
        if isinstance(error, ServiceUnavailableError):
            return ProviderError(str(error), provider=self._name, status=503)

        status = getattr(error, "status_code", None)
        if not isinstance(status, int):
            status = None
        return ProviderError(str(error), provider=self._name, status=status)

    async def call(self, payload: bytes, signal: CancellationToken) -> ProviderResponse:
        """Send the payload to LiteLLM and return the JSON-encoded response."""
        request_kwargs = self._build_kwargs(payload)
        logger.debug(f"Calling {self.model} via LiteLLM for provider {self._name}")

        try:
            response = await signal.guard(acompletion(**request_kwargs))
        except RouterError:
            raise
        except Exception as e:
            raise self._translate(e) from e

        if hasattr(response, "model_dump"):
            body = response.model_dump()
        else:
            body = dict(response)
        return ProviderResponse(payload=json.dumps(body, default=str).encode("utf-8"))
