"""Unit tests for provider adapters and the provider registry."""

import asyncio
import json
from unittest.mock import AsyncMock, patch

import httpx
import pytest

from aigate.config import ProviderEntry
from aigate.providers.adapters import HttpProviderAdapter, LiteLLMAdapter
from aigate.providers.exceptions import (
    NetworkError,
    ProviderError,
    RequestCancelledError,
    RequestTimeoutError,
    ValidationError,
)
from aigate.providers.protocol import CancellationToken
from aigate.providers.registry import ProviderRegistry, ProviderSpec, build_adapter

ENDPOINT = "https://llm.example.test/v1/complete"


def _adapter(handler, **kwargs) -> HttpProviderAdapter:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return HttpProviderAdapter("edge", ENDPOINT, client=client, **kwargs)


class TestHttpProviderAdapter:
    """Tests for HttpProviderAdapter."""

    @pytest.mark.asyncio
    async def test_posts_payload(self, monkeypatch):
        monkeypatch.setenv("EDGE_TOKEN", "secret")
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["body"] = request.content
            seen["auth"] = request.headers.get("Authorization")
            seen["type"] = request.headers.get("Content-Type")
            seen["extra"] = request.headers.get("X-Tenant")
            return httpx.Response(200, content=b'{"answer": 42}', headers={"X-Request-Id": "abc"})

        adapter = _adapter(handler, api_key_env="EDGE_TOKEN", headers={"X-Tenant": "t1"})
        response = await adapter.call(b'{"q": 1}', CancellationToken())

        assert response.payload == b'{"answer": 42}'
        assert response.status == 200
        assert response.headers["x-request-id"] == "abc"
        assert seen == {
            "body": b'{"q": 1}',
            "auth": "Bearer secret",
            "type": "application/json",
            "extra": "t1",
        }

    @pytest.mark.asyncio
    async def test_error_status_with_retry_after(self):
        adapter = _adapter(lambda request: httpx.Response(429, text="slow down", headers={"Retry-After": "2"}))

        with pytest.raises(ProviderError) as exc_info:
            await adapter.call(b"x", CancellationToken())

        assert exc_info.value.status == 429
        assert exc_info.value.retry_after == 2.0
        assert exc_info.value.provider == "edge"

    @pytest.mark.asyncio
    async def test_unparseable_retry_after_is_ignored(self):
        adapter = _adapter(
            lambda request: httpx.Response(503, headers={"Retry-After": "Wed, 21 Oct 2015 07:28:00 GMT"})
        )
        with pytest.raises(ProviderError) as exc_info:
            await adapter.call(b"x", CancellationToken())
        assert exc_info.value.retry_after is None

    @pytest.mark.asyncio
    async def test_connect_error_is_network_error(self):
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        with pytest.raises(NetworkError):
            await _adapter(handler).call(b"x", CancellationToken())

    @pytest.mark.asyncio
    async def test_timeout(self):
        def handler(request):
            raise httpx.ReadTimeout("slow", request=request)

        with pytest.raises(RequestTimeoutError):
            await _adapter(handler).call(b"x", CancellationToken())

    @pytest.mark.asyncio
    async def test_cancellation_aborts_call(self):
        async def handler(request):
            await asyncio.sleep(10)
            return httpx.Response(200)

        adapter = _adapter(handler)
        token = CancellationToken()
        asyncio.get_running_loop().call_later(0.01, token.cancel)

        with pytest.raises(RequestCancelledError):
            await adapter.call(b"x", token)
        assert adapter.supports_cancellation

    @pytest.mark.asyncio
    async def test_aclose_only_closes_owned_client(self):
        client = httpx.AsyncClient(transport=httpx.MockTransport(lambda r: httpx.Response(200)))
        adapter = HttpProviderAdapter("edge", ENDPOINT, client=client)
        await adapter.aclose()
        assert not client.is_closed
        await client.aclose()

    def test_endpoint_must_be_http(self):
        with pytest.raises(ValueError):
            HttpProviderAdapter("edge", "ftp://example.test")


class TestLiteLLMAdapter:
    """Tests for LiteLLMAdapter."""

    @pytest.mark.asyncio
    async def test_call_builds_completion_kwargs(self):
        adapter = LiteLLMAdapter(
            "primary", "openai/gpt-4o-mini", timeout=12.0, api_base="http://localhost:4000",
            extra_params={"temperature": 0.2},
        )
        completion = AsyncMock(return_value={"choices": [{"message": {"content": "hi"}}]})

        with patch("aigate.providers.adapters.litellm_adapter.acompletion", completion):
            response = await adapter.call(
                json.dumps({"messages": [{"role": "user", "content": "hello"}], "model": "ignored"}).encode(),
                CancellationToken(),
            )

        kwargs = completion.call_args.kwargs
        assert kwargs["model"] == "openai/gpt-4o-mini"
        assert kwargs["timeout"] == 12.0
        assert kwargs["stream"] is False
        assert kwargs["temperature"] == 0.2
        assert kwargs["api_base"] == "http://localhost:4000"
        assert json.loads(response.payload)["choices"][0]["message"]["content"] == "hi"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("payload", [b"not json", b"[1, 2]", b"\xff\xfe"])
    async def test_invalid_payload(self, payload):
        adapter = LiteLLMAdapter("primary", "openai/gpt-4o-mini")
        completion = AsyncMock()

        with patch("aigate.providers.adapters.litellm_adapter.acompletion", completion):
            with pytest.raises(ValidationError):
                await adapter.call(payload, CancellationToken())
        completion.assert_not_called()

    @pytest.mark.asyncio
    async def test_status_code_is_carried_over(self):
        error = Exception("unauthorized")
        error.status_code = 401
        adapter = LiteLLMAdapter("primary", "openai/gpt-4o-mini")

        with patch("aigate.providers.adapters.litellm_adapter.acompletion", AsyncMock(side_effect=error)):
            with pytest.raises(ProviderError) as exc_info:
                await adapter.call(b"{}", CancellationToken())

        assert exc_info.value.status == 401
        assert exc_info.value.__cause__ is error

    @pytest.mark.asyncio
    async def test_unknown_error_has_no_status(self):
        adapter = LiteLLMAdapter("primary", "openai/gpt-4o-mini")

        with patch(
            "aigate.providers.adapters.litellm_adapter.acompletion",
            AsyncMock(side_effect=RuntimeError("weird")),
        ):
            with pytest.raises(ProviderError) as exc_info:
                await adapter.call(b"{}", CancellationToken())

        assert exc_info.value.status is None


class TestProviderRegistry:
    """Tests for ProviderSpec and ProviderRegistry."""

    def test_spec_normalizes_name(self):
        assert ProviderSpec(name="  OpenAI ", model="m").name == "openai"

    @pytest.mark.parametrize(
        "kwargs",
        [{"name": ""}, {"name": "*"}, {"name": "x", "kind": "grpc"}, {"name": "x", "max_concurrency": 0}],
    )
    def test_invalid_spec(self, kwargs):
        with pytest.raises(ValueError):
            ProviderSpec(**kwargs)

    def test_build_adapter(self):
        http = build_adapter(ProviderSpec(name="edge", kind="http", endpoint=ENDPOINT))
        llm = build_adapter(ProviderSpec(name="primary", model="openai/gpt-4o-mini"))
        assert isinstance(http, HttpProviderAdapter)
        assert isinstance(llm, LiteLLMAdapter)

        with pytest.raises(ValueError):
            build_adapter(ProviderSpec(name="edge", kind="http"))

    def test_ordering_and_lookup(self, fake_adapter):
        registry = ProviderRegistry()
        registry.register(ProviderSpec(name="b", priority=20), fake_adapter("b"))
        registry.register(ProviderSpec(name="a", priority=10), fake_adapter("a"))
        registry.register(ProviderSpec(name="c", priority=5, enabled=False), fake_adapter("c"))

        assert [spec.name for spec in registry.ordered()] == ["a", "b"]
        assert registry.names() == ["b", "a", "c"]
        assert "A" in registry
        assert registry.adapter("B").name == "b"
        assert len(registry) == 3

        with pytest.raises(ValueError):
            registry.register(ProviderSpec(name="a"), fake_adapter("a"))

    def test_from_config(self):
        registry = ProviderRegistry.from_config(
            [
                ProviderEntry(name="primary", model="openai/gpt-4o-mini", priority=1),
                ProviderEntry(name="edge", kind="http", endpoint=ENDPOINT, max_concurrency=2),
            ]
        )
        assert registry.get("edge").max_concurrency == 2
        assert isinstance(registry.adapter("primary"), LiteLLMAdapter)
