"""Tests for the AI provider client."""

import asyncio
import json

import httpx
import pytest

from visidash.ai_client import (
    InvocationResult,
    TransportError,
    TransportTimeout,
    build_headers,
    decode_body,
    invoke_ai_provider,
    is_success_status,
    normalize_bearer_token,
)
from visidash.server.config import ConfigurationError

PROVIDER_URL = "https://api.example.com/v1/chat"


class RecordingTransport:
    """Collects requests and answers them with a fixed response."""

    def __init__(self, status=200, body=b'{"ok":true}', delay=0.0, content_type="application/json"):
        self.requests = []
        self.status = status
        self.body = body
        self.delay = delay
        self.content_type = content_type

    async def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.delay:
            await asyncio.sleep(self.delay)
        return httpx.Response(
            self.status, content=self.body, headers={"Content-Type": self.content_type}
        )

    def client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(self))


class TestNormalizeBearerToken:
    def test_raw_token(self):
        assert normalize_bearer_token("abc123") == "Bearer abc123"

    def test_already_prefixed(self):
        assert normalize_bearer_token("Bearer abc123") == "Bearer abc123"

    def test_prefix_is_case_insensitive_and_trimmed(self):
        """Lowercase prefix and stray whitespace collapse to one canonical form."""
        assert normalize_bearer_token("  bearer   abc123 ") == "Bearer abc123"

    def test_never_double_prefixed(self):
        assert normalize_bearer_token("BEARER xyz") == "Bearer xyz"


class TestBuildHeaders:
    def test_defaults_to_json(self):
        headers = build_headers()
        assert headers["content-type"] == "application/json"
        assert "authorization" not in headers

    def test_api_key_sets_authorization(self):
        headers = build_headers("secret")
        assert headers["Authorization"] == "Bearer secret"

    def test_caller_content_type_wins(self):
        """Overrides match case-insensitively and leave a single Content-Type."""
        headers = build_headers(None, {"content-type": "text/plain"})
        assert headers.get_list("Content-Type") == ["text/plain"]

    def test_api_key_replaces_caller_authorization(self):
        headers = build_headers("key", {"Authorization": "Basic Zm9vOmJhcg=="})
        assert headers.get_list("authorization") == ["Bearer key"]


class TestDecodeBody:
    def test_json_object(self):
        assert decode_body('{"a": 1}') == ({"a": 1}, True)

    def test_plain_text(self):
        assert decode_body("upstream exploded") == ("upstream exploded", False)

    def test_empty_body_is_text(self):
        assert decode_body("") == ("", False)

    def test_json_scalar(self):
        assert decode_body("42") == (42, True)

    @pytest.mark.parametrize("text", ["NaN", "Infinity", "-Infinity", '{"v": NaN}'])
    def test_non_standard_constants_are_text(self, text):
        assert decode_body(text) == (text, False)

    def test_deep_nesting_is_text(self):
        text = "[" * 100000 + "]" * 100000
        assert decode_body(text) == (text, False)


def test_success_range():
    assert is_success_status(200)
    assert is_success_status(204)
    assert is_success_status(302)
    assert not is_success_status(404)
    assert not is_success_status(500)


@pytest.mark.asyncio
class TestInvokeAiProvider:
    async def test_missing_url_raises_without_request(self):
        transport = RecordingTransport()
        async with transport.client() as client:
            with pytest.raises(ConfigurationError):
                await invoke_ai_provider("", "key", {"prompt": "hi"}, client=client)
            with pytest.raises(ConfigurationError):
                await invoke_ai_provider(None, "key", {"prompt": "hi"}, client=client)
        assert transport.requests == []

    async def test_ok_response(self):
        transport = RecordingTransport(status=200, body=b'{"ok":true}')
        async with transport.client() as client:
            result = await invoke_ai_provider(
                PROVIDER_URL, "abc123", {"prompt": "hi"}, client=client
            )

        assert isinstance(result, InvocationResult)
        assert result.ok is True
        assert result.status == 200
        assert result.body == {"ok": True}
        assert result.body_is_json is True

        request = transport.requests[0]
        assert request.method == "POST"
        assert str(request.url) == PROVIDER_URL
        assert request.headers["Authorization"] == "Bearer abc123"
        assert request.headers["Content-Type"] == "application/json"
        assert json.loads(request.content) == {"prompt": "hi"}

    async def test_prefixed_key_not_doubled(self):
        transport = RecordingTransport()
        async with transport.client() as client:
            await invoke_ai_provider(PROVIDER_URL, "Bearer abc123", {}, client=client)
        assert transport.requests[0].headers["Authorization"] == "Bearer abc123"

    async def test_no_key_no_authorization(self):
        transport = RecordingTransport()
        async with transport.client() as client:
            await invoke_ai_provider(PROVIDER_URL, None, {}, client=client)
        assert "authorization" not in transport.requests[0].headers

    async def test_not_found_is_returned_not_raised(self):
        transport = RecordingTransport(status=404, body=b'{"error":"missing"}')
        async with transport.client() as client:
            result = await invoke_ai_provider(PROVIDER_URL, None, {}, client=client)

        assert result.ok is False
        assert result.status == 404
        assert result.status_text == "Not Found"
        assert result.body == {"error": "missing"}

    async def test_server_error_with_text_body(self):
        transport = RecordingTransport(
            status=500, body=b"upstream exploded", content_type="text/plain"
        )
        async with transport.client() as client:
            result = await invoke_ai_provider(PROVIDER_URL, None, {}, client=client)

        assert result.ok is False
        assert result.status == 500
        assert result.body == "upstream exploded"
        assert result.body_is_json is False
        assert result.content_type == "text/plain"

    async def test_custom_method_and_headers(self):
        transport = RecordingTransport()
        async with transport.client() as client:
            await invoke_ai_provider(
                PROVIDER_URL,
                None,
                {"q": 1},
                headers={"X-Trace": "t-1", "content-type": "application/vnd.api+json"},
                method="PUT",
                client=client,
            )

        request = transport.requests[0]
        assert request.method == "PUT"
        assert request.headers["X-Trace"] == "t-1"
        assert request.headers.get_list("Content-Type") == ["application/vnd.api+json"]
        assert json.loads(request.content) == {"q": 1}

    async def test_timeout_raises_and_leaves_nothing_running(self):
        transport = RecordingTransport(delay=1.0)
        async with transport.client() as client:
            with pytest.raises(TransportTimeout):
                await invoke_ai_provider(
                    PROVIDER_URL, None, {}, timeout_ms=10, client=client
                )

            pending = [t for t in asyncio.all_tasks() if t is not asyncio.current_task()]
            assert pending == []

    async def test_timeout_is_a_transport_error(self):
        transport = RecordingTransport(delay=1.0)
        async with transport.client() as client:
            with pytest.raises(TransportError):
                await invoke_ai_provider(
                    PROVIDER_URL, None, {}, timeout_ms=10, client=client
                )

    async def test_no_deadline_when_timeout_disabled(self):
        transport = RecordingTransport(delay=0.05)
        async with transport.client() as client:
            result = await invoke_ai_provider(
                PROVIDER_URL, None, {}, timeout_ms=None, client=client
            )
        assert result.ok

    async def test_connection_failure_raises_transport_error(self):
        def refuse(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("Connection refused", request=request)

        async with httpx.AsyncClient(transport=httpx.MockTransport(refuse)) as client:
            with pytest.raises(TransportError) as exc_info:
                await invoke_ai_provider(PROVIDER_URL, None, {}, client=client)

        assert not isinstance(exc_info.value, TransportTimeout)
        assert isinstance(exc_info.value.__cause__, httpx.ConnectError)

    async def test_malformed_url_raises_transport_error(self):
        with pytest.raises(TransportError):
            await invoke_ai_provider("not-a-url", None, {})

    async def test_concurrent_calls_are_independent(self):
        """A slow call timing out does not affect a fast call running alongside it."""
        slow = RecordingTransport(delay=1.0)
        fast = RecordingTransport(body=b'{"answer":42}')

        async with slow.client() as slow_client, fast.client() as fast_client:
            results = await asyncio.gather(
                invoke_ai_provider(
                    "https://slow.example.com", None, {}, timeout_ms=20, client=slow_client
                ),
                invoke_ai_provider(
                    "https://fast.example.com", "k", {}, timeout_ms=1000, client=fast_client
                ),
                return_exceptions=True,
            )

        assert isinstance(results[0], TransportTimeout)
        assert results[1].body == {"answer": 42}
        assert fast.requests[0].headers["Authorization"] == "Bearer k"

    async def test_caller_header_sent_alongside_json_content_type(self):
        transport = RecordingTransport()
        async with transport.client() as client:
            await invoke_ai_provider(
                PROVIDER_URL, "k", {"q": 1}, headers={"X-Trace": "t-2"}, client=client
            )

        request = transport.requests[0]
        assert request.headers["X-Trace"] == "t-2"
        assert request.headers.get_list("Content-Type") == ["application/json"]
        assert request.headers["Authorization"] == "Bearer k"

    async def test_deeply_nested_body_comes_back_as_text(self):
        nested = "[" * 100000 + "]" * 100000
        transport = RecordingTransport(body=nested.encode())
        async with transport.client() as client:
            result = await invoke_ai_provider(PROVIDER_URL, None, {}, client=client)

        assert result.ok is True
        assert result.body_is_json is False
        assert result.body == nested

    async def test_nan_body_comes_back_as_text(self):
        transport = RecordingTransport(body=b'{"v": NaN}')
        async with transport.client() as client:
            result = await invoke_ai_provider(PROVIDER_URL, None, {}, client=client)

        assert result.body == '{"v": NaN}'
        assert result.body_is_json is False
        assert result.content_type == "application/json"
