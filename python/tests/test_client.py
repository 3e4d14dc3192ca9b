"""
Tests for viv_sdk.client module.

Tests the VivClient class against an httpx mock transport for both
streaming and non-streaming completions.
"""

import json
from unittest.mock import AsyncMock

import httpx
import pytest

from viv_sdk.client import VivClient
from viv_sdk.errors import APIError, ExhaustedRetriesError, VivError
from viv_sdk.types import ClientConfig, CompletionRequest, EventKind, StreamState


MESSAGES = [{"role": "user", "content": "Say this is a test"}]


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    monkeypatch.delenv("VIV_API_KEY", raising=False)
    monkeypatch.delenv("VIV_BASE_URL", raising=False)


def mock_client(handler, **options):
    http = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    client = VivClient(api_key="sk-test", http_client=http, **options)
    client._retry._sleep = AsyncMock(return_value=None)
    return client


class TestVivClientInit:
    """Tests for VivClient initialization."""

    def test_basic_init(self):
        """Test basic client initialization."""
        client = VivClient(api_key="sk-test")

        assert client.config.api_key == "sk-test"
        assert client.base_url == "https://api.vivgrid.com/v1"
        assert client.max_retries == 3

    def test_removes_trailing_slash(self):
        """Test that trailing slash is removed from base_url."""
        client = VivClient(api_key="sk-test", base_url="https://api.example.com/v1/")
        assert client.base_url == "https://api.example.com/v1"

    def test_missing_api_key(self, monkeypatch):
        """Test that an API key is required."""
        monkeypatch.delenv("VIV_API_KEY", raising=False)

        with pytest.raises(VivError, match="api_key is required"):
            VivClient()

    def test_api_key_from_env(self, monkeypatch):
        """Test that VIV_API_KEY is used when no key is passed."""
        monkeypatch.setenv("VIV_API_KEY", "sk-env")
        monkeypatch.setenv("VIV_BASE_URL", "https://env.example.com")

        client = VivClient()

        assert client.config.api_key == "sk-env"
        assert client.base_url == "https://env.example.com"

    def test_config_with_overrides(self):
        """Test that keyword options override a given config."""
        config = ClientConfig(api_key="sk-config", max_retries=5, framing="newline")
        client = VivClient(config=config, max_retries=1)

        assert client.max_retries == 1
        assert client.config.api_key == "sk-config"
        assert client.config.framing == "newline"
        assert client._retry.max_retries == 1

    def test_explicit_key_wins_over_config(self):
        """Test that the positional key overrides the config key."""
        client = VivClient("sk-explicit", config=ClientConfig(api_key="sk-config"))
        assert client.config.api_key == "sk-explicit"

    async def test_context_manager_closes_own_client(self):
        """Test that the owned HTTP client is closed on exit."""
        async with VivClient(api_key="sk-test") as client:
            http = client._http

        assert http.is_closed

    async def test_shared_http_client_left_open(self):
        """Test that a caller-supplied HTTP client is not closed."""
        http = httpx.AsyncClient()
        async with VivClient(api_key="sk-test", http_client=http):
            pass

        assert not http.is_closed
        await http.aclose()


class TestStream:
    """Tests for VivClient.stream."""

    async def test_stream_events(self, sample_stream):
        """Test a streamed completion and the request it sends."""
        seen = {}

        def handler(request):
            seen["url"] = str(request.url)
            seen["headers"] = request.headers
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, content=sample_stream)

        async with mock_client(handler, default_query={"api-version": "2"}) as client:
            session = await client.stream(MESSAGES, temperature=0.2)
            events = [(e.kind, e.data) async for e in session]
            await session.wait_closed()

        assert events == [
            (EventKind.CONNECT, None),
            (EventKind.CONTENT, "Hello"),
            (EventKind.REASONING, "thinking"),
            (EventKind.END, "finish"),
        ]
        assert seen["url"] == "https://api.vivgrid.com/v1/chat/completions?api-version=2"
        assert seen["headers"]["authorization"] == "Bearer sk-test"
        assert seen["headers"]["accept"] == "text/event-stream"
        assert seen["headers"]["x-response-format"] == "vivgrid"
        assert seen["body"] == {
            "messages": [{"role": "user", "content": "Say this is a test"}],
            "temperature": 0.2,
            "stream": True,
        }

    async def test_stream_retries_server_errors(self, sample_stream):
        """Test that 503 responses are retried transparently."""
        responses = [
            httpx.Response(503, text="overloaded"),
            httpx.Response(503, text="overloaded"),
            httpx.Response(200, content=sample_stream),
        ]

        async with mock_client(lambda request: responses.pop(0)) as client:
            session = await client.stream(MESSAGES)
            text = await session.text()
            await session.wait_closed()

        assert text == "Hello"
        assert responses == []
        assert client._retry._sleep.await_count == 2

    async def test_stream_exhausts_retries(self):
        """Test that the iterator raises once retries are used up."""
        errors = []

        async with mock_client(
            lambda request: httpx.Response(503, text="overloaded"), max_retries=1
        ) as client:
            session = await client.stream(MESSAGES)
            session.on("error", errors.append)
            with pytest.raises(ExhaustedRetriesError) as exc_info:
                async for _ in session:
                    pass

        assert exc_info.value.status == 503
        assert len(errors) == 1
        assert errors[0].code == "server_error"

    async def test_stream_fatal_status(self):
        """Test that a 401 fails without retrying."""
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(401, text="invalid api key")

        async with mock_client(handler) as client:
            session = await client.stream(MESSAGES)
            with pytest.raises(APIError, match="status 401"):
                await session.next_event()

        assert len(calls) == 1
        assert session.state == StreamState.FAILED

    async def test_stream_with_request_model(self, sample_stream):
        """Test streaming from a prebuilt CompletionRequest."""
        bodies = []

        def handler(request):
            bodies.append(json.loads(request.content))
            return httpx.Response(200, content=sample_stream)

        request = CompletionRequest(messages=MESSAGES, max_tokens=64)
        async with mock_client(handler) as client:
            session = await client.stream(request=request, user="u-1")
            await session.text()
            await session.wait_closed()

        assert bodies[0]["max_tokens"] == 64
        assert bodies[0]["user"] == "u-1"
        assert bodies[0]["stream"] is True

    async def test_stream_requires_messages(self):
        """Test that an empty request is refused."""
        async with mock_client(lambda request: httpx.Response(200)) as client:
            with pytest.raises(VivError, match="messages are required"):
                await client.stream([])

    async def test_cancel_stream(self):
        """Test that cancelling the session aborts the stream."""
        async with mock_client(
            lambda request: httpx.Response(200, content=b'c:"a"\n\n')
        ) as client:
            session = await client.stream(MESSAGES)
            session.cancel()
            await session.wait_closed()

        assert session.state == StreamState.ABORTED


class TestCreate:
    """Tests for VivClient.create."""

    async def test_create(self):
        """Test a non-streaming completion."""
        body = {
            "id": "chatcmpl-1",
            "object": "chat.completion",
            "created": 1700000000,
            "model": "viv-1",
            "choices": [
                {"index": 0, "message": {"role": "assistant", "content": "This is a test"},
                 "finish_reason": "stop"},
            ],
            "usage": {"prompt_tokens": 5, "completion_tokens": 4, "total_tokens": 9},
        }
        seen = {}

        def handler(request):
            seen["body"] = json.loads(request.content)
            seen["headers"] = request.headers
            return httpx.Response(200, json=body)

        async with mock_client(handler) as client:
            response = await client.create(MESSAGES)

        assert response.text == "This is a test"
        assert response.usage.total_tokens == 9
        assert "stream" not in seen["body"]
        assert seen["headers"]["accept"] != "text/event-stream"

    async def test_create_retries(self):
        """Test that a 429 is retried before succeeding."""
        responses = [
            httpx.Response(429, text="slow down"),
            httpx.Response(200, json={"choices": [{"message": {"content": "ok"}}]}),
        ]

        async with mock_client(lambda request: responses.pop(0)) as client:
            response = await client.create(MESSAGES)

        assert response.text == "ok"
        delay = client._retry._sleep.await_args.args[0]
        assert delay >= 5.0

    async def test_create_fatal(self):
        """Test that a 400 raises APIError with the body."""
        async with mock_client(
            lambda request: httpx.Response(400, text="bad request")
        ) as client:
            with pytest.raises(APIError) as exc_info:
                await client.create(MESSAGES)

        assert exc_info.value.status == 400
        assert exc_info.value.body == "bad request"
        assert client._retry._sleep.await_count == 0
