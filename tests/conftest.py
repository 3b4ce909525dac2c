import json
import sys

import httpx
import pytest
from fastapi.testclient import TestClient

from nimb.api import create_app
from nimb.models import ProxySettings
from nimb.settings import SettingsStore
from nimb.state import AppState
from nimb.tunnel import TunnelSupervisor

UPSTREAM_URL = "http://upstream.test/v1"

TUNNEL_URL = "https://quiet-lake-1234.trycloudflare.com"

# Behaves like cloudflared: announces the URL on stderr and keeps running.
TUNNEL_SCRIPT = (
    "import sys, time; "
    f"print('INF | Your quick Tunnel has been created! {TUNNEL_URL} |', "
    "file=sys.stderr, flush=True); "
    "time.sleep(60)"
)

# Mock response payloads
MOCK_COMPLETION_RESPONSE = {
    "id": "cmpl-upstream-1",
    "object": "chat.completion",
    "created": 1677652288,
    "model": "deepseek-ai/deepseek-v3.2",
    "choices": [
        {
            "index": 0,
            "message": {
                "role": "assistant",
                "content": "Hello there, how may I assist you today?",
                "reasoning_content": "The user greeted me.",
            },
            "finish_reason": "stop",
        }
    ],
    "usage": {"prompt_tokens": 9, "completion_tokens": 12, "total_tokens": 21},
}

MOCK_STREAMING_CHUNKS = [
    {
        "id": "chatcmpl-123",
        "object": "chat.completion.chunk",
        "created": 1694268190,
        "model": "deepseek-ai/deepseek-v3.2",
        "choices": [
            {
                "index": 0,
                "delta": {"role": "assistant", "reasoning_content": "Thinking..."},
                "finish_reason": None,
            }
        ],
    },
    {
        "id": "chatcmpl-123",
        "object": "chat.completion.chunk",
        "created": 1694268190,
        "model": "deepseek-ai/deepseek-v3.2",
        "choices": [
            {"index": 0, "delta": {"content": "Hello"}, "finish_reason": None}
        ],
    },
    {
        "id": "chatcmpl-123",
        "object": "chat.completion.chunk",
        "created": 1694268190,
        "model": "deepseek-ai/deepseek-v3.2",
        "choices": [{"index": 0, "delta": {}, "finish_reason": "stop"}],
        "usage": {"prompt_tokens": 10, "completion_tokens": 5, "total_tokens": 15},
    },
]


def sse_body(chunks) -> bytes:
    """Encode payloads the way the upstream sends them, [DONE] included."""
    body = b"".join(f"data: {json.dumps(chunk)}\n\n".encode() for chunk in chunks)
    return body + b"data: [DONE]\n\n"


def split_every(data: bytes, size: int):
    return [data[i:i + size] for i in range(0, len(data), size)]


class ChunkedStream(httpx.AsyncByteStream):
    """Upstream body delivered as the given byte chunks, optionally failing at the end."""

    def __init__(self, chunks, error: Exception = None):
        self.chunks = chunks
        self.error = error
        self.closed = False

    async def __aiter__(self):
        for chunk in self.chunks:
            yield chunk
        if self.error is not None:
            raise self.error

    async def aclose(self):
        self.closed = True


class MockUpstream:
    """httpx.MockTransport handler that records every request body it gets."""

    def __init__(self, respond):
        self.respond = respond
        self.requests = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(
            {
                "url": str(request.url),
                "headers": dict(request.headers),
                "body": json.loads(request.content),
            }
        )
        return self.respond(request)

    @property
    def last_body(self):
        return self.requests[-1]["body"]

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self)


@pytest.fixture
def settings_path(tmp_path):
    return tmp_path / "settings.json"


@pytest.fixture
def make_state(settings_path):
    """Factory for an isolated AppState; keyword arguments override settings."""

    def _make(transport=None, api_key="test-key", tunnel_command=None, **overrides):
        settings = ProxySettings(api_key=api_key, **overrides)
        tunnel = TunnelSupervisor(
            tunnel_command or [sys.executable, "-c", TUNNEL_SCRIPT]
        )
        return AppState(
            settings=settings,
            store=SettingsStore(settings_path),
            tunnel=tunnel,
            upstream_url=UPSTREAM_URL,
            timeout=30,
            setup_complete=bool(api_key),
            transport=transport,
        )

    return _make


@pytest.fixture
def client_for():
    """Open a TestClient (lifespan included) for a given state; closed after the test."""
    clients = []

    def _client(state: AppState) -> TestClient:
        client = TestClient(create_app(state))
        client.__enter__()
        clients.append(client)
        return client

    yield _client
    for client in clients:
        client.__exit__(None, None, None)


@pytest.fixture
def completion_upstream():
    return MockUpstream(lambda request: httpx.Response(200, json=MOCK_COMPLETION_RESPONSE))


@pytest.fixture
def streaming_upstream():
    return MockUpstream(
        lambda request: httpx.Response(
            200,
            headers={"content-type": "text/event-stream"},
            stream=ChunkedStream(split_every(sse_body(MOCK_STREAMING_CHUNKS), 7)),
        )
    )
