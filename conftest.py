import asyncio
import json
from typing import Callable, List, Optional, Tuple

import httpx
import pytest
from starlette.requests import Request

from gateway.proxy.forwarder import create_http_client


@pytest.fixture
def write_config(tmp_path):
    """Write a route file and return its path. Dicts are dumped as JSON, strings written as-is."""
    path = tmp_path / "config.json"

    def _write(content) -> str:
        text = content if isinstance(content, str) else json.dumps(content)
        path.write_text(text, encoding="utf-8")
        return str(path)

    return _write


@pytest.fixture
def sample_config():
    return {
        "host": "127.0.0.1",
        "port": 8080,
        "services": [
            {"path": "/api/users", "method": "GET", "host": "127.0.0.1", "port": 4000},
            {"prefix": "/static", "host": "127.0.0.1", "port": 5000},
        ],
    }


def backend_response(status_code: int, headers=None, content: bytes = b"") -> httpx.Response:
    """
    Backend response as a real transport returns it: body not read yet.

    ``httpx.Response(content=...)`` pre-loads the body, which makes the raw
    stream unavailable to the relay.
    """
    return httpx.Response(status_code, headers=headers, stream=httpx.ByteStream(content))


@pytest.fixture
def make_response():
    return backend_response


class RecordingBackend:
    """httpx.MockTransport handler that records every request it receives."""

    def __init__(self, responder: Optional[Callable[[httpx.Request], httpx.Response]] = None):
        self.requests: List[httpx.Request] = []
        self._responder = responder

    async def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self._responder is not None:
            response = self._responder(request)
            if asyncio.iscoroutine(response):
                response = await response
            return response
        return backend_response(
            200,
            headers={"content-type": "text/plain"},
            content=f"{request.url.host}:{request.url.port}{request.url.raw_path.decode()}".encode(),
        )

    @property
    def last(self) -> httpx.Request:
        return self.requests[-1]


@pytest.fixture
def recording_backend():
    return RecordingBackend()


@pytest.fixture
def backend_client():
    """Build a gateway outbound client whose transport is the given handler."""

    def _client(handler) -> httpx.AsyncClient:
        return create_http_client(transport=httpx.MockTransport(handler))

    return _client


@pytest.fixture
def asgi_request():
    """Build a Starlette Request backed by a scripted ASGI receive channel."""

    def _request(
        method: str = "GET",
        path: str = "/",
        query: bytes = b"",
        headers: Optional[List[Tuple[str, str]]] = None,
        body_chunks: Optional[List[bytes]] = None,
        disconnect: bool = False,
    ) -> Request:
        chunks = body_chunks or [b""]
        messages = [
            {"type": "http.request", "body": chunk, "more_body": index < len(chunks) - 1}
            for index, chunk in enumerate(chunks)
        ]

        async def receive():
            if messages:
                return messages.pop(0)
            if disconnect:
                return {"type": "http.disconnect"}
            await asyncio.sleep(3600)
            return {"type": "http.disconnect"}

        scope = {
            "type": "http",
            "http_version": "1.1",
            "method": method,
            "scheme": "http",
            "path": path,
            "raw_path": path.encode("latin-1"),
            "root_path": "",
            "query_string": query,
            "headers": [
                (name.lower().encode("latin-1"), value.encode("latin-1"))
                for name, value in (headers or [])
            ],
            "client": ("203.0.113.9", 51000),
            "server": ("gateway.local", 8080),
        }
        return Request(scope, receive)

    return _request
