import asyncio
import logging
import time
from typing import AsyncIterator, Optional

import httpx
from fastapi import Request
from fastapi.responses import Response, StreamingResponse
from opentelemetry import trace
from starlette.datastructures import Headers
from starlette.requests import ClientDisconnect

from gateway.errors import (
    BackendError,
    BackendProtocolError,
    BackendTimeout,
    BackendUnreachable,
)
from gateway.events import GatewayEvent, emit
from gateway.metrics import FORWARD_TOTAL
from gateway.proxy.headers import HOP_BY_HOP_HEADERS, prepare_forward_headers
from gateway.routing import Route
from gateway.utils import elapsed_ms
from gateway.utils.exception_logging import format_exception_message
from gateway.vars import (
    CLIENT_IP_HEADER,
    DISCONNECT_POLL_INTERVAL,
    PROXY_CONNECT_TIMEOUT,
    PROXY_TIMEOUT,
)

logger = logging.getLogger("uvicorn.error")

BAD_GATEWAY_BODY = "Bad Gateway"
# nginx convention; the client is gone so nobody reads it
CLIENT_CLOSED_REQUEST = 499


def create_http_client(
    timeout: float = PROXY_TIMEOUT,
    connect_timeout: float = PROXY_CONNECT_TIMEOUT,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> httpx.AsyncClient:
    """
    Shared outbound client. Redirects are relayed, never followed, and no
    client default headers (user-agent, accept, ...) are added to what the
    caller sent.
    """
    client = httpx.AsyncClient(
        timeout=httpx.Timeout(timeout, connect=connect_timeout),
        follow_redirects=False,
        trust_env=False,
        transport=transport,
    )
    for name in list(client.headers.keys()):
        del client.headers[name]
    return client


def request_path(request: Request) -> str:
    """Path as sent by the client (still percent-encoded when the server provides it)."""
    raw_path = request.scope.get("raw_path")
    if raw_path:
        return raw_path.split(b"?", 1)[0].decode("latin-1")
    return request.url.path


def request_query(request: Request) -> str:
    return request.scope.get("query_string", b"").decode("latin-1")


def build_target_url(route: Route, path: str, query: str = "") -> str:
    url = f"{route.backend_origin}{path}"
    return f"{url}?{query}" if query else url


def classify_transport_error(exc: BaseException, target_url: str) -> BackendError:
    if isinstance(exc, httpx.TimeoutException):
        return BackendTimeout(target_url, exc)
    if isinstance(exc, (httpx.ProtocolError, httpx.DecodingError, httpx.InvalidURL)):
        return BackendProtocolError(target_url, exc)
    if isinstance(exc, (httpx.TransportError, OSError)):
        return BackendUnreachable(target_url, exc)
    return BackendError(target_url, exc)


def relay_headers(upstream: httpx.Response) -> Headers:
    """Backend response headers minus hop-by-hop ones, multiplicity preserved."""
    raw = [
        (name.lower(), value)
        for name, value in upstream.headers.raw
        if name.decode("latin-1").lower() not in HOP_BY_HOP_HEADERS
    ]
    return Headers(raw=raw)


def _declares_body(request: Request) -> bool:
    headers = request.headers
    if "transfer-encoding" in headers:
        return True
    return headers.get("content-length", "0").strip() not in ("", "0")


class Forwarder:
    """Issues the outbound request for a matched route and relays the answer."""

    def __init__(
        self,
        client: httpx.AsyncClient,
        client_ip_header: str = CLIENT_IP_HEADER,
        disconnect_poll_interval: float = DISCONNECT_POLL_INTERVAL,
    ):
        self._client = client
        self._client_ip_header = client_ip_header
        self._poll_interval = disconnect_poll_interval

    async def forward(self, request: Request, route: Route, path: str) -> Response:
        target_url = build_target_url(route, path, request_query(request))
        span = trace.get_current_span()
        span.set_attribute("gateway.target_url", target_url)

        emit(
            GatewayEvent.FORWARD_ATTEMPTED,
            f"Forwarding request to: {target_url}",
            method=request.method,
            target_url=target_url,
        )
        started = time.perf_counter()

        body_sent = asyncio.Event()
        try:
            outbound = self._client.build_request(
                method=request.method,
                url=target_url,
                headers=prepare_forward_headers(
                    request.headers, route, self._client_ip_header
                ),
                content=self._request_body(request, body_sent),
            )
            upstream = await self._send(request, outbound, body_sent)
        except ClientDisconnect:
            upstream = None
        except (httpx.HTTPError, httpx.InvalidURL, OSError) as e:
            return self._bad_gateway(classify_transport_error(e, target_url), started)
        except Exception as e:
            logger.error(f"[Forward] Unexpected error for {target_url}", exc_info=True)
            return self._bad_gateway(BackendError(target_url, e), started)

        if upstream is None:
            FORWARD_TOTAL.labels(outcome="client_disconnected").inc()
            emit(
                GatewayEvent.CLIENT_DISCONNECTED,
                f"Client went away before {target_url} answered, request cancelled",
                level=logging.INFO,
                target_url=target_url,
                elapsed_ms=elapsed_ms(started),
            )
            return Response(status_code=CLIENT_CLOSED_REQUEST)

        span.set_attribute("http.status_code", upstream.status_code)
        FORWARD_TOTAL.labels(outcome="success").inc()
        emit(
            GatewayEvent.FORWARD_SUCCEEDED,
            f"Received {upstream.status_code} from {route.backend_authority}",
            target_url=target_url,
            status_code=upstream.status_code,
            elapsed_ms=elapsed_ms(started),
        )
        return StreamingResponse(
            self._relay_body(upstream, target_url),
            status_code=upstream.status_code,
            headers=relay_headers(upstream),
        )

    def _request_body(
        self, request: Request, body_sent: asyncio.Event
    ) -> Optional[AsyncIterator[bytes]]:
        if not _declares_body(request):
            body_sent.set()
            return None
        return self._stream_body(request, body_sent)

    @staticmethod
    async def _stream_body(request: Request, body_sent: asyncio.Event) -> AsyncIterator[bytes]:
        try:
            async for chunk in request.stream():
                if chunk:
                    yield chunk
        finally:
            body_sent.set()

    async def _wait_for_disconnect(self, request: Request, body_sent: asyncio.Event) -> None:
        # Polling receive() before the body is relayed would steal body chunks
        await body_sent.wait()
        while not await request.is_disconnected():
            await asyncio.sleep(self._poll_interval)

    async def _send(
        self, request: Request, outbound: httpx.Request, body_sent: asyncio.Event
    ) -> Optional[httpx.Response]:
        """
        Send ``outbound`` and wait for the backend's response head.

        Returns None when the client disconnected first; the outbound call is
        cancelled in that case.
        """
        send_task = asyncio.ensure_future(self._client.send(outbound, stream=True))
        watch_task = asyncio.ensure_future(self._wait_for_disconnect(request, body_sent))
        try:
            done, _ = await asyncio.wait(
                {send_task, watch_task}, return_when=asyncio.FIRST_COMPLETED
            )
        except asyncio.CancelledError:
            send_task.cancel()
            raise
        finally:
            watch_task.cancel()

        if send_task in done:
            return send_task.result()

        if watch_task.exception() is not None:
            logger.debug(
                f"[Forward] Disconnect watcher stopped: {format_exception_message(watch_task.exception())}"
            )
            return await send_task

        send_task.cancel()
        try:
            abandoned = await send_task
        except (asyncio.CancelledError, httpx.HTTPError):
            return None
        await abandoned.aclose()
        return None

    async def _relay_body(self, upstream: httpx.Response, target_url: str) -> AsyncIterator[bytes]:
        try:
            async for chunk in upstream.aiter_raw():
                yield chunk
        except httpx.HTTPError as e:
            # Status and headers are already sent, the caller sees a truncated body
            error = classify_transport_error(e, target_url)
            FORWARD_TOTAL.labels(outcome=error.kind).inc()
            emit(
                GatewayEvent.FORWARD_FAILED,
                f"[Forward] Response body relay aborted: {format_exception_message(error)}",
                level=logging.ERROR,
                target_url=target_url,
                error=error.kind,
            )
        finally:
            await upstream.aclose()

    def _bad_gateway(self, error: BackendError, started: float) -> Response:
        trace.get_current_span().set_attribute("gateway.error", error.kind)
        FORWARD_TOTAL.labels(outcome=error.kind).inc()
        emit(
            GatewayEvent.FORWARD_FAILED,
            f"[Forward] Failed to forward: {format_exception_message(error)}",
            level=logging.ERROR,
            exc_info=error if logger.isEnabledFor(logging.DEBUG) else None,
            target_url=error.target_url,
            error=error.kind,
            elapsed_ms=elapsed_ms(started),
        )
        return Response(
            content=BAD_GATEWAY_BODY,
            status_code=502,
            media_type="text/plain",
        )
