import argparse
import logging
import logging.config
import sys
from contextlib import asynccontextmanager
from typing import Optional, Sequence

import httpx
import uvicorn
from fastapi import FastAPI
from opentelemetry import trace
from prometheus_fastapi_instrumentator import Instrumentator
from uvicorn.config import LOGGING_CONFIG

from gateway.commands import CommandListener, install_reload_signal
from gateway.errors import ConfigInvalid
from gateway.proxy.forwarder import Forwarder, create_http_client
from gateway.reload import ReloadController, log_routes
from gateway.routes import CATCH_ALL_PATH, gateway_entry
from gateway.vars import (
    GATEWAY_CONFIG,
    HEALTH_PATH,
    LOG_LEVEL,
    METRICS_PATH,
    OTLP_ENDPOINT,
    OTLP_HEADERS,
    SERVICE_NAME,
)

try:
    from opentelemetry.sdk.resources import Resource
    from opentelemetry.sdk.trace import TracerProvider, ReadableSpan
    from opentelemetry.sdk.trace.export import (
        BatchSpanProcessor,
        SpanExporter,
        SpanExportResult,
    )
    from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
    from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter

    _OTEL_AVAILABLE = True
except ImportError:  # pragma: no cover - tracing stays a no-op without the otel extra
    Resource = TracerProvider = ReadableSpan = BatchSpanProcessor = SpanExporter = SpanExportResult = None  # type: ignore
    FastAPIInstrumentor = OTLPSpanExporter = None  # type: ignore
    _OTEL_AVAILABLE = False

logger = logging.getLogger("uvicorn.error")


# ASGI instrumentation opens one span per receive/send message; a relayed
# upload or download would otherwise export one span per body chunk.
BODY_CHUNK_EVENTS = frozenset({"http.request", "http.response.body"})


def is_body_chunk_span(span) -> bool:
    attributes = span.attributes or {}
    return attributes.get("asgi.event.type") in BODY_CHUNK_EVENTS


class BodyChunkSpanFilter(SpanExporter if _OTEL_AVAILABLE else object):
    """Exporter wrapper that forwards every span except per-chunk body spans."""

    def __init__(self, exporter: SpanExporter):
        self._inner = exporter

    def export(self, spans: Sequence[ReadableSpan]) -> SpanExportResult:
        kept = [span for span in spans if not is_body_chunk_span(span)]
        if not kept:
            return SpanExportResult.SUCCESS
        return self._inner.export(kept)

    def shutdown(self) -> None:
        self._inner.shutdown()

    def force_flush(self, timeout_millis: int = 30000) -> bool:
        return self._inner.force_flush(timeout_millis)


def configure_tracing(app: FastAPI) -> bool:
    """Export spans over OTLP when the otel extra is installed and OTLP_ENDPOINT is set."""
    if not _OTEL_AVAILABLE or not OTLP_ENDPOINT:
        return False

    trace.set_tracer_provider(
        TracerProvider(resource=Resource.create({"service.name": SERVICE_NAME}))
    )
    otlp_exporter = OTLPSpanExporter(
        endpoint=OTLP_ENDPOINT,
        headers=((OTLP_HEADERS).split(",") if OTLP_HEADERS else None),
    )
    trace.get_tracer_provider().add_span_processor(
        BatchSpanProcessor(BodyChunkSpanFilter(otlp_exporter))
    )
    FastAPIInstrumentor.instrument_app(
        app,
        excluded_urls=f"{HEALTH_PATH},{METRICS_PATH}",
    )
    return True


def create_app(
    controller: ReloadController,
    http_client: Optional[httpx.AsyncClient] = None,
    with_metrics: bool = True,
) -> FastAPI:
    """
    Build the gateway application around ``controller``.

    The outbound client is created on startup and closed on shutdown unless
    one is passed in, in which case the caller owns it.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        client = http_client if http_client is not None else create_http_client()
        app.state.forwarder = Forwarder(client)
        try:
            yield
        finally:
            logger.info("Shutting down...")
            if http_client is None:
                await client.aclose()

    # No docs/openapi routes: every path except the reserved ones belongs to the backends
    app = FastAPI(
        title=SERVICE_NAME,
        docs_url=None,
        redoc_url=None,
        openapi_url=None,
        lifespan=lifespan,
    )
    app.state.controller = controller

    if with_metrics:
        Instrumentator(excluded_handlers=[HEALTH_PATH, METRICS_PATH]).instrument(
            app
        ).expose(app, endpoint=METRICS_PATH, include_in_schema=False)

    # Registered last: the catch-all must not shadow the metrics endpoint.
    # methods=None accepts every request method, extension verbs included
    app.add_route(CATCH_ALL_PATH, gateway_entry, methods=None, include_in_schema=False)
    return app


def _parse_args(argv: Optional[Sequence[str]]) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="HTTP reverse proxy driven by a JSON routing table"
    )
    parser.add_argument(
        "--config",
        default=GATEWAY_CONFIG,
        help=f"Route file to load and reload (default: {GATEWAY_CONFIG})",
    )
    parser.add_argument(
        "--debug",
        action="store_true",
        help="Verbose logging regardless of the route file's debug flag",
    )
    parser.add_argument(
        "--no-stdin",
        action="store_true",
        help="Do not read operator commands from stdin",
    )
    return parser.parse_args(argv)


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = _parse_args(argv)
    logging.config.dictConfig(LOGGING_CONFIG)

    try:
        controller = ReloadController(args.config, force_debug=args.debug)
    except ConfigInvalid as e:
        logger.error(f"Failed to start gateway: {e}")
        return 1

    config = controller.config
    logger.info(f"Starting Gateway on http://{config.host}:{config.port}")
    log_routes(config, args.debug)

    app = create_app(controller)
    if configure_tracing(app):
        logger.info(f"Exporting traces to {OTLP_ENDPOINT}")

    if install_reload_signal(controller):
        logger.info("Send SIGHUP to reload the routing table")
    if not args.no_stdin:
        CommandListener(controller).start()
        logger.info("Type 'r' + Enter to reload the routing table")

    uvicorn.run(
        app,
        host=config.host,
        port=config.port,
        log_level="debug" if controller.debug else LOG_LEVEL,
    )
    return 0


if __name__ == "__main__":
    sys.exit(main())
