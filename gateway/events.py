"""
Observability channel of the gateway core.

The core only states *what* happened; how records are formatted is left to
whatever handlers the logging setup installs (uvicorn's by default). Every
event is written once to the ``uvicorn.error`` logger, with the event name and
its fields in ``extra``, and attached to the active OpenTelemetry span.
"""

import logging
from enum import Enum

from opentelemetry import trace

logger = logging.getLogger("uvicorn.error")

_SPAN_ATTRIBUTE_TYPES = (str, bool, int, float)


class GatewayEvent(str, Enum):
    REQUEST_RECEIVED = "request.received"
    ROUTE_MATCHED = "route.matched"
    ROUTE_UNMATCHED = "route.unmatched"
    FORWARD_ATTEMPTED = "forward.attempted"
    FORWARD_SUCCEEDED = "forward.succeeded"
    FORWARD_FAILED = "forward.failed"
    CLIENT_DISCONNECTED = "forward.client_disconnected"
    CONFIG_LOADED = "config.loaded"
    RELOAD_SUCCEEDED = "reload.succeeded"
    RELOAD_FAILED = "reload.failed"


def emit(
    event: GatewayEvent,
    message: str,
    level: int = logging.DEBUG,
    exc_info=None,
    **fields,
) -> None:
    logger.log(
        level,
        message,
        exc_info=exc_info,
        extra={"gateway_event": event.value, "gateway_fields": fields},
    )

    span = trace.get_current_span()
    if span.is_recording():
        attributes = {
            key: value
            for key, value in fields.items()
            if isinstance(value, _SPAN_ATTRIBUTE_TYPES)
        }
        span.add_event(event.value, attributes=attributes)
