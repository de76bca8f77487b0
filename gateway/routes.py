from fastapi import Request
from fastapi.responses import PlainTextResponse, Response
from opentelemetry import trace

from gateway.events import GatewayEvent, emit
from gateway.proxy.forwarder import request_path
from gateway.routing import describe_route, match_route, normalize_path
from gateway.utils.traced_requests import traced_request
from gateway.vars import HEALTH_PATH

tracer = trace.get_tracer(__name__)

HEALTHY_BODY = "healthy"
NOT_FOUND_BODY = "Not Found"
CATCH_ALL_PATH = "/{path:path}"


async def gateway_entry(request: Request) -> Response:
    """Catch-all entry point: health check, then route lookup, then forward."""
    path = normalize_path(request_path(request))
    method = request.method

    with traced_request(
        tracer,
        operation="gateway.request",
        method=method,
        path=path,
        start_message=f"Incoming: {method} {path}",
    ) as span:
        emit(GatewayEvent.REQUEST_RECEIVED, f"Request received: {method} {path}", method=method, path=path)

        # Checked before routing so no backend route can shadow it
        if path == HEALTH_PATH:
            span.set_attribute("http.status_code", 200)
            return PlainTextResponse(HEALTHY_BODY, status_code=200)

        # One snapshot per request; a concurrent reload does not affect it
        table = request.app.state.controller.table
        route = match_route(method, path, table)

        if route is None:
            emit(GatewayEvent.ROUTE_UNMATCHED, f"No match found for {method} {path}", method=method, path=path)
            span.set_attribute("http.status_code", 404)
            return PlainTextResponse(NOT_FOUND_BODY, status_code=404)

        label = describe_route(route)
        span.set_attribute("gateway.route", label)
        emit(GatewayEvent.ROUTE_MATCHED, f"Matched {method} {path} -> {label}", method=method, path=path, route=label)

        return await request.app.state.forwarder.forward(request, route, path)
