from typing import Iterable, List, Mapping, Optional, Tuple, Union

from gateway.routing import Route
from gateway.vars import CLIENT_IP_HEADER

# Hop-by-hop headers that should NOT be forwarded (RFC 2616)
HOP_BY_HOP_HEADERS = frozenset(
    {
        "connection",
        "keep-alive",
        "proxy-authenticate",
        "proxy-authorization",
        "te",
        "trailers",
        "transfer-encoding",
        "upgrade",
    }
)

UNKNOWN_CLIENT = "unknown"

HeaderList = List[Tuple[str, str]]
HeaderSource = Union[Mapping[str, str], Iterable[Tuple[str, str]]]


def _pairs(headers: HeaderSource) -> HeaderList:
    # Starlette/httpx header objects return every (name, value) pair from items()
    items = headers.items() if hasattr(headers, "items") else headers
    return [(name, value) for name, value in items]


def _get(headers: HeaderList, name: str) -> Optional[str]:
    values = [value for key, value in headers if key.lower() == name]
    return ", ".join(values) if values else None


def _without(headers: HeaderList, name: str) -> HeaderList:
    return [(key, value) for key, value in headers if key.lower() != name]


def sanitize_headers(headers: HeaderSource) -> HeaderList:
    """
    Drop hop-by-hop headers, compared case-insensitively.

    Every other header is kept with its original name, value, order and
    multiplicity. The input is never modified.
    """
    return [
        (name, value)
        for name, value in _pairs(headers)
        if name.lower() not in HOP_BY_HOP_HEADERS
    ]


def client_ip(headers: HeaderSource, client_ip_header: str = CLIENT_IP_HEADER) -> str:
    """Real client address as reported by the trusted edge, else ``unknown``."""
    value = _get(_pairs(headers), client_ip_header.lower())
    return value.strip() if value and value.strip() else UNKNOWN_CLIENT


def forwarded_for(existing: Optional[str], client: str) -> str:
    return f"{existing}, {client}" if existing else client


def prepare_forward_headers(
    inbound: HeaderSource,
    route: Route,
    client_ip_header: str = CLIENT_IP_HEADER,
) -> HeaderList:
    """
    Build the outbound header list for ``route`` from the inbound headers.

    - hop-by-hop headers removed
    - ``host`` kept when present, else set to the backend authority
    - ``origin`` always set to the backend origin
    - client address appended to ``x-forwarded-for``
    """
    original = _pairs(inbound)
    headers = sanitize_headers(original)

    if _get(headers, "host") is None:
        headers.append(("host", route.backend_authority))

    headers = _without(headers, "origin")
    headers.append(("origin", route.backend_origin))

    xff = forwarded_for(
        _get(original, "x-forwarded-for"),
        client_ip(original, client_ip_header),
    )
    headers = _without(headers, "x-forwarded-for")
    headers.append(("x-forwarded-for", xff))

    return headers
