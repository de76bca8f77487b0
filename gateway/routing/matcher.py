from typing import Optional

from gateway.routing.models import Route, RoutingTable


def normalize_path(path: str) -> str:
    """
    Strip trailing slashes, but never collapse the root path.

    Idempotent: ``normalize_path(normalize_path(p)) == normalize_path(p)``.
    """
    if not path:
        return "/"
    stripped = path.rstrip("/")
    return stripped or "/"


def match_route(method: str, path: str, table: RoutingTable) -> Optional[Route]:
    """
    Select the route for a request from a table snapshot.

    An active exact match (path and method) always wins, wherever it sits in
    the table. Otherwise the first active route whose prefix starts the path
    is returned, comparing case-sensitively. ``None`` means no route matches.
    """
    path = normalize_path(path)
    method = method.upper()

    for route in table.routes:
        if route.active and route.exact_path == path and route.method == method:
            return route

    for route in table.routes:
        if route.active and route.prefix and path.startswith(route.prefix):
            return route

    return None
