from dataclasses import dataclass, field
from typing import Optional, Tuple

from gateway.utils import format_authority


@dataclass(frozen=True)
class Route:
    """
    One entry of the routing table.

    Attributes:
        backend_host: Host the matched request is forwarded to.
        backend_port: Port on the backend host (1-65535).
        exact_path: Normalized path for an exact match, paired with ``method``.
        method: Upper-case HTTP verb; only consulted for exact matches.
        prefix: Path prefix for a method-agnostic fallback match.
        active: Inactive routes never match. A route without exact_path and
            prefix is unreachable and always inactive.
    """

    backend_host: str
    backend_port: int
    exact_path: Optional[str] = None
    method: Optional[str] = None
    prefix: Optional[str] = None
    active: bool = True

    def __post_init__(self):
        if not self.is_reachable and self.active:
            object.__setattr__(self, "active", False)

    @property
    def is_reachable(self) -> bool:
        return bool(self.exact_path) or bool(self.prefix)

    @property
    def backend_authority(self) -> str:
        return format_authority(self.backend_host, self.backend_port)

    @property
    def backend_origin(self) -> str:
        return f"http://{self.backend_authority}"


@dataclass(frozen=True)
class RoutingTable:
    """Immutable snapshot of the routes, in configuration order."""

    routes: Tuple[Route, ...] = field(default_factory=tuple)

    def __post_init__(self):
        if not isinstance(self.routes, tuple):
            object.__setattr__(self, "routes", tuple(self.routes))

    def __iter__(self):
        return iter(self.routes)

    def __len__(self) -> int:
        return len(self.routes)


def describe_route(route: Route) -> str:
    """Operator-facing label, e.g. ``path: GET /api/users => 127.0.0.1:4000``."""
    if route.exact_path:
        label = f"path: {route.method} {route.exact_path}"
    elif route.prefix:
        label = f"prefix: {route.prefix}"
    else:
        label = "<no path or prefix>"
    suffix = "" if route.active else " (inactive)"
    return f"{label} => {route.backend_authority}{suffix}"
