from .models import Route, RoutingTable, describe_route
from .matcher import match_route, normalize_path

__all__ = [
    "Route",
    "RoutingTable",
    "describe_route",
    "match_route",
    "normalize_path",
]
