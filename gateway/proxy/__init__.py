from .forwarder import Forwarder, create_http_client
from .headers import HOP_BY_HOP_HEADERS, prepare_forward_headers, sanitize_headers

__all__ = [
    "Forwarder",
    "create_http_client",
    "HOP_BY_HOP_HEADERS",
    "prepare_forward_headers",
    "sanitize_headers",
]
