"""
Error taxonomy of the gateway.

Only ``ConfigInvalid`` ever reaches an operator as a failure result. Backend
errors are logged with full detail and then collapse into a uniform 502 for the
client; a missing route is not an error at all, the matcher just returns None.
"""

from typing import Optional


class GatewayError(Exception):
    """Base class for all gateway errors."""


class ConfigInvalid(GatewayError):
    """The route configuration could not be read, parsed or validated."""

    def __init__(self, source: str, reason: str):
        self.source = source
        self.reason = reason
        super().__init__(f"Invalid configuration in {source}: {reason}")


class BackendError(GatewayError):
    kind = "backend_error"

    def __init__(self, target_url: str, cause: Optional[BaseException] = None):
        self.target_url = target_url
        self.cause = cause
        detail = f": {cause}" if cause is not None else ""
        super().__init__(f"{self.kind} while forwarding to {target_url}{detail}")


class BackendUnreachable(BackendError):
    """Connection refused or reset, DNS failure, or any other transport failure."""

    kind = "unreachable"


class BackendTimeout(BackendError):
    kind = "timeout"


class BackendProtocolError(BackendError):
    """The backend answered with something that is not valid HTTP."""

    kind = "protocol_error"
