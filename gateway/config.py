import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from gateway.errors import ConfigInvalid
from gateway.routing import Route, RoutingTable, normalize_path
from gateway.vars import HTTP_METHODS

logger = logging.getLogger("uvicorn.error")


class ServiceConfig(BaseModel):
    """One ``services`` entry of the route file."""

    model_config = ConfigDict(extra="ignore")

    path: Optional[str] = None
    method: Optional[str] = None
    prefix: Optional[str] = None
    host: str
    port: int = Field(ge=1, le=65535)
    active: bool = True

    @field_validator("path", "prefix", "method", mode="before")
    @classmethod
    def _blank_is_missing(cls, value):
        if isinstance(value, str) and not value.strip():
            return None
        return value

    @field_validator("method")
    @classmethod
    def _known_method(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return None
        method = value.strip().upper()
        if method not in HTTP_METHODS:
            raise ValueError(f"unsupported HTTP method {value!r}")
        return method

    @field_validator("host")
    @classmethod
    def _host_not_empty(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("backend host must not be empty")
        return value.strip()


class RouteFile(BaseModel):
    model_config = ConfigDict(extra="ignore")

    host: str
    port: int = Field(ge=1, le=65535)
    debug: bool = False
    services: List[ServiceConfig] = Field(default_factory=list)


@dataclass(frozen=True)
class GatewayConfig:
    host: str
    port: int
    debug: bool
    table: RoutingTable


def _format_validation_error(error: ValidationError) -> str:
    reasons = []
    for err in error.errors():
        location = ".".join(str(part) for part in err.get("loc", ())) or "<root>"
        reasons.append(f"{location}: {err.get('msg')}")
    return "; ".join(reasons)


def _to_route(index: int, service: ServiceConfig, source: str) -> Route:
    route = Route(
        backend_host=service.host,
        backend_port=service.port,
        exact_path=normalize_path(service.path) if service.path else None,
        method=service.method,
        prefix=service.prefix,
        active=service.active,
    )
    if not route.is_reachable:
        logger.warning(
            f"[Config] {source}: service #{index + 1} has neither path nor prefix, treating it as inactive"
        )
    elif route.exact_path and not route.method:
        logger.warning(
            f"[Config] {source}: service #{index + 1} has path {route.exact_path} without a method, "
            "it can only match through its prefix"
        )
    return route


def parse_config(data: Any, source: str = "<memory>") -> GatewayConfig:
    """Validate an already decoded route file and build its routing table."""
    try:
        route_file = RouteFile.model_validate(data)
    except ValidationError as e:
        raise ConfigInvalid(source, _format_validation_error(e)) from e

    routes = [
        _to_route(index, service, source)
        for index, service in enumerate(route_file.services)
    ]
    return GatewayConfig(
        host=route_file.host,
        port=route_file.port,
        debug=route_file.debug,
        table=RoutingTable(tuple(routes)),
    )


def load_config(path: Union[str, Path]) -> GatewayConfig:
    """
    Read, decode and validate the JSON route file at ``path``.

    Raises:
        ConfigInvalid: the file cannot be read, is not JSON, or breaks the
            schema (missing backend host, port out of range, unknown method).
    """
    source = str(path)
    try:
        raw = Path(path).read_bytes()
    except OSError as e:
        raise ConfigInvalid(source, f"cannot read file ({e.strerror or e})") from e

    try:
        text = raw.decode("utf-8")
    except UnicodeDecodeError as e:
        raise ConfigInvalid(source, f"not valid UTF-8 at byte {e.start}") from e

    try:
        data = json.loads(text)
    except json.JSONDecodeError as e:
        raise ConfigInvalid(source, f"invalid JSON at line {e.lineno} column {e.colno}: {e.msg}") from e
    except (ValueError, RecursionError) as e:
        raise ConfigInvalid(source, f"invalid JSON ({type(e).__name__})") from e

    return parse_config(data, source)
