import logging
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Optional, Union

from gateway.config import GatewayConfig, load_config
from gateway.errors import ConfigInvalid
from gateway.events import GatewayEvent, emit
from gateway.metrics import RELOAD_TOTAL
from gateway.routing import RoutingTable, describe_route
from gateway.utils.exception_logging import log_exception_with_details
from gateway.vars import LOG_LEVEL

logger = logging.getLogger("uvicorn.error")

ConfigLoader = Callable[[Union[str, Path]], GatewayConfig]

BASE_LOG_LEVEL = getattr(logging, LOG_LEVEL.upper(), logging.INFO)


@dataclass(frozen=True)
class ReloadResult:
    success: bool
    route_count: int = 0
    error: Optional[ConfigInvalid] = None


def apply_debug(debug: bool) -> None:
    """Debug mode lowers the gateway logger to DEBUG, never changes responses."""
    logger.setLevel(logging.DEBUG if debug else BASE_LOG_LEVEL)


def log_routes(config: GatewayConfig, debug: bool = False) -> None:
    logger.info(f"Debug mode: {'ON' if config.debug or debug else 'OFF'}")
    logger.info(f"Loaded {len(config.table)} services:")
    for index, route in enumerate(config.table, start=1):
        logger.info(f"  {index}. {describe_route(route)}")


class ReloadController:
    """
    Owns the active configuration snapshot and is its only writer.

    Request handlers read ``table`` once per request and keep using that
    snapshot until they finish. ``reload`` builds a complete new snapshot
    first and publishes it with a single attribute assignment, so a reader
    sees either the old or the new table, never a mix.
    """

    def __init__(
        self,
        config_path: Union[str, Path],
        loader: ConfigLoader = load_config,
        initial: Optional[GatewayConfig] = None,
        force_debug: bool = False,
    ):
        self.config_path = config_path
        self._loader = loader
        self._force_debug = force_debug
        self._write_lock = threading.Lock()
        self._config: GatewayConfig = initial if initial is not None else self._load_initial()

    def _load_initial(self) -> GatewayConfig:
        config = self._loader(self.config_path)
        apply_debug(config.debug or self._force_debug)
        emit(
            GatewayEvent.CONFIG_LOADED,
            "Configuration loaded",
            level=logging.INFO,
            source=str(self.config_path),
            route_count=len(config.table),
        )
        return config

    @property
    def config(self) -> GatewayConfig:
        return self._config

    @property
    def table(self) -> RoutingTable:
        return self._config.table

    @property
    def debug(self) -> bool:
        return self._config.debug or self._force_debug

    def reload(self) -> ReloadResult:
        """
        Re-read the configuration source and swap in a new routing table.

        On ConfigInvalid nothing is swapped and the previous table keeps
        serving; the failure is logged and returned, never raised.
        """
        with self._write_lock:
            logger.info("Reloading configuration...")
            try:
                new_config = self._loader(self.config_path)
            except ConfigInvalid as e:
                RELOAD_TOTAL.labels(result="failed").inc()
                emit(
                    GatewayEvent.RELOAD_FAILED,
                    f"Reload aborted, keeping {len(self._config.table)} previous services",
                    level=logging.ERROR,
                    source=e.source,
                    reason=e.reason,
                )
                log_exception_with_details(logger, "[Reload]", e, level=logging.ERROR)
                return ReloadResult(success=False, route_count=len(self._config.table), error=e)

            previous = self._config
            if (new_config.host, new_config.port) != (previous.host, previous.port):
                logger.warning(
                    f"[Reload] Listen address changed to {new_config.host}:{new_config.port}, "
                    f"still serving on {previous.host}:{previous.port} until restart"
                )

            self._config = new_config
            apply_debug(new_config.debug or self._force_debug)

        RELOAD_TOTAL.labels(result="succeeded").inc()
        emit(
            GatewayEvent.RELOAD_SUCCEEDED,
            "Configuration reloaded",
            level=logging.INFO,
            source=str(self.config_path),
            route_count=len(new_config.table),
        )
        log_routes(new_config, self._force_debug)
        return ReloadResult(success=True, route_count=len(new_config.table))
