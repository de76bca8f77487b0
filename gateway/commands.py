"""
Operator triggers for a routing table reload.

Two channels call ``ReloadController.reload``: the ``r`` command typed on the
gateway's stdin, and SIGHUP on platforms that have it. Neither is needed for
serving; both only ever call into the controller.
"""

import logging
import signal
import sys
import threading
from typing import Callable, Dict, Optional, TextIO

from gateway.reload import ReloadController

logger = logging.getLogger("uvicorn.error")

RELOAD_COMMAND = "r"


class CommandListener(threading.Thread):
    """Daemon thread that reads operator commands line by line from a stream."""

    def __init__(self, controller: ReloadController, stream: Optional[TextIO] = None):
        super().__init__(name="gateway-commands", daemon=True)
        self._stream = stream if stream is not None else sys.stdin
        self._commands: Dict[str, Callable[[], object]] = {
            RELOAD_COMMAND: controller.reload,
        }

    def handle(self, line: str) -> bool:
        command = line.strip()
        if not command:
            return False
        logger.info(f"[STDIN] Received command: {command}")
        action = self._commands.get(command)
        if action is None:
            logger.error(f"[STDIN] Unknown command: {command}")
            return False
        action()
        return True

    def run(self) -> None:
        for line in self._stream:
            try:
                self.handle(line)
            except Exception:
                # The listener must survive a failing command
                logger.exception(f"[STDIN] Command {line.strip()!r} failed")
        logger.debug("[STDIN] Input closed, command listener stopped")


def start_reload(controller: ReloadController) -> threading.Thread:
    """Run one reload on a daemon thread and return the thread."""

    def _run() -> None:
        try:
            controller.reload()
        except Exception:
            logger.exception("[SIGHUP] Reload failed")

    thread = threading.Thread(target=_run, name="gateway-reload", daemon=True)
    thread.start()
    return thread


def install_reload_signal(controller: ReloadController) -> bool:
    """
    Reload on SIGHUP. Returns False where the platform has no SIGHUP.

    The handler runs on the event loop thread, so it only hands the reload to
    a worker thread; reloads then queue on the controller's write lock.
    """
    sighup = getattr(signal, "SIGHUP", None)
    if sighup is None:
        return False

    def _on_sighup(signum, frame):
        logger.info("Received SIGHUP")
        start_reload(controller)

    signal.signal(sighup, _on_sighup)
    return True
