from __future__ import annotations

import logging
import os
import threading
from pathlib import Path
from typing import Callable, Optional

from .config import DRAIN_TIMEOUT_SECONDS, REASON_TIMEOUT

log = logging.getLogger(__name__)


class ShutdownSignal:
    """Single-slot shutdown channel.

    The first offer() wins and wakes the waiter; later offers are dropped and
    never block.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._event = threading.Event()
        self._reason: Optional[str] = None

    def offer(self, reason: str) -> bool:
        with self._lock:
            if self._reason is not None:
                return False
            self._reason = reason
        self._event.set()
        return True

    def wait(self, timeout: Optional[float] = None) -> Optional[str]:
        self._event.wait(timeout)
        return self._reason

    @property
    def reason(self) -> Optional[str]:
        return self._reason

    def is_set(self) -> bool:
        return self._event.is_set()


def arm_timer(signal: ShutdownSignal, delay: float, reason: str) -> threading.Timer:
    """Offer `reason` once after `delay` seconds on a daemon thread."""
    timer = threading.Timer(max(0.0, delay), signal.offer, args=(reason,))
    timer.daemon = True
    timer.start()
    return timer


class ShutdownCoordinator:
    """Blocks until the first shutdown reason, then drains and cleans up.

    `request_exit` asks the HTTP server to stop accepting work and `wait_drained`
    blocks (up to the timeout) until in-flight connections are done.
    """

    def __init__(
        self,
        signal: ShutdownSignal,
        request_exit: Callable[[], None],
        wait_drained: Callable[[float], bool],
        *,
        timeout_seconds: float,
        wipe_path: Optional[Path] = None,
        drain_timeout: float = DRAIN_TIMEOUT_SECONDS,
    ) -> None:
        self.signal = signal
        self.request_exit = request_exit
        self.wait_drained = wait_drained
        self.timeout_seconds = timeout_seconds
        self.wipe_path = wipe_path
        self.drain_timeout = drain_timeout

    def run(self) -> str:
        arm_timer(self.signal, self.timeout_seconds, REASON_TIMEOUT)
        reason = self.signal.wait()
        log.info("Shutting down: %s", reason)

        self.request_exit()
        if not self.wait_drained(self.drain_timeout):
            log.warning("Drain did not finish within %.1fs", self.drain_timeout)

        if self.wipe_path is not None:
            wipe_file(self.wipe_path)
        return reason or ""


def wipe_file(path: Path) -> bool:
    # Every delivery closes its handle, so nothing holds the inode open here.
    log.info("Deleting source file %s", path)
    try:
        os.remove(path)
    except OSError as e:
        log.error("Failed to wipe file: %s", e)
        return False
    log.info("Source file deleted.")
    return True
