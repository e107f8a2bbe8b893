"""Timeout watchdog that fires if a run outlives its hard ceiling."""

from __future__ import annotations

import logging
import threading
from typing import Callable, Optional

logger = logging.getLogger(__name__)


class TimeoutWatchdog:
    """Daemon timer that calls ``on_timeout`` once the ceiling passes.

    The engine stops itself at batch boundaries; the watchdog covers the
    case where a single item hangs past the ceiling. It is armed before a
    run and released from the engine's cleanup hook.

    Example:
        watchdog = TimeoutWatchdog(330, on_timeout=record_timeout)
        watchdog.start()
        engine = BatchEngine(store, cleanup=watchdog.cancel)
    """

    def __init__(
        self,
        timeout_seconds: float,
        on_timeout: Callable[[], None],
        *,
        name: str = "batch-timeout-watchdog",
    ):
        self.timeout_seconds = timeout_seconds
        self.on_timeout = on_timeout
        self.name = name
        self._timer: Optional[threading.Timer] = None
        self._fired = threading.Event()
        self._lock = threading.Lock()

    def _fire(self) -> None:
        self._fired.set()
        logger.warning("Run exceeded %.0fs ceiling", self.timeout_seconds)
        try:
            self.on_timeout()
        except Exception as e:
            logger.error("Timeout handler failed: %s", e)

    def start(self) -> None:
        """Arm the timer, replacing any timer armed earlier."""
        with self._lock:
            if self._timer is not None:
                self._timer.cancel()
            self._fired.clear()
            self._timer = threading.Timer(self.timeout_seconds, self._fire)
            self._timer.name = self.name
            self._timer.daemon = True
            self._timer.start()
        logger.debug("Timeout watchdog armed for %.0fs", self.timeout_seconds)

    def cancel(self) -> None:
        """Release the timer. Safe to call more than once."""
        with self._lock:
            timer, self._timer = self._timer, None
        if timer is not None:
            timer.cancel()
            logger.debug("Timeout watchdog released")

    @property
    def active(self) -> bool:
        with self._lock:
            return self._timer is not None

    @property
    def fired(self) -> bool:
        return self._fired.is_set()
