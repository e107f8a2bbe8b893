"""Elapsed wall-time measurement for time-boxed batch runs."""

from __future__ import annotations

import time
from typing import Callable, Optional


class ExecutionClock:
    """Measures elapsed time of one run against soft and hard limits.

    The clock only reads its time source; it never sleeps and keeps no
    shared state, so each run owns its own instance. Tests pass a fake
    ``time_source`` to trigger time-limit paths deterministically.

    Example:
        clock = ExecutionClock()
        clock.start()
        ...
        if clock.is_over_budget(config.soft_time_limit):
            save_checkpoint_and_stop()
    """

    def __init__(self, time_source: Callable[[], float] = time.monotonic):
        self._time_source = time_source
        self._started_at: Optional[float] = None

    def start(self) -> None:
        """Record the start instant. Calling it again restarts the clock."""
        self._started_at = self._time_source()

    def elapsed(self) -> float:
        """Seconds since :meth:`start`, or 0.0 if the clock was never started."""
        if self._started_at is None:
            return 0.0
        return max(0.0, self._time_source() - self._started_at)

    def is_over_budget(self, limit: Optional[float]) -> bool:
        """True once elapsed time is strictly greater than ``limit`` seconds.

        A ``None`` limit means unlimited.
        """
        if limit is None or self._started_at is None:
            return False
        return self.elapsed() > limit

    def remaining(self, limit: Optional[float]) -> Optional[float]:
        """Seconds left before ``limit`` is crossed (never negative)."""
        if limit is None:
            return None
        return max(0.0, limit - self.elapsed())
