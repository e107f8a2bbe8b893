"""Progress reporting for batch processing runs."""

from __future__ import annotations

import logging
import time
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Iterable, Optional

import psutil

from .state_store import StateStore

logger = logging.getLogger(__name__)

LATEST_PROGRESS_KEY = "latest_progress"


def percent_complete(current: int, total: int) -> int:
    """Whole-number percentage clamped to 0..100; 0 when ``total`` is 0."""
    if total <= 0:
        return 0
    return min(100, max(0, round(current / total * 100)))


@dataclass
class ProgressEvent:
    """One progress update as delivered to notification sinks."""

    current: int
    total: int
    percent: int
    message: str
    metadata: Dict[str, Any] = field(default_factory=dict)
    remaining: int = 0
    estimated_seconds_remaining: float = 0.0
    timestamp: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


Notifier = Callable[[ProgressEvent], None]


class ProgressReporter:
    """Forwards progress to notification sinks and an append-only log.

    Sinks are best-effort: a failing sink is logged and skipped so a UI
    problem never aborts the batch.

    Example:
        reporter = ProgressReporter(notifiers=[StateStoreNotifier(store)])
        reporter.report(30, 120, "Batch 6/24", {"current_batch": 6})
        reporter.log_summary(processed=120, successful=118, errors=2)
    """

    def __init__(
        self,
        notifiers: Optional[Iterable[Notifier]] = None,
        *,
        log: Optional[logging.Logger] = None,
        time_source: Callable[[], float] = time.monotonic,
    ):
        """Initialize progress reporter.

        Args:
            notifiers: Callables receiving each :class:`ProgressEvent`
            log: Logger used as the append-only log sink
            time_source: Clock used for rate and ETA figures
        """
        self.notifiers = list(notifiers or [])
        self.log = log or logger
        self._time_source = time_source
        self.start_time = time_source()
        self.last_event: Optional[ProgressEvent] = None

    def _estimate_remaining(self, current: int, total: int) -> float:
        elapsed = self._time_source() - self.start_time
        rate = current / elapsed if elapsed > 0 else 0
        remaining = max(0, total - current)
        return remaining / rate if rate > 0 else 0.0

    def report(
        self,
        current: int,
        total: int,
        message: str,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> ProgressEvent:
        """Build a progress event, log it and hand it to every sink."""
        event = ProgressEvent(
            current=current,
            total=total,
            percent=percent_complete(current, total),
            message=message,
            metadata=dict(metadata or {}),
            remaining=max(0, total - current),
            estimated_seconds_remaining=self._estimate_remaining(current, total),
        )
        self.last_event = event

        self.log.info(
            "Progress: %d/%d (%d%%) | %s",
            current,
            total,
            event.percent,
            message,
            extra={"progress": event.to_dict()},
        )

        for notifier in self.notifiers:
            try:
                notifier(event)
            except Exception as e:
                self.log.warning("Progress notifier %r failed: %s", notifier, e)

        return event

    def log_summary(self, processed: int, successful: int, errors: int, label: str = "batch") -> None:
        """Log final summary."""
        elapsed = self._time_source() - self.start_time
        rate = processed / (elapsed / 3600) if elapsed > 0 else 0
        memory = psutil.virtual_memory()

        summary_parts = [
            f"Total processed: {processed:,}",
            f"Successful: {successful:,}",
            f"Errors: {errors:,}",
            f"Time: {elapsed:.1f}s",
            f"Avg rate: {rate:.0f} items/h",
            f"Final memory: {memory.percent:.0f}%",
        ]
        self.log.info("Processing %s finished:\n  %s", label, "\n  ".join(summary_parts))


class StateStoreNotifier:
    """Keeps the most recent progress event in the state store.

    A status request running in another process polls this key, the
    way a spreadsheet sidebar polls the latest progress.
    """

    def __init__(self, store: StateStore, key: str = LATEST_PROGRESS_KEY):
        self.store = store
        self.key = key

    def __call__(self, event: ProgressEvent) -> None:
        self.store.save(self.key, event.to_dict())

    def latest(self) -> Optional[Dict[str, Any]]:
        return self.store.load(self.key)
