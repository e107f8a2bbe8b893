"""Failure tracking for batch runs."""

from __future__ import annotations

import json
import logging
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional

logger = logging.getLogger(__name__)


class FailureTracker:
    """Records items that failed during a run for later analysis.

    The engine tallies failures as data and keeps going; this tracker
    keeps the detail (index, error message, traceback) that the counters
    throw away.

    Example:
        tracker = FailureTracker()
        tracker.record_failure(4, "7203", "price not found")
        tracker.save(Path("./failures.json"))

        # Re-save the records a finished run reported
        FailureTracker(result.failures).save(Path("./failures.json"))
    """

    def __init__(self, failures: Optional[Iterable[Dict[str, Any]]] = None) -> None:
        self.failures: List[Dict[str, Any]] = [dict(failure) for failure in failures or []]
        self.lock = threading.Lock()

    def record_failure(self, index: int, item: Any, error: str, tb: str = "") -> None:
        """Record a processing failure.

        Args:
            index: Position of the item in the input sequence
            item: The work item (stored via ``str`` if not JSON-friendly)
            error: Error message
            tb: Traceback string
        """
        if not isinstance(item, (str, int, float, bool, type(None))):
            item = str(item)
        with self.lock:
            self.failures.append(
                {
                    "index": index,
                    "item": item,
                    "error": str(error),
                    "traceback": tb,
                    "timestamp": datetime.now(timezone.utc).isoformat(),
                }
            )

    @property
    def count(self) -> int:
        with self.lock:
            return len(self.failures)

    def failed_indices(self) -> List[int]:
        with self.lock:
            return [failure["index"] for failure in self.failures]

    def snapshot(self) -> List[Dict[str, Any]]:
        with self.lock:
            return [dict(failure) for failure in self.failures]

    def save(self, filepath: Path) -> None:
        """Atomically save failures to JSON file."""
        with self.lock:
            if not self.failures:
                logger.info("No failures to save")
                return

            try:
                temp_path = filepath.with_suffix(".tmp")
                with open(temp_path, "w", encoding="utf-8") as f:
                    json.dump(self.failures, f, indent=2, ensure_ascii=False)
                temp_path.replace(filepath)
                logger.info("Saved %d failures to %s", len(self.failures), filepath)
            except OSError as e:
                logger.error("Failed to save failures: %s", e)

    def clear(self) -> None:
        with self.lock:
            self.failures.clear()
