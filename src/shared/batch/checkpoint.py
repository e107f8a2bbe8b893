"""Process checkpoints and the cancellation flag for resumable batch runs."""

from __future__ import annotations

import logging
import random
import string
import time
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional

from .state_store import StateStore

logger = logging.getLogger(__name__)

STATE_KEY_PREFIX = "batch_state_"
CANCEL_FLAG_KEY = "cancel_flag"


class BatchStatus(str, Enum):
    """Status values shared by checkpoints and batch results.

    The string values are what callers branch on and what is persisted.
    """

    PROCESSING = "processing"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    TIMEOUT = "timeout"
    SAFE_TIMEOUT = "safe_timeout"
    ERROR = "error"

    @property
    def is_resumable(self) -> bool:
        """Whether re-running with the same process id is expected to continue."""
        return self in (BatchStatus.PROCESSING, BatchStatus.TIMEOUT, BatchStatus.SAFE_TIMEOUT)


class CheckpointNotFoundError(LookupError):
    """Raised when a run must continue from a checkpoint that does not exist."""


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass
class ProcessState:
    """How far a batch run has progressed.

    ``last_processed_index`` is -1 before any item has been processed.
    Counters always satisfy ``processed_count == success_count + error_count``.
    """

    process_id: str
    last_processed_index: int = -1
    processed_count: int = 0
    success_count: int = 0
    error_count: int = 0
    status: BatchStatus = BatchStatus.PROCESSING
    timestamp: str = field(default_factory=_now_iso)
    error: Optional[str] = None

    @property
    def next_index(self) -> int:
        return self.last_processed_index + 1

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["status"] = self.status.value
        if data["error"] is None:
            del data["error"]
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> ProcessState:
        """Build a state from a stored document.

        Raises:
            ValueError: If required fields are missing or malformed
        """
        try:
            success = int(data.get("success_count", 0))
            errors = int(data.get("error_count", 0))
            return cls(
                process_id=str(data["process_id"]),
                last_processed_index=int(data.get("last_processed_index", -1)),
                processed_count=int(data.get("processed_count", success + errors)),
                success_count=success,
                error_count=errors,
                status=BatchStatus(data.get("status", BatchStatus.PROCESSING.value)),
                timestamp=str(data.get("timestamp") or _now_iso()),
                error=data.get("error"),
            )
        except (KeyError, TypeError, ValueError) as e:
            raise ValueError(f"Invalid process state: {e}") from e


def generate_process_id() -> str:
    """Return a unique id for a one-off run (not resumable across restarts)."""
    suffix = "".join(random.choices(string.ascii_lowercase + string.digits, k=9))
    return f"batch_{int(time.time() * 1000)}_{suffix}"


def fixed_process_id(process_type: str) -> str:
    """Return the stable id used by a recurring job so it can be resumed."""
    return f"batch_{process_type}_fixed"


class CheckpointManager:
    """Saves, loads and clears :class:`ProcessState` records in a state store.

    Example:
        checkpoints = CheckpointManager(JsonFileStateStore("./state.json"))

        state = checkpoints.load("batch_prices_fixed")
        start = state.next_index if state else 0
        ...
        checkpoints.save(state)
    """

    def __init__(self, store: StateStore):
        self.store = store

    @staticmethod
    def key_for(process_id: str) -> str:
        return f"{STATE_KEY_PREFIX}{process_id}"

    def save(self, state: ProcessState) -> None:
        state.timestamp = _now_iso()
        self.store.save(self.key_for(state.process_id), state.to_dict())
        logger.debug(
            "Checkpoint saved for %s at index %d (%s)",
            state.process_id,
            state.last_processed_index,
            state.status.value,
        )

    def load(self, process_id: str) -> Optional[ProcessState]:
        data = self.store.load(self.key_for(process_id))
        if data is None:
            return None
        data.setdefault("process_id", process_id)
        try:
            return ProcessState.from_dict(data)
        except ValueError as e:
            logger.error("Discarding unreadable checkpoint for %s: %s", process_id, e)
            return None

    def clear(self, process_id: str) -> None:
        self.store.delete(self.key_for(process_id))
        logger.debug("Checkpoint cleared for %s", process_id)


class CancellationFlag:
    """Cooperative cancellation signal shared through the state store.

    A separate control path (CLI, HTTP request) calls :meth:`request`;
    the running engine polls :meth:`is_requested` between batches.
    """

    def __init__(self, store: StateStore, key: str = CANCEL_FLAG_KEY):
        self.store = store
        self.key = key

    def request(self) -> None:
        self.store.save(self.key, {"cancelled": True, "requested_at": _now_iso()})
        logger.info("Cancellation requested")

    def reset(self) -> None:
        self.store.delete(self.key)
        logger.debug("Cancellation flag reset")

    def is_requested(self) -> bool:
        try:
            data = self.store.load(self.key)
        except Exception as e:
            logger.warning("Failed to read cancellation flag: %s", e)
            return False
        return bool(data and data.get("cancelled"))
