"""Shared batch processing infrastructure.

Provides the resumable batch engine and its collaborators:
- BatchEngine: Time-boxed, cancellable, checkpointed processing of ordered items
- BatchConfig: Validated tuning (batch size, delays, time limits)
- ExecutionClock: Elapsed time against soft/hard limits
- CheckpointManager / CancellationFlag: Process state and cancellation in a state store
- InMemoryStateStore / JsonFileStateStore / SupabaseStateStore: State store backends
- ProgressReporter: Progress events to notification sinks and the log
- FailureTracker: Per-item failure details
- TimeoutWatchdog: Hard-ceiling timer released when a run ends
- retry_on_network_error: Network retry with exponential backoff

Usage:
    from src.shared.batch import BatchEngine, BatchConfig, BatchStatus
    from src.shared.batch import JsonFileStateStore, fixed_process_id
"""

from .checkpoint import (
    BatchStatus,
    CancellationFlag,
    CheckpointManager,
    CheckpointNotFoundError,
    ProcessState,
    fixed_process_id,
    generate_process_id,
)
from .clock import ExecutionClock
from .engine import (
    BatchConfig,
    BatchEngine,
    BatchResult,
    ItemOutcome,
    calculate_optimal_batch_size,
)
from .failure_tracker import FailureTracker
from .progress import ProgressEvent, ProgressReporter, StateStoreNotifier
from .retry import retry_on_network_error
from .state_store import (
    InMemoryStateStore,
    JsonFileStateStore,
    StateStore,
    SupabaseStateStore,
)
from .watchdog import TimeoutWatchdog

__all__ = [
    "BatchConfig",
    "BatchEngine",
    "BatchResult",
    "BatchStatus",
    "CancellationFlag",
    "CheckpointManager",
    "CheckpointNotFoundError",
    "ExecutionClock",
    "FailureTracker",
    "InMemoryStateStore",
    "ItemOutcome",
    "JsonFileStateStore",
    "ProcessState",
    "ProgressEvent",
    "ProgressReporter",
    "StateStore",
    "StateStoreNotifier",
    "SupabaseStateStore",
    "TimeoutWatchdog",
    "calculate_optimal_batch_size",
    "fixed_process_id",
    "generate_process_id",
    "retry_on_network_error",
]
