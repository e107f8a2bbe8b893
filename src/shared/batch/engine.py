"""Resumable, time-boxed batch engine.

Processes an ordered list of work items in fixed-size batches, one item
at a time, and checkpoints progress so a run that stops early (time
limit, cancellation, crash) can be continued by a later invocation with
the same process id.

Example:
    store = JsonFileStateStore("./state/batch_state.json")
    engine = BatchEngine(store, reporter=ProgressReporter())

    result = engine.run(codes, update_price, BatchConfig(batch_size=5),
                        process_id=fixed_process_id("prices"))
    if result.status is BatchStatus.SAFE_TIMEOUT:
        schedule_next_invocation()
"""

from __future__ import annotations

import dataclasses
import logging
import math
import time
import traceback
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence

from src.shared.utils.config_validator import (
    ConfigurationError,
    validate_float_env,
    validate_int_env,
)

from .checkpoint import (
    BatchStatus,
    CancellationFlag,
    CheckpointManager,
    CheckpointNotFoundError,
    ProcessState,
    generate_process_id,
)
from .clock import ExecutionClock
from .failure_tracker import FailureTracker
from .progress import ProgressReporter, percent_complete
from .state_store import StateStore

logger = logging.getLogger(__name__)

ItemProcessor = Callable[[Any, int, Sequence[Any]], Any]


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


@dataclass(frozen=True)
class BatchConfig:
    """Tuning for one batch run.

    Attributes:
        batch_size: Items per batch; cancellation and time limits are
            checked before every batch
        item_delay: Seconds to wait between items of a batch
        batch_delay: Seconds to wait between batches
        max_retries: Retry budget handed to the item processor
        soft_time_limit: Elapsed seconds after which the run stops
            cleanly with ``safe_timeout``
        hard_time_limit: Elapsed seconds after which the run is reported
            as ``timeout``; None disables the check
        progress_checkpoint_interval: Persist a checkpoint every N items
    """

    batch_size: int = 5
    item_delay: float = 0.5
    batch_delay: float = 2.0
    max_retries: int = 3
    soft_time_limit: float = 4.5 * 60
    hard_time_limit: Optional[float] = 5.5 * 60
    progress_checkpoint_interval: int = 10

    def __post_init__(self) -> None:
        errors = []
        if not isinstance(self.batch_size, int) or self.batch_size < 1:
            errors.append(f"batch_size must be a positive integer (got {self.batch_size!r})")
        if not _is_number(self.item_delay) or self.item_delay < 0:
            errors.append(f"item_delay must be a non-negative number (got {self.item_delay!r})")
        if not _is_number(self.batch_delay) or self.batch_delay < 0:
            errors.append(f"batch_delay must be a non-negative number (got {self.batch_delay!r})")
        if not isinstance(self.max_retries, int) or self.max_retries < 0:
            errors.append(f"max_retries must be a non-negative integer (got {self.max_retries!r})")
        if not _is_number(self.soft_time_limit) or self.soft_time_limit <= 0:
            errors.append(f"soft_time_limit must be a positive number (got {self.soft_time_limit!r})")
        elif self.hard_time_limit is not None and (
            not _is_number(self.hard_time_limit) or self.hard_time_limit < self.soft_time_limit
        ):
            errors.append(
                f"hard_time_limit ({self.hard_time_limit}) must not be below "
                f"soft_time_limit ({self.soft_time_limit})"
            )
        if (
            not isinstance(self.progress_checkpoint_interval, int)
            or self.progress_checkpoint_interval < 1
        ):
            errors.append(
                "progress_checkpoint_interval must be a positive integer "
                f"(got {self.progress_checkpoint_interval!r})"
            )
        if errors:
            raise ConfigurationError("Invalid batch configuration: " + "; ".join(errors))

    @classmethod
    def from_env(cls, prefix: str = "BATCH_") -> BatchConfig:
        """Build a config from ``BATCH_*`` environment variables.

        Raises:
            ConfigurationError: If a variable is malformed or out of range
        """
        defaults = cls()
        return cls(
            batch_size=validate_int_env(f"{prefix}SIZE", defaults.batch_size, min_value=1),
            item_delay=validate_float_env(f"{prefix}ITEM_DELAY", defaults.item_delay, min_value=0),
            batch_delay=validate_float_env(f"{prefix}DELAY", defaults.batch_delay, min_value=0),
            max_retries=validate_int_env(f"{prefix}MAX_RETRIES", defaults.max_retries, min_value=0),
            soft_time_limit=validate_float_env(
                f"{prefix}SOFT_TIME_LIMIT", defaults.soft_time_limit, min_value=1
            ),
            hard_time_limit=validate_float_env(
                f"{prefix}HARD_TIME_LIMIT", defaults.hard_time_limit, min_value=1, allow_none=True
            ),
            progress_checkpoint_interval=validate_int_env(
                f"{prefix}CHECKPOINT_INTERVAL", defaults.progress_checkpoint_interval, min_value=1
            ),
        )

    def with_overrides(self, **changes: Any) -> BatchConfig:
        """Return a validated copy; ``None`` values are ignored."""
        changes = {key: value for key, value in changes.items() if value is not None}
        return dataclasses.replace(self, **changes)


def calculate_optimal_batch_size(total_items: int, complexity: int = 5) -> int:
    """Suggest a batch size from the input size and per-item complexity (1-10)."""
    base_size = max(1, 10 // max(1, complexity))
    if total_items > 100:
        size = min(5, base_size)
    elif total_items > 50:
        size = min(8, int(base_size * 1.5))
    else:
        size = min(total_items, max(3, base_size))
    return max(1, size)


@dataclass
class ItemOutcome:
    """Tagged result of processing a single item."""

    index: int
    success: bool
    payload: Any = None
    error: Optional[str] = None


@dataclass
class BatchResult:
    """Summary returned to the caller of :meth:`BatchEngine.run`.

    Counters are cumulative across resumed invocations of the same
    process id; ``processed_this_run`` counts only this invocation. When a
    resumed run finds nothing left to process, the counters still report
    the saved totals and ``processed_this_run`` is 0.
    """

    status: BatchStatus
    process_id: str
    processed_count: int = 0
    success_count: int = 0
    error_count: int = 0
    total_items: int = 0
    start_index: int = 0
    processed_this_run: int = 0
    total_elapsed_time: Optional[float] = None
    error: Optional[str] = None
    failures: List[Dict[str, Any]] = field(default_factory=list)

    @property
    def is_resumable(self) -> bool:
        return self.status.is_resumable

    def to_dict(self) -> Dict[str, Any]:
        data = dataclasses.asdict(self)
        data["status"] = self.status.value
        return data


def is_success(result: Any) -> bool:
    """A processor result counts as success unless it says ``success=False``."""
    if isinstance(result, Mapping):
        return result.get("success") is not False
    return getattr(result, "success", True) is not False


class BatchEngine:
    """Drives a resumable batch run over an ordered sequence of items.

    Args:
        store: State store holding checkpoints and the cancellation flag
        reporter: Progress reporter; a logging-only one is used if omitted
        cancellation: Cancellation flag; defaults to the store's global flag
        clock_factory: Builds the execution clock for each run
        sleep: Sleep function used for rate-limit delays
        cleanup: Called once when a run ends, however it ends
    """

    def __init__(
        self,
        store: StateStore,
        *,
        reporter: Optional[ProgressReporter] = None,
        cancellation: Optional[CancellationFlag] = None,
        clock_factory: Callable[[], ExecutionClock] = ExecutionClock,
        sleep: Callable[[float], None] = time.sleep,
        cleanup: Optional[Callable[[], None]] = None,
    ):
        self.checkpoints = CheckpointManager(store)
        self.reporter = reporter or ProgressReporter()
        self.cancellation = cancellation or CancellationFlag(store)
        self.clock_factory = clock_factory
        self.sleep = sleep
        self.cleanup = cleanup

    def run(
        self,
        items: Sequence[Any],
        processor: ItemProcessor,
        config: Optional[BatchConfig] = None,
        *,
        process_id: Optional[str] = None,
        resume_from: Optional[ProcessState] = None,
        restart: bool = False,
        raise_errors: bool = True,
    ) -> BatchResult:
        """Process ``items`` in order, resuming from a saved checkpoint.

        Args:
            items: Ordered work items; an item's identity is its index
            processor: Called as ``processor(item, index, items)``
            config: Batch tuning (defaults to :class:`BatchConfig`)
            process_id: Stable id for resumable runs; generated if omitted
            resume_from: Explicit state to resume from instead of the store
            restart: Ignore and discard any saved checkpoint
            raise_errors: Re-raise engine-level errors after saving state;
                when False an ``error`` result is returned instead

        Returns:
            BatchResult whose ``status`` tells the caller what to do next
        """
        config = config or BatchConfig()
        if process_id is None and resume_from is not None:
            process_id = resume_from.process_id
        process_id = process_id or generate_process_id()

        try:
            state = self._initial_state(process_id, resume_from, restart)
            return self._run(items, processor, config, state, raise_errors)
        finally:
            self._release()

    def continue_processing(
        self,
        process_id: str,
        items: Sequence[Any],
        processor: ItemProcessor,
        config: Optional[BatchConfig] = None,
        **kwargs: Any,
    ) -> BatchResult:
        """Resume a run that must have a checkpoint.

        Raises:
            CheckpointNotFoundError: If no checkpoint exists for ``process_id``
        """
        state = self.checkpoints.load(process_id)
        if state is None:
            raise CheckpointNotFoundError(f"No saved state for process {process_id}")
        logger.info(
            "Continuing %s from index %d",
            process_id,
            state.next_index,
            extra={"process_state": state.to_dict()},
        )
        return self.run(items, processor, config, process_id=process_id, resume_from=state, **kwargs)

    def _initial_state(
        self,
        process_id: str,
        resume_from: Optional[ProcessState],
        restart: bool,
    ) -> ProcessState:
        if restart:
            self.checkpoints.clear(process_id)
            return ProcessState(process_id=process_id)

        saved = resume_from or self.checkpoints.load(process_id)
        if saved is None:
            return ProcessState(process_id=process_id)
        if saved.status is BatchStatus.COMPLETED:
            logger.info("Previous run of %s completed, starting fresh", process_id)
            return ProcessState(process_id=process_id)

        return dataclasses.replace(
            saved,
            process_id=process_id,
            status=BatchStatus.PROCESSING,
            error=None,
        )

    def _run(
        self,
        items: Sequence[Any],
        processor: ItemProcessor,
        config: BatchConfig,
        state: ProcessState,
        raise_errors: bool,
    ) -> BatchResult:
        total = len(items)
        start_index = state.next_index
        batch_size = config.batch_size
        total_batches = math.ceil(total / batch_size) if total else 0
        failures = FailureTracker()
        clock = self.clock_factory()

        logger.info(
            "Starting batch run %s: %d items, resuming at index %d",
            state.process_id,
            total,
            start_index,
            extra={
                "process_id": state.process_id,
                "total_items": total,
                "start_index": start_index,
                "batch_size": batch_size,
            },
        )

        def result(status: BatchStatus, error: Optional[str] = None) -> BatchResult:
            return BatchResult(
                status=status,
                process_id=state.process_id,
                processed_count=state.processed_count,
                success_count=state.success_count,
                error_count=state.error_count,
                total_items=total,
                start_index=start_index,
                processed_this_run=state.last_processed_index + 1 - start_index,
                total_elapsed_time=clock.elapsed(),
                error=error,
                failures=failures.snapshot(),
            )

        if start_index >= total:
            logger.info("Nothing left to process for %s", state.process_id)
            state.status = BatchStatus.COMPLETED
            self.checkpoints.clear(state.process_id)
            return result(BatchStatus.COMPLETED)

        clock.start()
        current_batch = start_index // batch_size + 1

        try:
            for batch_start in range(start_index, total, batch_size):
                batch_end = min(batch_start + batch_size, total)

                stop_status = self._stop_status(clock, config)
                if stop_status is not None:
                    return self._stop(state, stop_status, total, clock, result)

                logger.info(
                    "Processing batch %d/%d: items %d-%d",
                    current_batch,
                    total_batches,
                    batch_start,
                    batch_end - 1,
                )

                saved_at = None
                for index in range(batch_start, batch_end):
                    outcome = self._process_item(processor, items, index, failures)
                    state.last_processed_index = index
                    state.processed_count += 1
                    if outcome.success:
                        state.success_count += 1
                    else:
                        state.error_count += 1

                    if state.processed_count % config.progress_checkpoint_interval == 0:
                        self._checkpoint(state, total, current_batch, total_batches)
                        saved_at = index

                    if index < batch_end - 1 and config.item_delay > 0:
                        self.sleep(config.item_delay)

                if saved_at != batch_end - 1:
                    self._checkpoint(state, total, current_batch, total_batches)

                logger.info(
                    "Batch %d/%d done: %d succeeded, %d failed so far",
                    current_batch,
                    total_batches,
                    state.success_count,
                    state.error_count,
                )
                current_batch += 1

                if batch_end < total and config.batch_delay > 0:
                    self.sleep(config.batch_delay)

        except Exception as e:
            logger.exception(
                "Batch run %s failed after index %d",
                state.process_id,
                state.last_processed_index,
            )
            state.status = BatchStatus.ERROR
            state.error = str(e)
            self.checkpoints.save(state)
            if raise_errors:
                raise
            return result(BatchStatus.ERROR, error=str(e))

        state.status = BatchStatus.COMPLETED
        self.checkpoints.save(state)
        self.checkpoints.clear(state.process_id)
        self.reporter.report(
            state.processed_count,
            total,
            "Processing complete",
            self._metadata(state, total_batches, total_batches, phase="completed"),
        )
        self.reporter.log_summary(
            state.processed_count,
            state.success_count,
            state.error_count,
            label=state.process_id,
        )
        return result(BatchStatus.COMPLETED)

    def _stop_status(self, clock: ExecutionClock, config: BatchConfig) -> Optional[BatchStatus]:
        if self.cancellation.is_requested():
            return BatchStatus.CANCELLED
        if clock.is_over_budget(config.hard_time_limit):
            return BatchStatus.TIMEOUT
        if clock.is_over_budget(config.soft_time_limit):
            return BatchStatus.SAFE_TIMEOUT
        return None

    def _stop(self, state, status, total, clock, result) -> BatchResult:
        state.status = status
        self.checkpoints.save(state)
        if status is BatchStatus.CANCELLED:
            logger.info("Processing cancelled: %d/%d items done", state.processed_count, total)
        else:
            logger.warning(
                "Stopping on %s after %.1fs: %d/%d items done",
                status.value,
                clock.elapsed(),
                state.processed_count,
                total,
            )
        self.reporter.report(
            state.processed_count,
            total,
            f"Stopped ({status.value}) at {state.processed_count}/{total}",
            {"phase": status.value, "process_id": state.process_id, "resumable": status.is_resumable},
        )
        return result(status)

    def _process_item(
        self,
        processor: ItemProcessor,
        items: Sequence[Any],
        index: int,
        failures: FailureTracker,
    ) -> ItemOutcome:
        item = items[index]
        try:
            payload = processor(item, index, items)
        except Exception as e:
            logger.error("Item %d failed: %s", index, e, extra={"item_index": index})
            failures.record_failure(index, item, str(e), traceback.format_exc())
            return ItemOutcome(index=index, success=False, error=str(e))

        if is_success(payload):
            return ItemOutcome(index=index, success=True, payload=payload)

        error = None
        if isinstance(payload, Mapping):
            error = payload.get("error")
        message = str(error or "processor reported failure")
        logger.warning("Item %d reported failure: %s", index, message, extra={"item_index": index})
        failures.record_failure(index, item, message)
        return ItemOutcome(index=index, success=False, payload=payload, error=message)

    def _checkpoint(self, state: ProcessState, total: int, current_batch: int, total_batches: int) -> None:
        state.status = BatchStatus.PROCESSING
        self.checkpoints.save(state)
        percent = percent_complete(state.processed_count, total)
        self.reporter.report(
            state.processed_count,
            total,
            f"Batch {current_batch}/{total_batches}: {state.processed_count}/{total} ({percent}%)",
            self._metadata(state, current_batch, total_batches),
        )

    @staticmethod
    def _metadata(
        state: ProcessState,
        current_batch: int,
        total_batches: int,
        phase: str = "processing",
    ) -> Dict[str, Any]:
        return {
            "phase": phase,
            "process_id": state.process_id,
            "current_batch": current_batch,
            "total_batches": total_batches,
            "success_count": state.success_count,
            "error_count": state.error_count,
        }

    def _release(self) -> None:
        if self.cleanup is None:
            return
        try:
            self.cleanup()
        except Exception as e:
            logger.warning("Cleanup hook failed: %s", e)
