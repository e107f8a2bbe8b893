"""Stock price update pipeline: refresh every holding's price in batches."""

from __future__ import annotations

import logging
import time
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence, Tuple

from src.shared.batch import (
    BatchConfig,
    BatchEngine,
    BatchResult,
    CancellationFlag,
    CheckpointManager,
    CheckpointNotFoundError,
    ExecutionClock,
    ProgressReporter,
    StateStore,
    StateStoreNotifier,
    TimeoutWatchdog,
    fixed_process_id,
    generate_process_id,
)
from src.shared.batch.progress import LATEST_PROGRESS_KEY

from .quote_fetcher import QuoteFetcher, QuoteNotFoundError
from .row_store import RowStore

logger = logging.getLogger(__name__)

PROCESS_TYPE = "stock_price_update"


class StockPriceUpdatePipeline:
    """Fetches a quote per holding and writes it back to the row store.

    Runs over the full holdings list share one fixed process id, so a run
    stopped by the time limit is picked up by the next invocation. Runs
    over an explicit list of codes get a one-off id unless the caller
    supplies one, and are resumed by passing the same codes again.
    """

    def __init__(
        self,
        row_store: RowStore,
        fetcher: QuoteFetcher,
        state_store: StateStore,
        *,
        config: Optional[BatchConfig] = None,
        dry_run: bool = False,
        sleep: Callable[[float], None] = time.sleep,
        clock_factory: Callable[[], ExecutionClock] = ExecutionClock,
        use_watchdog: bool = True,
    ):
        self.row_store = row_store
        self.fetcher = fetcher
        self.state_store = state_store
        self.config = config or BatchConfig()
        self.dry_run = dry_run
        self.sleep = sleep
        self.clock_factory = clock_factory
        self.use_watchdog = use_watchdog
        self.checkpoints = CheckpointManager(state_store)
        self.cancellation = CancellationFlag(state_store)
        self.progress = StateStoreNotifier(state_store)

    @property
    def default_process_id(self) -> str:
        return fixed_process_id(PROCESS_TYPE)

    def build_processor(self) -> Callable[[str, int, Sequence[str]], Dict[str, Any]]:
        """Return the per-code item processor handed to the batch engine."""

        def process(code: str, index: int, codes: Sequence[str]) -> Dict[str, Any]:
            try:
                quote = self.fetcher.fetch(code)
            except QuoteNotFoundError as e:
                return {"success": False, "code": code, "error": str(e)}

            if self.dry_run:
                logger.info("[DRY RUN] %s -> %.2f (%s)", code, quote.price, quote.source)
            else:
                self.row_store.write_quote(quote)
            return {"success": True, "code": code, "price": quote.price, "source": quote.source}

        return process

    def _record_timeout(self) -> None:
        self.state_store.save(
            LATEST_PROGRESS_KEY,
            {
                "percent": 100,
                "message": "Stock price update exceeded its time limit",
                "error": True,
                "timeout_at": datetime.now(timezone.utc).isoformat(),
            },
        )

    def _engine(self, config: BatchConfig) -> BatchEngine:
        watchdog = None
        if self.use_watchdog and config.hard_time_limit is not None:
            watchdog = TimeoutWatchdog(config.hard_time_limit, self._record_timeout)
            watchdog.start()

        return BatchEngine(
            self.state_store,
            reporter=ProgressReporter(notifiers=[self.progress]),
            cancellation=self.cancellation,
            clock_factory=self.clock_factory,
            sleep=self.sleep,
            cleanup=watchdog.cancel if watchdog else None,
        )

    def _resolve_config(self, overrides: Optional[Dict[str, Any]]) -> BatchConfig:
        config = self.config.with_overrides(**(overrides or {}))
        # The engine delegates retries to the item processor
        self.fetcher.max_retries = config.max_retries
        return config

    def _select(
        self,
        codes: Optional[Iterable[str]],
        process_id: Optional[str],
        *,
        fresh: bool,
    ) -> Tuple[str, List[str]]:
        """Pair a process id with the exact code list its checkpoint indexes.

        The fixed id always covers the full holdings list; any other id
        covers an explicit code list that the caller must supply again
        when resuming.

        Raises:
            ValueError: If the id and the code list do not belong together
        """
        selected = [str(code) for code in codes] if codes else []
        default_id = self.default_process_id

        if selected:
            if process_id == default_id:
                raise ValueError(
                    f"{default_id} is reserved for full-holdings runs; "
                    "omit process_id or choose another one for an explicit code list"
                )
            if not process_id:
                if not fresh:
                    raise ValueError("Resuming an explicit code list requires its process_id")
                process_id = generate_process_id()
            return process_id, selected

        if process_id and process_id != default_id:
            raise ValueError(
                f"Process {process_id} runs over an explicit code list; "
                "pass the same codes to run or resume it"
            )
        return default_id, self.row_store.list_codes()

    def run(
        self,
        codes: Optional[Iterable[str]] = None,
        *,
        process_id: Optional[str] = None,
        restart: bool = False,
        overrides: Optional[Dict[str, Any]] = None,
    ) -> BatchResult:
        """Update prices for ``codes`` (default: every holding).

        Raises:
            ValueError: If ``process_id`` does not match the code selection
        """
        process_id, items = self._select(codes, process_id, fresh=True)

        config = self._resolve_config(overrides)
        self.cancellation.reset()

        logger.info(
            "Updating prices for %d codes (process %s)",
            len(items),
            process_id,
            extra={"process_id": process_id, "restart": restart, "dry_run": self.dry_run},
        )
        return self._engine(config).run(
            items,
            self.build_processor(),
            config,
            process_id=process_id,
            restart=restart,
        )

    def resume(
        self,
        codes: Optional[Iterable[str]] = None,
        *,
        process_id: Optional[str] = None,
        overrides: Optional[Dict[str, Any]] = None,
    ) -> BatchResult:
        """Continue a stopped run.

        Without ``codes`` this resumes the full-holdings run. A run started
        over an explicit code list is resumed by passing the same codes in
        the same order together with its process id.

        Raises:
            ValueError: If ``process_id`` does not match the code selection
            CheckpointNotFoundError: If there is nothing to resume
        """
        process_id, items = self._select(codes, process_id, fresh=False)
        if self.checkpoints.load(process_id) is None:
            raise CheckpointNotFoundError(f"No saved progress for {process_id}")

        config = self._resolve_config(overrides)
        self.cancellation.reset()
        return self._engine(config).continue_processing(
            process_id,
            items,
            self.build_processor(),
            config,
        )

    def cancel(self) -> None:
        """Ask the running update to stop at the next batch boundary."""
        self.cancellation.request()

    def status(self, process_id: Optional[str] = None) -> Dict[str, Any]:
        process_id = process_id or self.default_process_id
        state = self.checkpoints.load(process_id)
        return {
            "process_id": process_id,
            "checkpoint": state.to_dict() if state else None,
            "latest_progress": self.progress.latest(),
            "cancel_requested": self.cancellation.is_requested(),
        }

    def clear(self, process_id: Optional[str] = None) -> None:
        """Forget saved progress so the next run starts from the first code."""
        process_id = process_id or self.default_process_id
        self.checkpoints.clear(process_id)
        self.cancellation.reset()
        logger.info("Cleared saved progress for %s", process_id)
