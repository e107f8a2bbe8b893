"""
Command-line interface for the portfolio stock price update.

Refreshes the price of every holding in batches, stopping cleanly before
the execution time limit. Re-run with ``resume`` (or just ``run`` again)
to continue where the previous invocation stopped.

Exit codes: 0 completed, 2 stopped early but resumable, 1 error.
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import List, Optional

# Add project root to path
sys.path.insert(0, str(Path(__file__).resolve().parents[4]))

from src.shared.utils.env import load_env

load_env()

from src.shared.batch import (
    BatchConfig,
    BatchResult,
    BatchStatus,
    CheckpointNotFoundError,
    FailureTracker,
)
from src.shared.utils.config_validator import ConfigurationError
from src.shared.utils.logging import setup_logging
from src.functions.stock_price_update.core.factory import create_pipeline

logger = logging.getLogger(__name__)

EXIT_COMPLETED = 0
EXIT_ERROR = 1
EXIT_RESUMABLE = 2


def setup_cli_parser() -> argparse.ArgumentParser:
    """Create argument parser for the stock price update CLI."""
    parser = argparse.ArgumentParser(
        description="Update portfolio stock prices in resumable batches."
    )

    parser.add_argument(
        "action",
        nargs="?",
        choices=["run", "resume", "cancel", "status", "clear"],
        default="run",
        help="What to do (default: run)",
    )

    parser.add_argument(
        "--codes",
        nargs="+",
        help="Only update these stock codes (pass them again to resume such a run)",
    )

    parser.add_argument(
        "--process-id",
        type=str,
        help="Process id to run or resume (default: the fixed full-portfolio id)",
    )

    parser.add_argument(
        "--restart",
        action="store_true",
        help="Discard saved progress and start from the first code",
    )

    parser.add_argument(
        "--batch-size",
        type=int,
        help="Codes per batch (overrides BATCH_SIZE)",
    )

    parser.add_argument(
        "--soft-time-limit",
        type=float,
        help="Seconds after which the run stops and saves progress",
    )

    parser.add_argument(
        "--state-file",
        type=str,
        help="Keep checkpoints in this JSON file instead of Supabase",
    )

    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Fetch prices but do not write them",
    )

    parser.add_argument(
        "--failures-file",
        type=str,
        help="Save per-code failure details to this JSON file",
    )

    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        default="INFO",
        help="Set logging level (default: INFO)",
    )

    parser.add_argument(
        "--output-format",
        choices=["text", "json"],
        default="text",
        help="Output format for results (default: text)",
    )

    return parser


def print_result(result: BatchResult, output_format: str = "text") -> None:
    """Print a batch result in a human-readable or JSON format."""
    if output_format == "json":
        print(json.dumps(result.to_dict(), indent=2, ensure_ascii=False, default=str))
        return

    print("\n" + "=" * 60)
    print(f"STOCK PRICE UPDATE: {result.status.value.upper()}")
    print("=" * 60)
    print(f"Process id:       {result.process_id}")
    print(f"Processed:        {result.processed_count}/{result.total_items}")
    print(f"  This run:       {result.processed_this_run}")
    print(f"Successful:       {result.success_count}")
    print(f"Failed:           {result.error_count}")
    if result.total_elapsed_time is not None:
        print(f"Elapsed:          {result.total_elapsed_time:.1f}s")
    if result.error:
        print(f"Error:            {result.error}")
    if result.failures:
        print("\nFailed codes:")
        for failure in result.failures[:20]:
            print(f"  [{failure['index']}] {failure['item']}: {failure['error']}")
        if len(result.failures) > 20:
            print(f"  ... and {len(result.failures) - 20} more")
    if result.is_resumable:
        print("\nRun again (or use 'resume') to continue from the saved position.")


def exit_code_for(status: BatchStatus) -> int:
    if status is BatchStatus.COMPLETED:
        return EXIT_COMPLETED
    if status is BatchStatus.ERROR:
        return EXIT_ERROR
    return EXIT_RESUMABLE


def main(argv: Optional[List[str]] = None) -> int:
    parser = setup_cli_parser()
    args = parser.parse_args(argv)
    setup_logging(level=args.log_level)

    try:
        config = BatchConfig.from_env()
        pipeline = create_pipeline(
            state_file=args.state_file,
            dry_run=args.dry_run,
            codes=args.codes,
            config=config,
        )
    except (ConfigurationError, ValueError) as exc:
        logger.error("Configuration error: %s", exc)
        return EXIT_ERROR

    if args.action == "cancel":
        pipeline.cancel()
        print("Cancellation requested; the running update stops at its next batch.")
        return EXIT_COMPLETED

    if args.action == "status":
        print(json.dumps(pipeline.status(args.process_id), indent=2, ensure_ascii=False, default=str))
        return EXIT_COMPLETED

    if args.action == "clear":
        pipeline.clear(args.process_id)
        print("Saved progress cleared.")
        return EXIT_COMPLETED

    overrides = {"batch_size": args.batch_size, "soft_time_limit": args.soft_time_limit}
    try:
        if args.action == "resume":
            result = pipeline.resume(args.codes, process_id=args.process_id, overrides=overrides)
        else:
            result = pipeline.run(
                args.codes,
                process_id=args.process_id,
                restart=args.restart,
                overrides=overrides,
            )
    except CheckpointNotFoundError as exc:
        logger.error("%s", exc)
        return EXIT_ERROR
    except ConfigurationError as exc:
        logger.error("Configuration error: %s", exc)
        return EXIT_ERROR
    except ValueError as exc:
        logger.error("Invalid selection: %s", exc)
        return EXIT_ERROR
    except KeyboardInterrupt:
        logger.warning("Interrupted; progress up to the last checkpoint is saved")
        return EXIT_RESUMABLE
    except Exception:
        logger.exception("Stock price update failed")
        return EXIT_ERROR

    print_result(result, args.output_format)

    if args.failures_file and result.failures:
        FailureTracker(result.failures).save(Path(args.failures_file))

    return exit_code_for(result.status)


if __name__ == "__main__":
    sys.exit(main())
