"""Wires the pipeline to its production or local collaborators."""

from __future__ import annotations

import logging
from typing import Iterable, Optional

from src.shared.batch import BatchConfig, JsonFileStateStore, SupabaseStateStore
from src.shared.db import SupabaseConfig, get_supabase_client

from .pipeline import StockPriceUpdatePipeline
from .quote_fetcher import QuoteFetcher
from .row_store import InMemoryRowStore, SupabaseRowStore

logger = logging.getLogger(__name__)


def create_pipeline(
    *,
    state_file: Optional[str] = None,
    dry_run: bool = False,
    codes: Optional[Iterable[str]] = None,
    config: Optional[BatchConfig] = None,
) -> StockPriceUpdatePipeline:
    """Build a pipeline from the environment.

    Supabase backs both the holdings table and checkpoints unless a local
    ``state_file`` is given. In dry-run mode with explicit ``codes`` no
    database is needed: holdings live in memory and nothing is written.

    Raises:
        ValueError: If Supabase credentials are needed but missing
        ConfigurationError: If ``BATCH_*`` settings are invalid
    """
    config = config or BatchConfig.from_env()
    codes = list(codes or [])

    local_rows = dry_run and bool(codes)

    client = None
    supabase_config = None
    if not (state_file and local_rows):
        supabase_config = SupabaseConfig.from_env()
        client = get_supabase_client(supabase_config)

    if state_file:
        state_store = JsonFileStateStore(state_file)
    else:
        state_store = SupabaseStateStore(client, table=supabase_config.state_table)

    if local_rows:
        row_store = InMemoryRowStore(codes)
    else:
        row_store = SupabaseRowStore(client, table=supabase_config.holdings_table)

    logger.debug(
        "Pipeline wired: state=%s rows=%s dry_run=%s",
        type(state_store).__name__,
        type(row_store).__name__,
        dry_run,
    )
    return StockPriceUpdatePipeline(
        row_store,
        QuoteFetcher(max_retries=config.max_retries),
        state_store,
        config=config,
        dry_run=dry_run,
    )
