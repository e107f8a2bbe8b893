"""Shared Supabase connection utilities.

Supabase is the durable backing store for batch checkpoints and the
portfolio holdings table. Both the state store and the row store build
their client through :func:`get_supabase_client`.
"""

from __future__ import annotations
import os
import logging
from dataclasses import dataclass
from typing import Optional

from supabase import Client, create_client

logger = logging.getLogger(__name__)


@dataclass
class SupabaseConfig:
    """Configuration for Supabase connection.

    Attributes:
        url: Supabase project URL
        key: Supabase API key (service role for batch jobs)
        schema: Database schema to use (default: public)
        state_table: Table holding batch checkpoints and control flags
        holdings_table: Table holding one row per portfolio stock code
    """
    url: str
    key: str
    schema: str = "public"
    state_table: str = "batch_state"
    holdings_table: str = "portfolio_holdings"

    @classmethod
    def from_env(
        cls,
        url_var: str = "SUPABASE_URL",
        key_var: str = "SUPABASE_KEY",
        schema_var: str = "SUPABASE_SCHEMA"
    ) -> SupabaseConfig:
        """Create configuration from environment variables.

        Table names can be overridden with ``BATCH_STATE_TABLE`` and
        ``PORTFOLIO_HOLDINGS_TABLE``.

        Raises:
            ValueError: If required environment variables are not set
        """
        url = os.getenv(url_var)
        key = os.getenv(key_var)

        if not url or not key:
            raise ValueError(
                f"Missing required environment variables: {url_var} and/or {key_var}. "
                f"Please set them in your .env file or environment."
            )

        return cls(
            url=url,
            key=key,
            schema=os.getenv(schema_var, "public"),
            state_table=os.getenv("BATCH_STATE_TABLE", "batch_state"),
            holdings_table=os.getenv("PORTFOLIO_HOLDINGS_TABLE", "portfolio_holdings"),
        )


def get_supabase_client(config: Optional[SupabaseConfig] = None) -> Client:
    """Create Supabase client.

    Args:
        config: Optional SupabaseConfig. If None, loads from environment.

    Returns:
        Supabase client instance

    Example:
        >>> client = get_supabase_client()
        >>> client.table("batch_state").select("*").execute()
    """
    if config is None:
        config = SupabaseConfig.from_env()

    logger.debug("Creating Supabase client for %s", config.url)

    client = create_client(config.url, config.key)

    if config.schema and config.schema != "public":
        schema_fn = getattr(client, "schema", None)
        if callable(schema_fn):
            scoped_client = schema_fn(config.schema)
            if scoped_client is not None:
                client = scoped_client
                logger.debug("Using schema: %s", config.schema)
        else:
            logger.warning(
                "Supabase client does not support schema override; continuing with default schema"
            )

    return client
