"""Core components for the stock price update job."""

from .contracts import StockQuote, UpdateRequest
from .quote_fetcher import QuoteFetcher, QuoteNotFoundError, QuoteSource
from .row_store import InMemoryRowStore, SupabaseRowStore
from .pipeline import StockPriceUpdatePipeline

__all__ = [
    "InMemoryRowStore",
    "QuoteFetcher",
    "QuoteNotFoundError",
    "QuoteSource",
    "StockPriceUpdatePipeline",
    "StockQuote",
    "SupabaseRowStore",
    "UpdateRequest",
]
