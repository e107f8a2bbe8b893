import pytest

from src.functions.stock_price_update.core.contracts import StockQuote
from src.functions.stock_price_update.core.quote_fetcher import QuoteNotFoundError
from src.shared.batch import BatchConfig


class FakeFetcher:
    """Returns canned prices; codes missing from ``prices`` are not found."""

    def __init__(self, prices, on_fetch=None):
        self.prices = prices
        self.on_fetch = on_fetch
        self.fetched = []
        self.max_retries = 3

    def fetch(self, code):
        self.fetched.append(code)
        if self.on_fetch:
            self.on_fetch(code)
        if code not in self.prices:
            raise QuoteNotFoundError(f"No price for {code}")
        return StockQuote(code=code, price=self.prices[code], source="fake")


@pytest.fixture
def fast_config():
    return BatchConfig(
        batch_size=2,
        item_delay=0,
        batch_delay=0,
        soft_time_limit=1000,
        hard_time_limit=None,
    )


@pytest.fixture
def fake_fetcher_cls():
    return FakeFetcher
