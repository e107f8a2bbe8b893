"""Scrapes the latest price of a stock or fund code from quote pages.

Sources are tried in order; within a source, regex patterns are tried in
order and the first match wins. Page layouts change often, so every
source carries several patterns from most to least specific.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import List, Optional, Pattern, Sequence

import httpx
from bs4 import BeautifulSoup
from tenacity import (
    Retrying,
    before_sleep_log,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from .contracts import StockQuote

logger = logging.getLogger(__name__)

RETRYABLE_HTTP_ERRORS = (httpx.TransportError,)


class QuoteNotFoundError(LookupError):
    """No source returned a recognisable price for the code."""


@dataclass
class QuoteSource:
    """One quote website: a URL template and the price patterns to try."""

    name: str
    url_template: str
    patterns: Sequence[Pattern[str]] = field(default_factory=list)
    name_pattern: Optional[Pattern[str]] = None

    def url_for(self, code: str) -> str:
        return self.url_template.format(code=code)


DEFAULT_SOURCES: List[QuoteSource] = [
    QuoteSource(
        name="google",
        url_template="https://www.google.com/finance/quote/{code}:TYO",
        patterns=[
            re.compile(r'"YMlKec fxKbKc">[¥$]?([\d,]+(?:\.\d+)?)'),
            re.compile(r'data-last-price="([\d.]+)"'),
            re.compile(r'class="[^"]*price[^"]*"[^>]*>[¥$]?([\d,]+(?:\.\d+)?)'),
        ],
        name_pattern=re.compile(r'<div class="zzDege">([^<]+)</div>'),
    ),
    QuoteSource(
        name="yahoo_jp",
        url_template="https://finance.yahoo.co.jp/quote/{code}.T",
        patterns=[
            re.compile(r'"price":"([\d,.]+)"'),
            re.compile(r'<span[^>]*class="[^"]*stocksDetail__price[^"]*"[^>]*>([\d,.]+)</span>'),
            re.compile(r'現在値</dt>[\s\S]*?<dd[^>]*>([\d,.]+)</dd>'),
        ],
    ),
]


def parse_price(raw: str) -> Optional[float]:
    """Parse ``"1,234.5"`` style text; None if it is not a number."""
    cleaned = raw.replace(",", "").strip()
    if not cleaned:
        return None
    try:
        return float(cleaned)
    except ValueError:
        return None


class QuoteFetcher:
    """Fetches quotes over HTTP with per-source retry on transport errors.

    Example:
        with QuoteFetcher(max_retries=2) as fetcher:
            quote = fetcher.fetch("7203")
    """

    _DEFAULT_HEADERS = {
        "User-Agent": (
            "Mozilla/5.0 (Macintosh; Intel Mac OS X 13_4) "
            "AppleWebKit/537.36 (KHTML, like Gecko) "
            "Chrome/119.0.0.0 Safari/537.36"
        ),
        "Accept-Language": "ja,en-US;q=0.9,en;q=0.8",
    }

    def __init__(
        self,
        sources: Optional[Sequence[QuoteSource]] = None,
        *,
        http_client: Optional[httpx.Client] = None,
        timeout: float = 10.0,
        max_retries: int = 3,
        retry_wait_seconds: float = 1.0,
    ) -> None:
        self.sources = list(sources or DEFAULT_SOURCES)
        self.max_retries = max_retries
        self.retry_wait_seconds = retry_wait_seconds
        self._owns_client = http_client is None
        self._client = http_client or httpx.Client(
            headers=self._DEFAULT_HEADERS,
            follow_redirects=True,
            timeout=timeout,
        )

    def __enter__(self) -> QuoteFetcher:
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def close(self) -> None:
        if self._owns_client:
            self._client.close()

    def _get(self, url: str) -> str:
        retrying = Retrying(
            stop=stop_after_attempt(self.max_retries + 1),
            wait=wait_exponential(multiplier=self.retry_wait_seconds, max=self.retry_wait_seconds * 8),
            retry=retry_if_exception_type(RETRYABLE_HTTP_ERRORS),
            before_sleep=before_sleep_log(logger, logging.WARNING),
            reraise=True,
        )
        for attempt in retrying:
            with attempt:
                response = self._client.get(url)
                response.raise_for_status()
                return response.text
        raise RuntimeError("Retry loop completed without result or exception")

    def _extract(self, source: QuoteSource, code: str, html: str) -> Optional[StockQuote]:
        price = None
        for position, pattern in enumerate(source.patterns):
            match = pattern.search(html)
            if match:
                price = parse_price(match.group(1))
                if price is not None:
                    logger.debug("Price for %s found by %s pattern %d", code, source.name, position)
                    break

        soup = None
        if price is None:
            soup = BeautifulSoup(html, "lxml")
            tag = soup.find("meta", attrs={"itemprop": "price"})
            if tag and tag.get("content"):
                price = parse_price(str(tag["content"]))

        if price is None:
            return None

        name = None
        if source.name_pattern:
            name_match = source.name_pattern.search(html)
            if name_match:
                name = name_match.group(1).strip()
        if not name:
            soup = soup or BeautifulSoup(html, "lxml")
            og_title = soup.find("meta", attrs={"property": "og:title"})
            if og_title and og_title.get("content"):
                name = str(og_title["content"]).strip()

        return StockQuote(code=code, price=price, name=name or None, source=source.name)

    def fetch(self, code: str) -> StockQuote:
        """Return the first quote any source yields for ``code``.

        Raises:
            QuoteNotFoundError: If every source failed or matched nothing
        """
        errors = []
        for source in self.sources:
            url = source.url_for(code)
            try:
                html = self._get(url)
            except httpx.HTTPError as e:
                logger.warning("Quote source %s failed for %s: %s", source.name, code, e)
                errors.append(f"{source.name}: {e}")
                continue

            quote = self._extract(source, code, html)
            if quote is not None:
                return quote
            logger.debug("No price pattern matched for %s on %s", code, source.name)
            errors.append(f"{source.name}: no price found")

        raise QuoteNotFoundError(f"No price for {code} ({'; '.join(errors)})")
