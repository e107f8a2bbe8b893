import re

import httpx
import pytest

from src.functions.stock_price_update.core.quote_fetcher import (
    QuoteFetcher,
    QuoteNotFoundError,
    QuoteSource,
    parse_price,
)

PRIMARY = QuoteSource(
    name="primary",
    url_template="https://primary.test/quote/{code}",
    patterns=[re.compile(r'data-last-price="([\d.,]+)"')],
    name_pattern=re.compile(r"<h1>([^<]+)</h1>"),
)
SECONDARY = QuoteSource(
    name="secondary",
    url_template="https://secondary.test/q/{code}.T",
    patterns=[re.compile(r'"price":"([\d,.]+)"')],
)


def _fetcher(handler, sources=(PRIMARY, SECONDARY), max_retries=0):
    client = httpx.Client(transport=httpx.MockTransport(handler))
    return QuoteFetcher(sources, http_client=client, max_retries=max_retries, retry_wait_seconds=0)


@pytest.mark.parametrize(
    "raw, expected",
    [("1,234.5", 1234.5), (" 880 ", 880.0), ("", None), ("n/a", None)],
)
def test_parse_price(raw, expected):
    assert parse_price(raw) == expected


def test_first_source_match_wins():
    requested = []

    def handler(request):
        requested.append(request.url.host)
        return httpx.Response(200, text='<h1>Toyota Motor</h1><div data-last-price="2,875.5"></div>')

    quote = _fetcher(handler).fetch("7203")

    assert requested == ["primary.test"]
    assert quote.code == "7203"
    assert quote.price == 2875.5
    assert quote.name == "Toyota Motor"
    assert quote.source == "primary"
    assert quote.as_row()["price_source"] == "primary"


def test_falls_back_to_next_source_on_http_error():
    def handler(request):
        if request.url.host == "primary.test":
            return httpx.Response(404, text="not found")
        assert request.url.path == "/q/9984.T"
        return httpx.Response(200, text='{"price":"8,123"}')

    quote = _fetcher(handler).fetch("9984")

    assert quote.price == 8123.0
    assert quote.source == "secondary"
    assert quote.name is None


def test_falls_back_to_meta_price_and_og_title():
    page = (
        "<html><head>"
        '<meta property="og:title" content="Sample Fund">'
        '<meta itemprop="price" content="10,456">'
        "</head><body>layout changed</body></html>"
    )

    quote = _fetcher(lambda request: httpx.Response(200, text=page), sources=[SECONDARY]).fetch("0331418A")

    assert quote.price == 10456.0
    assert quote.name == "Sample Fund"


def test_raises_when_no_source_has_a_price():
    def handler(request):
        return httpx.Response(200, text="<html>maintenance</html>")

    with pytest.raises(QuoteNotFoundError) as excinfo:
        _fetcher(handler).fetch("1111")

    assert "primary: no price found" in str(excinfo.value)
    assert "secondary: no price found" in str(excinfo.value)


def test_transport_errors_are_retried_per_source():
    attempts = {"primary.test": 0, "secondary.test": 0}

    def handler(request):
        attempts[request.url.host] += 1
        raise httpx.ConnectError("connection refused", request=request)

    with pytest.raises(QuoteNotFoundError):
        _fetcher(handler, max_retries=2).fetch("7203")

    assert attempts == {"primary.test": 3, "secondary.test": 3}


def test_transient_error_then_success():
    calls = {"count": 0}

    def handler(request):
        calls["count"] += 1
        if calls["count"] == 1:
            raise httpx.ReadTimeout("slow", request=request)
        return httpx.Response(200, text='<div data-last-price="99"></div>')

    quote = _fetcher(handler, sources=[PRIMARY], max_retries=1).fetch("7203")

    assert quote.price == 99.0
    assert calls["count"] == 2
