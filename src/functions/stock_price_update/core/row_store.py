"""Portfolio holdings storage: one row per stock code."""

from __future__ import annotations

import logging
import threading
from typing import Any, Dict, Iterable, List, Optional, Protocol

from src.shared.batch import retry_on_network_error

from .contracts import StockQuote

logger = logging.getLogger(__name__)


class RowStore(Protocol):
    """Key-value view of the holdings sheet, keyed by stock code."""

    def list_codes(self) -> List[str]:
        ...

    def read(self, code: str) -> Optional[Dict[str, Any]]:
        ...

    def write_quote(self, quote: StockQuote) -> None:
        ...


class InMemoryRowStore:
    """Holdings kept in a dict, in insertion order. Used for dry runs and tests."""

    def __init__(self, codes: Iterable[str] = ()) -> None:
        self._rows: Dict[str, Dict[str, Any]] = {}
        self._lock = threading.Lock()
        for code in codes:
            self._rows[str(code)] = {"code": str(code)}

    def list_codes(self) -> List[str]:
        with self._lock:
            return list(self._rows)

    def read(self, code: str) -> Optional[Dict[str, Any]]:
        with self._lock:
            row = self._rows.get(code)
            return dict(row) if row is not None else None

    def write_quote(self, quote: StockQuote) -> None:
        with self._lock:
            self._rows.setdefault(quote.code, {"code": quote.code}).update(quote.as_row())


class SupabaseRowStore:
    """Holdings table in Supabase (``code`` is the unique key)."""

    def __init__(self, client, table: str = "portfolio_holdings", *, max_retries: int = 3):
        self.client = client
        self.table = table
        self.max_retries = max_retries

    def list_codes(self) -> List[str]:
        response = retry_on_network_error(
            lambda: self.client.table(self.table).select("code").order("code").execute(),
            max_retries=self.max_retries,
        )
        codes = []
        for row in getattr(response, "data", None) or []:
            code = str(row.get("code") or "").strip()
            if code:
                codes.append(code)
        logger.debug("Loaded %d codes from %s", len(codes), self.table)
        return codes

    def read(self, code: str) -> Optional[Dict[str, Any]]:
        response = retry_on_network_error(
            lambda: self.client.table(self.table).select("*").eq("code", code).limit(1).execute(),
            max_retries=self.max_retries,
        )
        rows = getattr(response, "data", None) or []
        return rows[0] if rows else None

    def write_quote(self, quote: StockQuote) -> None:
        row = quote.as_row()
        retry_on_network_error(
            lambda: self.client.table(self.table).upsert(row, on_conflict="code").execute(),
            max_retries=self.max_retries,
        )
