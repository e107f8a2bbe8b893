"""Durable key-value stores for batch checkpoints and control flags.

A store holds small JSON documents (checkpoints, the cancellation flag,
the latest progress event) under string keys. Stores never raise to the
caller: losing a checkpoint only costs a restart from an older position,
so read failures are reported as absent and write failures as no-ops.
"""

from __future__ import annotations

import json
import logging
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional, Protocol

from .retry import retry_on_network_error

logger = logging.getLogger(__name__)


class StateStore(Protocol):
    """Interface every checkpoint backend implements."""

    def save(self, key: str, value: Dict[str, Any]) -> None:
        ...

    def load(self, key: str) -> Optional[Dict[str, Any]]:
        ...

    def delete(self, key: str) -> None:
        ...


def _decode(key: str, raw: Any) -> Optional[Dict[str, Any]]:
    """Decode a stored document, treating anything unreadable as absent."""
    if raw is None:
        return None
    if isinstance(raw, dict):
        return raw
    try:
        value = json.loads(raw)
    except (TypeError, ValueError) as e:
        logger.error("Failed to decode state for %s: %s", key, e)
        return None
    if not isinstance(value, dict):
        logger.error("Ignoring non-object state stored under %s", key)
        return None
    return value


class InMemoryStateStore:
    """Process-local store used by tests and dry runs.

    Values are kept as JSON text so serialization failures surface the
    same way they do with the durable stores.
    """

    def __init__(self) -> None:
        self._data: Dict[str, str] = {}
        self._lock = threading.Lock()

    def save(self, key: str, value: Dict[str, Any]) -> None:
        try:
            encoded = json.dumps(value)
        except (TypeError, ValueError) as e:
            logger.error("Failed to serialize state for %s: %s", key, e)
            return
        with self._lock:
            self._data[key] = encoded

    def load(self, key: str) -> Optional[Dict[str, Any]]:
        with self._lock:
            raw = self._data.get(key)
        return _decode(key, raw)

    def delete(self, key: str) -> None:
        with self._lock:
            self._data.pop(key, None)

    def keys(self):
        with self._lock:
            return sorted(self._data)


class JsonFileStateStore:
    """Single JSON document on disk holding every key, written atomically.

    Example:
        store = JsonFileStateStore("./state/batch_state.json")
        store.save("batch_state_daily", {"lastProcessedIndex": 4})
    """

    def __init__(self, filepath: str | Path):
        self.filepath = Path(filepath)
        self.lock = threading.Lock()

    def _read_all(self) -> Dict[str, Any]:
        if not self.filepath.exists():
            return {}
        try:
            with open(self.filepath, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, ValueError) as e:
            logger.error("Failed to load state file %s: %s", self.filepath, e)
            return {}
        if not isinstance(data, dict):
            logger.error("State file %s does not hold an object, ignoring it", self.filepath)
            return {}
        return data

    def _write_all(self, data: Dict[str, Any]) -> None:
        self.filepath.parent.mkdir(parents=True, exist_ok=True)
        temp_path = self.filepath.with_suffix(".tmp")
        with open(temp_path, "w", encoding="utf-8") as f:
            json.dump(data, f, indent=2, ensure_ascii=False)
        temp_path.replace(self.filepath)

    def save(self, key: str, value: Dict[str, Any]) -> None:
        with self.lock:
            data = self._read_all()
            data[key] = value
            try:
                self._write_all(data)
                logger.debug("State %s flushed to %s", key, self.filepath)
            except (OSError, TypeError, ValueError) as e:
                logger.error("Failed to save state %s: %s", key, e)

    def load(self, key: str) -> Optional[Dict[str, Any]]:
        with self.lock:
            return _decode(key, self._read_all().get(key))

    def delete(self, key: str) -> None:
        with self.lock:
            data = self._read_all()
            if key not in data:
                return
            del data[key]
            try:
                self._write_all(data)
            except (OSError, TypeError, ValueError) as e:
                logger.error("Failed to delete state %s: %s", key, e)


class SupabaseStateStore:
    """Stores each key as a row ``{key, value, updated_at}`` in Supabase.

    The table needs a unique constraint on ``key``; ``value`` holds the
    JSON-encoded document.
    """

    def __init__(self, client, table: str = "batch_state", *, max_retries: int = 3):
        self.client = client
        self.table = table
        self.max_retries = max_retries

    def save(self, key: str, value: Dict[str, Any]) -> None:
        try:
            record = {
                "key": key,
                "value": json.dumps(value),
                "updated_at": datetime.now(timezone.utc).isoformat(),
            }
            retry_on_network_error(
                lambda: self.client.table(self.table).upsert(record, on_conflict="key").execute(),
                max_retries=self.max_retries,
            )
        except Exception as e:
            logger.error("Failed to save state %s to %s: %s", key, self.table, e)

    def load(self, key: str) -> Optional[Dict[str, Any]]:
        try:
            response = retry_on_network_error(
                lambda: self.client.table(self.table)
                .select("value")
                .eq("key", key)
                .limit(1)
                .execute(),
                max_retries=self.max_retries,
            )
        except Exception as e:
            logger.error("Failed to load state %s from %s: %s", key, self.table, e)
            return None
        rows = getattr(response, "data", None) or []
        if not rows:
            return None
        return _decode(key, rows[0].get("value"))

    def delete(self, key: str) -> None:
        try:
            retry_on_network_error(
                lambda: self.client.table(self.table).delete().eq("key", key).execute(),
                max_retries=self.max_retries,
            )
        except Exception as e:
            logger.error("Failed to delete state %s from %s: %s", key, self.table, e)
