"""SQLite key-value persistence for cart, pending cart, stock and orders."""

from __future__ import annotations

import json
import sqlite3
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Union

from orderflow.errors import TransientError
from orderflow.store import Store

STATE_KEYS = ("cart", "pending_cart", "stock", "orders")


def _utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class SqliteStatePersistence:
    """One JSON document per state key; each save is a single transaction."""

    def __init__(self, path: Union[str, Path]) -> None:
        self.path = Path(path)

    def _connect(self) -> sqlite3.Connection:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        return sqlite3.connect(self.path)

    def bootstrap_schema(self) -> None:
        """Create persistence schema if it does not already exist."""
        try:
            conn = self._connect()
            try:
                with conn:
                    conn.execute(
                        """
                        CREATE TABLE IF NOT EXISTS state (
                            key TEXT PRIMARY KEY,
                            value TEXT NOT NULL,
                            updated_at TEXT NOT NULL
                        )
                        """
                    )
            finally:
                conn.close()
        except sqlite3.Error as exc:
            raise TransientError(f"Cannot prepare state database {self.path}: {exc}") from exc

    def save(self, store: Store) -> None:
        data = store.to_dict()
        updated_at = _utc_now_iso()
        self.bootstrap_schema()
        try:
            conn = self._connect()
            try:
                with conn:
                    conn.executemany(
                        "INSERT OR REPLACE INTO state (key, value, updated_at) VALUES (?, ?, ?)",
                        [(key, json.dumps(data[key]), updated_at) for key in STATE_KEYS],
                    )
            finally:
                conn.close()
        except sqlite3.Error as exc:
            raise TransientError(f"Saving state to {self.path} failed: {exc}") from exc

    def load(self, store: Store) -> None:
        """Load saved state into store; a missing database leaves the store untouched."""
        if not self.path.exists():
            return
        self.bootstrap_schema()
        try:
            conn = self._connect()
            try:
                rows = conn.execute("SELECT key, value FROM state").fetchall()
            finally:
                conn.close()
        except sqlite3.Error as exc:
            raise TransientError(f"Loading state from {self.path} failed: {exc}") from exc

        data: Dict[str, Any] = {key: json.loads(value) for key, value in rows if key in STATE_KEYS}
        if data:
            store.load_dict(data)
            store.log(f"state loaded from {self.path}")
