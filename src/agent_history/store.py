"""Read-only access to VS Code style ``state.vscdb`` SQLite stores.

Two logical tables are exposed: ``ItemTable`` (single-value settings) and
``cursorDiskKV`` (generic key -> blob). Connections are opened with
``mode=ro`` so a running editor that owns the file is never blocked, and each
``KVStore`` is meant to live for a single logical operation::

    with KVStore(db_path) as store:
        raw = store.get_blob("composerData:...")
"""

import logging
import sqlite3
from pathlib import Path

from .errors import StoreError
from .search import escape_like

logger = logging.getLogger(__name__)

ITEM_TABLE = "ItemTable"
BLOB_TABLE = "cursorDiskKV"


def _to_text(value) -> str | None:
    if value is None:
        return None
    if isinstance(value, str):
        return value
    if isinstance(value, (bytes, bytearray, memoryview)):
        return bytes(value).decode("utf-8", errors="replace")
    return str(value)


class KVStore:
    """A read-only handle on one ``state.vscdb`` file."""

    def __init__(self, path: Path):
        self.path = Path(path)
        self._conn: sqlite3.Connection | None = None

    def open(self) -> "KVStore":
        if not self.path.is_file():
            raise StoreError(f"Database not found: {self.path}")
        uri = self.path.resolve().as_uri() + "?mode=ro"
        try:
            self._conn = sqlite3.connect(uri, uri=True)
        except sqlite3.Error as e:
            raise StoreError(f"Failed to open database {self.path}: {e}") from e
        return self

    def close(self) -> None:
        if self._conn is not None:
            self._conn.close()
            self._conn = None

    def __enter__(self) -> "KVStore":
        return self.open()

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def _query(self, sql: str, params: tuple) -> list[tuple]:
        if self._conn is None:
            raise StoreError(f"Database not open: {self.path}")
        try:
            cur = self._conn.execute(sql, params)
            return cur.fetchall()
        except sqlite3.Error as e:
            raise StoreError(f"Query failed on {self.path}: {e}") from e

    def _get(self, table: str, key: str) -> str | None:
        rows = self._query(f"SELECT value FROM {table} WHERE key = ? LIMIT 1", (key,))
        if not rows:
            return None
        return _to_text(rows[0][0])

    def get_item(self, key: str) -> str | None:
        """Read a single key from ``ItemTable``."""
        return self._get(ITEM_TABLE, key)

    def get_blob(self, key: str) -> str | None:
        """Read a single key from ``cursorDiskKV``."""
        return self._get(BLOB_TABLE, key)

    def scan_blobs(self, key_prefix: str, needle: str, limit: int) -> list[tuple[str, str]]:
        """Coarse substring prefilter over ``cursorDiskKV``.

        Returns up to ``2 * limit`` ``(key, value)`` pairs whose key starts
        with ``key_prefix`` and whose value contains ``needle``. Callers apply
        exact scoring afterwards; the doubled limit leaves room for rows the
        scorer rejects.
        """
        if limit <= 0:
            return []
        key_pattern = escape_like(key_prefix) + "%"
        value_pattern = "%" + escape_like(needle) + "%"
        rows = self._query(
            f"SELECT key, CAST(value AS TEXT) FROM {BLOB_TABLE} "
            "WHERE key LIKE ? ESCAPE '\\' "
            "AND CAST(value AS TEXT) LIKE ? ESCAPE '\\' "
            "LIMIT ?",
            (key_pattern, value_pattern, limit * 2),
        )
        logger.debug("scan_blobs(%r) matched %d rows in %s", needle, len(rows), self.path)
        return [(key, _to_text(value) or "") for key, value in rows]
