"""Read-only access to the host application's ``state.vscdb`` key/value store.

Cursor keeps workspace and global state in SQLite databases with two
key/value tables: ``ItemTable`` (prompts, generations, panel state) and
``cursorDiskKV`` (chat bubbles). The host may be writing to the file while
we read, so every call opens its own read-only connection, runs a single
query and closes it again. Nothing is cached between calls.
"""

import logging
import sqlite3
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path

from .errors import StoreUnavailable

logger = logging.getLogger(__name__)

ITEM_TABLE = "ItemTable"
DISK_KV_TABLE = "cursorDiskKV"

PROMPTS_KEY = "aiService.prompts"
GENERATIONS_KEY = "aiService.generations"
BUBBLE_PREFIX = "bubbleId:"
COMPOSER_PANE_PREFIX = "workbench.panel.composerChatViewPane."

_KNOWN_TABLES = (ITEM_TABLE, DISK_KV_TABLE)


def _decode(value) -> str | None:
    """Values are TEXT in ItemTable but BLOB in cursorDiskKV."""
    if value is None:
        return None
    if isinstance(value, bytes):
        return value.decode("utf-8", errors="replace")
    return str(value)


def _escape_like(prefix: str) -> str:
    return prefix.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


class StateStore:
    """A ``state.vscdb`` file queried by exact key or key prefix."""

    def __init__(self, path: Path | str):
        self.path = Path(path)

    def __repr__(self) -> str:
        return f"StateStore({str(self.path)!r})"

    @contextmanager
    def _connect(self) -> Iterator[sqlite3.Connection]:
        if not self.path.is_file():
            raise StoreUnavailable(self.path, "file not found")
        uri = f"{self.path.resolve().as_uri()}?mode=ro"
        try:
            conn = sqlite3.connect(uri, uri=True, timeout=1.0)
        except sqlite3.Error as e:
            raise StoreUnavailable(self.path, str(e)) from e
        try:
            yield conn
        except sqlite3.DatabaseError as e:
            # Covers "database is locked" and "file is not a database"
            raise StoreUnavailable(self.path, str(e)) from e
        finally:
            conn.close()

    @staticmethod
    def _has_table(conn: sqlite3.Connection, table: str) -> bool:
        row = conn.execute(
            "SELECT name FROM sqlite_master WHERE type='table' AND name = ?",
            (table,),
        ).fetchone()
        return row is not None

    def get_value(self, key: str, table: str = ITEM_TABLE) -> str | None:
        """Return the raw value stored under ``key``, or None if absent."""
        if table not in _KNOWN_TABLES:
            raise ValueError(f"Unknown table: {table}")
        with self._connect() as conn:
            if not self._has_table(conn, table):
                logger.debug("%s has no %s table", self.path, table)
                return None
            row = conn.execute(
                f"SELECT value FROM {table} WHERE key = ?", (key,)
            ).fetchone()
        if row is None:
            return None
        return _decode(row[0])

    def scan_by_prefix(self, prefix: str, table: str = ITEM_TABLE) -> list[tuple[str, str]]:
        """Return every ``(key, value)`` row whose key starts with ``prefix``.

        Rows come back in the table's scan order. Rows with a NULL value
        are left out.
        """
        if table not in _KNOWN_TABLES:
            raise ValueError(f"Unknown table: {table}")
        with self._connect() as conn:
            if not self._has_table(conn, table):
                logger.debug("%s has no %s table", self.path, table)
                return []
            cursor = conn.execute(
                f"SELECT key, value FROM {table} WHERE key LIKE ? ESCAPE '\\'",
                (_escape_like(prefix) + "%",),
            )
            rows = []
            for key, value in cursor:
                key = str(key)
                decoded = _decode(value)
                # LIKE is case-insensitive for ASCII
                if decoded is None or not key.startswith(prefix):
                    continue
                rows.append((key, decoded))
        return rows
