"""Keyed collection storage for the prompt builder.

Every entity type lives in one collection: a JSON object mapping id -> record.
A store loads and saves whole collections; callers read-modify-write them.

Two backends:
- SqliteStore: one row per collection in a local SQLite database
- MemoryStore: process-local dict, used for previews and tests

Writing any collection also refreshes the metadata record's lastModifiedAt
in the same write, so the metadata always agrees with the data it describes.
"""

from __future__ import annotations

import json
import logging
import sqlite3
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Iterator

from .errors import StorageError

logger = logging.getLogger(__name__)

# Collection keys (one per entity type)
PROMPT_BLOCKS = "promptBlocks"
SNIPPETS = "snippets"
CATEGORIES = "categories"
TAGS = "tags"
SETTINGS = "settings"
METADATA = "metadata"

COLLECTION_KEYS = (SNIPPETS, CATEGORIES, TAGS, PROMPT_BLOCKS, SETTINGS, METADATA)

# Schema version for the aggregate document and the SQLite layout
# v1: Initial schema (collections table)
SCHEMA_VERSION = 1


def _now_iso() -> str:
    """Get current UTC timestamp in ISO format."""
    return datetime.now(timezone.utc).isoformat()


def initial_metadata(now: str | None = None) -> dict[str, Any]:
    """Build a fresh metadata record."""
    now = now or _now_iso()
    return {
        "schemaVersion": SCHEMA_VERSION,
        "lastBackupAt": None,
        "installedAt": now,
        "lastModifiedAt": now,
    }


class Store:
    """Base class for collection stores.

    Subclasses provide raw string access (_read, _write_many, _delete, keys);
    JSON encoding, parse-failure recovery and metadata stamping live here.
    """

    def load(self, key: str) -> dict[str, Any]:
        """Load a collection, falling back to an empty one if unreadable."""
        raw = self._read(key)
        if raw is None:
            return {}
        try:
            data = json.loads(raw)
        except (json.JSONDecodeError, TypeError) as e:
            logger.warning("Collection %s is not valid JSON, treating as empty: %s", key, e)
            return {}
        if not isinstance(data, dict):
            logger.warning("Collection %s is not a mapping, treating as empty", key)
            return {}
        return data

    def save(self, key: str, records: dict[str, Any]) -> None:
        """Replace one collection."""
        self.save_many({key: records})

    def save_many(self, collections: dict[str, dict[str, Any]], *, touch: bool = True) -> None:
        """Replace several collections in a single all-or-nothing write.

        Args:
            collections: Mapping of collection key to its new records.
            touch: Whether to refresh metadata.lastModifiedAt alongside.

        Raises:
            StorageError: If the backend rejects the write. Nothing is written.
        """
        payload = {key: json.dumps(records) for key, records in collections.items()}
        if touch and METADATA not in collections:
            metadata = self.load(METADATA) or initial_metadata()
            metadata["lastModifiedAt"] = _now_iso()
            payload[METADATA] = json.dumps(metadata)
        self._write_many(payload)

    def delete(self, key: str) -> None:
        """Remove a collection entirely."""
        self._delete(key)

    def keys(self) -> list[str]:
        raise NotImplementedError

    def _read(self, key: str) -> str | None:
        raise NotImplementedError

    def _write_many(self, payload: dict[str, str]) -> None:
        raise NotImplementedError

    def _delete(self, key: str) -> None:
        raise NotImplementedError


class MemoryStore(Store):
    """Dict-backed store. Values are kept JSON-encoded so no state is shared."""

    def __init__(self) -> None:
        self._data: dict[str, str] = {}

    def keys(self) -> list[str]:
        return sorted(self._data)

    def _read(self, key: str) -> str | None:
        return self._data.get(key)

    def _write_many(self, payload: dict[str, str]) -> None:
        self._data.update(payload)

    def _delete(self, key: str) -> None:
        self._data.pop(key, None)


class SqliteStore(Store):
    """SQLite-backed store: one row per collection."""

    def __init__(self, db_path: Path | str) -> None:
        self.db_path = Path(db_path)
        self._conn: sqlite3.Connection | None = None

    def _get_connection(self) -> sqlite3.Connection:
        """Get the database connection, creating the schema on first use."""
        if self._conn is None:
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
            self._conn = sqlite3.connect(str(self.db_path))
            self._conn.row_factory = sqlite3.Row
            self._conn.execute("PRAGMA journal_mode = WAL")
            self._init_schema(self._conn)
        return self._conn

    def close(self) -> None:
        """Close the database connection."""
        if self._conn is not None:
            try:
                self._conn.close()
            except sqlite3.Error as e:
                logger.debug("Error closing store connection (non-critical): %s", e)
            self._conn = None

    @contextmanager
    def _transaction(self) -> Iterator[sqlite3.Connection]:
        """Context manager for database transactions."""
        conn = self._get_connection()
        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise

    def _init_schema(self, conn: sqlite3.Connection) -> None:
        cursor = conn.execute(
            "SELECT name FROM sqlite_master WHERE type='table' AND name='schema_version'"
        )
        if cursor.fetchone() is not None:
            return

        logger.info("Creating collection schema v%d at %s", SCHEMA_VERSION, self.db_path)
        conn.executescript("""
            CREATE TABLE IF NOT EXISTS schema_version (
                version INTEGER PRIMARY KEY
            );

            CREATE TABLE IF NOT EXISTS collections (
                key TEXT PRIMARY KEY,
                value TEXT NOT NULL,
                updated_at TEXT NOT NULL
            );
        """)
        conn.execute("INSERT INTO schema_version (version) VALUES (?)", (SCHEMA_VERSION,))
        conn.commit()

    def keys(self) -> list[str]:
        conn = self._get_connection()
        cursor = conn.execute("SELECT key FROM collections ORDER BY key")
        return [row["key"] for row in cursor]

    def _read(self, key: str) -> str | None:
        conn = self._get_connection()
        cursor = conn.execute("SELECT value FROM collections WHERE key = ?", (key,))
        row = cursor.fetchone()
        return row["value"] if row else None

    def _write_many(self, payload: dict[str, str]) -> None:
        now = _now_iso()
        try:
            with self._transaction() as conn:
                for key, value in payload.items():
                    conn.execute("""
                        INSERT INTO collections (key, value, updated_at)
                        VALUES (?, ?, ?)
                        ON CONFLICT (key) DO UPDATE SET
                            value = excluded.value,
                            updated_at = excluded.updated_at
                    """, (key, value, now))
        except sqlite3.Error as e:
            logger.error("Failed to write collections %s: %s", sorted(payload), e, exc_info=True)
            raise StorageError(
                "Failed to save data. Storage may be full or locked.",
                operation="write",
                key=",".join(sorted(payload)),
            ) from e

    def _delete(self, key: str) -> None:
        try:
            with self._transaction() as conn:
                conn.execute("DELETE FROM collections WHERE key = ?", (key,))
        except sqlite3.Error as e:
            logger.error("Failed to delete collection %s: %s", key, e, exc_info=True)
            raise StorageError("Failed to delete data", operation="delete", key=key) from e
