"""
Fast-path key-value cache.

A small synchronous SQLite table of string values keyed by fixed names,
one file per profile. It holds:

- the whole application state as one JSON blob, used to paint the UI
  before the durable note store answers
- a few independent settings entries (theme, AI key preference, API key)

The snapshot is a cold-start accelerator only. It is overwritten wholesale
on every state change and is never treated as authoritative for notes once
the durable store has answered.
"""

import json
import logging
import sqlite3
from pathlib import Path
from typing import Any, Optional

from .errors import PersistenceError, QuotaExceededError
from .types import AppState, state_from_dict, state_to_dict

logger = logging.getLogger(__name__)

STATE_KEY = "notepro-state"
THEME_SETTINGS_KEY = "notepro-theme-settings"
USE_ENV_API_KEY = "notepro-use-env-api-key"
API_KEY_STORAGE_KEY = "notepro-openai-api-key"

DEFAULT_QUOTA_BYTES = 5 * 1024 * 1024

DEFAULT_THEME_SETTINGS = {
    "mode": "system",
    "variant": "default",
    "followSystem": True,
}


class KeyValueStore:
    """
    SQLite-backed string key/value store.

    Reads are synchronous so the snapshot is available before the first
    paint. ``quota_bytes`` bounds the total size of stored values; a write
    that would exceed it raises QuotaExceededError and leaves the old value.
    """

    def __init__(self, db_path: Path, quota_bytes: Optional[int] = DEFAULT_QUOTA_BYTES):
        """
        Args:
            db_path: Path to SQLite database file
            quota_bytes: Maximum total bytes of stored values (None for unlimited)
        """
        self._db_path = Path(db_path)
        self._quota_bytes = quota_bytes
        self._conn: Optional[sqlite3.Connection] = None
        self._init_db()

    def _init_db(self) -> None:
        """Initialize the SQLite database."""
        try:
            self._db_path.parent.mkdir(parents=True, exist_ok=True)
            self._conn = sqlite3.connect(str(self._db_path), check_same_thread=False)
            self._conn.execute("PRAGMA busy_timeout=5000")
            self._conn.execute("""
                CREATE TABLE IF NOT EXISTS kv (
                    key TEXT PRIMARY KEY,
                    value TEXT NOT NULL
                )
            """)
            self._conn.commit()
        except (sqlite3.Error, OSError) as e:
            raise PersistenceError(f"Cannot open cache {self._db_path}: {e}") from e

    def _db(self) -> sqlite3.Connection:
        if self._conn is None:
            raise PersistenceError(f"Cache {self._db_path} is closed")
        return self._conn

    def get(self, key: str) -> Optional[str]:
        try:
            row = self._db().execute(
                "SELECT value FROM kv WHERE key = ?", (key,)
            ).fetchone()
        except sqlite3.Error as e:
            raise PersistenceError(f"Cache read failed for {key!r}: {e}") from e
        return row[0] if row else None

    def set(self, key: str, value: str) -> None:
        """
        Store a value, replacing any previous one.

        Raises:
            QuotaExceededError: the write would exceed the quota
            PersistenceError: the write failed
        """
        try:
            if self._quota_bytes is not None:
                others = self._db().execute(
                    "SELECT COALESCE(SUM(LENGTH(CAST(value AS BLOB))), 0) FROM kv WHERE key != ?",
                    (key,),
                ).fetchone()[0]
                needed = others + len(value.encode("utf-8"))
                if needed > self._quota_bytes:
                    raise QuotaExceededError(
                        f"Cache quota exceeded writing {key!r}: "
                        f"{needed} > {self._quota_bytes} bytes"
                    )
            self._db().execute(
                "INSERT OR REPLACE INTO kv (key, value) VALUES (?, ?)", (key, value)
            )
            self._db().commit()
        except sqlite3.Error as e:
            raise PersistenceError(f"Cache write failed for {key!r}: {e}") from e

    def delete(self, key: str) -> bool:
        try:
            cursor = self._db().execute("DELETE FROM kv WHERE key = ?", (key,))
            self._db().commit()
        except sqlite3.Error as e:
            raise PersistenceError(f"Cache delete failed for {key!r}: {e}") from e
        return cursor.rowcount > 0

    def keys(self) -> list[str]:
        return [row[0] for row in self._db().execute("SELECT key FROM kv ORDER BY key")]

    def close(self) -> None:
        """Close the database connection."""
        if self._conn is not None:
            self._conn.close()
            self._conn = None

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False


class SnapshotCache:
    """Whole-state snapshot under one profile-scoped key."""

    def __init__(self, kv: KeyValueStore, key: str = STATE_KEY):
        self._kv = kv
        self._key = key

    def load_snapshot(self) -> Optional[AppState]:
        """
        Load the last saved state.

        Returns None when there is no snapshot or it cannot be read;
        never raises.
        """
        try:
            raw = self._kv.get(self._key)
        except PersistenceError as e:
            logger.warning("Snapshot unavailable: %s", e)
            return None
        if raw is None:
            return None
        try:
            return state_from_dict(json.loads(raw))
        except (ValueError, KeyError, TypeError, AttributeError) as e:
            logger.warning("Discarding corrupt snapshot: %s", e)
            return None

    def save_snapshot(self, state: AppState) -> bool:
        """
        Overwrite the snapshot with ``state``.

        Returns False (after logging) when the write is skipped because
        of quota or storage errors.
        """
        try:
            blob = json.dumps(state_to_dict(state), ensure_ascii=False)
            self._kv.set(self._key, blob)
        except QuotaExceededError as e:
            logger.warning("Skipping snapshot write: %s", e)
            return False
        except PersistenceError as e:
            logger.warning("Snapshot write failed: %s", e)
            return False
        return True

    def clear(self) -> None:
        try:
            self._kv.delete(self._key)
        except PersistenceError as e:
            logger.warning("Snapshot clear failed: %s", e)


class SettingsCache:
    """
    Settings entries that live beside the snapshot.

    Each entry is an independent value under a fixed key. None of them
    touch the application state.
    """

    def __init__(self, kv: KeyValueStore):
        self._kv = kv

    def _read(self, key: str) -> Optional[str]:
        try:
            return self._kv.get(key)
        except PersistenceError as e:
            logger.warning("Setting %s unavailable: %s", key, e)
            return None

    def _write(self, key: str, value: str) -> bool:
        try:
            self._kv.set(key, value)
        except PersistenceError as e:
            logger.warning("Cannot save setting %s: %s", key, e)
            return False
        return True

    def get_theme_settings(self) -> dict[str, Any]:
        raw = self._read(THEME_SETTINGS_KEY)
        if raw is None:
            return dict(DEFAULT_THEME_SETTINGS)
        try:
            data = json.loads(raw)
        except ValueError:
            logger.warning("Discarding corrupt theme settings")
            return dict(DEFAULT_THEME_SETTINGS)
        if not isinstance(data, dict):
            return dict(DEFAULT_THEME_SETTINGS)
        return {**DEFAULT_THEME_SETTINGS, **data}

    def set_theme_settings(self, settings: dict[str, Any]) -> bool:
        return self._write(THEME_SETTINGS_KEY, json.dumps(settings))

    def get_use_env_api_key(self) -> bool:
        return self._read(USE_ENV_API_KEY) == "true"

    def set_use_env_api_key(self, value: bool) -> bool:
        return self._write(USE_ENV_API_KEY, "true" if value else "false")

    def get_api_key(self) -> Optional[str]:
        return self._read(API_KEY_STORAGE_KEY) or None

    def set_api_key(self, key: str) -> bool:
        return self._write(API_KEY_STORAGE_KEY, key)
