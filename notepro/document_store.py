"""
Durable note store using SQLite.

The note store is the source of truth for note content once the startup
migration has run. Each note is kept as one JSON record keyed by id, with
the project id and timestamps extracted into indexed columns so that a
per-project listing is an index range scan rather than a table scan.

All operations are coroutines (aiosqlite). Failures surface as
PersistenceError; callers decide whether to log, retry or propagate.
"""

import asyncio
import json
import logging
import sqlite3
from pathlib import Path
from typing import Optional

import aiosqlite

from .errors import PersistenceError, ValidationError
from .types import Note, note_from_dict, note_to_dict

logger = logging.getLogger(__name__)

SCHEMA_VERSION = 1


class NoteStore:
    """
    SQLite-backed store for note records.

    The connection is opened lazily on first use, so a store can be
    constructed outside of a running event loop.
    """

    def __init__(self, db_path: Path):
        """
        Args:
            db_path: Path to SQLite database file
        """
        self._db_path = Path(db_path)
        self._conn: Optional[aiosqlite.Connection] = None
        self._connect_lock: Optional[asyncio.Lock] = None

    @property
    def path(self) -> Path:
        return self._db_path

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    async def connect(self) -> None:
        """Open the database and create the schema if needed."""
        if self._conn is not None:
            return
        if self._connect_lock is None:
            self._connect_lock = asyncio.Lock()
        async with self._connect_lock:
            if self._conn is not None:
                return
            try:
                self._db_path.parent.mkdir(parents=True, exist_ok=True)
                conn = await aiosqlite.connect(str(self._db_path), timeout=30.0)
            except (sqlite3.Error, OSError) as e:
                raise PersistenceError(f"Cannot open note store {self._db_path}: {e}") from e
            try:
                conn.row_factory = sqlite3.Row
                await conn.execute("PRAGMA journal_mode=WAL")
                await conn.execute("PRAGMA busy_timeout=5000")
                await self._init_schema(conn)
            except sqlite3.Error as e:
                await conn.close()
                raise PersistenceError(f"Cannot initialise note store {self._db_path}: {e}") from e
            except PersistenceError:
                await conn.close()
                raise
            self._conn = conn
            logger.debug("Note store opened: %s", self._db_path)

    async def _init_schema(self, conn: aiosqlite.Connection) -> None:
        async with conn.execute("PRAGMA user_version") as cursor:
            row = await cursor.fetchone()
        version = row[0] if row else 0
        if version > SCHEMA_VERSION:
            raise PersistenceError(
                f"Note store schema {version} is newer than supported ({SCHEMA_VERSION})"
            )

        await conn.execute("""
            CREATE TABLE IF NOT EXISTS notes (
                id TEXT PRIMARY KEY,
                project_id TEXT NOT NULL,
                created_at INTEGER NOT NULL,
                updated_at INTEGER NOT NULL,
                data TEXT NOT NULL
            )
        """)

        # Secondary index for per-project range scans
        await conn.execute("""
            CREATE INDEX IF NOT EXISTS idx_notes_project
            ON notes(project_id)
        """)

        await conn.execute("""
            CREATE INDEX IF NOT EXISTS idx_notes_updated
            ON notes(updated_at)
        """)

        await conn.execute(f"PRAGMA user_version = {SCHEMA_VERSION}")
        await conn.commit()

    async def close(self) -> None:
        """Close the database connection."""
        if self._conn is not None:
            await self._conn.close()
            self._conn = None
            logger.debug("Note store closed: %s", self._db_path)

    async def __aenter__(self):
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()
        return False

    async def _connection(self) -> aiosqlite.Connection:
        if self._conn is None:
            await self.connect()
        return self._conn

    # -------------------------------------------------------------------------
    # Write Operations
    # -------------------------------------------------------------------------

    async def put(self, note: Note) -> None:
        """
        Insert or replace a note, overwriting every field.

        Raises:
            ValidationError: the note still has legacy (non-block) content
            PersistenceError: the write failed
        """
        if note.is_legacy:
            raise ValidationError(f"Refusing to store note {note.id!r} with legacy content")
        data = json.dumps(note_to_dict(note), ensure_ascii=False)
        conn = await self._connection()
        try:
            await conn.execute("""
                INSERT OR REPLACE INTO notes
                (id, project_id, created_at, updated_at, data)
                VALUES (?, ?, ?, ?, ?)
            """, (note.id, note.project_id, note.created_at, note.updated_at, data))
            await conn.commit()
        except sqlite3.Error as e:
            raise PersistenceError(f"Failed to store note {note.id!r}: {e}") from e

    async def remove(self, id: str) -> None:
        """Delete a note. Removing a missing id is not an error."""
        conn = await self._connection()
        try:
            await conn.execute("DELETE FROM notes WHERE id = ?", (id,))
            await conn.commit()
        except sqlite3.Error as e:
            raise PersistenceError(f"Failed to delete note {id!r}: {e}") from e

    # -------------------------------------------------------------------------
    # Read Operations
    # -------------------------------------------------------------------------

    async def get_by_id(self, id: str) -> Optional[Note]:
        """
        Get a note by ID.

        Returns:
            Note if found, None otherwise

        Raises:
            PersistenceError: the read failed or the record is unreadable
        """
        rows = await self._fetch("SELECT id, data FROM notes WHERE id = ?", (id,))
        if not rows:
            return None
        try:
            return note_from_dict(json.loads(rows[0]["data"]))
        except (ValueError, KeyError, TypeError) as e:
            raise PersistenceError(f"Note {id!r} is unreadable: {e}") from e

    async def get_by_project(self, project_id: str) -> list[Note]:
        """All notes of one project, oldest first."""
        rows = await self._fetch("""
            SELECT id, data FROM notes
            WHERE project_id = ?
            ORDER BY created_at
        """, (project_id,))
        return self._rows_to_notes(rows)

    async def get_all(self) -> list[Note]:
        """Every stored note, oldest first."""
        rows = await self._fetch("SELECT id, data FROM notes ORDER BY created_at")
        return self._rows_to_notes(rows)

    async def count(self) -> int:
        rows = await self._fetch("SELECT COUNT(*) FROM notes")
        return rows[0][0]

    async def _fetch(self, sql: str, params: tuple = ()) -> list:
        conn = await self._connection()
        try:
            async with conn.execute(sql, params) as cursor:
                return list(await cursor.fetchall())
        except sqlite3.Error as e:
            raise PersistenceError(f"Note store read failed: {e}") from e

    def _rows_to_notes(self, rows: list) -> list[Note]:
        notes = []
        for row in rows:
            try:
                notes.append(note_from_dict(json.loads(row["data"])))
            except (ValueError, KeyError, TypeError) as e:
                # One corrupt record must not hide the others
                logger.warning("Skipping unreadable note %s: %s", row["id"], e)
        return notes
